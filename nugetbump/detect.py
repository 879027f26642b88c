"""Manifest role detection for repository listings."""

import posixpath
from dataclasses import dataclass, field

from .models import RepositoryItem

PROJECT_SUFFIXES = (".csproj", ".fsproj", ".vbproj")
CENTRAL_VERSION_FILE = "directory.packages.props"
FEED_CONFIG_FILE = "nuget.config"


def identify(path: str) -> str:
    """Detect the role of a repository file from its path.

    Args:
        path: Repository path of the file, e.g. ``/src/App/App.csproj``

    Returns:
        'project', 'central', 'feed-config' or 'unknown'
    """
    name = posixpath.basename(path).lower()
    if name.endswith(PROJECT_SUFFIXES):
        return "project"
    if name == CENTRAL_VERSION_FILE:
        return "central"
    if name == FEED_CONFIG_FILE:
        return "feed-config"
    return "unknown"


@dataclass
class ManifestPlan:
    """Which files of a repository take part in a scan."""

    project_files: list[str] = field(default_factory=list)
    central_files: list[str] = field(default_factory=list)
    feed_config: str | None = None

    @property
    def manifest_paths(self) -> list[str]:
        return self.project_files + self.central_files

    def is_empty(self) -> bool:
        return not self.project_files and not self.central_files


def plan_manifests(items: list[RepositoryItem]) -> ManifestPlan:
    """Sort a recursive listing into project files, central files and feed config.

    The feed configuration closest to the repository root wins.
    """
    plan = ManifestPlan()
    feed_configs: list[str] = []

    for item in items:
        if item.is_folder:
            continue
        role = identify(item.path)
        if role == "project":
            plan.project_files.append(item.path)
        elif role == "central":
            plan.central_files.append(item.path)
        elif role == "feed-config":
            feed_configs.append(item.path)

    if feed_configs:
        plan.feed_config = min(feed_configs, key=lambda p: (p.count("/"), p.lower()))

    return plan
