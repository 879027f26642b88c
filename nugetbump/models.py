"""Core data models for nugetbump."""

from dataclasses import dataclass, field
from enum import Enum

from .versions import NuGetVersion


class SourceKind(Enum):
    """Kind of manifest a dependency was declared in."""

    PROJECT_MANIFEST = "project"
    CENTRAL_VERSION_FILE = "central"


@dataclass
class DependencyDeclaration:
    """A single versioned package reference found in a manifest file."""

    id: str
    declared_version: NuGetVersion
    source_file: str
    source_kind: SourceKind = SourceKind.PROJECT_MANIFEST

    @property
    def key(self) -> str:
        return self.id.lower()


@dataclass(frozen=True)
class FeedEndpoint:
    """A NuGet v3 feed, identified by its service index URI."""

    uri: str
    name: str | None = None


@dataclass
class ManifestFile:
    """Raw manifest document as retrieved from the repository."""

    path: str
    kind: SourceKind
    content: bytes


@dataclass
class ResolvedUpdate:
    """A proposed version bump for one package id."""

    id: str
    current_version: str
    latest_version: str
    source_feed: str = ""
    semver_delta: str = "unknown"  # major, minor, patch, revision, unknown

    @property
    def key(self) -> str:
        return self.id.lower()

    def describe(self) -> str:
        return f"{self.id} from {self.current_version} to {self.latest_version}"


@dataclass
class FeedFailure:
    """A feed that could not answer for one package id."""

    feed_uri: str
    package_id: str
    reason: str


@dataclass
class FileChange:
    """Whole-file replacement for one manifest."""

    path: str
    original: bytes
    new_content: bytes


@dataclass
class ChangeSet:
    """Files whose content changes after applying the selected updates."""

    changes: dict[str, FileChange] = field(default_factory=dict)

    def add(self, change: FileChange) -> None:
        if change.new_content == change.original:
            return
        self.changes[change.path] = change

    @property
    def paths(self) -> list[str]:
        return list(self.changes)

    def __iter__(self):
        return iter(self.changes.values())

    def __len__(self) -> int:
        return len(self.changes)

    def __bool__(self) -> bool:
        return bool(self.changes)


@dataclass
class Repository:
    """A git repository on the hosting service."""

    id: str
    name: str
    default_branch: str | None  # full ref name, e.g. refs/heads/main
    project: str = ""
    web_url: str = ""

    @property
    def default_branch_name(self) -> str | None:
        if not self.default_branch:
            return None
        return self.default_branch.removeprefix("refs/heads/")


@dataclass
class RepositoryItem:
    """An entry of a recursive repository listing."""

    path: str
    is_folder: bool = False
    object_id: str | None = None
