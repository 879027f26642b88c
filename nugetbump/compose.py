"""Apply selected updates to manifest documents."""

import logging

from .errors import MalformedManifest
from .models import ChangeSet, FileChange, ManifestFile, ResolvedUpdate
from .parse_manifest import rewrite_versions
from .versions import NuGetVersion

logger = logging.getLogger(__name__)


def _make_rewriter(updates: dict[str, ResolvedUpdate]):
    def rewriter(package_id: str, current: str) -> str | None:
        update = updates.get(package_id.lower())
        if update is None:
            return None
        current_version = NuGetVersion.parse(current)
        # never downgrade, and never touch values that are not plain versions
        if current_version is None or current_version >= NuGetVersion(update.latest_version):
            return None
        return update.latest_version

    return rewriter


def compose_changes(
    selected: list[ResolvedUpdate], files: list[ManifestFile], errors: list[str] | None = None
) -> ChangeSet:
    """Build whole-file replacements for the selected updates.

    Args:
        selected: Updates chosen by the operator
        files: Original manifest documents of the repository
        errors: Collects the files that could not be rewritten; they are left out

    Returns:
        Change set holding only the files whose bytes actually change
    """
    updates = {update.key: update for update in selected}
    rewriter = _make_rewriter(updates)
    change_set = ChangeSet()

    if not updates:
        return change_set

    for manifest in files:
        try:
            new_content, rewrites = rewrite_versions(manifest.content, manifest.kind, rewriter, manifest.path)
        except MalformedManifest as e:
            logger.warning("Not updating %s", e)
            if errors is not None:
                errors.append(str(e))
            continue
        if not rewrites:
            continue
        logger.debug("Rewrote %d version(s) in %s", rewrites, manifest.path)
        change_set.add(FileChange(path=manifest.path, original=manifest.content, new_content=new_content))

    return change_set
