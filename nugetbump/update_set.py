"""Aggregation of per-feed candidates into one update per package."""

from collections.abc import Iterable

from .models import FeedEndpoint, ResolvedUpdate
from .versions import NuGetVersion


class UpdateSet:
    """Deduplicated, order-stable list of proposed updates.

    Iteration order is the order in which package ids were first discovered.
    """

    def __init__(self, updates: Iterable[ResolvedUpdate] = ()):
        self._updates: dict[str, ResolvedUpdate] = {}
        for update in updates:
            self._updates.setdefault(update.key, update)

    @classmethod
    def from_candidates(
        cls, candidates: Iterable[ResolvedUpdate], feeds: list[FeedEndpoint] | None = None
    ) -> "UpdateSet":
        """Merge candidates from several feeds into one update per package id.

        The highest latest version wins. When two feeds offer the same
        version, the feed configured first is credited.
        """
        rank = {feed.uri: i for i, feed in enumerate(feeds or [])}
        best: dict[str, ResolvedUpdate] = {}

        for candidate in candidates:
            current = best.get(candidate.key)
            if current is None:
                best[candidate.key] = candidate
                continue

            new_version = NuGetVersion(candidate.latest_version)
            current_version = NuGetVersion(current.latest_version)
            if new_version > current_version or (
                new_version == current_version
                and rank.get(candidate.source_feed, len(rank)) < rank.get(current.source_feed, len(rank))
            ):
                best[candidate.key] = candidate

        return cls(best.values())

    def select(self, ids: Iterable[str]) -> list[ResolvedUpdate]:
        """Return the updates whose ids were chosen, in display order."""
        wanted = {package_id.lower() for package_id in ids}
        return [update for key, update in self._updates.items() if key in wanted]

    def get(self, package_id: str) -> ResolvedUpdate | None:
        return self._updates.get(package_id.lower())

    def ids(self) -> list[str]:
        return [update.id for update in self._updates.values()]

    @property
    def updates(self) -> list[ResolvedUpdate]:
        return list(self._updates.values())

    @property
    def is_empty(self) -> bool:
        return not self._updates

    def __iter__(self):
        return iter(list(self._updates.values()))

    def __len__(self) -> int:
        return len(self._updates)
