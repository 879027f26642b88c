"""NuGet package version resolution against v3 feeds."""

import asyncio
import logging
from dataclasses import dataclass, field

import httpx

from .errors import FeedError, FeedMalformedResponse, FeedUnreachable
from .models import DependencyDeclaration, FeedEndpoint, FeedFailure, ResolvedUpdate, SourceKind
from .versions import NuGetVersion, semver_delta

logger = logging.getLogger(__name__)

PACKAGE_BASE_ADDRESS = "PackageBaseAddress/3.0.0"


@dataclass
class ResolutionReport:
    """Candidates and failures collected from one resolution pass."""

    candidates: list[ResolvedUpdate] = field(default_factory=list)
    failures: list[FeedFailure] = field(default_factory=list)


def baseline_declarations(declarations: list[DependencyDeclaration]) -> dict[str, DependencyDeclaration]:
    """Pick the declaration each package id is compared against.

    A central version file entry is authoritative for its id. Otherwise the
    lowest version declared by any project file is used, so a single
    lagging project is enough to propose an update. Keys keep the order in
    which ids were first discovered.
    """
    baselines: dict[str, DependencyDeclaration] = {}
    for declaration in declarations:
        current = baselines.get(declaration.key)
        if current is None:
            baselines[declaration.key] = declaration
            continue

        current_central = current.source_kind is SourceKind.CENTRAL_VERSION_FILE
        new_central = declaration.source_kind is SourceKind.CENTRAL_VERSION_FILE
        if new_central and not current_central:
            baselines[declaration.key] = declaration
        elif new_central == current_central and declaration.declared_version < current.declared_version:
            baselines[declaration.key] = declaration

    return baselines


def latest_stable(versions: list[str]) -> NuGetVersion | None:
    """Return the highest non-prerelease version, ignoring unparsable strings."""
    stable = []
    for version_str in versions:
        version = NuGetVersion.parse(version_str)
        if version is not None and not version.is_prerelease:
            stable.append(version)
    return max(stable) if stable else None


class NuGetResolver:
    """Resolver for NuGet package versions."""

    def __init__(
        self,
        timeout: float = 30.0,
        max_concurrency: int = 6,
        credentials: dict[str, tuple[str, str]] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize NuGet resolver.

        Args:
            timeout: Request timeout in seconds, per feed query
            max_concurrency: Maximum concurrent requests
            credentials: Basic auth (user, password) keyed by feed URL prefix
            transport: Optional httpx transport, used by tests
        """
        self.timeout = timeout
        self.max_concurrency = max_concurrency
        self.credentials = credentials or {}
        self._transport = transport
        self._versions_cache: dict[tuple[str, str], list[str]] = {}
        self._base_address_cache: dict[str, str | FeedError] = {}
        self._base_address_locks: dict[str, asyncio.Lock] = {}
        self._semaphore = asyncio.Semaphore(max_concurrency)

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self.timeout,
            follow_redirects=True,
            transport=self._transport,
        )

    def _auth_for(self, url: str) -> httpx.BasicAuth | None:
        url = url.lower()
        for prefix, (user, password) in self.credentials.items():
            if url.startswith(prefix.lower()):
                return httpx.BasicAuth(user, password)
        return None

    async def _get_json(self, client: httpx.AsyncClient, feed: FeedEndpoint, url: str):
        """GET a JSON document from a feed, returning None on 404."""
        try:
            response = await client.get(url, auth=self._auth_for(url) or httpx.USE_CLIENT_DEFAULT)
        except httpx.TimeoutException as e:
            raise FeedUnreachable(feed.uri, f"timeout fetching {url}") from e
        except httpx.HTTPError as e:
            raise FeedUnreachable(feed.uri, f"network error fetching {url}: {e}") from e

        if response.status_code == 404:
            return None
        if response.is_error:
            raise FeedUnreachable(feed.uri, f"HTTP {response.status_code} fetching {url}")

        try:
            return response.json()
        except ValueError as e:
            raise FeedMalformedResponse(feed.uri, f"invalid JSON from {url}") from e

    async def _package_base_address(self, client: httpx.AsyncClient, feed: FeedEndpoint) -> str:
        """Find the flat container address advertised by a feed's service index.

        Both the address and a failure to find it are cached per feed.
        """
        lock = self._base_address_locks.setdefault(feed.uri, asyncio.Lock())
        async with lock:
            cached = self._base_address_cache.get(feed.uri)
            if isinstance(cached, FeedError):
                raise cached
            if cached is not None:
                return cached

            try:
                address = await self._lookup_base_address(client, feed)
            except FeedError as e:
                self._base_address_cache[feed.uri] = e
                raise

            self._base_address_cache[feed.uri] = address
            return address

    async def _lookup_base_address(self, client: httpx.AsyncClient, feed: FeedEndpoint) -> str:
        index = await self._get_json(client, feed, feed.uri)
        if index is None:
            raise FeedUnreachable(feed.uri, "service index not found")
        if not isinstance(index, dict) or not isinstance(index.get("resources"), list):
            raise FeedMalformedResponse(feed.uri, "service index has no resources")

        for resource in index["resources"]:
            if not isinstance(resource, dict):
                continue
            types = resource.get("@type")
            if isinstance(types, str):
                types = [types]
            if any(isinstance(t, str) and t.startswith(PACKAGE_BASE_ADDRESS) for t in types or []):
                address = str(resource.get("@id") or "")
                if address:
                    return address if address.endswith("/") else address + "/"

        raise FeedMalformedResponse(feed.uri, f"service index lists no {PACKAGE_BASE_ADDRESS} resource")

    async def _fetch_versions(self, client: httpx.AsyncClient, feed: FeedEndpoint, package_id: str) -> list[str]:
        """Fetch every published version string of a package from one feed.

        Results are memoized per (feed, package id) for the resolver's lifetime.
        """
        cache_key = (feed.uri, package_id.lower())
        if cache_key in self._versions_cache:
            return self._versions_cache[cache_key]

        base = await self._package_base_address(client, feed)
        document = await self._get_json(client, feed, f"{base}{package_id.lower()}/index.json")

        if document is None:
            versions = []
        else:
            versions = document.get("versions") if isinstance(document, dict) else None
            if not isinstance(versions, list) or not all(isinstance(v, str) for v in versions):
                raise FeedMalformedResponse(feed.uri, f"unexpected version list for {package_id}")

        self._versions_cache[cache_key] = versions
        return versions

    async def resolve_declaration(
        self, client: httpx.AsyncClient, declaration: DependencyDeclaration, feed: FeedEndpoint
    ) -> ResolvedUpdate | None:
        """Check one declaration against one feed.

        Returns:
            A candidate update when the feed's highest stable version is
            strictly greater than the declared version, otherwise None
        """
        async with self._semaphore:
            versions = await self._fetch_versions(client, feed, declaration.id)

        latest = latest_stable(versions)
        if latest is None or latest <= declaration.declared_version:
            return None

        return ResolvedUpdate(
            id=declaration.id,
            current_version=str(declaration.declared_version),
            latest_version=str(latest),
            source_feed=feed.uri,
            semver_delta=semver_delta(declaration.declared_version, latest),
        )

    async def resolve(
        self, declarations: list[DependencyDeclaration], feeds: list[FeedEndpoint]
    ) -> ResolutionReport:
        """Resolve declarations against feeds concurrently.

        Every (package id, feed) pair is an independent lookup. A failing
        pair is recorded in the report and never stops the others.

        Args:
            declarations: Declarations from all manifests of one repository
            feeds: Feeds in precedence order

        Returns:
            Report with one candidate per (package id, feed) that has a newer
            stable version, plus per-feed failures
        """
        baselines = list(baseline_declarations(declarations).values())
        report = ResolutionReport()

        async def check_one(declaration: DependencyDeclaration, feed: FeedEndpoint):
            try:
                return await self.resolve_declaration(client, declaration, feed), None
            except FeedError as e:
                return None, FeedFailure(feed_uri=feed.uri, package_id=declaration.id, reason=str(e))

        async with self._client() as client:
            tasks = [check_one(declaration, feed) for declaration in baselines for feed in feeds]
            results = await asyncio.gather(*tasks)

        for candidate, failure in results:
            if failure:
                logger.warning("Feed lookup failed for %s: %s", failure.package_id, failure.reason)
                report.failures.append(failure)
            elif candidate:
                logger.debug("%s has %s on %s", candidate.id, candidate.latest_version, candidate.source_feed)
                report.candidates.append(candidate)

        return report
