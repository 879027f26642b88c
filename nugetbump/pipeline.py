"""Per-repository scan, selection and publication pipeline."""

import asyncio
import datetime as dt
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum

import httpx

from .azure_devops import AzureDevOpsClient
from .compose import compose_changes
from .config import Settings
from .detect import plan_manifests
from .errors import HostingAuthError, MalformedManifest, NuGetBumpError
from .feeds import resolve_feeds
from .models import ChangeSet, DependencyDeclaration, FeedFailure, ManifestFile, Repository, ResolvedUpdate, SourceKind
from .parse_manifest import parse_manifest
from .publish import PublicationCoordinator, PublicationResult, PublicationStatus, PublicationTransaction
from .resolve_nuget import NuGetResolver
from .update_set import UpdateSet

logger = logging.getLogger(__name__)

RepositorySelector = Callable[[list[Repository]], list[Repository]]
# Returning None aborts the run; an empty list skips the repository
UpdateSelector = Callable[[Repository, UpdateSet], list[ResolvedUpdate] | None]


class RepositoryOutcome(Enum):
    SKIPPED = "skipped"
    NO_MANIFESTS = "no-manifests"
    NO_UPDATES = "no-updates"
    NOTHING_SELECTED = "nothing-selected"
    ABORTED = "aborted"
    NO_EFFECTIVE_CHANGES = "no-effective-changes"
    DRY_RUN = "dry-run"
    PUBLISHED = "published"
    FAILED = "failed"


@dataclass
class RepositoryReport:
    """What happened to one repository during a run."""

    repository: str
    outcome: RepositoryOutcome
    declarations: list[DependencyDeclaration] = field(default_factory=list)
    feeds: list[str] = field(default_factory=list)
    updates: list[ResolvedUpdate] = field(default_factory=list)
    selected: list[ResolvedUpdate] = field(default_factory=list)
    change_set: ChangeSet | None = None
    publication: PublicationResult | None = None
    failures: list[FeedFailure] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        publication = None
        if self.publication:
            publication = {
                "status": self.publication.status.value,
                "state": self.publication.state.value,
                "failed_stage": self.publication.failed_stage.value if self.publication.failed_stage else None,
                "branch": self.publication.branch_name,
                "pull_request_url": self.publication.pull_request_url,
                "error": str(self.publication.error) if self.publication.error else None,
            }
        return {
            "repository": self.repository,
            "outcome": self.outcome.value,
            "declarations": len(self.declarations),
            "feeds": self.feeds,
            "updates": [
                {
                    "id": update.id,
                    "current_version": update.current_version,
                    "latest_version": update.latest_version,
                    "source_feed": update.source_feed,
                    "semver_delta": update.semver_delta,
                }
                for update in self.updates
            ],
            "selected": [update.id for update in self.selected],
            "changed_files": self.change_set.paths if self.change_set else [],
            "publication": publication,
            "failures": [
                {"feed": failure.feed_uri, "package": failure.package_id, "reason": failure.reason}
                for failure in self.failures
            ],
            "errors": self.errors,
        }


def select_all(repository: Repository, update_set: UpdateSet) -> list[ResolvedUpdate]:
    """Headless selection policy: take every proposed update."""
    return update_set.updates


def parse_manifests(files: list[ManifestFile], errors: list[str]) -> tuple[list[ManifestFile], list[DependencyDeclaration]]:
    """Parse manifest files, dropping (and reporting) the malformed ones."""
    parsed: list[ManifestFile] = []
    declarations: list[DependencyDeclaration] = []
    for manifest in files:
        try:
            found = parse_manifest(manifest.content, manifest.kind, manifest.path)
        except MalformedManifest as e:
            logger.warning("Skipping %s", e)
            errors.append(str(e))
            continue
        parsed.append(manifest)
        declarations.extend(found)
    return parsed, declarations


class RepositoryPipeline:
    """Runs the scan, selection and publication steps for one repository."""

    def __init__(
        self,
        client: AzureDevOpsClient,
        settings: Settings,
        select_updates: UpdateSelector = select_all,
        feed_transport: httpx.AsyncBaseTransport | None = None,
        today: Callable[[], dt.date] = dt.date.today,
    ):
        self.client = client
        self.settings = settings
        self.select_updates = select_updates
        self.feed_transport = feed_transport
        self.today = today

    def _resolver(self) -> NuGetResolver:
        # a fresh resolver per repository, so no cached lookup crosses repositories
        return NuGetResolver(
            timeout=self.settings.feed_timeout,
            max_concurrency=self.settings.max_concurrency,
            credentials=self.settings.feed_credentials(),
            transport=self.feed_transport,
        )

    async def load_files(self, repo: Repository, branch: str) -> tuple[list[ManifestFile], bytes | None]:
        """Download the manifests and feed configuration of a branch concurrently."""
        items = await self.client.list_items(repo, branch)
        plan = plan_manifests(items)
        if plan.is_empty():
            return [], None

        kinds = [SourceKind.PROJECT_MANIFEST] * len(plan.project_files)
        kinds += [SourceKind.CENTRAL_VERSION_FILE] * len(plan.central_files)
        paths = plan.manifest_paths
        if plan.feed_config:
            paths = paths + [plan.feed_config]

        contents = await asyncio.gather(*(self.client.get_item_content(repo, path, branch) for path in paths))

        files = [
            ManifestFile(path=path, kind=kind, content=content)
            for path, kind, content in zip(plan.manifest_paths, kinds, contents)
        ]
        feed_config = contents[-1] if plan.feed_config else None
        return files, feed_config

    async def process(self, repo: Repository) -> RepositoryReport:
        report = RepositoryReport(repository=repo.name, outcome=RepositoryOutcome.NO_MANIFESTS)

        branch = repo.default_branch_name
        if not branch:
            logger.warning("Skipping %s: repository has no default branch", repo.name)
            report.outcome = RepositoryOutcome.SKIPPED
            report.errors.append("repository has no default branch")
            return report

        logger.info("Checking repository: %s", repo.name)
        files, feed_config = await self.load_files(repo, branch)
        if not files:
            logger.info("%s: no project files found", repo.name)
            return report

        files, report.declarations = parse_manifests(files, report.errors)
        feeds = resolve_feeds(feed_config)
        report.feeds = [feed.uri for feed in feeds]

        resolution = await self._resolver().resolve(report.declarations, feeds)
        report.failures = resolution.failures
        update_set = UpdateSet.from_candidates(resolution.candidates, feeds)
        report.updates = update_set.updates

        if update_set.is_empty:
            logger.info("%s: no updates found", repo.name)
            report.outcome = RepositoryOutcome.NO_UPDATES
            return report

        selected = self.select_updates(repo, update_set)
        if selected is None:
            logger.info("%s: selection aborted", repo.name)
            report.outcome = RepositoryOutcome.ABORTED
            return report
        report.selected = list(selected)
        if not report.selected:
            report.outcome = RepositoryOutcome.NOTHING_SELECTED
            return report

        report.change_set = compose_changes(report.selected, files, report.errors)
        if not report.change_set:
            logger.info("%s: selected updates change no file", repo.name)
            report.outcome = RepositoryOutcome.NO_EFFECTIVE_CHANGES
            return report

        if self.settings.dry_run:
            report.outcome = RepositoryOutcome.DRY_RUN
            return report

        coordinator = PublicationCoordinator(self.client, repo, self.settings.branch_prefix, self.today)
        transaction = PublicationTransaction(
            change_set=report.change_set,
            updates=report.selected,
            title=self.settings.pull_request_title,
            commit_message=self.settings.commit_message,
        )
        report.publication = await coordinator.publish(transaction)
        if report.publication.status is PublicationStatus.DONE:
            report.outcome = RepositoryOutcome.PUBLISHED
        elif report.publication.status is PublicationStatus.NO_EFFECTIVE_CHANGES:
            report.outcome = RepositoryOutcome.NO_EFFECTIVE_CHANGES
        else:
            report.outcome = RepositoryOutcome.FAILED
            report.errors.append(str(report.publication.error))
        return report


async def run(
    settings: Settings,
    select_repositories: RepositorySelector,
    select_updates: UpdateSelector = select_all,
    transport: httpx.AsyncBaseTransport | None = None,
    feed_transport: httpx.AsyncBaseTransport | None = None,
    today: Callable[[], dt.date] = dt.date.today,
) -> list[RepositoryReport]:
    """Process the selected repositories one after another.

    Raises:
        HostingAuthError: if the hosting service refuses the credentials
        HostingServiceError: if repositories cannot be listed at all
    """
    reports: list[RepositoryReport] = []

    async with AzureDevOpsClient(
        settings.organization_url,
        settings.project,
        settings.token.get_secret_value(),
        transport=transport,
    ) as client:
        repositories = await client.list_repositories()
        chosen = select_repositories(repositories)
        pipeline = RepositoryPipeline(client, settings, select_updates, feed_transport, today)

        for repo in chosen:
            try:
                report = await pipeline.process(repo)
            except HostingAuthError:
                raise
            except NuGetBumpError as e:
                logger.error("%s: %s", repo.name, e)
                report = RepositoryReport(repository=repo.name, outcome=RepositoryOutcome.FAILED, errors=[str(e)])

            reports.append(report)
            if report.outcome is RepositoryOutcome.ABORTED:
                break

    return reports
