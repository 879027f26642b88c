"""Publication of a change set as branch, commit and pull request."""

import datetime as dt
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum

from .azure_devops import AzureDevOpsClient
from .errors import BranchResolutionError, HostingAuthError, HostingServiceError, NuGetBumpError, PublicationStepFailure
from .models import ChangeSet, Repository, ResolvedUpdate

logger = logging.getLogger(__name__)

DEFAULT_COMMIT_MESSAGE = "Update NuGet dependencies"
DEFAULT_TITLE = "Update NuGet dependencies"


class PublicationState(Enum):
    IDLE = "idle"
    BRANCH_CREATED = "branch-created"
    PUSHED = "pushed"
    PULL_REQUEST_OPENED = "pull-request-opened"


class PublicationStage(Enum):
    RESOLVE_HEAD = "resolve-head"
    CREATE_BRANCH = "create-branch"
    PUSH = "push"
    OPEN_PULL_REQUEST = "open-pull-request"


class PublicationStatus(Enum):
    DONE = "done"
    FAILED = "failed"
    NO_EFFECTIVE_CHANGES = "no-effective-changes"


@dataclass
class PublicationTransaction:
    """Everything needed to publish one repository's change set, once."""

    change_set: ChangeSet
    updates: list[ResolvedUpdate]
    title: str = DEFAULT_TITLE
    description: str = ""
    commit_message: str = DEFAULT_COMMIT_MESSAGE
    branch_name: str | None = None
    base_commit_id: str | None = None
    consumed: bool = False


@dataclass
class PublicationResult:
    """Outcome of a publication, including how far it got."""

    status: PublicationStatus
    state: PublicationState = PublicationState.IDLE
    failed_stage: PublicationStage | None = None
    branch_name: str | None = None
    commit_id: str | None = None
    pull_request_url: str | None = None
    error: NuGetBumpError | None = None
    files: list[str] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.status is not PublicationStatus.FAILED


def describe_updates(updates: list[ResolvedUpdate]) -> str:
    """Render the markdown pull request description."""
    lines = ["This pull request updates the following NuGet packages:", ""]
    lines.append("| Package | From | To | Change |")
    lines.append("|---|---|---|---|")
    for update in updates:
        lines.append(
            f"| {update.id} | {update.current_version} | {update.latest_version} | {update.semver_delta} |"
        )
    return "\n".join(lines)


class PublicationCoordinator:
    """Runs resolve-head, create-branch, push and open-pull-request in order.

    A failure after the branch exists leaves the branch in place; the result
    names the failed stage and the branch so it can be cleaned up or retried.
    """

    def __init__(
        self,
        client: AzureDevOpsClient,
        repository: Repository,
        branch_prefix: str = "dependency",
        today: Callable[[], dt.date] = dt.date.today,
    ):
        self.client = client
        self.repository = repository
        self.branch_prefix = branch_prefix.strip("/")
        self.today = today

    async def unique_branch_name(self) -> str:
        """Pick ``<prefix>/update-<date>``, suffixed when that branch already exists."""
        base = f"{self.branch_prefix}/update-{self.today():%Y-%m-%d}"
        existing = await self.client.list_refs(self.repository, f"heads/{base}")
        taken = {name.removeprefix("refs/heads/") for name in existing}

        candidate = base
        suffix = 2
        while candidate in taken:
            candidate = f"{base}-{suffix}"
            suffix += 1
        return candidate

    async def _resolve_head(self, transaction: PublicationTransaction) -> str:
        branch = self.repository.default_branch_name
        if not branch:
            raise BranchResolutionError(f"{self.repository.name} has no default branch")
        try:
            head = await self.client.get_branch_head(self.repository, branch)
        except HostingAuthError:
            raise
        except HostingServiceError as e:
            raise BranchResolutionError(f"cannot read {branch} of {self.repository.name}: {e}") from e
        if not head:
            raise BranchResolutionError(f"{branch} not found in {self.repository.name}")
        transaction.base_commit_id = head
        return head

    async def publish(self, transaction: PublicationTransaction) -> PublicationResult:
        """Publish a transaction.

        Returns:
            Result whose ``state`` is the last state reached; on failure
            ``failed_stage`` and ``error`` tell what broke

        Raises:
            HostingAuthError: if the hosting service refuses the credentials
        """
        if transaction.consumed:
            raise RuntimeError("publication transaction was already consumed")
        transaction.consumed = True

        result = PublicationResult(status=PublicationStatus.DONE, files=transaction.change_set.paths)
        if not transaction.change_set:
            logger.info("%s: no effective changes, nothing to publish", self.repository.name)
            result.status = PublicationStatus.NO_EFFECTIVE_CHANGES
            return result

        stage = PublicationStage.RESOLVE_HEAD
        try:
            head = await self._resolve_head(transaction)

            stage = PublicationStage.CREATE_BRANCH
            transaction.branch_name = await self.unique_branch_name()
            await self.client.create_branch(self.repository, transaction.branch_name, head)
            result.state = PublicationState.BRANCH_CREATED
            result.branch_name = transaction.branch_name
            logger.info("%s: created branch %s at %s", self.repository.name, transaction.branch_name, head[:8])

            stage = PublicationStage.PUSH
            result.commit_id = await self.client.push_changes(
                self.repository,
                transaction.branch_name,
                head,
                transaction.commit_message,
                transaction.change_set,
            )
            result.state = PublicationState.PUSHED
            logger.info("%s: pushed %d file(s) to %s", self.repository.name, len(transaction.change_set), transaction.branch_name)

            stage = PublicationStage.OPEN_PULL_REQUEST
            result.pull_request_url = await self.client.create_pull_request(
                self.repository,
                source=transaction.branch_name,
                target=self.repository.default_branch_name,
                title=transaction.title,
                description=transaction.description or describe_updates(transaction.updates),
            )
            result.state = PublicationState.PULL_REQUEST_OPENED
            logger.info("%s: opened pull request %s", self.repository.name, result.pull_request_url)

        except BranchResolutionError as e:
            logger.error("%s: %s", self.repository.name, e)
            result.status = PublicationStatus.FAILED
            result.failed_stage = stage
            result.error = e
        except HostingAuthError:
            raise
        except HostingServiceError as e:
            failure = PublicationStepFailure(stage, str(e))
            logger.error(
                "%s: %s (last completed state: %s, branch: %s)",
                self.repository.name,
                failure,
                result.state.value,
                result.branch_name or "none",
            )
            result.status = PublicationStatus.FAILED
            result.failed_stage = stage
            result.error = failure

        return result
