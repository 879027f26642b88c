"""Tests for the publication coordinator."""

import datetime as dt

import pytest

from nugetbump.azure_devops import AzureDevOpsClient
from nugetbump.errors import BranchResolutionError, HostingAuthError, PublicationStepFailure
from nugetbump.models import ChangeSet, FileChange, Repository, ResolvedUpdate
from nugetbump.publish import (
    PublicationCoordinator,
    PublicationStage,
    PublicationState,
    PublicationStatus,
    PublicationTransaction,
    describe_updates,
)

TODAY = dt.date(2026, 10, 19)
UPDATES = [ResolvedUpdate("Newtonsoft.Json", "12.0.0", "13.0.1", semver_delta="major")]


def make_change_set() -> ChangeSet:
    change_set = ChangeSet()
    change_set.add(FileChange("/src/App.csproj", b"old", b"new"))
    return change_set


async def publish(azure_devops, transaction, repo_index=0):
    async with AzureDevOpsClient("https://dev.azure.com/contoso", "Platform Team", "pat", transport=azure_devops.transport) as client:
        repo = (await client.list_repositories())[repo_index]
        coordinator = PublicationCoordinator(client, repo, "dependency", today=lambda: TODAY)
        return await coordinator.publish(transaction)


class TestPublicationCoordinator:
    """Test the branch, push and pull request sequence."""

    @pytest.mark.asyncio
    async def test_successful_publication(self, azure_devops):
        """Should create the branch, push one commit and open the pull request."""
        repo_id = azure_devops.add_repository("orders", {}, head="1" * 40)
        transaction = PublicationTransaction(change_set=make_change_set(), updates=UPDATES)

        result = await publish(azure_devops, transaction)

        assert result.status is PublicationStatus.DONE
        assert result.state is PublicationState.PULL_REQUEST_OPENED
        assert result.failed_stage is None
        assert result.branch_name == "dependency/update-2026-10-19"
        assert result.pull_request_url.endswith("/_git/orders/pullrequest/42")
        assert result.files == ["/src/App.csproj"]
        assert transaction.base_commit_id == "1" * 40
        assert "refs/heads/dependency/update-2026-10-19" in azure_devops.refs[repo_id]

        push = azure_devops.pushes[0]
        assert push["refUpdates"][0]["oldObjectId"] == "1" * 40
        assert push["commits"][0]["comment"] == "Update NuGet dependencies"
        pull_request = azure_devops.pull_requests[0]
        assert pull_request["targetRefName"] == "refs/heads/main"
        assert "Newtonsoft.Json" in pull_request["description"]

    @pytest.mark.asyncio
    async def test_empty_change_set_never_touches_the_server(self, azure_devops):
        """Should not call the server for an empty change set."""
        azure_devops.add_repository("orders", {})
        transaction = PublicationTransaction(change_set=ChangeSet(), updates=UPDATES)

        result = await publish(azure_devops, transaction)

        assert result.status is PublicationStatus.NO_EFFECTIVE_CHANGES
        assert result.state is PublicationState.IDLE
        assert [r.url.path.rsplit("/", 1)[-1] for r in azure_devops.requests] == ["repositories"]

    @pytest.mark.asyncio
    async def test_same_day_rerun_gets_unique_branch(self, azure_devops):
        """Should suffix the branch name when it already exists."""
        repo_id = azure_devops.add_repository("orders", {})
        azure_devops.refs[repo_id]["refs/heads/dependency/update-2026-10-19"] = "9" * 40
        azure_devops.refs[repo_id]["refs/heads/dependency/update-2026-10-19-2"] = "9" * 40

        result = await publish(azure_devops, PublicationTransaction(change_set=make_change_set(), updates=UPDATES))

        assert result.status is PublicationStatus.DONE
        assert result.branch_name == "dependency/update-2026-10-19-3"

    @pytest.mark.asyncio
    async def test_missing_default_branch_fails_before_branch_creation(self, azure_devops):
        """Should fail at head resolution when the default branch is gone."""
        repo_id = azure_devops.add_repository("orders", {})
        azure_devops.refs[repo_id].clear()

        result = await publish(azure_devops, PublicationTransaction(change_set=make_change_set(), updates=UPDATES))

        assert result.status is PublicationStatus.FAILED
        assert result.failed_stage is PublicationStage.RESOLVE_HEAD
        assert result.state is PublicationState.IDLE
        assert isinstance(result.error, BranchResolutionError)
        assert azure_devops.created_refs == []

    @pytest.mark.asyncio
    async def test_refused_credentials_are_not_reported_as_missing_branch(self, azure_devops):
        """Should let an auth refusal through instead of blaming the default branch."""
        azure_devops.add_repository("orders", {})
        azure_devops.fail["refs"] = 401

        with pytest.raises(HostingAuthError):
            await publish(azure_devops, PublicationTransaction(change_set=make_change_set(), updates=UPDATES))

        assert azure_devops.created_refs == []

    @pytest.mark.asyncio
    async def test_push_failure_reports_orphan_branch(self, azure_devops):
        """Should report the created branch when the push fails."""
        repo_id = azure_devops.add_repository("orders", {})
        azure_devops.fail["push"] = 500

        result = await publish(azure_devops, PublicationTransaction(change_set=make_change_set(), updates=UPDATES))

        assert result.status is PublicationStatus.FAILED
        assert result.failed_stage is PublicationStage.PUSH
        assert result.state is PublicationState.BRANCH_CREATED
        assert result.branch_name == "dependency/update-2026-10-19"
        assert isinstance(result.error, PublicationStepFailure)
        assert result.error.stage is PublicationStage.PUSH
        assert "refs/heads/dependency/update-2026-10-19" in azure_devops.refs[repo_id]
        assert azure_devops.pull_requests == []

    @pytest.mark.asyncio
    async def test_pull_request_failure_keeps_pushed_state(self, azure_devops):
        """Should report the pushed commit when the pull request fails."""
        azure_devops.add_repository("orders", {})
        azure_devops.fail["pull-request"] = 409

        result = await publish(azure_devops, PublicationTransaction(change_set=make_change_set(), updates=UPDATES))

        assert result.failed_stage is PublicationStage.OPEN_PULL_REQUEST
        assert result.state is PublicationState.PUSHED
        assert result.commit_id == "c" * 40
        assert result.pull_request_url is None

    @pytest.mark.asyncio
    async def test_branch_creation_failure(self, azure_devops):
        """Should stop before pushing when the branch cannot be created."""
        azure_devops.add_repository("orders", {})
        azure_devops.fail["create-branch"] = 400

        result = await publish(azure_devops, PublicationTransaction(change_set=make_change_set(), updates=UPDATES))

        assert result.failed_stage is PublicationStage.CREATE_BRANCH
        assert result.state is PublicationState.IDLE
        assert result.branch_name is None
        assert azure_devops.pushes == []

    @pytest.mark.asyncio
    async def test_transaction_is_consumed_once(self, azure_devops):
        """Should refuse to publish the same transaction twice."""
        azure_devops.add_repository("orders", {})
        transaction = PublicationTransaction(change_set=make_change_set(), updates=UPDATES)
        await publish(azure_devops, transaction)

        with pytest.raises(RuntimeError):
            await publish(azure_devops, transaction)

    @pytest.mark.asyncio
    async def test_repository_without_default_branch(self):
        """Should fail at head resolution for repositories without a default branch."""
        repo = Repository(id="r", name="empty", default_branch=None)
        coordinator = PublicationCoordinator(client=None, repository=repo)

        result = await coordinator.publish(PublicationTransaction(change_set=make_change_set(), updates=UPDATES))

        assert result.failed_stage is PublicationStage.RESOLVE_HEAD

    def test_description_lists_updates(self):
        """Should list every update in the pull request description."""
        description = describe_updates(UPDATES)
        assert "| Newtonsoft.Json | 12.0.0 | 13.0.1 | major |" in description
