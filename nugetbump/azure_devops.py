"""Azure DevOps Git REST API client."""

import base64
import logging
from urllib.parse import quote

import httpx

from .errors import HostingAuthError, HostingServiceError
from .models import ChangeSet, Repository, RepositoryItem

logger = logging.getLogger(__name__)

API_VERSION = "7.1"
ZERO_OBJECT_ID = "0" * 40


def branch_ref(name: str) -> str:
    return name if name.startswith("refs/") else f"refs/heads/{name}"


class AzureDevOpsClient:
    """Async client for the subset of the Git API nugetbump needs.

    Use as an async context manager; one HTTP session is shared by every
    call made inside the ``async with`` block.
    """

    def __init__(
        self,
        organization_url: str,
        project: str,
        token: str,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.organization_url = organization_url.rstrip("/")
        self.project = project
        self.timeout = timeout
        self._auth = httpx.BasicAuth("", token)
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @property
    def base_url(self) -> str:
        return f"{self.organization_url}/{quote(self.project)}/_apis/git/"

    async def __aenter__(self) -> "AzureDevOpsClient":
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            auth=self._auth,
            timeout=self.timeout,
            transport=self._transport,
            headers={"Accept": "application/json"},
        )
        return self

    async def __aexit__(self, *exc_info) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _request(self, method: str, path: str, *, params: dict | None = None, json=None) -> httpx.Response:
        if self._client is None:
            raise RuntimeError("AzureDevOpsClient must be used inside 'async with'")

        query = {"api-version": API_VERSION, **(params or {})}
        try:
            response = await self._client.request(method, path, params=query, json=json)
        except httpx.HTTPError as e:
            raise HostingServiceError(f"{method} {path} failed: {e}") from e

        # an invalid token is answered with a 203 sign-in page instead of 401
        if response.status_code in (401, 403) or (
            response.status_code == 203 and "json" not in response.headers.get("content-type", "")
        ):
            raise HostingAuthError(
                f"Azure DevOps refused the credentials ({response.status_code})",
                status_code=response.status_code,
            )
        if response.is_error:
            raise HostingServiceError(
                f"{method} {path} returned {response.status_code}: {response.text[:200]}",
                status_code=response.status_code,
            )
        return response

    async def _json(self, method: str, path: str, **kwargs) -> dict:
        response = await self._request(method, path, **kwargs)
        try:
            return response.json()
        except ValueError as e:
            raise HostingServiceError(f"{method} {path} returned invalid JSON") from e

    async def list_repositories(self) -> list[Repository]:
        data = await self._json("GET", "repositories")
        return [
            Repository(
                id=repo["id"],
                name=repo["name"],
                default_branch=repo.get("defaultBranch"),
                project=repo.get("project", {}).get("name", self.project),
                web_url=repo.get("webUrl", ""),
            )
            for repo in data.get("value", [])
        ]

    async def list_items(self, repo: Repository, branch: str) -> list[RepositoryItem]:
        """List every file and folder of a branch, recursively."""
        data = await self._json(
            "GET",
            f"repositories/{repo.id}/items",
            params={
                "scopePath": "/",
                "recursionLevel": "Full",
                "versionDescriptor.version": branch,
                "versionDescriptor.versionType": "branch",
            },
        )
        return [
            RepositoryItem(
                path=item["path"],
                is_folder=bool(item.get("isFolder")) or item.get("gitObjectType") == "tree",
                object_id=item.get("objectId"),
            )
            for item in data.get("value", [])
        ]

    async def get_item_content(self, repo: Repository, path: str, branch: str) -> bytes:
        response = await self._request(
            "GET",
            f"repositories/{repo.id}/items",
            params={
                "path": path,
                "versionDescriptor.version": branch,
                "versionDescriptor.versionType": "branch",
                "$format": "octetStream",
            },
        )
        return response.content

    async def list_refs(self, repo: Repository, prefix: str) -> dict[str, str]:
        """Return ``{ref name: object id}`` for refs starting with ``prefix``.

        ``prefix`` is given without the leading ``refs/``, e.g. ``heads/main``.
        """
        data = await self._json("GET", f"repositories/{repo.id}/refs", params={"filter": prefix})
        return {ref["name"]: ref["objectId"] for ref in data.get("value", [])}

    async def get_branch_head(self, repo: Repository, branch: str) -> str | None:
        name = branch_ref(branch)
        refs = await self.list_refs(repo, name.removeprefix("refs/"))
        return refs.get(name)

    async def create_branch(self, repo: Repository, name: str, object_id: str) -> None:
        data = await self._json(
            "POST",
            f"repositories/{repo.id}/refs",
            json=[{"name": branch_ref(name), "oldObjectId": ZERO_OBJECT_ID, "newObjectId": object_id}],
        )
        results = data.get("value", [])
        if not results or not all(result.get("success") for result in results):
            status = results[0].get("updateStatus") if results else "no result"
            raise HostingServiceError(f"creating {branch_ref(name)} failed: {status}")

    async def push_changes(
        self, repo: Repository, branch: str, old_object_id: str, message: str, change_set: ChangeSet
    ) -> str:
        """Push one commit editing every file of the change set.

        Returns:
            The new commit id
        """
        changes = [
            {
                "changeType": "edit",
                "item": {"path": change.path},
                "newContent": {
                    "content": base64.b64encode(change.new_content).decode("ascii"),
                    "contentType": "base64encoded",
                },
            }
            for change in change_set
        ]
        data = await self._json(
            "POST",
            f"repositories/{repo.id}/pushes",
            json={
                "refUpdates": [{"name": branch_ref(branch), "oldObjectId": old_object_id}],
                "commits": [{"comment": message, "changes": changes}],
            },
        )
        commits = data.get("commits") or [{}]
        return commits[-1].get("commitId", "")

    async def create_pull_request(
        self, repo: Repository, source: str, target: str, title: str, description: str
    ) -> str:
        """Open a pull request and return its web URL."""
        data = await self._json(
            "POST",
            f"repositories/{repo.id}/pullrequests",
            json={
                "sourceRefName": branch_ref(source),
                "targetRefName": branch_ref(target),
                "title": title,
                "description": description,
            },
        )
        pull_request_id = data.get("pullRequestId")
        web_url = data.get("repository", {}).get("webUrl") or repo.web_url
        if web_url and pull_request_id is not None:
            return f"{web_url}/pullrequest/{pull_request_id}"
        return data.get("url", "")
