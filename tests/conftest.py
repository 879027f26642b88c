"""Pytest configuration and fixtures."""

import json

import httpx
import pytest

from nugetbump.config import Settings

PROJECT_FILE = b"""<Project Sdk="Microsoft.NET.Sdk">

  <PropertyGroup>
    <TargetFramework>net8.0</TargetFramework>
  </PropertyGroup>

  <ItemGroup>
    <PackageReference Include="Newtonsoft.Json" Version="12.0.0" />
    <PackageReference Include="Serilog" Version="3.1.1" />
  </ItemGroup>

</Project>
"""

CENTRAL_FILE = b"""<Project>
  <PropertyGroup>
    <ManagePackageVersionsCentrally>true</ManagePackageVersionsCentrally>
  </PropertyGroup>
  <ItemGroup>
    <PackageVersion Include="Polly" Version="7.2.4" />
    <PackageVersion Include="Dapper" Version="2.1.24" />
  </ItemGroup>
</Project>
"""

CENTRAL_PROJECT_FILE = b"""<Project Sdk="Microsoft.NET.Sdk">
  <ItemGroup>
    <PackageReference Include="Polly" />
    <PackageReference Include="Dapper" />
  </ItemGroup>
</Project>
"""


@pytest.fixture
def sample_project_file():
    """Sample SDK-style project file."""
    return PROJECT_FILE


@pytest.fixture
def sample_central_file():
    """Sample Directory.Packages.props."""
    return CENTRAL_FILE


@pytest.fixture
def sample_central_project_file():
    """Project file whose versions live in Directory.Packages.props."""
    return CENTRAL_PROJECT_FILE


@pytest.fixture
def settings():
    return Settings(
        organization_url="https://dev.azure.com/contoso",
        project="Platform Team",
        token="secret-pat",
    )


def _flat_container(index_uri: str) -> str:
    return index_uri.rsplit("/", 1)[0] + "/flatcontainer/"


def build_feed_transport(feeds: dict) -> httpx.MockTransport:
    """Mock NuGet v3 feeds.

    ``feeds`` maps a service index URI either to ``{lower-case id: [versions]}``
    or to an HTTP status code the whole feed answers with.
    """
    bases = {_flat_container(uri): uri for uri in feeds}
    requests: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        requests.append(url)
        if url in feeds:
            if isinstance(feeds[url], int):
                return httpx.Response(feeds[url])
            return httpx.Response(
                200,
                json={
                    "version": "3.0.0",
                    "resources": [
                        {"@id": url.rsplit("/", 1)[0] + "/query", "@type": "SearchQueryService"},
                        {"@id": _flat_container(url), "@type": "PackageBaseAddress/3.0.0"},
                    ],
                },
            )
        for base, index_uri in bases.items():
            if url.startswith(base):
                package_id = url[len(base):].split("/")[0]
                versions = feeds[index_uri].get(package_id)
                if versions is None:
                    return httpx.Response(404)
                return httpx.Response(200, json={"versions": versions})
        return httpx.Response(404)

    transport = httpx.MockTransport(handler)
    transport.requests = requests
    return transport


@pytest.fixture
def feed_transport():
    """Factory for mock NuGet feeds, see ``build_feed_transport``."""
    return build_feed_transport


class FakeAzureDevOps:
    """In-memory stand-in for the Azure DevOps Git REST API."""

    def __init__(self):
        self.repositories: list[dict] = []
        self.files: dict[str, dict[str, bytes]] = {}
        self.refs: dict[str, dict[str, str]] = {}
        self.fail: dict[str, int] = {}
        self.pushes: list[dict] = []
        self.pull_requests: list[dict] = []
        self.created_refs: list[dict] = []
        self.requests: list[httpx.Request] = []

    def add_repository(self, name: str, files: dict[str, bytes], head: str = "a" * 40, default_branch="refs/heads/main") -> str:
        repo_id = f"repo-{len(self.repositories) + 1}"
        self.repositories.append({
            "id": repo_id,
            "name": name,
            "defaultBranch": default_branch,
            "project": {"name": "Platform Team"},
            "webUrl": f"https://dev.azure.com/contoso/Platform%20Team/_git/{name}",
        })
        self.files[repo_id] = dict(files)
        self.refs[repo_id] = {default_branch: head} if default_branch else {}
        return repo_id

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def _failure(self, operation: str) -> httpx.Response | None:
        if operation in self.fail:
            return httpx.Response(self.fail[operation], text=f"{operation} failed")
        return None

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path.split("/_apis/git/", 1)[1]
        parts = path.split("/")
        params = request.url.params

        if parts == ["repositories"]:
            return self._failure("repositories") or httpx.Response(
                200, json={"count": len(self.repositories), "value": self.repositories}
            )

        repo_id, resource = parts[1], parts[2]

        if resource == "items":
            failure = self._failure("items")
            if failure:
                return failure
            if "path" in params:
                content = self.files[repo_id].get(params["path"])
                if content is None:
                    return httpx.Response(404)
                return httpx.Response(200, content=content, headers={"content-type": "application/octet-stream"})
            value = [{"path": "/", "isFolder": True, "gitObjectType": "tree"}]
            value += [{"path": p, "gitObjectType": "blob", "objectId": f"obj-{i}"} for i, p in enumerate(self.files[repo_id])]
            return httpx.Response(200, json={"count": len(value), "value": value})

        if resource == "refs" and request.method == "GET":
            failure = self._failure("refs")
            if failure:
                return failure
            prefix = "refs/" + params["filter"]
            value = [{"name": n, "objectId": o} for n, o in self.refs[repo_id].items() if n.startswith(prefix)]
            return httpx.Response(200, json={"count": len(value), "value": value})

        if resource == "refs" and request.method == "POST":
            failure = self._failure("create-branch")
            if failure:
                return failure
            results = []
            for update in json.loads(request.content):
                self.created_refs.append(update)
                exists = update["name"] in self.refs[repo_id]
                if not exists:
                    self.refs[repo_id][update["name"]] = update["newObjectId"]
                results.append({
                    "name": update["name"],
                    "success": not exists,
                    "updateStatus": "failedToCreate" if exists else "succeeded",
                })
            return httpx.Response(200, json={"count": len(results), "value": results})

        if resource == "pushes":
            failure = self._failure("push")
            if failure:
                return failure
            body = json.loads(request.content)
            self.pushes.append(body)
            for ref in body["refUpdates"]:
                self.refs[repo_id][ref["name"]] = "c" * 40
            return httpx.Response(201, json={"pushId": len(self.pushes), "commits": [{"commitId": "c" * 40}]})

        if resource == "pullrequests":
            failure = self._failure("pull-request")
            if failure:
                return failure
            body = json.loads(request.content)
            self.pull_requests.append(body)
            repo = next(r for r in self.repositories if r["id"] == repo_id)
            return httpx.Response(201, json={"pullRequestId": 42, "repository": {"webUrl": repo["webUrl"]}})

        return httpx.Response(404)


@pytest.fixture
def azure_devops():
    """Fake Azure DevOps server."""
    return FakeAzureDevOps()
