"""Exception hierarchy for nugetbump."""


class NuGetBumpError(Exception):
    """Base class for all nugetbump errors."""


class MalformedManifest(NuGetBumpError):
    """A manifest file exists but cannot be parsed or holds an invalid version."""

    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Malformed manifest {path or '<unknown>'}: {reason}")


class FeedError(NuGetBumpError):
    """A package feed could not answer a query."""

    def __init__(self, feed_uri: str, message: str):
        self.feed_uri = feed_uri
        super().__init__(f"{feed_uri}: {message}")


class FeedUnreachable(FeedError):
    """Network error, timeout or non-success status from a feed."""


class FeedMalformedResponse(FeedError):
    """A feed answered with something that is not a NuGet v3 document."""


class HostingServiceError(NuGetBumpError):
    """The hosting service rejected or failed a request."""

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


class HostingAuthError(HostingServiceError):
    """Credentials were refused by the hosting service."""


class BranchResolutionError(NuGetBumpError):
    """The default branch head commit could not be found."""


class PublicationStepFailure(NuGetBumpError):
    """A branch, push or pull request step failed during publication."""

    def __init__(self, stage, message: str):
        self.stage = stage
        super().__init__(f"{stage.value} failed: {message}")
