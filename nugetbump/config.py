"""Run configuration for nugetbump."""

from urllib.parse import urlsplit

from pydantic import BaseModel, Field, SecretStr, field_validator

from .publish import DEFAULT_COMMIT_MESSAGE, DEFAULT_TITLE


class Settings(BaseModel):
    """Connection details and behaviour switches for one run."""

    organization_url: str
    project: str = Field(min_length=1)
    token: SecretStr
    branch_prefix: str = "dependency"
    feed_timeout: float = Field(default=30.0, gt=0)
    max_concurrency: int = Field(default=6, ge=1)
    dry_run: bool = False
    pull_request_title: str = DEFAULT_TITLE
    commit_message: str = DEFAULT_COMMIT_MESSAGE

    @field_validator("organization_url")
    @classmethod
    def _check_url(cls, value: str) -> str:
        value = value.strip().rstrip("/")
        parts = urlsplit(value)
        if parts.scheme not in ("http", "https") or not parts.netloc:
            raise ValueError(f"organization URL must be http(s), got {value!r}")
        return value

    @field_validator("branch_prefix")
    @classmethod
    def _check_prefix(cls, value: str) -> str:
        value = value.strip().strip("/")
        if not value:
            raise ValueError("branch prefix must not be empty")
        return value

    @property
    def organization(self) -> str:
        """Organization name, for dev.azure.com style URLs."""
        parts = urlsplit(self.organization_url)
        if parts.netloc.lower() == "dev.azure.com":
            return parts.path.strip("/").split("/")[0]
        return parts.netloc.split(".")[0]

    def feed_credentials(self) -> dict[str, tuple[str, str]]:
        """Basic auth for the organization's Azure Artifacts feeds."""
        token = self.token.get_secret_value()
        organization = self.organization.lower()
        return {
            f"https://pkgs.dev.azure.com/{organization}/": ("nugetbump", token),
            f"https://{organization}.pkgs.visualstudio.com/": ("nugetbump", token),
        }
