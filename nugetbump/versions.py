"""NuGet semantic version parsing and ordering.

NuGet versions follow SemVer 2.0 with two extensions: the patch part may
be omitted (``1.0`` == ``1.0.0``) and a fourth, legacy revision part is
allowed (``4.3.0.1``). Build metadata after ``+`` never affects ordering.
Release labels compare identifier by identifier: numeric identifiers
numerically, alphanumeric ones case-insensitively, numeric before
alphanumeric, and a shorter label sorts first when it is a prefix of the
other one.
"""

import re
from functools import total_ordering

_IDENT = r"[0-9A-Za-z-]+"
_VERSION_RE = re.compile(
    rf"""^
    (?P<major>\d+)
    (?:\.(?P<minor>\d+))?
    (?:\.(?P<patch>\d+))?
    (?:\.(?P<revision>\d+))?
    (?:-(?P<release>{_IDENT}(?:\.{_IDENT})*))?
    (?:\+(?P<metadata>{_IDENT}(?:\.{_IDENT})*))?
    $""",
    re.VERBOSE,
)


class InvalidVersion(ValueError):
    """Raised when a string is not a NuGet version."""


def _label_key(label: str) -> tuple:
    # numeric identifiers sort before alphanumeric ones
    if label.isdigit():
        return (0, int(label), "")
    return (1, 0, label.lower())


@total_ordering
class NuGetVersion:
    """A parsed NuGet package version."""

    __slots__ = ("major", "minor", "patch", "revision", "release", "metadata", "original")

    def __init__(self, value: str):
        text = value.strip() if isinstance(value, str) else ""
        match = _VERSION_RE.match(text)
        if not match:
            raise InvalidVersion(f"Invalid version: {value!r}")

        self.major = int(match["major"])
        self.minor = int(match["minor"] or 0)
        self.patch = int(match["patch"] or 0)
        self.revision = int(match["revision"] or 0)
        self.release = match["release"] or ""
        self.metadata = match["metadata"] or ""
        self.original = text

    @classmethod
    def parse(cls, value: str) -> "NuGetVersion | None":
        """Parse a version, returning None instead of raising."""
        try:
            return cls(value)
        except InvalidVersion:
            return None

    @property
    def is_prerelease(self) -> bool:
        return bool(self.release)

    @property
    def release_labels(self) -> list[str]:
        return self.release.split(".") if self.release else []

    def _key(self) -> tuple:
        labels = tuple(_label_key(label) for label in self.release_labels)
        # a stable version sorts after every prerelease of the same numbers
        stability = (1,) if not labels else (0, labels)
        return (self.major, self.minor, self.patch, self.revision, stability)

    def normalized(self) -> str:
        text = f"{self.major}.{self.minor}.{self.patch}"
        if self.revision:
            text += f".{self.revision}"
        if self.release:
            text += f"-{self.release}"
        return text

    def __eq__(self, other) -> bool:
        if not isinstance(other, NuGetVersion):
            return NotImplemented
        return self._key() == other._key()

    def __lt__(self, other) -> bool:
        if not isinstance(other, NuGetVersion):
            return NotImplemented
        return self._key() < other._key()

    def __hash__(self) -> int:
        return hash(self._key())

    def __str__(self) -> str:
        return self.original

    def __repr__(self) -> str:
        return f"NuGetVersion({self.original!r})"


def semver_delta(old: NuGetVersion, new: NuGetVersion) -> str:
    """Classify how far ``new`` moved from ``old``.

    Returns:
        "major", "minor", "patch", "revision" or "unknown" when ``new``
        is not greater than ``old`` on its numeric parts
    """
    if new.major != old.major:
        return "major" if new.major > old.major else "unknown"
    if new.minor != old.minor:
        return "minor" if new.minor > old.minor else "unknown"
    if new.patch != old.patch:
        return "patch" if new.patch > old.patch else "unknown"
    if new.revision > old.revision:
        return "revision"
    return "unknown"
