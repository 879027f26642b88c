"""Feed source resolution from nuget.config documents."""

import logging
import xml.etree.ElementTree as ET

from .models import FeedEndpoint

logger = logging.getLogger(__name__)

DEFAULT_FEED_URI = "https://api.nuget.org/v3/index.json"


def default_feeds() -> list[FeedEndpoint]:
    return [FeedEndpoint(uri=DEFAULT_FEED_URI, name="nuget.org")]


def _normalize_uri(uri: str) -> str:
    return uri.strip().rstrip("/").lower()


def _disabled_sources(root: ET.Element) -> set[str]:
    disabled: set[str] = set()
    for section in root.findall("disabledPackageSources"):
        for entry in section.findall("add"):
            if (entry.get("value") or "").strip().lower() == "true":
                disabled.add((entry.get("key") or "").strip().lower())
    return disabled


def parse_feed_config(content: bytes) -> list[FeedEndpoint]:
    """Read ``packageSources`` entries from a nuget.config document.

    Entries keep document order. ``<clear/>`` drops the entries seen before
    it, disabled sources are left out, and duplicate URIs keep their first
    occurrence. Sources that are not HTTP(S) feeds are skipped.

    Raises:
        ET.ParseError: if the document is not well-formed XML
    """
    root = ET.fromstring(content)
    disabled = _disabled_sources(root)

    entries: list[FeedEndpoint] = []
    for section in root.findall("packageSources"):
        for element in section:
            if element.tag == "clear":
                entries.clear()
            elif element.tag == "add":
                key = (element.get("key") or "").strip()
                value = (element.get("value") or "").strip()
                if not value:
                    continue
                if key.lower() in disabled:
                    logger.debug("Skipping disabled package source %s", key)
                    continue
                if not value.lower().startswith(("http://", "https://")):
                    logger.warning("Skipping non-HTTP package source %s (%s)", key or "<unnamed>", value)
                    continue
                entries.append(FeedEndpoint(uri=value, name=key or None))

    feeds: list[FeedEndpoint] = []
    seen: set[str] = set()
    for feed in entries:
        normalized = _normalize_uri(feed.uri)
        if normalized in seen:
            continue
        seen.add(normalized)
        feeds.append(feed)

    return feeds


def resolve_feeds(config: bytes | None) -> list[FeedEndpoint]:
    """Resolve the ordered feeds a repository should be checked against.

    Args:
        config: Raw nuget.config bytes, or None when the repository has none

    Returns:
        Configured feeds in precedence order, or the public nuget.org feed
        when nothing usable is configured
    """
    if config is None:
        return default_feeds()

    try:
        feeds = parse_feed_config(config)
    except ET.ParseError as e:
        logger.warning("Ignoring malformed nuget.config: %s", e)
        return default_feeds()

    if not feeds:
        logger.info("nuget.config lists no usable package sources, using %s", DEFAULT_FEED_URI)
        return default_feeds()

    return feeds
