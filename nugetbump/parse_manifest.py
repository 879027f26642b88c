"""MSBuild project file and central version file parsing."""

import bisect
import codecs
import logging
import re
import xml.etree.ElementTree as ET
from collections.abc import Callable
from xml.sax.saxutils import escape, unescape

from .errors import MalformedManifest
from .models import DependencyDeclaration, SourceKind
from .versions import NuGetVersion

logger = logging.getLogger(__name__)

ELEMENT_TAGS = {
    SourceKind.PROJECT_MANIFEST: "PackageReference",
    SourceKind.CENTRAL_VERSION_FILE: "PackageVersion",
}
ID_ATTRIBUTE = "Include"
VERSION_ATTRIBUTE = "Version"

_SKIPPED_SPANS_RE = re.compile(r"<!--.*?-->|<!\[CDATA\[.*?\]\]>", re.DOTALL)
_ATTRIBUTE_RE = re.compile(r"""([\w.:-]+)\s*=\s*(?:"([^"]*)"|'([^']*)')""")
_ENTITIES = {"&quot;": '"', "&apos;": "'"}
_ENTITIES_REVERSED = {'"': "&quot;", "'": "&apos;"}
_DECLARED_ENCODING_RE = re.compile(rb"""<\?xml[^>]*?\sencoding\s*=\s*["']([A-Za-z][\w.:-]*)["']""")
_BOMS = [
    (codecs.BOM_UTF8, "utf-8"),
    (codecs.BOM_UTF32_LE, "utf-32-le"),
    (codecs.BOM_UTF32_BE, "utf-32-be"),
    (codecs.BOM_UTF16_LE, "utf-16-le"),
    (codecs.BOM_UTF16_BE, "utf-16-be"),
]

# Receives (package id, current version text), returns the new version or None
VersionRewriter = Callable[[str, str], str | None]


def _local_name(tag) -> str:
    if not isinstance(tag, str):
        return ""
    return tag.rsplit("}", 1)[-1]


def _is_property_reference(value: str) -> bool:
    return "$(" in value


def detect_encoding(content: bytes) -> tuple[str, bytes]:
    """Find the encoding of an XML document and the byte order mark it starts with.

    A byte order mark wins over the XML declaration; without either the
    document is UTF-8.
    """
    for bom, encoding in _BOMS:
        if content.startswith(bom):
            return encoding, bom

    declaration = _DECLARED_ENCODING_RE.match(content)
    if declaration:
        return declaration.group(1).decode("ascii"), b""
    return "utf-8", b""


def decode_document(content: bytes, path: str = "") -> tuple[str, bytes, str]:
    """Split raw manifest bytes into decoded text, byte order mark and encoding."""
    encoding, bom = detect_encoding(content)
    try:
        return content[len(bom):].decode(encoding), bom, encoding
    except LookupError as e:
        raise MalformedManifest(path, f"unknown encoding {encoding!r}") from e
    except UnicodeDecodeError as e:
        raise MalformedManifest(path, f"not valid {encoding} ({e.reason})") from e


def encode_document(text: str, bom: bytes, encoding: str, path: str = "") -> bytes:
    try:
        return bom + text.encode(encoding)
    except UnicodeEncodeError as e:
        raise MalformedManifest(path, f"cannot encode as {encoding} ({e.reason})") from e


class ManifestParser:
    """Parser for versioned package elements in MSBuild documents."""

    def __init__(self, kind: SourceKind):
        self.kind = kind
        self.element_tag = ELEMENT_TAGS[kind]

    def _load(self, content: bytes, path: str) -> ET.Element:
        try:
            return ET.fromstring(content)
        except ET.ParseError as e:
            raise MalformedManifest(path, str(e)) from e

    def _parse_element(self, element: ET.Element, path: str) -> DependencyDeclaration | None:
        package_id = (element.get(ID_ATTRIBUTE) or "").strip()
        version_text = (element.get(VERSION_ATTRIBUTE) or "").strip()

        if not package_id or not version_text:
            return None

        if _is_property_reference(version_text):
            logger.debug("Skipping %s in %s: version is %s", package_id, path, version_text)
            return None

        version = NuGetVersion.parse(version_text)
        if version is None:
            raise MalformedManifest(path, f"invalid version {version_text!r} for {package_id}")

        return DependencyDeclaration(
            id=package_id,
            declared_version=version,
            source_file=path,
            source_kind=self.kind,
        )

    def parse(self, content: bytes, path: str = "") -> list[DependencyDeclaration]:
        """Parse manifest bytes into the declarations it carries."""
        root = self._load(content, path)
        declarations: list[DependencyDeclaration] = []

        for element in root.iter():
            if _local_name(element.tag) != self.element_tag:
                continue
            declaration = self._parse_element(element, path)
            if declaration:
                declarations.append(declaration)

        return declarations

    def rewrite(self, content: bytes, rewriter: VersionRewriter, path: str = "") -> tuple[bytes, int]:
        """Rewrite ``Version`` attribute values in place.

        Only the attribute value text changes; every other byte of the
        document is kept as it was. Elements inside comments or CDATA
        sections are left alone.

        Returns:
            The new document bytes and the number of rewritten attributes
        """
        self._load(content, path)
        text, bom, encoding = decode_document(content, path)

        skipped = [m.span() for m in _SKIPPED_SPANS_RE.finditer(text)]
        skipped_starts = [start for start, _ in skipped]

        def in_skipped_span(pos: int) -> bool:
            i = bisect.bisect_right(skipped_starts, pos) - 1
            return i >= 0 and skipped[i][0] <= pos < skipped[i][1]

        tag_re = re.compile(
            rf"<(?:[\w.-]+:)?{self.element_tag}(?=[\s/>])((?:[^>\"']|\"[^\"]*\"|'[^']*')*)>"
        )

        pieces: list[str] = []
        cursor = 0
        rewrites = 0

        for tag in tag_re.finditer(text):
            if in_skipped_span(tag.start()):
                continue

            attrs_offset = tag.start(1)
            package_id = None
            version_span = None
            version_text = None

            for attr in _ATTRIBUTE_RE.finditer(tag.group(1)):
                group = 2 if attr.group(2) is not None else 3
                value = unescape(attr.group(group), _ENTITIES)
                if attr.group(1) == ID_ATTRIBUTE:
                    package_id = value.strip()
                elif attr.group(1) == VERSION_ATTRIBUTE:
                    version_text = value
                    version_span = (attrs_offset + attr.start(group), attrs_offset + attr.end(group))

            if not package_id or version_span is None:
                continue

            new_version = rewriter(package_id, version_text.strip())
            if new_version is None or new_version == version_text:
                continue

            pieces.append(text[cursor:version_span[0]])
            pieces.append(escape(new_version, _ENTITIES_REVERSED))
            cursor = version_span[1]
            rewrites += 1

        if not rewrites:
            return content, 0

        pieces.append(text[cursor:])
        return encode_document("".join(pieces), bom, encoding, path), rewrites


def parse_project_manifest(content: bytes, path: str = "") -> list[DependencyDeclaration]:
    """Parse a project file (``*.csproj``) into declarations.

    Args:
        content: Raw file bytes
        path: Repository path, used for error context

    Returns:
        One declaration per ``PackageReference`` with ``Include`` and ``Version``
    """
    return ManifestParser(SourceKind.PROJECT_MANIFEST).parse(content, path)


def parse_central_version_file(content: bytes, path: str = "") -> list[DependencyDeclaration]:
    """Parse ``Directory.Packages.props`` into declarations.

    Args:
        content: Raw file bytes
        path: Repository path, used for error context

    Returns:
        One declaration per ``PackageVersion`` with ``Include`` and ``Version``
    """
    return ManifestParser(SourceKind.CENTRAL_VERSION_FILE).parse(content, path)


def parse_manifest(content: bytes, kind: SourceKind, path: str = "") -> list[DependencyDeclaration]:
    return ManifestParser(kind).parse(content, path)


def rewrite_versions(
    content: bytes, kind: SourceKind, rewriter: VersionRewriter, path: str = ""
) -> tuple[bytes, int]:
    return ManifestParser(kind).rewrite(content, rewriter, path)
