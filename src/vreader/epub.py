from __future__ import annotations

import io
import re
import unicodedata
import warnings
import xml.etree.ElementTree as ET
import zipfile
import zlib
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from urllib.parse import unquote

from bs4 import (
    BeautifulSoup,
    Comment,
    Declaration,
    Doctype,
    FeatureNotFound,
    NavigableString,
    ProcessingInstruction,
    Tag,
    XMLParsedAsHTMLWarning,
)  # type: ignore

from .cjk import IMAGE_CHAR, is_blank
from .errors import FormatError
from .formats import decode_text, document_id
from .logging_utils import debug_log
from .model import BlockKind, Chapter, Document, SourceFormat, StyleHint, TextBlock, TocEntry

HTML_EXTS = (".xhtml", ".html", ".htm")
HTML_MEDIA_TYPES = {"application/xhtml+xml", "text/html"}
DC_NS = "http://purl.org/dc/elements/1.1/"

# Block elements that should start on a new line when collapsing to text.
BLOCK_LEVEL_TAGS = {
    "address",
    "article",
    "aside",
    "blockquote",
    "body",
    "dd",
    "div",
    "dl",
    "dt",
    "figcaption",
    "figure",
    "footer",
    "h1",
    "h2",
    "h3",
    "h4",
    "h5",
    "h6",
    "header",
    "hgroup",
    "hr",
    "li",
    "main",
    "nav",
    "ol",
    "p",
    "pre",
    "section",
    "table",
    "td",
    "th",
    "tr",
    "ul",
}
HEADING_TAGS = {"h1", "h2", "h3", "h4", "h5", "h6"}
# A blank element of these kinds is an intentional empty line.
EMPTY_LINE_TAGS = {"p", "div"}
SKIP_TAGS = {"head", "script", "style", "noscript", "rt", "rp", "template"}
IMAGE_TAGS = {"img", "image"}
BOLD_TAGS = {"b", "strong"}

_WS_RE = re.compile(r"[ \t\r\n\f]+")
_CSS_DECL_RE = re.compile(r"([a-zA-Z-]+)\s*:\s*([^;]+)")


@dataclass
class _NavEntry:
    path: str
    title: str
    fragment: str | None = None
    level: int = 0


def _zip_read_text(zf: zipfile.ZipFile, name: str, path: str | None = None) -> str:
    """Read and decode one archive member; KeyError when it is absent."""
    try:
        data = zf.read(name)
    except (zipfile.BadZipFile, zlib.error, NotImplementedError, RuntimeError, EOFError) as exc:
        raise FormatError(f"Unreadable EPUB member {name}: {exc}", path) from exc
    return decode_text(data, name)


def _find_opf_path(zf: zipfile.ZipFile, path: str | None = None) -> str:
    # META-INF/container.xml -> rootfiles/rootfile@full-path
    try:
        container = _zip_read_text(zf, "META-INF/container.xml", path)
        root = ET.fromstring(container)
        ns = {"c": "urn:oasis:names:tc:opendocument:xmlns:container"}
        for rf in root.findall(".//c:rootfile", ns):
            full = rf.attrib.get("full-path")
            if full and full in zf.namelist():
                return full
    except (KeyError, ET.ParseError):
        debug_log("EPUB container.xml missing or malformed; scanning for an OPF file")
    for n in zf.namelist():
        if n.lower().endswith(".opf"):
            return n
    raise FileNotFoundError("OPF file not found in EPUB")


def _strip_tag(tag: str) -> str:
    return tag.split("}", 1)[-1] if "}" in tag else tag


def _get_attr(elem: ET.Element, name: str) -> str | None:
    for attr, value in elem.attrib.items():
        if _strip_tag(attr) == name:
            return value
    return None


def _resolve_relative_path(base_file: str, href: str) -> str:
    base = str(PurePosixPath(base_file).parent)
    if base not in ("", ".", "/"):
        combined = PurePosixPath(base) / href
    else:
        combined = PurePosixPath(href)
    # Collapse "dir/../x" segments; zip member names never contain them.
    parts: list[str] = []
    for part in combined.parts:
        if part == "..":
            if parts:
                parts.pop()
        elif part != ".":
            parts.append(part)
    return "/".join(parts)


def _split_href_fragment(href: str) -> tuple[str, str | None]:
    if "#" in href:
        base, frag = href.split("#", 1)
        return unquote(base), unquote(frag)
    return unquote(href), None


@dataclass
class _Package:
    opf_path: str
    title: str | None
    author: str | None
    spine: list[str]
    nav_paths: list[str] = field(default_factory=list)
    ncx_paths: list[str] = field(default_factory=list)


def _is_html_item(href: str, media_type: str | None) -> bool:
    if media_type and media_type.lower() in HTML_MEDIA_TYPES:
        return True
    return href.lower().endswith(HTML_EXTS)


def _book_title(root: ET.Element) -> str | None:
    for title_el in root.findall(f".//{{{DC_NS}}}title"):
        title_text = "".join(title_el.itertext()).strip()
        if title_text:
            return unicodedata.normalize("NFKC", title_text)
    return None


def _book_author(root: ET.Element) -> str | None:
    authors: list[str] = []
    for creator_el in root.findall(f".//{{{DC_NS}}}creator"):
        raw_name = "".join(creator_el.itertext()).strip()
        normalized = unicodedata.normalize("NFKC", raw_name).strip()
        if not normalized:
            continue
        role = _get_attr(creator_el, "role")
        if role and role.lower() not in {"aut", "author"}:
            continue
        if normalized not in authors:
            authors.append(normalized)
    if not authors:
        return None
    separator = ", " if all(name.isascii() for name in authors) else "、"
    return separator.join(authors)


def _read_package(zf: zipfile.ZipFile, path: str | None) -> _Package:
    try:
        opf_path = _find_opf_path(zf, path)
        root = ET.fromstring(_zip_read_text(zf, opf_path, path))
    except FileNotFoundError as exc:
        raise FormatError("EPUB has no package document", path) from exc
    except ET.ParseError as exc:
        raise FormatError("EPUB package document is malformed", path) from exc
    nsmap = {"opf": root.tag.split("}")[0].strip("{")} if root.tag.startswith("{") else {}
    prefix = "opf:" if nsmap else ""
    manifest: dict[str, tuple[str, str | None, str]] = {}
    nav_paths: list[str] = []
    ncx_paths: list[str] = []
    for item in root.findall(f".//{prefix}manifest/{prefix}item", nsmap):
        item_id = item.attrib.get("id")
        href = item.attrib.get("href")
        if not item_id or not href:
            continue
        resolved = _resolve_relative_path(opf_path, unquote(href))
        media_type = item.attrib.get("media-type")
        properties = (item.attrib.get("properties") or "").lower()
        manifest[item_id] = (resolved, media_type, properties)
        if "nav" in properties.split():
            nav_paths.append(resolved)
        if (media_type or "").lower() == "application/x-dtbncx+xml":
            ncx_paths.append(resolved)
    names = set(zf.namelist())
    spine: list[str] = []
    for ref in root.findall(f".//{prefix}spine/{prefix}itemref", nsmap):
        entry = manifest.get(ref.attrib.get("idref") or "")
        if entry is None:
            continue
        resolved, media_type, _ = entry
        if resolved not in names:
            debug_log(f"EPUB spine item missing from archive: {resolved}")
            continue
        if _is_html_item(resolved, media_type):
            spine.append(resolved)
    # If spine is empty, fall back to all HTML files in zip order
    if not spine:
        spine = [n for n in zf.namelist() if n.lower().endswith(HTML_EXTS)]
    return _Package(
        opf_path=opf_path,
        title=_book_title(root),
        author=_book_author(root),
        spine=spine,
        nav_paths=nav_paths,
        ncx_paths=ncx_paths,
    )


def _parse_nav_document(html: str) -> list[tuple[str, str, int]]:
    soup = soup_from_html(html)
    nav_tags = []
    for nav in soup.find_all("nav"):
        nav_type = (nav.get("epub:type") or nav.get("type") or "").lower()
        role = (nav.get("role") or "").lower()
        if "toc" in nav_type or role == "doc-toc":
            nav_tags.append(nav)
    if not nav_tags:
        nav_tags = soup.find_all("nav")
    entries: list[tuple[str, str, int]] = []
    for nav in nav_tags:
        outer_lists = len(nav.find_parents(["ol", "ul"]))
        for anchor in nav.find_all("a"):
            href = anchor.get("href")
            if not href:
                continue
            level = max(len(anchor.find_parents(["ol", "ul"])) - outer_lists - 1, 0)
            entries.append((href, anchor.get_text(strip=True), level))
    return entries


def _ncx_nav_points(parent: ET.Element, level: int, entries: list[tuple[str, str, int]]) -> None:
    for nav_point in parent:
        if _strip_tag(nav_point.tag) != "navPoint":
            continue
        src: str | None = None
        label = ""
        for child in nav_point:
            name = _strip_tag(child.tag)
            if name == "content":
                src = child.attrib.get("src")
            elif name == "navLabel":
                label = "".join(child.itertext()).strip()
        if src:
            entries.append((src, label, level))
        _ncx_nav_points(nav_point, level + 1, entries)


def _parse_ncx_document(xml_text: str) -> list[tuple[str, str, int]]:
    try:
        root = ET.fromstring(xml_text)
    except ET.ParseError:
        return []
    entries: list[tuple[str, str, int]] = []
    for nav_map in root.iter():
        if _strip_tag(nav_map.tag) == "navMap":
            _ncx_nav_points(nav_map, 0, entries)
            break
    return entries


def _toc_entries(zf: zipfile.ZipFile, package: _Package, path: str | None = None) -> list[_NavEntry]:
    sources = [(p, _parse_nav_document) for p in package.nav_paths]
    sources += [(p, _parse_ncx_document) for p in package.ncx_paths]
    for doc_path, parser in sources:
        try:
            raw_entries = parser(_zip_read_text(zf, doc_path, path))
        except KeyError:
            continue
        entries: list[_NavEntry] = []
        for href, title, level in raw_entries:
            base_href, fragment = _split_href_fragment(href)
            if not title:
                continue
            target = _resolve_relative_path(doc_path, base_href) if base_href else doc_path
            entries.append(_NavEntry(path=target, title=title, fragment=fragment or None, level=level))
        if entries:
            return entries
    return []


def soup_from_html(html: str) -> BeautifulSoup:
    stripped = html.lstrip()
    lower_head = stripped[:200].lower()
    xmlish = stripped.startswith("<?xml") or ("<html" in lower_head and "xmlns" in lower_head)

    if xmlish:
        for parser in ("lxml-xml", "xml"):
            try:
                return BeautifulSoup(html, parser)
            except FeatureNotFound:
                continue

    for parser in ("lxml", "html.parser"):
        try:
            with warnings.catch_warnings():
                warnings.filterwarnings("ignore", category=XMLParsedAsHTMLWarning)
                return BeautifulSoup(html, parser)
        except FeatureNotFound:
            continue
    return BeautifulSoup(html, "html.parser")


def _local_name(tag: Tag) -> str:
    return (tag.name or "").split(":")[-1].lower()


def _element_hint(tag: Tag, name: str) -> StyleHint | None:
    color = None
    family = None
    bold = name in BOLD_TAGS
    style = tag.get("style")
    if isinstance(style, str):
        for prop, value in _CSS_DECL_RE.findall(style):
            prop = prop.lower()
            value = value.strip()
            if prop == "color":
                color = value
            elif prop == "font-family":
                family = value.strip("'\"")
            elif prop == "font-weight":
                bold = value.lower() in {"bold", "bolder"} or (value.isdigit() and int(value) >= 600)
    if name == "font":
        color = tag.get("color") or color
        family = tag.get("face") or family
    if color is None and family is None and not bold:
        return None
    return StyleHint(color=color, font_family=family, bold=bold)


def _merge_hint(outer: StyleHint | None, inner: StyleHint | None) -> StyleHint | None:
    if outer is None:
        return inner
    if inner is None:
        return outer
    return StyleHint(
        color=inner.color or outer.color,
        font_family=inner.font_family or outer.font_family,
        bold=inner.bold or outer.bold,
    )


class _BlockCollector:
    """Reduce an XHTML tree to a flat sequence of text blocks."""

    def __init__(self) -> None:
        self.blocks: list[TextBlock] = []
        self.anchors: dict[str, tuple[int, int]] = {}
        self._parts: list[str] = []
        self._heading = False
        self._hint: StyleHint | None = None

    def collect(self, root: Tag) -> list[TextBlock]:
        self._walk(root, None, False)
        self.flush()
        # Ids after the last text point at the end of the final block.
        if self.blocks:
            last = len(self.blocks) - 1
            for anchor_id, (block, _) in list(self.anchors.items()):
                if block > last:
                    self.anchors[anchor_id] = (last, len(self.blocks[last].content))
        return self.blocks

    def add_text(self, text: str, hint: StyleHint | None, heading: bool) -> None:
        if not text:
            return
        self._parts.append(text)
        if is_blank(text):
            return
        self._heading = self._heading or heading
        self._hint = _merge_hint(self._hint, hint)

    def mark(self, element: Tag, name: str) -> None:
        anchor_id = element.get("id") or (element.get("name") if name == "a" else None)
        if not anchor_id or anchor_id in self.anchors:
            return
        pending = _WS_RE.sub(" ", "".join(self._parts)).lstrip(" ")
        offset = 0 if is_blank(pending) else len(pending)
        self.anchors[anchor_id] = (len(self.blocks), offset)

    def flush(self) -> bool:
        raw = "".join(self._parts)
        self._parts = []
        heading, hint = self._heading, self._hint
        self._heading = False
        self._hint = None
        text = _WS_RE.sub(" ", raw).strip(" ")
        if is_blank(text):
            return False
        kind = BlockKind.HEADING if heading else BlockKind.PARAGRAPH
        self.blocks.append(TextBlock(kind=kind, content=text, style=hint))
        return True

    def empty_line(self) -> None:
        self.blocks.append(TextBlock(kind=BlockKind.EMPTY, content=""))

    def _walk(self, node: Tag, hint: StyleHint | None, heading: bool) -> None:
        for child in node.children:
            if isinstance(child, (Comment, Doctype, Declaration, ProcessingInstruction)):
                continue
            if isinstance(child, NavigableString):
                self.add_text(str(child), hint, heading)
                continue
            if not isinstance(child, Tag):
                continue
            name = _local_name(child)
            if name in SKIP_TAGS:
                continue
            block_level = name in BLOCK_LEVEL_TAGS
            if block_level:
                self.flush()
            self.mark(child, name)
            if name in IMAGE_TAGS:
                self.add_text(IMAGE_CHAR, hint, heading)
                continue
            if name == "br":
                if not self.flush():
                    self.empty_line()
                continue
            child_hint = _merge_hint(hint, _element_hint(child, name))
            child_heading = heading or name in HEADING_TAGS
            if not block_level:
                self._walk(child, child_hint, child_heading)
                continue
            before = len(self.blocks)
            self._walk(child, child_hint, child_heading)
            emitted = self.flush()
            if not emitted and len(self.blocks) == before and name in EMPTY_LINE_TAGS:
                self.empty_line()


def _collect_html(html: str) -> _BlockCollector:
    soup = soup_from_html(html)
    body = soup.find("body") or soup
    collector = _BlockCollector()
    collector.collect(body)
    return collector


def html_to_blocks(html: str) -> list[TextBlock]:
    return _collect_html(html).blocks


def _document_title(soup_html: str) -> str | None:
    soup = soup_from_html(soup_html)
    title = soup.find("title")
    if title is not None:
        text = title.get_text(strip=True)
        if text:
            return text
    return None


def _chapter_title(nav_title: str | None, blocks: list[TextBlock], source: str) -> str:
    if nav_title:
        return nav_title
    for block in blocks:
        if block.kind is BlockKind.HEADING:
            return block.content
    return PurePosixPath(source).stem


def _build_toc(entries: list[_NavEntry], chapters: list[Chapter]) -> tuple[TocEntry, ...]:
    by_source: dict[str, Chapter] = {}
    for chapter in chapters:
        if chapter.source is not None:
            by_source.setdefault(chapter.source, chapter)
    toc: list[TocEntry] = []
    for entry in entries:
        chapter = by_source.get(entry.path)
        if chapter is None:
            debug_log(f"TOC entry {entry.title!r} points outside the readable spine: {entry.path}")
            continue
        if entry.fragment and entry.fragment not in chapter.anchors:
            debug_log(f"TOC entry {entry.title!r} names unknown id #{entry.fragment}")
        toc.append(TocEntry(entry.title, chapter.anchor_position(entry.fragment), entry.level))
    return tuple(toc)


def parse_epub(data: bytes, path: str | None = None) -> Document:
    try:
        zf = zipfile.ZipFile(io.BytesIO(data))
    except zipfile.BadZipFile as exc:
        raise FormatError("Malformed EPUB container", path) from exc
    with zf:
        package = _read_package(zf, path)
        toc_entries = _toc_entries(zf, package, path)
        nav_titles: dict[str, str] = {}
        # A whole-file entry names the chapter better than one of its sections.
        for entry in sorted(toc_entries, key=lambda e: e.fragment is not None):
            nav_titles.setdefault(entry.path, entry.title)
        chapters: list[Chapter] = []
        for source in package.spine:
            try:
                html = _zip_read_text(zf, source, path)
            except KeyError as exc:
                raise FormatError(f"Unreadable EPUB member {source}", path) from exc
            collector = _collect_html(html)
            blocks = collector.blocks
            if all(block.is_empty for block in blocks):
                debug_log(f"Skipping EPUB spine item without text: {source}")
                continue
            chapters.append(
                Chapter(
                    index=len(chapters),
                    title=_chapter_title(nav_titles.get(source), blocks, source),
                    blocks=tuple(blocks),
                    source=source,
                    anchors=collector.anchors,
                )
            )
    if not chapters:
        raise FormatError("EPUB contains no readable chapters", path)
    title = package.title or (Path(path).stem if path else "Untitled")
    debug_log(f"Parsed EPUB {title!r}: {len(chapters)} chapters")
    return Document(
        id=document_id(data),
        title=title,
        author=package.author,
        chapters=tuple(chapters),
        source_format=SourceFormat.EPUB,
        source_path=path,
        toc=_build_toc(toc_entries, chapters),
    )


def parse_html(data: bytes, path: str | None = None) -> Document:
    html = decode_text(data, path)
    collector = _collect_html(html)
    blocks = collector.blocks
    if all(block.is_empty for block in blocks):
        raise FormatError("HTML document contains no text", path)
    fallback = Path(path).stem if path else "Untitled"
    title = _document_title(html) or fallback
    heading = next((b.content for b in blocks if b.kind is BlockKind.HEADING), None)
    chapter = Chapter(index=0, title=heading or title, blocks=tuple(blocks), anchors=collector.anchors)
    return Document(
        id=document_id(data),
        title=title,
        author=None,
        chapters=(chapter,),
        source_format=SourceFormat.HTML,
        source_path=path,
    )
