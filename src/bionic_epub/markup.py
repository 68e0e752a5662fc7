from __future__ import annotations

import re
import warnings
from dataclasses import dataclass
from enum import Enum
from html.entities import name2codepoint

from bs4 import (
    BeautifulSoup,
    CData,
    FeatureNotFound,
    NavigableString,
    Tag,
    XMLParsedAsHTMLWarning,
)  # type: ignore
from bs4.dammit import EntitySubstitution

from .errors import FormatError
from .options import DEFAULT_OPTIONS, BionicOptions
from .words import Split, decide, iter_words

EMPHASIS_TAG = "b"
NBSP_ENTITY = "nbsp"
# Predefined by XML itself; every other named entity is unknown to the XML builder.
XML_ENTITIES = frozenset({"amp", "lt", "gt", "quot", "apos"})

DEFAULT_SKIP_TAGS = frozenset({"h1", "h2", "h3", "h4", "h5", "h6", "title", "header"})
DEFAULT_SKIP_CLASSES = frozenset({"chapter-title", "title"})
# Text inside these is code or styling, never prose.
DEFAULT_OPAQUE_TAGS = frozenset({"script", "style"})

# Elements that stay even when empty: the void elements of HTML, table cells, SVG <image>.
KEEP_EMPTY_TAGS = frozenset(
    {
        "img",
        "image",
        "br",
        "hr",
        "input",
        "meta",
        "link",
        "area",
        "base",
        "col",
        "embed",
        "source",
        "track",
        "wbr",
        "td",
        "th",
    }
)
# Empty elements carrying these are link targets or point at content.
ANCHOR_ATTRS = frozenset({"id", "name", "src", "href", "data"})
# Drawing and formula vocabularies: empty elements there still render.
FOREIGN_NAMESPACES = frozenset(
    {"http://www.w3.org/2000/svg", "http://www.w3.org/1998/Math/MathML"}
)
FOREIGN_ROOTS = frozenset({"svg", "math"})

_LEADING_WS = re.compile(r"^\s+")
_TRAILING_WS = re.compile(r"\s+$")
_NAMED_ENTITY = re.compile(r"&([A-Za-z][A-Za-z0-9]*);")


class NodeAction(Enum):
    KEEP = "keep"
    NORMALIZE = "normalize"
    EMPHASIZE = "emphasize"


def _local_name(name: str | None) -> str:
    if not name:
        return ""
    return name.rsplit(":", 1)[-1].lower()


def _class_tokens(tag: Tag) -> list[str]:
    value = tag.get("class")
    if value is None:
        return []
    # XML builders keep class as a plain string; HTML builders split it.
    if isinstance(value, str):
        return value.split()
    return [str(token) for token in value]


@dataclass(frozen=True, slots=True)
class SkipRules:
    """Tags and classes whose text is left without emphasis."""

    tags: frozenset[str] = DEFAULT_SKIP_TAGS
    classes: frozenset[str] = DEFAULT_SKIP_CLASSES
    opaque_tags: frozenset[str] = DEFAULT_OPAQUE_TAGS

    def matches(self, tag: Tag) -> bool:
        if _local_name(tag.name) in self.tags:
            return True
        return any(token in self.classes for token in _class_tokens(tag))

    def is_exempt(self, node: NavigableString) -> bool:
        return any(self.matches(parent) for parent in node.parents)

    def is_opaque(self, node: NavigableString) -> bool:
        parent = node.parent
        return isinstance(parent, Tag) and _local_name(parent.name) in self.opaque_tags


DEFAULT_SKIP_RULES = SkipRules()


def _looks_like_xml(text: str) -> bool:
    stripped = text.lstrip("\ufeff \t\r\n")
    lower_head = stripped[:400].lower()
    return stripped.startswith("<?xml") or ("<html" in lower_head and "xmlns" in lower_head)


def resolve_named_entities(text: str, *, xml: bool) -> str:
    """Rewrite HTML named entities before parsing.

    ``&nbsp;`` becomes a plain space. For XML input every other HTML entity
    becomes a numeric reference, since the XML builder drops names it does not
    know. The five XML entities are left alone.
    """

    def _replace(match: re.Match[str]) -> str:
        name = match.group(1)
        if name == NBSP_ENTITY:
            return " "
        if not xml or name in XML_ENTITIES:
            return match.group(0)
        codepoint = name2codepoint.get(name)
        if codepoint is None:
            return match.group(0)
        return f"&#{codepoint};"

    return _NAMED_ENTITY.sub(_replace, text)


def parse_document(text: str, *, xml: bool | None = None) -> BeautifulSoup:
    """Parse a markup document, picking the XML builder for XHTML-looking input.

    Raises FormatError when no available parser accepts the text.
    """
    if xml is None:
        xml = _looks_like_xml(text)
    text = resolve_named_entities(text, xml=xml)
    parsers = ("lxml-xml",) if xml else ("lxml", "html.parser")
    last_error: Exception | None = None
    for parser in parsers:
        try:
            with warnings.catch_warnings():
                warnings.filterwarnings("ignore", category=XMLParsedAsHTMLWarning)
                return BeautifulSoup(text, parser)
        except FeatureNotFound as exc:
            last_error = exc
        except Exception as exc:
            raise FormatError(f"Unable to parse markup document: {exc}") from exc
    raise FormatError(f"Unable to parse markup document: {last_error}") from last_error


def plan_text_nodes(
    soup: BeautifulSoup, rules: SkipRules = DEFAULT_SKIP_RULES
) -> list[tuple[NavigableString, NodeAction]]:
    """Visit every text node in document order and decide what to do with it.

    Nothing is mutated here; ``transform_document`` applies the plan afterwards.
    """
    plan: list[tuple[NavigableString, NodeAction]] = []
    for node in soup.descendants:
        # Exact type check: comments, CDATA, doctypes and script/style strings are subclasses.
        if type(node) is not NavigableString:
            continue
        parent = node.parent
        if not isinstance(parent, Tag) or isinstance(parent, BeautifulSoup):
            continue
        if not node.strip() or rules.is_opaque(node):
            plan.append((node, NodeAction.KEEP))
        elif rules.is_exempt(node):
            plan.append((node, NodeAction.NORMALIZE))
        else:
            plan.append((node, NodeAction.EMPHASIZE))
    return plan


def emphasis_segments(text: str, options: BionicOptions) -> list[tuple[str, bool]]:
    """Split ``text`` into ``(chunk, emphasized)`` pairs covering it exactly."""
    segments: list[tuple[str, bool]] = []
    cursor = 0
    for start, _end, word in iter_words(text):
        decision = decide(word, options)
        if not isinstance(decision, Split) or decision.prefix_length == 0:
            continue
        prefix, _rest = decision.apply(word)
        if start > cursor:
            segments.append((text[cursor:start], False))
        segments.append((prefix, True))
        cursor = start + len(prefix)
    if cursor < len(text):
        segments.append((text[cursor:], False))
    return segments


def _split_whitespace(text: str) -> tuple[str, str, str]:
    leading_match = _LEADING_WS.match(text)
    trailing_match = _TRAILING_WS.search(text)
    leading = leading_match.group(0) if leading_match else ""
    trailing = trailing_match.group(0) if trailing_match else ""
    core = text.strip()
    return leading, core, trailing


def emphasize_text(text: str, options: BionicOptions = DEFAULT_OPTIONS) -> str:
    """Return the emphasized rendering of ``text`` as an escaped markup string."""
    leading, core, trailing = _split_whitespace(text)
    if not core:
        return EntitySubstitution.substitute_xml(text)
    parts: list[str] = [leading]
    for chunk, emphasized in emphasis_segments(core, options):
        escaped = EntitySubstitution.substitute_xml(chunk)
        if emphasized:
            parts.append(f"<{EMPHASIS_TAG}>{escaped}</{EMPHASIS_TAG}>")
        else:
            parts.append(escaped)
    parts.append(trailing)
    return "".join(parts)


def _normalize_node(node: NavigableString) -> None:
    original = str(node)
    text = original
    if node.previous_sibling is None:
        text = text.lstrip()
    if node.next_sibling is None:
        text = text.rstrip()
    if text != original:
        node.replace_with(NavigableString(text))


def _emphasize_node(soup: BeautifulSoup, node: NavigableString, options: BionicOptions) -> None:
    original = str(node)
    leading, core, trailing = _split_whitespace(original)
    if not core:
        return
    segments = emphasis_segments(core, options)
    if not any(emphasized for _chunk, emphasized in segments) and leading + core + trailing == original:
        return
    replacements: list[NavigableString | Tag] = []
    pending = leading
    for chunk, emphasized in segments:
        if not emphasized:
            pending += chunk
            continue
        if pending:
            replacements.append(NavigableString(pending))
            pending = ""
        bold = soup.new_tag(EMPHASIS_TAG)
        bold.string = chunk
        replacements.append(bold)
    pending += trailing
    if pending:
        replacements.append(NavigableString(pending))
    node.replace_with(*replacements)


def transform_document(
    soup: BeautifulSoup,
    options: BionicOptions = DEFAULT_OPTIONS,
    rules: SkipRules = DEFAULT_SKIP_RULES,
) -> BeautifulSoup:
    for node, action in plan_text_nodes(soup, rules):
        if action is NodeAction.NORMALIZE:
            _normalize_node(node)
        elif action is NodeAction.EMPHASIZE:
            _emphasize_node(soup, node, options)
    return soup


def _is_empty(tag: Tag) -> bool:
    for child in tag.contents:
        if isinstance(child, Tag):
            return False
        if type(child) is NavigableString or isinstance(child, CData):
            if str(child):
                return False
    return True


def _is_foreign(tag: Tag) -> bool:
    if tag.namespace in FOREIGN_NAMESPACES or _local_name(tag.name) in FOREIGN_ROOTS:
        return True
    # HTML builders leave inline SVG and MathML without a namespace.
    return any(_local_name(parent.name) in FOREIGN_ROOTS for parent in tag.parents)


def _has_anchor(tag: Tag) -> bool:
    # Local names, so xlink:href counts as href.
    return any(_local_name(str(attr)) in ANCHOR_ATTRS for attr in tag.attrs)


def clean_document(soup: BeautifulSoup, keep: frozenset[str] = KEEP_EMPTY_TAGS) -> int:
    """Drop empty elements; returns how many were removed.

    Emptiness is evaluated once up front, so a parent whose only child gets
    removed here is itself kept.
    """
    doomed = [
        tag
        for tag in soup.find_all(True)
        if _local_name(tag.name) not in keep
        and not _has_anchor(tag)
        and not _is_foreign(tag)
        and _is_empty(tag)
    ]
    for tag in doomed:
        tag.decompose()
    return len(doomed)


def process_document(
    text: str,
    options: BionicOptions = DEFAULT_OPTIONS,
    rules: SkipRules = DEFAULT_SKIP_RULES,
) -> str:
    soup = parse_document(text)
    transform_document(soup, options, rules)
    clean_document(soup)
    return str(soup)


__all__ = [
    "DEFAULT_SKIP_RULES",
    "KEEP_EMPTY_TAGS",
    "NodeAction",
    "SkipRules",
    "clean_document",
    "emphasis_segments",
    "emphasize_text",
    "parse_document",
    "plan_text_nodes",
    "process_document",
    "resolve_named_entities",
    "transform_document",
]
