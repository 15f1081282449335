"""Translate simple path expressions into subtree filters.

Only a very small subset of XPath is understood:

    /segment/segment[name="value"]/segment

- the path must start with "/"
- each segment is an element name, optionally followed by one predicate
- a predicate is a single equality with a quoted literal, [name="value"]
  or [name='value']

There are no boolean operators, attribute selectors, wildcards, functions,
positional predicates or namespace prefixes. Anything outside the subset
raises ValidationError; it is never silently dropped.

Example:
    xpath_to_filter('/library/book[title="Go Programming"]') gives

    <filter type="subtree"><library><book><title>Go Programming</title></book></library></filter>
"""

from __future__ import annotations

import xml.etree.ElementTree as ET
from dataclasses import dataclass

from .errors import ValidationError

FilterLike = str | ET.Element


@dataclass(frozen=True)
class PathSegment:
    """One step of a path: element name and optional (name, value) predicate."""

    name: str
    predicate: tuple[str, str] | None = None


def _is_name_start(char: str) -> bool:
    return char.isalpha() or char == "_"


def _is_name_char(char: str) -> bool:
    return char.isalnum() or char in "_-."


class _PathParser:
    """Segment-by-segment scanner for the supported path subset."""

    def __init__(self, text: str) -> None:
        self.text = text
        self.pos = 0

    def _peek(self) -> str:
        return self.text[self.pos] if self.pos < len(self.text) else ""

    def _error(self, message: str) -> ValidationError:
        return ValidationError(f"invalid XPath {self.text!r} at position {self.pos}: {message}")

    def _expect(self, char: str, message: str | None = None) -> None:
        if self._peek() != char:
            raise self._error(message or f"expected {char!r}")
        self.pos += 1

    def _skip_spaces(self) -> None:
        while self._peek() in (" ", "\t"):
            self.pos += 1

    def parse(self) -> list[PathSegment]:
        segments: list[PathSegment] = []
        while self.pos < len(self.text):
            self._expect("/")
            name = self._name()
            predicate = self._predicate() if self._peek() == "[" else None
            segments.append(PathSegment(name, predicate))
        return segments

    def _name(self) -> str:
        start = self.pos
        if not _is_name_start(self._peek()):
            raise self._error("expected an element name")
        self.pos += 1
        while self._peek() and _is_name_char(self._peek()):
            self.pos += 1
        return self.text[start : self.pos]

    def _predicate(self) -> tuple[str, str]:
        self._expect("[")
        self._skip_spaces()
        name = self._name()
        self._skip_spaces()
        self._expect("=", "only equality predicates are supported")
        self._skip_spaces()

        quote = self._peek()
        if quote not in ("'", '"'):
            raise self._error("predicate value must be a quoted string")
        end = self.text.find(quote, self.pos + 1)
        if end < 0:
            raise self._error("unterminated string literal")
        value = self.text[self.pos + 1 : end]
        if not value:
            raise self._error("predicate value cannot be empty")
        self.pos = end + 1

        self._skip_spaces()
        self._expect("]", "expected ']' (one equality predicate per segment)")
        if self._peek() == "[":
            raise self._error("only one predicate per segment is supported")
        return name, value


def parse_xpath(path: str) -> list[PathSegment]:
    """Split a path expression into segments."""
    if not isinstance(path, str) or not path.startswith("/"):
        raise ValidationError(f"invalid XPath {path!r}: must start with '/'")
    return _PathParser(path).parse()


def xpath_to_filter(path: str) -> ET.Element:
    """Build <filter type="subtree"> for a path expression."""
    segments = parse_xpath(path)
    filter_element = ET.Element("filter", {"type": "subtree"})
    parent = filter_element
    for segment in segments:
        element = ET.SubElement(parent, segment.name)
        if segment.predicate is not None:
            key, value = segment.predicate
            ET.SubElement(element, key).text = value
        parent = element
    return filter_element


def xpath_to_subtree(path: str) -> str:
    """Subtree filter content for a path, without the <filter> wrapper."""
    filter_element = xpath_to_filter(path)
    return "".join(ET.tostring(child, encoding="unicode") for child in filter_element)


def build_filter(value: FilterLike) -> ET.Element:
    """Turn a filter argument into a <filter> element.

    Strings are translated as path expressions. Elements named "filter" are
    used as they are; any other element is wrapped in a subtree filter.
    """
    if isinstance(value, str):
        return xpath_to_filter(value)
    if isinstance(value, ET.Element):
        if value.tag.rsplit("}", 1)[-1] == "filter":
            return value
        wrapper = ET.Element("filter", {"type": "subtree"})
        wrapper.append(value)
        return wrapper
    raise ValidationError(f"unsupported filter type: {type(value).__name__}")
