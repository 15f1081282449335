"""XML encoding and decoding of NETCONF messages.

Requests are built as xml.etree.ElementTree trees. A few fields need
encodings the generic tree-building does not cover, so they have their own
helpers:

- Presence booleans (encode_presence / decode_presence): True is an empty
  element, False is no element at all.
- Datastore selectors (encode_datastore): the identifier is the tag name,
  <source><running/></source>.
- Source/target unions (encode_source): exactly one of a datastore, a URL,
  a structured config or a raw XML fragment.
- Raw XML (set_raw_content): a caller supplied fragment spliced verbatim into
  the serialized message after a well-formedness check.

Decoding turns framed bytes into Hello, RPCReply or Notification models.
"""

from __future__ import annotations

import re
import uuid
import xml.etree.ElementTree as ET
from collections.abc import Mapping
from datetime import datetime
from enum import Enum
from typing import Any
from xml.sax.saxutils import escape

import xmltodict

from ..errors import DecodeError, HandshakeError, ValidationError
from .messages import Hello, Notification, RPCErrorRecord, RPCReply

BASE_NS = "urn:ietf:params:xml:ns:netconf:base:1.0"
NOTIFICATION_NS = "urn:ietf:params:xml:ns:netconf:notification:1.0"

XML_DECLARATION = b'<?xml version="1.0" encoding="UTF-8"?>'

_RAW_CONTENT = "{urn:netconf-async:internal}raw-content"
_XML_DECL_RE = re.compile(r"^\s*<\?xml[^>]*\?>")
_FRACTION_RE = re.compile(r"(\.\d{6})\d+")
_NCNAME_RE = re.compile(r"[^\W\d][\w.-]*")


class Datastore(str, Enum):
    """Configuration datastores defined by RFC 6241."""

    RUNNING = "running"
    CANDIDATE = "candidate"  # :candidate capability
    STARTUP = "startup"  # :startup capability


class URL(str):
    """A remote resource locator for the :url capability."""


DatastoreLike = Datastore | str
ConfigLike = ET.Element | Mapping[str, Any] | str | bytes
SourceLike = Datastore | URL | ConfigLike


def local_name(tag: str) -> str:
    """Strip the {namespace} part of an ElementTree tag."""
    return tag.rsplit("}", 1)[-1]


def find_child(parent: ET.Element, name: str) -> ET.Element | None:
    for child in parent:
        if isinstance(child.tag, str) and local_name(child.tag) == name:
            return child
    return None


def child_text(parent: ET.Element, name: str) -> str | None:
    child = find_child(parent, name)
    if child is None or child.text is None:
        return None
    return child.text.strip()


def split_tag(tag: str) -> tuple[str, str]:
    """Split "{namespace}name" into (namespace, name)."""
    if tag.startswith("{"):
        namespace, _, name = tag[1:].partition("}")
        return namespace, name
    return "", tag


def _unprefixed(element: ET.Element, inherited_ns: str) -> ET.Element:
    namespace, name = split_tag(element.tag)
    attrib = dict(element.attrib)
    if namespace != inherited_ns:
        attrib = {"xmlns": namespace, **attrib}
    copy = ET.Element(name, attrib)
    copy.text = element.text
    copy.tail = element.tail
    for child in element:
        copy.append(_unprefixed(child, namespace))
    return copy


def serialize_fragment(element: ET.Element, inherited_ns: str = "") -> str:
    """Serialize an element with default xmlns declarations instead of ns0: prefixes."""
    return ET.tostring(_unprefixed(element, inherited_ns), encoding="unicode")


def inner_xml(element: ET.Element) -> str:
    """Serialize the content of an element without the element itself."""
    namespace, _ = split_tag(element.tag)
    parts = [escape(element.text or "")]
    for child in element:
        parts.append(serialize_fragment(child, namespace))
    return "".join(parts)


# =============================================================================
# Special encodings
# =============================================================================


def encode_presence(parent: ET.Element, tag: str, value: bool) -> ET.Element | None:
    """Add <tag/> when value is true, nothing otherwise."""
    if not value:
        return None
    return ET.SubElement(parent, tag)


def decode_presence(parent: ET.Element, tag: str) -> bool:
    """True iff a <tag> child exists, whatever its content."""
    return find_child(parent, tag) is not None


def datastore_name(datastore: DatastoreLike) -> str:
    """The element name selecting a datastore.

    The name is used as a tag, so it must be a namespace-free XML name.
    """
    if isinstance(datastore, URL):
        raise ValidationError(f"a url cannot be used as a datastore: {datastore}")
    name = datastore.value if isinstance(datastore, Datastore) else datastore
    if not isinstance(name, str) or not name:
        raise ValidationError("datastore cannot be empty")
    if not _NCNAME_RE.fullmatch(name):
        raise ValidationError(f"invalid datastore name {name!r}")
    return name


def encode_datastore(parent: ET.Element, tag: str, datastore: DatastoreLike) -> ET.Element:
    """Add <tag><datastore/></tag>."""
    wrapper = ET.SubElement(parent, tag)
    ET.SubElement(wrapper, datastore_name(datastore))
    return wrapper


def encode_text(parent: ET.Element, tag: str, value: Any) -> ET.Element | None:
    """Add <tag>value</tag>, or nothing when value is None or empty."""
    if value is None or value == "":
        return None
    element = ET.SubElement(parent, tag)
    element.text = value.value if isinstance(value, Enum) else str(value)
    return element


def set_raw_content(element: ET.Element, raw: str | bytes) -> None:
    """Attach a raw XML fragment to be emitted verbatim as element content."""
    text = raw.decode("utf-8") if isinstance(raw, bytes) else raw
    text = _XML_DECL_RE.sub("", text, count=1)
    try:
        ET.fromstring(f"<fragment>{text}</fragment>")
    except ET.ParseError as e:
        raise ValidationError(f"raw XML is not well-formed: {e}") from e
    element.set(_RAW_CONTENT, text)


def encode_structure(value: Mapping[str, Any]) -> str:
    """Serialize a mapping as an XML fragment.

    Keys become tags. Mappings nest, lists repeat the tag, None gives an
    empty element, "@name" keys are attributes and "#text" is element text.
    """
    try:
        return xmltodict.unparse(dict(value), full_document=False)
    except ValueError as e:
        raise ValidationError(f"cannot encode config mapping: {e}") from e


def encode_config(parent: ET.Element, config: ConfigLike) -> ET.Element:
    """Add a <config> element holding a structured or raw configuration."""
    if isinstance(config, ET.Element):
        if local_name(config.tag) == "config":
            parent.append(config)
            return config
        wrapper = ET.SubElement(parent, "config")
        wrapper.append(config)
        return wrapper

    wrapper = ET.SubElement(parent, "config")
    if isinstance(config, Mapping):
        set_raw_content(wrapper, encode_structure(config))
    elif isinstance(config, (str, bytes)):
        set_raw_content(wrapper, config)
    else:
        raise ValidationError(f"unsupported config type: {type(config).__name__}")
    return wrapper


def is_raw_xml(value: Any) -> bool:
    if isinstance(value, bytes):
        return True
    return isinstance(value, str) and value.lstrip().startswith("<")


def encode_source(
    parent: ET.Element,
    tag: str,
    value: SourceLike | None,
    *,
    allow_config: bool = True,
    allow_url: bool = True,
) -> ET.Element:
    """Add <tag> holding exactly one of datastore, <url> or <config>.

    Plain strings are datastore names unless they start with "<", in which
    case they are raw XML configuration.
    """
    if value is None:
        raise ValidationError(f"<{tag}> requires a datastore, url or config")

    wrapper = ET.SubElement(parent, tag)
    if isinstance(value, URL):
        if not allow_url:
            raise ValidationError(f"<{tag}> does not accept a url")
        if not value:
            raise ValidationError("url cannot be empty")
        ET.SubElement(wrapper, "url").text = str(value)
    elif isinstance(value, Datastore) or (isinstance(value, str) and not is_raw_xml(value)):
        ET.SubElement(wrapper, datastore_name(value))
    elif isinstance(value, (ET.Element, Mapping, str, bytes)):
        if not allow_config:
            raise ValidationError(f"<{tag}> does not accept a config")
        encode_config(wrapper, value)
    else:
        raise ValidationError(f"unsupported <{tag}> type: {type(value).__name__}")
    return wrapper


# =============================================================================
# Envelopes
# =============================================================================


def to_xml_bytes(element: ET.Element) -> bytes:
    """Serialize an element tree, splicing in raw fragments."""
    fragments: dict[str, str] = {}
    for node in element.iter():
        raw = node.attrib.pop(_RAW_CONTENT, None)
        if raw is not None:
            token = f"raw-{uuid.uuid4().hex}"
            node.text = token
            fragments[token] = raw

    text = ET.tostring(element, encoding="unicode")
    for token, raw in fragments.items():
        text = text.replace(token, raw, 1)
    return XML_DECLARATION + text.encode("utf-8")


def build_rpc(operation: ET.Element | str | bytes) -> ET.Element:
    """Wrap an operation in <rpc>. The message-id is set by the caller."""
    rpc = ET.Element("rpc", {"xmlns": BASE_NS})
    if isinstance(operation, ET.Element):
        rpc.append(operation)
    else:
        set_raw_content(rpc, operation)
    return rpc


def encode_rpc(message_id: int, operation: ET.Element | str | bytes) -> bytes:
    """Serialize <rpc message-id="..."> around an operation."""
    rpc = build_rpc(operation)
    rpc.set("message-id", str(message_id))
    return to_xml_bytes(rpc)


def encode_hello(capabilities: list[str] | tuple[str, ...]) -> bytes:
    hello = ET.Element("hello", {"xmlns": BASE_NS})
    caps = ET.SubElement(hello, "capabilities")
    for capability in capabilities:
        ET.SubElement(caps, "capability").text = capability
    return to_xml_bytes(hello)


# =============================================================================
# Decoding
# =============================================================================


def parse_xml(data: bytes | str) -> ET.Element:
    try:
        return ET.fromstring(data.strip())
    except ET.ParseError as e:
        raise DecodeError(f"malformed XML message: {e}") from e


def decode_hello(root: ET.Element) -> Hello:
    if local_name(root.tag) != "hello":
        raise HandshakeError(f"expected <hello>, got <{local_name(root.tag)}>")

    caps_element = find_child(root, "capabilities")
    capabilities = []
    if caps_element is not None:
        capabilities = [
            c.text.strip()
            for c in caps_element
            if local_name(c.tag) == "capability" and c.text and c.text.strip()
        ]
    if not capabilities:
        raise HandshakeError("hello does not advertise any capability")

    session_id = None
    raw_session_id = child_text(root, "session-id")
    if raw_session_id is not None:
        try:
            session_id = int(raw_session_id)
        except ValueError as e:
            raise HandshakeError(f"invalid session-id {raw_session_id!r}") from e
        if session_id <= 0:
            raise HandshakeError(f"invalid session-id {raw_session_id!r}")

    return Hello(capabilities=capabilities, session_id=session_id)


def decode_rpc_error(element: ET.Element) -> RPCErrorRecord:
    info = find_child(element, "error-info")
    return RPCErrorRecord(
        type=child_text(element, "error-type"),
        tag=child_text(element, "error-tag"),
        severity=child_text(element, "error-severity"),
        app_tag=child_text(element, "error-app-tag"),
        path=child_text(element, "error-path"),
        message=child_text(element, "error-message"),
        info=inner_xml(info).strip() if info is not None else None,
    )


def decode_reply(root: ET.Element, raw: str = "") -> RPCReply:
    message_id = None
    raw_id = root.get("message-id")
    if raw_id is not None:
        try:
            message_id = int(raw_id)
        except ValueError:
            message_id = None

    errors = [decode_rpc_error(child) for child in root if local_name(child.tag) == "rpc-error"]
    data = find_child(root, "data")
    return RPCReply(
        message_id=message_id,
        ok=decode_presence(root, "ok"),
        data=inner_xml(data) if data is not None else None,
        errors=errors,
        raw=raw,
    )


def parse_event_time(value: str) -> datetime:
    """Parse an RFC 3339 timestamp, tolerating sub-microsecond precision."""
    text = value.strip()
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        pass
    try:
        return datetime.fromisoformat(_FRACTION_RE.sub(r"\1", text))
    except ValueError as e:
        raise DecodeError(f"invalid eventTime {value!r}") from e


def decode_notification(root: ET.Element, raw: str = "", stream: str = "NETCONF") -> Notification:
    event_time = child_text(root, "eventTime")
    if not event_time:
        raise DecodeError("notification without eventTime")

    namespace, _ = split_tag(root.tag)
    events = [child for child in root if local_name(child.tag) != "eventTime"]
    return Notification(
        stream=stream,
        event_time=parse_event_time(event_time),
        event_name=local_name(events[0].tag) if events else None,
        payload="".join(serialize_fragment(e, namespace) for e in events).strip(),
        raw=raw,
    )


def decode_message(data: bytes) -> Hello | RPCReply | Notification:
    """Decode one framed message from the peer."""
    root = parse_xml(data)
    raw = data.decode("utf-8", "replace").strip()
    name = local_name(root.tag)
    if name == "rpc-reply":
        return decode_reply(root, raw)
    if name == "notification":
        return decode_notification(root, raw)
    if name == "hello":
        return decode_hello(root)
    raise DecodeError(f"unexpected message <{name}>")
