"""Typed NETCONF operation requests.

Each request dataclass knows how to build its operation element. Optional
settings are grouped in explicit option structures (EditConfigOptions,
CommitOptions, SubscriptionOptions) whose validate() performs every
mutual-exclusion check in one pass, before any element is built.

Example:
    request = CommitRequest.from_options(CommitOptions(confirmed=True, persist="tx-1"))
    element = request.to_element()
    # <commit><confirmed/><persist>tx-1</persist></commit>
"""

from __future__ import annotations

import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Any, ClassVar

from .. import capabilities as caps
from ..errors import ValidationError
from ..filters import FilterLike, build_filter
from .codec import (
    NOTIFICATION_NS,
    URL,
    ConfigLike,
    Datastore,
    DatastoreLike,
    SourceLike,
    datastore_name,
    encode_config,
    encode_datastore,
    encode_presence,
    encode_source,
    encode_text,
    is_raw_xml,
)


class MergeStrategy(str, Enum):
    """Values of <default-operation> and of the operation attribute.

    Only MERGE, REPLACE and NONE may be used as the default operation;
    the others are for operation attributes inside the config subtree.
    """

    MERGE = "merge"
    REPLACE = "replace"
    NONE = "none"
    CREATE = "create"
    DELETE = "delete"
    REMOVE = "remove"


class TestStrategy(str, Enum):
    """Values of <test-option> (:validate capability)."""

    __test__ = False  # not a pytest test class

    TEST_THEN_SET = "test-then-set"
    SET = "set"
    TEST_ONLY = "test-only"


class ErrorStrategy(str, Enum):
    """Values of <error-option>."""

    STOP_ON_ERROR = "stop-on-error"
    CONTINUE_ON_ERROR = "continue-on-error"
    ROLLBACK_ON_ERROR = "rollback-on-error"  # :rollback-on-error capability


DEFAULT_OPERATIONS = (MergeStrategy.MERGE, MergeStrategy.REPLACE, MergeStrategy.NONE)


def _coerce(enum_type: type[Enum], value: Any, option: str) -> Any:
    if value is None or isinstance(value, enum_type):
        return value
    try:
        return enum_type(value)
    except ValueError as e:
        allowed = ", ".join(m.value for m in enum_type)
        raise ValidationError(f"invalid {option} {value!r} (expected one of: {allowed})") from e


def _datastore_capabilities(value: Any) -> list[str]:
    if isinstance(value, URL):
        return [caps.URL]
    if isinstance(value, Datastore) or (isinstance(value, str) and not is_raw_xml(value)):
        name = datastore_name(value)
        if name == Datastore.CANDIDATE.value:
            return [caps.CANDIDATE]
        if name == Datastore.STARTUP.value:
            return [caps.STARTUP]
    return []


def format_time(value: datetime) -> str:
    """RFC 3339 timestamp; naive datetimes are taken as UTC."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.isoformat(timespec="seconds").replace("+00:00", "Z")


# =============================================================================
# Option structures
# =============================================================================


@dataclass
class EditConfigOptions:
    """Optional parameters of <edit-config>."""

    default_operation: MergeStrategy | str | None = None
    test_option: TestStrategy | str | None = None
    error_option: ErrorStrategy | str | None = None

    def validate(self) -> EditConfigOptions:
        default_operation = _coerce(MergeStrategy, self.default_operation, "default-operation")
        if default_operation is not None and default_operation not in DEFAULT_OPERATIONS:
            raise ValidationError(
                f"{default_operation.value!r} cannot be used as default-operation "
                "(only merge, replace or none)"
            )
        return EditConfigOptions(
            default_operation=default_operation,
            test_option=_coerce(TestStrategy, self.test_option, "test-option"),
            error_option=_coerce(ErrorStrategy, self.error_option, "error-option"),
        )


@dataclass
class CommitOptions:
    """Optional parameters of <commit>.

    confirmed: require a confirming commit before the confirm timeout
        (device default is 600 seconds)
    confirm_timeout: custom timeout in seconds; implies confirmed
    persist: token that lets another session confirm; implies confirmed
    persist_id: confirm an earlier commit started with persist

    persist_id confirms an existing confirmed commit, the other fields start
    a new one, so persist_id cannot be combined with them.
    """

    confirmed: bool = False
    confirm_timeout: int | float | timedelta | None = None
    persist: str | None = None
    persist_id: str | None = None

    def validate(self) -> CommitOptions:
        timeout = self.confirm_timeout
        if isinstance(timeout, timedelta):
            timeout = timeout.total_seconds()
        if timeout is not None:
            if isinstance(timeout, bool) or int(timeout) <= 0:
                raise ValidationError(f"confirm-timeout must be a positive number of seconds, got {self.confirm_timeout!r}")
            timeout = int(timeout)

        if self.persist is not None and not self.persist:
            raise ValidationError("persist cannot be empty")
        if self.persist_id is not None and not self.persist_id:
            raise ValidationError("persist-id cannot be empty")

        confirmed = self.confirmed or timeout is not None or self.persist is not None
        if self.persist_id is not None and confirmed:
            raise ValidationError(
                "persist-id cannot be used with confirmed, confirm-timeout or persist"
            )

        return CommitOptions(
            confirmed=confirmed,
            confirm_timeout=timeout,
            persist=self.persist,
            persist_id=self.persist_id,
        )


@dataclass
class SubscriptionOptions:
    """Optional parameters of <create-subscription> (RFC 5277).

    stream: event stream name, NETCONF when omitted
    filter: XPath string (translated to a subtree filter) or filter element
    start_time: replay events from this time
    end_time: stop the subscription at this time; needs start_time
    """

    stream: str | None = None
    filter: FilterLike | None = None
    start_time: datetime | None = None
    end_time: datetime | None = None

    def validate(self) -> SubscriptionOptions:
        if self.stream is not None and not self.stream:
            raise ValidationError("stream cannot be empty")
        if self.end_time is not None:
            if self.start_time is None:
                raise ValidationError("end_time requires start_time")
            start = self.start_time if self.start_time.tzinfo else self.start_time.replace(tzinfo=UTC)
            end = self.end_time if self.end_time.tzinfo else self.end_time.replace(tzinfo=UTC)
            if end < start:
                raise ValidationError("end_time is earlier than start_time")
        return self


# =============================================================================
# Requests
# =============================================================================


class Request:
    """Base class of typed operation requests."""

    operation: ClassVar[str] = ""
    capabilities: ClassVar[tuple[str, ...]] = ()

    def to_element(self) -> ET.Element:
        return ET.Element(self.operation)

    def required_capabilities(self) -> list[str]:
        return list(self.capabilities)


@dataclass
class GetConfigRequest(Request):
    """<get-config>: retrieve all or part of a datastore."""

    operation: ClassVar[str] = "get-config"

    source: DatastoreLike = Datastore.RUNNING
    filter: FilterLike | None = None

    def to_element(self) -> ET.Element:
        element = ET.Element(self.operation)
        encode_datastore(element, "source", self.source)
        if self.filter is not None:
            element.append(build_filter(self.filter))
        return element

    def required_capabilities(self) -> list[str]:
        return _datastore_capabilities(self.source)


@dataclass
class GetRequest(Request):
    """<get>: retrieve running configuration and state data."""

    operation: ClassVar[str] = "get"

    filter: FilterLike | None = None

    def to_element(self) -> ET.Element:
        element = ET.Element(self.operation)
        if self.filter is not None:
            element.append(build_filter(self.filter))
        return element


@dataclass
class EditConfigRequest(Request):
    """<edit-config>: load part of a configuration into a target datastore.

    config is an Element or mapping (structured), a str/bytes fragment
    (placed verbatim inside <config>) or a URL (sent as <url>).
    """

    operation: ClassVar[str] = "edit-config"

    target: DatastoreLike
    config: ConfigLike | URL
    options: EditConfigOptions = field(default_factory=EditConfigOptions)

    def __post_init__(self) -> None:
        self.options = self.options.validate()
        if self.config is None or (isinstance(self.config, (str, bytes)) and not self.config.strip()):
            raise ValidationError("edit-config requires a config or url")

    def to_element(self) -> ET.Element:
        element = ET.Element(self.operation)
        encode_datastore(element, "target", self.target)
        encode_text(element, "default-operation", self.options.default_operation)
        encode_text(element, "test-option", self.options.test_option)
        encode_text(element, "error-option", self.options.error_option)
        if isinstance(self.config, URL):
            if not self.config:
                raise ValidationError("url cannot be empty")
            ET.SubElement(element, "url").text = str(self.config)
        else:
            encode_config(element, self.config)
        return element

    def required_capabilities(self) -> list[str]:
        required = _datastore_capabilities(self.target)
        if isinstance(self.config, URL):
            required.append(caps.URL)
        if self.options.test_option is not None:
            required.append(caps.VALIDATE)
        if self.options.error_option == ErrorStrategy.ROLLBACK_ON_ERROR:
            required.append(caps.ROLLBACK_ON_ERROR)
        return required


@dataclass
class CopyConfigRequest(Request):
    """<copy-config>: replace a whole target with a source.

    source: datastore, URL or complete config
    target: datastore or URL
    """

    operation: ClassVar[str] = "copy-config"

    source: SourceLike
    target: Datastore | URL | str

    def __post_init__(self) -> None:
        if self.target is not None and not isinstance(self.target, URL) and is_raw_xml(self.target):
            raise ValidationError("copy-config target must be a datastore or url")

    def to_element(self) -> ET.Element:
        element = ET.Element(self.operation)
        encode_source(element, "target", self.target, allow_config=False)
        encode_source(element, "source", self.source)
        return element

    def required_capabilities(self) -> list[str]:
        return _datastore_capabilities(self.target) + _datastore_capabilities(self.source)


@dataclass
class DeleteConfigRequest(Request):
    """<delete-config>: delete a datastore. The running datastore cannot be deleted."""

    operation: ClassVar[str] = "delete-config"

    target: Datastore | URL | str

    def __post_init__(self) -> None:
        if not isinstance(self.target, URL) and self.target == Datastore.RUNNING.value:
            raise ValidationError("the running datastore cannot be deleted")

    def to_element(self) -> ET.Element:
        element = ET.Element(self.operation)
        encode_source(element, "target", self.target, allow_config=False)
        return element

    def required_capabilities(self) -> list[str]:
        return _datastore_capabilities(self.target)


@dataclass
class LockRequest(Request):
    """<lock>: lock a datastore for this session."""

    operation: ClassVar[str] = "lock"

    target: DatastoreLike = Datastore.RUNNING

    def to_element(self) -> ET.Element:
        element = ET.Element(self.operation)
        encode_datastore(element, "target", self.target)
        return element

    def required_capabilities(self) -> list[str]:
        return _datastore_capabilities(self.target)


@dataclass
class UnlockRequest(LockRequest):
    """<unlock>: release a lock taken by this session."""

    operation: ClassVar[str] = "unlock"


@dataclass
class KillSessionRequest(Request):
    """<kill-session>: terminate another NETCONF session."""

    operation: ClassVar[str] = "kill-session"

    session_id: int

    def __post_init__(self) -> None:
        if isinstance(self.session_id, bool) or not isinstance(self.session_id, int) or self.session_id <= 0:
            raise ValidationError(f"session-id must be a positive integer, got {self.session_id!r}")

    def to_element(self) -> ET.Element:
        element = ET.Element(self.operation)
        encode_text(element, "session-id", self.session_id)
        return element


@dataclass
class ValidateRequest(Request):
    """<validate>: check a datastore, URL or config for errors."""

    operation: ClassVar[str] = "validate"
    capabilities: ClassVar[tuple[str, ...]] = (caps.VALIDATE,)

    source: SourceLike

    def to_element(self) -> ET.Element:
        element = ET.Element(self.operation)
        encode_source(element, "source", self.source)
        return element

    def required_capabilities(self) -> list[str]:
        return list(self.capabilities) + _datastore_capabilities(self.source)


@dataclass
class CommitRequest(Request):
    """<commit>: commit the candidate configuration to running."""

    operation: ClassVar[str] = "commit"
    capabilities: ClassVar[tuple[str, ...]] = (caps.CANDIDATE,)

    confirmed: bool = False
    confirm_timeout: int | float | timedelta | None = None
    persist: str | None = None
    persist_id: str | None = None

    @classmethod
    def from_options(cls, options: CommitOptions | None = None) -> CommitRequest:
        opts = options or CommitOptions()
        return cls(
            confirmed=opts.confirmed,
            confirm_timeout=opts.confirm_timeout,
            persist=opts.persist,
            persist_id=opts.persist_id,
        )

    def __post_init__(self) -> None:
        opts = CommitOptions(
            confirmed=self.confirmed,
            confirm_timeout=self.confirm_timeout,
            persist=self.persist,
            persist_id=self.persist_id,
        ).validate()
        self.confirmed = opts.confirmed
        self.confirm_timeout = opts.confirm_timeout

    def to_element(self) -> ET.Element:
        element = ET.Element(self.operation)
        encode_presence(element, "confirmed", self.confirmed)
        encode_text(element, "confirm-timeout", self.confirm_timeout)
        encode_text(element, "persist", self.persist)
        encode_text(element, "persist-id", self.persist_id)
        return element

    def required_capabilities(self) -> list[str]:
        required = list(self.capabilities)
        if self.confirmed or self.persist_id is not None:
            required.append(caps.CONFIRMED_COMMIT)
        return required


@dataclass
class CancelCommitRequest(Request):
    """<cancel-commit>: abort an ongoing confirmed commit."""

    operation: ClassVar[str] = "cancel-commit"
    capabilities: ClassVar[tuple[str, ...]] = (caps.CONFIRMED_COMMIT,)

    persist_id: str | None = None

    def __post_init__(self) -> None:
        if self.persist_id is not None and not self.persist_id:
            raise ValidationError("persist-id cannot be empty")

    def to_element(self) -> ET.Element:
        element = ET.Element(self.operation)
        encode_text(element, "persist-id", self.persist_id)
        return element


@dataclass
class DiscardChangesRequest(Request):
    """<discard-changes>: revert the candidate to the running configuration."""

    operation: ClassVar[str] = "discard-changes"
    capabilities: ClassVar[tuple[str, ...]] = (caps.CANDIDATE,)


@dataclass
class CloseSessionRequest(Request):
    """<close-session>: graceful termination of this session."""

    operation: ClassVar[str] = "close-session"


@dataclass
class CreateSubscriptionRequest(Request):
    """<create-subscription> (RFC 5277)."""

    operation: ClassVar[str] = "create-subscription"
    capabilities: ClassVar[tuple[str, ...]] = (caps.NOTIFICATION,)

    options: SubscriptionOptions = field(default_factory=SubscriptionOptions)

    def __post_init__(self) -> None:
        self.options = self.options.validate()

    @property
    def stream(self) -> str:
        return self.options.stream or "NETCONF"

    def to_element(self) -> ET.Element:
        opts = self.options
        element = ET.Element(self.operation, {"xmlns": NOTIFICATION_NS})
        encode_text(element, "stream", opts.stream)
        if opts.filter is not None:
            element.append(build_filter(opts.filter))
        if opts.start_time is not None:
            encode_text(element, "startTime", format_time(opts.start_time))
        if opts.end_time is not None:
            encode_text(element, "stopTime", format_time(opts.end_time))
        return element


@dataclass
class RawRequest(Request):
    """An operation supplied as an element or as raw XML text."""

    content: ET.Element | str | bytes

    def __post_init__(self) -> None:
        if self.content is None or (isinstance(self.content, (str, bytes)) and not self.content.strip()):
            raise ValidationError("raw request cannot be empty")

    def to_element(self) -> ET.Element:  # type: ignore[override]
        if isinstance(self.content, ET.Element):
            return self.content
        raise TypeError("raw text requests are encoded by encode_operation()")


def encode_operation(request: Request) -> ET.Element | str | bytes:
    """Return what encode_rpc() needs for a request."""
    if isinstance(request, RawRequest) and not isinstance(request.content, ET.Element):
        return request.content
    return request.to_element()


__all__ = [
    "MergeStrategy",
    "TestStrategy",
    "ErrorStrategy",
    "EditConfigOptions",
    "CommitOptions",
    "SubscriptionOptions",
    "Request",
    "GetConfigRequest",
    "GetRequest",
    "EditConfigRequest",
    "CopyConfigRequest",
    "DeleteConfigRequest",
    "LockRequest",
    "UnlockRequest",
    "KillSessionRequest",
    "ValidateRequest",
    "CommitRequest",
    "CancelCommitRequest",
    "DiscardChangesRequest",
    "CloseSessionRequest",
    "CreateSubscriptionRequest",
    "RawRequest",
    "encode_operation",
    "format_time",
]
