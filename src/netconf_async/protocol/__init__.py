"""NETCONF message encoding, decoding and typed operation requests."""

from .codec import (
    BASE_NS,
    NOTIFICATION_NS,
    URL,
    Datastore,
    build_rpc,
    decode_hello,
    decode_message,
    decode_presence,
    encode_datastore,
    encode_hello,
    encode_presence,
    encode_rpc,
    encode_source,
    parse_xml,
    to_xml_bytes,
)
from .messages import Hello, Notification, RPCErrorRecord, RPCReply
from .operations import (
    CancelCommitRequest,
    CloseSessionRequest,
    CommitOptions,
    CommitRequest,
    CopyConfigRequest,
    CreateSubscriptionRequest,
    DeleteConfigRequest,
    DiscardChangesRequest,
    EditConfigOptions,
    EditConfigRequest,
    ErrorStrategy,
    GetConfigRequest,
    GetRequest,
    KillSessionRequest,
    LockRequest,
    MergeStrategy,
    RawRequest,
    Request,
    SubscriptionOptions,
    TestStrategy,
    UnlockRequest,
    ValidateRequest,
    encode_operation,
)

__all__ = [
    # Codec
    "BASE_NS",
    "NOTIFICATION_NS",
    "URL",
    "Datastore",
    "build_rpc",
    "decode_hello",
    "decode_message",
    "decode_presence",
    "encode_datastore",
    "encode_hello",
    "encode_presence",
    "encode_rpc",
    "encode_source",
    "parse_xml",
    "to_xml_bytes",
    # Messages
    "Hello",
    "Notification",
    "RPCErrorRecord",
    "RPCReply",
    # Options
    "MergeStrategy",
    "TestStrategy",
    "ErrorStrategy",
    "EditConfigOptions",
    "CommitOptions",
    "SubscriptionOptions",
    # Requests
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
]
