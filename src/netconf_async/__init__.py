"""netconf-async - asyncio NETCONF client (RFC 6241, RFC 6242, RFC 5277).

Layers, bottom up:
- transport: byte streams and message framing
- protocol: XML codec, decoded messages and typed requests
- session: hello exchange, message-id correlation, notification routing
- client: one method per NETCONF operation
"""

from .capabilities import CapabilitySet
from .client import NetconfClient, connect_command, connect_tcp
from .errors import (
    CallTimeoutError,
    DecodeError,
    FramingError,
    HandshakeError,
    NetconfError,
    RPCError,
    SessionClosedError,
    TransportError,
    ValidationError,
)
from .filters import xpath_to_filter, xpath_to_subtree
from .protocol import (
    URL,
    CommitOptions,
    Datastore,
    EditConfigOptions,
    ErrorStrategy,
    MergeStrategy,
    Notification,
    RPCErrorRecord,
    RPCReply,
    SubscriptionOptions,
    TestStrategy,
)
from .session import NotificationOverflow, Session, SessionConfig, SessionState
from .transport import ByteStream, create_stream_pair

__version__ = "0.1.0"

__all__ = [
    "__version__",
    # Client
    "NetconfClient",
    "connect_tcp",
    "connect_command",
    # Session
    "Session",
    "SessionConfig",
    "SessionState",
    "NotificationOverflow",
    "CapabilitySet",
    # Transport
    "ByteStream",
    "create_stream_pair",
    # Protocol
    "Datastore",
    "URL",
    "MergeStrategy",
    "TestStrategy",
    "ErrorStrategy",
    "EditConfigOptions",
    "CommitOptions",
    "SubscriptionOptions",
    "RPCReply",
    "RPCErrorRecord",
    "Notification",
    # Filters
    "xpath_to_filter",
    "xpath_to_subtree",
    # Errors
    "NetconfError",
    "TransportError",
    "FramingError",
    "DecodeError",
    "HandshakeError",
    "SessionClosedError",
    "ValidationError",
    "CallTimeoutError",
    "RPCError",
]
