"""Capability identifiers and membership tests.

Capabilities are opaque URIs advertised in the hello exchange. Beyond
expanding the ":name" shorthand they are only ever tested for membership.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator

BASE_URN = "urn:ietf:params:netconf"
CAPABILITY_URN = f"{BASE_URN}:capability"

BASE_1_0 = f"{BASE_URN}:base:1.0"
BASE_1_1 = f"{BASE_URN}:base:1.1"

CANDIDATE = f"{CAPABILITY_URN}:candidate:1.0"
CONFIRMED_COMMIT = f"{CAPABILITY_URN}:confirmed-commit:1.1"
ROLLBACK_ON_ERROR = f"{CAPABILITY_URN}:rollback-on-error:1.0"
VALIDATE = f"{CAPABILITY_URN}:validate:1.1"
STARTUP = f"{CAPABILITY_URN}:startup:1.0"
URL = f"{CAPABILITY_URN}:url:1.0"
XPATH = f"{CAPABILITY_URN}:xpath:1.0"
NOTIFICATION = f"{CAPABILITY_URN}:notification:1.0"
INTERLEAVE = f"{CAPABILITY_URN}:interleave:1.0"

DEFAULT_CAPABILITIES: tuple[str, ...] = (BASE_1_0, BASE_1_1)


def expand_capability(capability: str) -> str:
    """Expand the ":name[:version]" shorthand into a full URN.

    ":base:1.1" becomes "urn:ietf:params:netconf:base:1.1", any other
    shorthand lands under "urn:ietf:params:netconf:capability" with a
    default version of 1.0. Full URIs are returned unchanged.
    """
    if not capability.startswith(":"):
        return capability
    if capability.startswith(":base:"):
        return BASE_URN + capability
    name = capability[1:]
    if ":" not in name:
        name = f"{name}:1.0"
    return f"{CAPABILITY_URN}:{name}"


def _strip_query(capability: str) -> str:
    return capability.split("?", 1)[0]


def _strip_version(capability: str) -> str:
    head, sep, tail = capability.rpartition(":")
    if sep and tail.replace(".", "").isdigit():
        return head
    return capability


class CapabilitySet:
    """An immutable set of capability URIs."""

    def __init__(self, capabilities: Iterable[str] = ()) -> None:
        self._raw = tuple(capabilities)
        self._uris = frozenset(_strip_query(expand_capability(c.strip())) for c in self._raw)

    def __contains__(self, capability: object) -> bool:
        if not isinstance(capability, str):
            return False
        return _strip_query(expand_capability(capability)) in self._uris

    def __iter__(self) -> Iterator[str]:
        return iter(self._raw)

    def __len__(self) -> int:
        return len(self._raw)

    def __repr__(self) -> str:
        return f"CapabilitySet({list(self._raw)!r})"

    def supports(self, capability: str) -> bool:
        """Membership test that ignores the capability version.

        supports(":confirmed-commit") is true for both 1.0 and 1.1.
        """
        wanted = _strip_version(_strip_query(expand_capability(capability)))
        return any(_strip_version(uri) == wanted for uri in self._uris)
