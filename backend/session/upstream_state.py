"""
Upstream session state.

connection lifecycle: DISCONNECTED | CONNECTING | CONNECTED

Pure data, owned and mutated only by UpstreamSession.
"""
from enum import Enum


class UpstreamState(str, Enum):
    """
    Lifecycle of the single connection to the realtime backend.

    DISCONNECTED --ensure_connected--> CONNECTING --success--> CONNECTED
    CONNECTING --failure--> DISCONNECTED
    CONNECTED --disconnect--> DISCONNECTED
    """
    DISCONNECTED = "DISCONNECTED"
    CONNECTING = "CONNECTING"
    CONNECTED = "CONNECTED"
