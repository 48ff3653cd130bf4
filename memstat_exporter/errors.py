#!/usr/bin/env python3
"""
Errors - Failure taxonomy for a polling cycle

A failed cycle raises ConnectError or QueryError. The scheduler logs it,
marks the instance down and retries on the next tick.
"""

from enum import Enum
from typing import Optional


class ConnectFailure(Enum):
    """Why a transport to the daemon could not be opened"""

    RESOLUTION_FAILURE = "resolution-failure"
    NO_ROUTE = "no-route"
    LOCAL_SOCKET_FAILURE = "local-socket-failure"


class QueryFailure(Enum):
    """Why the stats request/response exchange failed"""

    SEND_INCOMPLETE = "send-incomplete"
    RESPONSE_TIMEOUT = "response-timeout"
    WAIT_FAILED = "wait-failed"
    RECV_FAILED = "recv-failed"
    PEER_CLOSED_EARLY = "peer-closed-early"


class MemstatError(Exception):
    """Base class for all exporter errors"""


class ConfigError(MemstatError):
    """Invalid or unreadable configuration"""


class CycleError(MemstatError):
    """A polling cycle failed; nothing was emitted for it"""

    def __init__(self, reason: Enum, detail: Optional[str] = None):
        self.reason = reason
        self.detail = detail
        message = reason.value
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class ConnectError(CycleError):
    """Connector failure"""

    def __init__(self, reason: ConnectFailure, detail: Optional[str] = None):
        super().__init__(reason, detail)


class QueryError(CycleError):
    """Stats protocol failure"""

    def __init__(self, reason: QueryFailure, detail: Optional[str] = None):
        super().__init__(reason, detail)
