#!/usr/bin/env python3
"""
Stats Protocol Client - Sends 'stats' and collects the response

The text protocol has no length prefix, so a response is complete once
its last line is END. Reading stops earlier when the buffer is full
(the response is kept, truncated), when the deadline derived from the
collection interval passes, or after READ_RETRY_LIMIT would-block
retries. The socket is closed before query() returns on every path.
"""

import time
import socket
import logging
import selectors
from typing import Optional

from .connector import close_socket
from .errors import QueryError, QueryFailure

STATS_REQUEST = b'stats\r\n'
TERMINATOR = b'END'
DEFAULT_BUFFER_SIZE = 4096
READ_RETRY_LIMIT = 100

logger = logging.getLogger(__name__)


class RawResponse:
    """Bytes received for one stats request"""

    __slots__ = ('data', 'truncated')

    def __init__(self, data: bytes, truncated: bool = False):
        self.data = data
        self.truncated = truncated

    def __len__(self):
        return len(self.data)

    def __repr__(self):
        return f"RawResponse(fill={len(self.data)}, truncated={self.truncated})"


def is_complete(data: bytes) -> bool:
    """True when the last line, ignoring trailing CR/LF, is END"""
    body = data.rstrip(b'\r\n')
    if body == TERMINATOR:
        return True
    return body.endswith(b'\n' + TERMINATOR) or body.endswith(b'\r' + TERMINATOR)


def _wait_readable(selector: selectors.BaseSelector, timeout: float) -> bool:
    try:
        return bool(selector.select(max(timeout, 0.0)))
    except (OSError, ValueError) as e:
        raise QueryError(QueryFailure.WAIT_FAILED, str(e))


def _send_request(sock: socket.socket):
    try:
        sent = sock.send(STATS_REQUEST)
    except BlockingIOError:
        sent = 0
    except OSError as e:
        raise QueryError(QueryFailure.SEND_INCOMPLETE, str(e))

    if sent != len(STATS_REQUEST):
        raise QueryError(QueryFailure.SEND_INCOMPLETE,
                         f"sent {sent} of {len(STATS_REQUEST)} bytes")


def _read_response(sock: socket.socket, selector: selectors.BaseSelector,
                   deadline: float, buffer_size: int) -> RawResponse:
    buffer = bytearray()
    retries = 0

    while len(buffer) < buffer_size:
        try:
            chunk = sock.recv(buffer_size - len(buffer))
        except BlockingIOError:
            retries += 1
            remaining = deadline - time.monotonic()
            if retries > READ_RETRY_LIMIT or remaining <= 0:
                logger.warning(f"recv() timed out after {retries} retries, "
                               f"using {len(buffer)} bytes received so far")
                break
            _wait_readable(selector, remaining)
            continue
        except OSError as e:
            raise QueryError(QueryFailure.RECV_FAILED, f"error reading from socket: {e}")

        if not chunk:
            if not buffer:
                raise QueryError(QueryFailure.PEER_CLOSED_EARLY,
                                 "peer has unexpectedly shut down the socket")
            logger.debug(f"Peer closed after {len(buffer)} bytes without END")
            break

        buffer += chunk
        if is_complete(buffer):
            return RawResponse(bytes(buffer))

    if len(buffer) >= buffer_size:
        logger.warning(f"Message from memcached has been truncated to {buffer_size} bytes")
        return RawResponse(bytes(buffer[:buffer_size]), truncated=True)

    if not buffer:
        raise QueryError(QueryFailure.RESPONSE_TIMEOUT, "no data received before the read bound")

    return RawResponse(bytes(buffer))


def query(sock: socket.socket, timeout: float,
          buffer_size: Optional[int] = None) -> RawResponse:
    """
    Issue 'stats' on a connected socket and return the raw response.

    Args:
        sock: Connected stream socket, owned by this call from here on
        timeout: Seconds to wait for the response (the collection interval)
        buffer_size: Response capacity in bytes

    Raises:
        QueryError: send, wait or read failure; nothing usable was received
    """
    buffer_size = buffer_size or DEFAULT_BUFFER_SIZE
    selector = selectors.DefaultSelector()
    try:
        sock.setblocking(False)
        _send_request(sock)

        selector.register(sock, selectors.EVENT_READ)
        deadline = time.monotonic() + timeout
        if not _wait_readable(selector, timeout):
            raise QueryError(QueryFailure.RESPONSE_TIMEOUT,
                             f"no response after {timeout:.3f} seconds")

        return _read_response(sock, selector, deadline, buffer_size)
    finally:
        selector.close()
        close_socket(sock)
