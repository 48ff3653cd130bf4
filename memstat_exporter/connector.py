#!/usr/bin/env python3
"""
Connector - Opens a stream transport to a memcached daemon

UNIX socket when the instance has a socket path, otherwise the first
IPv4 address of host:port that accepts a connection. Resolution is done
again on every call, the daemon may have moved since the last cycle.
"""

import socket
import logging

from .config import Instance
from .errors import ConnectError, ConnectFailure

logger = logging.getLogger(__name__)


def close_socket(sock: socket.socket):
    """Shut down both directions, then close"""
    try:
        sock.shutdown(socket.SHUT_RDWR)
    except OSError as e:
        # Not connected (or already reset by the peer)
        logger.debug(f"shutdown: {e}")
    sock.close()


def _connect_unix(path: str) -> socket.socket:
    try:
        sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
    except OSError as e:
        raise ConnectError(ConnectFailure.LOCAL_SOCKET_FAILURE, f"unix socket: {e}")

    try:
        sock.connect(path)
    except OSError as e:
        sock.close()
        raise ConnectError(ConnectFailure.LOCAL_SOCKET_FAILURE, f"{path}: {e}")
    return sock


def _connect_inet(host: str, port: int) -> socket.socket:
    try:
        candidates = socket.getaddrinfo(host, port, socket.AF_INET, socket.SOCK_STREAM)
    except socket.gaierror as e:
        raise ConnectError(ConnectFailure.RESOLUTION_FAILURE, f"getaddrinfo({host}, {port}): {e}")

    for family, socktype, proto, _, sockaddr in candidates:
        try:
            sock = socket.socket(family, socktype, proto)
        except OSError as e:
            logger.error(f"socket: {e}")
            continue

        try:
            sock.connect(sockaddr)
        except OSError as e:
            logger.debug(f"connect to {sockaddr[0]}:{sockaddr[1]} failed: {e}")
            close_socket(sock)
            continue

        return sock

    raise ConnectError(ConnectFailure.NO_ROUTE, f"could not connect to {host}:{port}")


def connect(instance: Instance) -> socket.socket:
    """Open a connected stream socket for the instance"""
    if instance.socket:
        return _connect_unix(instance.socket)
    return _connect_inet(instance.host, instance.port)
