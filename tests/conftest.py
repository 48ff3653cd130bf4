"""Shared fixtures: sample stats payloads and a tiny fake memcached server."""

import os
import socket
import sys
import threading

import pytest

REPO_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), '..'))
if REPO_ROOT not in sys.path:
    sys.path.insert(0, REPO_ROOT)

SAMPLE_STATS = (
    b"STAT pid 2419\r\n"
    b"STAT uptime 86400\r\n"
    b"STAT pointer_size 64\r\n"
    b"STAT rusage_user 12.345678\r\n"
    b"STAT rusage_system 7.000001\r\n"
    b"STAT curr_connections 10\r\n"
    b"STAT cmd_get 200\r\n"
    b"STAT cmd_set 80\r\n"
    b"STAT cmd_flush 0\r\n"
    b"STAT get_hits 50\r\n"
    b"STAT get_misses 150\r\n"
    b"STAT bytes_read 123456\r\n"
    b"STAT bytes_written 654321\r\n"
    b"STAT limit_maxbytes 67108864\r\n"
    b"STAT threads 4\r\n"
    b"STAT bytes 1048576\r\n"
    b"STAT curr_items 1234\r\n"
    b"STAT evictions 3\r\n"
    b"END\r\n"
)


class FakeMemcached:
    """Accepts connections and answers every 'stats' with a canned payload"""

    def __init__(self, sock: socket.socket, response: bytes):
        self.sock = sock
        self.response = response
        self.requests = []
        self._thread = threading.Thread(target=self._serve, daemon=True)
        self._thread.start()

    def _serve(self):
        while True:
            try:
                conn, _ = self.sock.accept()
            except OSError:
                return
            with conn:
                try:
                    request = b''
                    while not request.endswith(b'\r\n'):
                        chunk = conn.recv(64)
                        if not chunk:
                            break
                        request += chunk
                    if not request:
                        continue
                    self.requests.append(request)
                    conn.sendall(self.response)
                except OSError:
                    continue

    def close(self):
        self.sock.close()


@pytest.fixture
def sample_stats():
    return SAMPLE_STATS


@pytest.fixture
def tcp_server():
    servers = []

    def start(response=SAMPLE_STATS):
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        sock.bind(('127.0.0.1', 0))
        sock.listen(5)
        server = FakeMemcached(sock, response)
        servers.append(server)
        return server, sock.getsockname()[1]

    yield start
    for server in servers:
        server.close()


@pytest.fixture
def unix_server(tmp_path):
    servers = []

    def start(response=SAMPLE_STATS):
        path = str(tmp_path / 'mc.sock')
        sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        sock.bind(path)
        sock.listen(5)
        server = FakeMemcached(sock, response)
        servers.append(server)
        return server, path

    yield start
    for server in servers:
        server.close()
