#!/usr/bin/env python3
"""
Metrics Cache - Background exposition cache and HTTP endpoint

A background thread regenerates the Prometheus text payload (plus a
gzip copy) from the registry every update_interval seconds; HTTP
requests only ever serve the cached bytes.
"""

import time
import gzip
import threading
import logging
from http.server import HTTPServer, BaseHTTPRequestHandler
from io import BytesIO
from socketserver import ThreadingMixIn
from typing import Dict, Optional, Tuple

from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from prometheus_client.core import CollectorRegistry

INDEX_PAGE = b"""<!DOCTYPE html>
<html>
<head><title>Memcached Stats Exporter</title></head>
<body>
<h1>Memcached Stats Exporter</h1>
<p>Prometheus exporter for memcached 'stats' metrics.</p>
<p><a href="/metrics">View Metrics</a></p>
</body>
</html>"""


class MetricsCache:
    """
    Background metrics cache with gzip compression.

    The registry is rendered by one thread at a time; readers take the
    last rendered payload under the lock.
    """

    def __init__(self, registry: CollectorRegistry, update_interval: float = 10.0,
                 compress_level: int = 6):
        """
        Initialize the metrics cache.

        Args:
            registry: Registry to render
            update_interval: How often to update the cache (seconds)
            compress_level: Gzip compression level (1-9)
        """
        self.registry = registry
        self.update_interval = update_interval
        self.compress_level = compress_level

        self._raw_data: Optional[bytes] = None
        self._compressed_data: Optional[bytes] = None
        self._timestamp: Optional[float] = None
        self._lock = threading.Lock()

        self._running = False
        self._stop_event = threading.Event()
        self._update_thread: Optional[threading.Thread] = None

        self.logger = logging.getLogger(__name__)

    def start(self):
        """Start the background cache updater thread"""
        if self._running:
            self.logger.warning("MetricsCache already running")
            return

        self._running = True
        self._stop_event.clear()
        self._update_thread = threading.Thread(
            target=self._update_loop,
            daemon=True,
            name='metrics-cache-updater'
        )
        self._update_thread.start()
        self.logger.info(f"MetricsCache started (update_interval={self.update_interval}s)")

    def stop(self):
        """Stop the background cache updater thread"""
        self._running = False
        self._stop_event.set()
        if self._update_thread:
            self._update_thread.join(timeout=5)
        self.logger.info("MetricsCache stopped")

    def _update_loop(self):
        while self._running:
            try:
                self.update()
            except Exception as e:
                self.logger.error(f"Error updating metrics cache: {e}", exc_info=True)

            if self._stop_event.wait(self.update_interval):
                break

    def update(self):
        """Render the registry and replace the cached payload"""
        raw_data = generate_latest(self.registry)

        compressed_buffer = BytesIO()
        with gzip.GzipFile(fileobj=compressed_buffer, mode='wb', compresslevel=self.compress_level) as f:
            f.write(raw_data)
        compressed_data = compressed_buffer.getvalue()

        with self._lock:
            self._raw_data = raw_data
            self._compressed_data = compressed_data
            self._timestamp = time.time()

        if len(raw_data) > 0:
            ratio = 100 * len(compressed_data) / len(raw_data)
            self.logger.debug(
                f"Cache updated: {len(raw_data)} bytes raw, "
                f"{len(compressed_data)} bytes compressed ({ratio:.1f}%)"
            )
        else:
            self.logger.debug("Cache updated: empty metrics")

    def get_metrics(self, accept_gzip: bool = False) -> Tuple[Optional[bytes], Optional[Dict[str, str]]]:
        """
        Get cached metrics data.

        Returns:
            tuple: (data, headers), or (None, None) before the first update
        """
        with self._lock:
            if self._raw_data is None:
                return None, None

            if accept_gzip and self._compressed_data:
                return self._compressed_data, {
                    'Content-Type': CONTENT_TYPE_LATEST,
                    'Content-Encoding': 'gzip',
                    'Content-Length': str(len(self._compressed_data))
                }
            return self._raw_data, {
                'Content-Type': CONTENT_TYPE_LATEST,
                'Content-Length': str(len(self._raw_data))
            }

    def is_ready(self) -> bool:
        with self._lock:
            return self._raw_data is not None

    def age(self) -> Optional[float]:
        """Seconds since the last update, None before the first one"""
        with self._lock:
            if self._timestamp is None:
                return None
            return time.time() - self._timestamp

    def __repr__(self):
        with self._lock:
            raw_size = len(self._raw_data) if self._raw_data else 0
            compressed_size = len(self._compressed_data) if self._compressed_data else 0
        age = self.age()
        age_text = f"{age:.1f}s" if age is not None else None
        return (f"MetricsCache(ready={raw_size > 0}, raw_size={raw_size}, "
                f"compressed_size={compressed_size}, age={age_text})")


class ThreadedHTTPServer(ThreadingMixIn, HTTPServer):
    """HTTP Server with threading support for concurrent requests"""
    daemon_threads = True
    allow_reuse_address = True


def make_handler(cache: MetricsCache):
    """Request handler class bound to a cache"""
    logger = logging.getLogger(__name__)

    class CachedMetricsHandler(BaseHTTPRequestHandler):
        """HTTP handler with pre-cached and compressed metrics"""

        def log_message(self, format, *args):
            logger.debug(f"{self.address_string()} - {format % args}")

        def do_GET(self):
            try:
                if self.path == '/metrics':
                    accept_gzip = 'gzip' in self.headers.get('Accept-Encoding', '')
                    data, headers = cache.get_metrics(accept_gzip)
                    if data is None:
                        self.send_response(503)
                        self.send_header('Content-Type', 'text/plain')
                        self.end_headers()
                        self.wfile.write(b'Metrics cache initializing, please retry in a few seconds\n')
                        return

                    self.send_response(200)
                    for name, value in headers.items():
                        self.send_header(name, value)
                    self.end_headers()
                    self.wfile.write(data)

                elif self.path == '/':
                    self.send_response(200)
                    self.send_header('Content-Type', 'text/html')
                    self.end_headers()
                    self.wfile.write(INDEX_PAGE)

                else:
                    self.send_error(404, "Not Found")

            except (BrokenPipeError, ConnectionResetError):
                # Client went away
                logger.debug("Client disconnected before the response was sent")

    return CachedMetricsHandler


def serve(cache: MetricsCache, port: int, address: str = '') -> ThreadedHTTPServer:
    """Start the HTTP server in a daemon thread and return it"""
    server = ThreadedHTTPServer((address, port), make_handler(cache))
    thread = threading.Thread(target=server.serve_forever, daemon=True, name='http-server')
    thread.start()
    return server
