#!/usr/bin/env python3
"""
Memcached Stats Exporter - memcached 'stats' polling and metric derivation

Polls memcached daemons over TCP or UNIX sockets, parses the text
protocol 'stats' response and exposes the derived metrics to Prometheus.
"""

__version__ = '1.0.0'

from .config import Instance
from .errors import ConfigError, ConnectError, QueryError
from .parser import MetricRecord, parse_and_derive
from .poller import StatsExporter, poll

__all__ = [
    'Instance', 'MetricRecord', 'StatsExporter', 'poll', 'parse_and_derive',
    'ConfigError', 'ConnectError', 'QueryError',
]
