#!/usr/bin/env python3
"""
Metric Sinks - Where finished metric records go

PrometheusSink keeps one gauge per record type in the registry served
over HTTP. ListSink just collects records (used by --once).
"""

import math
import threading
import logging
from typing import Dict, List, Set, Tuple

from .parser import COUNTER, MetricRecord
from .prometheus_wrapper import MetricFactory, GaugeWrapper

# Data source names of each value slot, as in collectd's types.db
DATA_SOURCES: Dict[str, Tuple[str, ...]] = {
    'ps_count': ('processes', 'threads'),
    'df': ('used', 'free'),
    'ps_cputime': ('user', 'syst'),
    'memcached_octets': ('rx', 'tx'),
}

DESCRIPTIONS = {
    'ps_count': 'Number of processes and threads of the daemon',
    'memcached_items': 'Number of items stored',
    'memcached_connections': 'Number of open connections',
    'memcached_command': 'Number of commands processed, by command',
    'memcached_ops': 'Cache operations (hits, misses, evictions)',
    'df': 'Cache space used and free in bytes',
    'ps_cputime': 'CPU time consumed by the daemon',
    'memcached_octets': 'Bytes received and sent by the daemon',
    'percent': 'Get hit ratio in percent',
}

LABELNAMES = ['instance', 'type_instance', 'ds']

# (metric name, type_instance, ds) of one exported series
SeriesKey = Tuple[str, str, str]


def metric_name(record: MetricRecord) -> str:
    """Prometheus name for a record type"""
    name = record.metric_type
    if not name.startswith('memcached_'):
        name = f"memcached_{name}"
    if record.kind == COUNTER:
        name = f"{name}_total"
    return name


def data_sources(record: MetricRecord) -> Tuple[str, ...]:
    if record.metric_type in DATA_SOURCES:
        return DATA_SOURCES[record.metric_type]
    return tuple('value' if i == 0 else f"value{i}" for i in range(len(record.values)))


class ListSink:
    """Collects emitted records in memory"""

    def __init__(self):
        self.records: List[MetricRecord] = []
        self._lock = threading.Lock()

    def emit(self, record: MetricRecord):
        with self._lock:
            self.records.append(record)

    def finish_cycle(self, instance: str, success: bool):
        pass


class PrometheusSink:
    """
    Exposes records as gauges in a Prometheus registry.

    Series written during a cycle are remembered per instance so that
    finish_cycle() can drop the ones a cycle no longer produced.
    """

    def __init__(self, metric_factory: MetricFactory):
        self.metric_factory = metric_factory
        self._gauges: Dict[str, GaugeWrapper] = {}
        self._published: Dict[str, Set[SeriesKey]] = {}
        self._current: Dict[str, Set[SeriesKey]] = {}
        self._lock = threading.Lock()
        self.logger = logging.getLogger(__name__)

    def _gauge_for(self, record: MetricRecord) -> GaugeWrapper:
        name = metric_name(record)
        with self._lock:
            gauge = self._gauges.get(name)
            if gauge is None:
                gauge = self.metric_factory.gauge(
                    name,
                    DESCRIPTIONS.get(record.metric_type, record.metric_type),
                    labelnames=LABELNAMES
                )
                self._gauges[name] = gauge
        return gauge

    def emit(self, record: MetricRecord):
        gauge = self._gauge_for(record)
        name = metric_name(record)
        type_instance = record.type_instance or ''
        for ds, value in zip(data_sources(record), record.values):
            # ps_count has no process count for memcached; leave the slot out
            if record.metric_type == 'ps_count' and ds == 'processes' and math.isnan(value):
                continue
            gauge.set(value, instance=record.instance, type_instance=type_instance, ds=ds)
            with self._lock:
                self._current.setdefault(record.instance, set()).add((name, type_instance, ds))

    def finish_cycle(self, instance: str, success: bool):
        """
        Close a cycle of one instance.

        A failed cycle removes every series of the instance; a successful
        one removes the series it did not emit again.
        """
        with self._lock:
            current = self._current.pop(instance, set())
            stale = self._published.get(instance, set()) - current
            if not success:
                stale |= current
                current = set()
            self._published[instance] = current
            gauges = dict(self._gauges)

        for name, type_instance, ds in sorted(stale):
            gauges[name].remove(instance=instance, type_instance=type_instance, ds=ds)
        if stale:
            self.logger.debug(f"Removed {len(stale)} stale series of {instance}")
