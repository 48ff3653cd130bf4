#!/usr/bin/env python3
"""
Prometheus Metrics Wrapper

Gauges that apply the exporter-wide default labels (e.g. region) on
every operation, and a factory that reuses an already registered gauge
when several exporters share one registry.
"""

import logging
from typing import Dict, List

from prometheus_client import Gauge as PrometheusGauge
from prometheus_client.core import CollectorRegistry


class GaugeWrapper:
    """Prometheus Gauge with default labels merged into every call"""

    def __init__(self, metric_instance, default_labels: Dict[str, str] = None,
                 labelnames: List[str] = None):
        self._metric = metric_instance
        self._default_labels = default_labels or {}
        self._labelnames = labelnames or []

    def _merge_labels(self, additional_labels: Dict[str, str] = None) -> Dict[str, str]:
        labels = self._default_labels.copy()
        if additional_labels:
            labels.update(additional_labels)
        return labels

    def labels(self, **labels):
        """Return labeled metric with default labels merged"""
        return self._metric.labels(**self._merge_labels(labels))

    def set(self, value: float, **labels):
        self.labels(**labels).set(value)

    def get(self, **labels) -> float:
        """Current value of a labeled child"""
        return self.labels(**labels)._value.get()

    def remove(self, **labels):
        """Drop a labeled child; unknown label sets are ignored"""
        merged = self._merge_labels(labels)
        try:
            self._metric.remove(*[merged[name] for name in self._labelnames])
        except KeyError:
            pass


class MetricFactory:
    """Factory class to create gauges with default labels"""

    def __init__(self, default_labels: Dict[str, str] = None, registry: CollectorRegistry = None):
        """
        Initialize metric factory

        Args:
            default_labels: Default labels to apply to all metrics
            registry: Prometheus registry to use
        """
        self.default_labels = default_labels or {}
        self.registry = registry if registry is not None else CollectorRegistry()
        self._gauges: Dict[str, GaugeWrapper] = {}
        self.logger = logging.getLogger(__name__)

    def gauge(self, name: str, documentation: str, labelnames: List[str] = None) -> GaugeWrapper:
        """Create a Gauge, or return the one already registered under name"""
        if name in self._gauges:
            return self._gauges[name]

        labelnames = labelnames or []
        all_labelnames = list(self.default_labels.keys()) + labelnames

        try:
            metric = PrometheusGauge(
                name=name,
                documentation=documentation,
                labelnames=all_labelnames,
                registry=self.registry
            )
        except ValueError as e:
            if 'Duplicated timeseries' not in str(e):
                raise
            self.logger.info(f"Metric {name} already registered in shared registry, reusing it")
            metric = self.registry._names_to_collectors[name]

        wrapper = GaugeWrapper(metric, self.default_labels, all_labelnames)
        self._gauges[name] = wrapper
        return wrapper
