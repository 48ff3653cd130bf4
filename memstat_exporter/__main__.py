#!/usr/bin/env python3
"""
Memcached Stats Exporter CLI - Main entry point

Polls the memcached instances listed in a YAML configuration file and
exposes the derived metrics on /metrics, or polls once and prints the
records with --once.
"""

import argparse
import logging
import sys
import time

from .config import load_config
from .errors import ConfigError
from .metrics_cache import MetricsCache, serve
from .poller import StatsExporter
from .prometheus_wrapper import MetricFactory
from .sink import ListSink, PrometheusSink


def main(args_list=None):
    parser = argparse.ArgumentParser(
        description='Prometheus exporter for memcached stats',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Run the exporter from a YAML configuration file
  %(prog)s -c config.yaml

  # Poll every instance once and print the records
  %(prog)s -c config.yaml --once --log-level DEBUG
        """
    )
    parser.add_argument('-c', '--config', required=True,
                        help='Path to YAML configuration file')
    parser.add_argument('--log-level', default='INFO',
                        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
                        help='Log level (default: INFO)')
    parser.add_argument('--once', action='store_true',
                        help='Poll every instance once, print the records and exit')

    args = parser.parse_args(args_list)

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    logger = logging.getLogger(__name__)

    try:
        config = load_config(args.config)
    except ConfigError as e:
        logger.error(str(e))
        return 1

    if args.once:
        return run_once(config)

    run_exporter(config)
    return 0


def run_once(config) -> int:
    """Poll every instance a single time and print the records"""
    sink = ListSink()
    exporter = StatsExporter(
        config.instances, sink,
        collect_interval=config.collect_interval,
        max_concurrent=config.max_concurrent,
        buffer_size=config.buffer_size
    )
    results = exporter.collect_once()

    for record in sink.records:
        values = ':'.join(str(v) for v in record.values)
        type_instance = f"-{record.type_instance}" if record.type_instance else ''
        print(f"memcached-{record.instance}/{record.metric_type}{type_instance} {values}")

    return 1 if any(r is None for r in results.values()) else 0


def run_exporter(config):
    """Run collection, cache updater and HTTP server until interrupted"""
    logger = logging.getLogger(__name__)

    metric_factory = MetricFactory(default_labels=config.default_labels)
    exporter = StatsExporter(
        config.instances, PrometheusSink(metric_factory),
        collect_interval=config.collect_interval,
        max_concurrent=config.max_concurrent,
        buffer_size=config.buffer_size,
        metric_factory=metric_factory
    )
    cache = MetricsCache(metric_factory.registry, update_interval=min(config.collect_interval, 10.0))

    logger.info(f"Settings - port: {config.exporter_port}, interval: {config.collect_interval}s, "
                f"max_concurrent: {config.max_concurrent}, region: {config.region}")

    exporter.start()
    cache.start()
    server = serve(cache, config.exporter_port)
    logger.info(f"Exporter HTTP server started on port {config.exporter_port}")

    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        logger.info("Received interrupt signal, shutting down...")
    finally:
        server.shutdown()
        cache.stop()
        exporter.stop()


if __name__ == '__main__':
    sys.exit(main())
