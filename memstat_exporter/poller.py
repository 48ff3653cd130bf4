#!/usr/bin/env python3
"""
Poller - One polling cycle per instance, and the loop that schedules them

poll() is the whole synchronous cycle: connect, send 'stats', read,
parse. StatsExporter runs poll() for every configured instance on each
tick of the collection interval and hands the records to a sink.
"""

import time
import logging
import threading
import asyncio
from typing import Dict, List, Optional

from .client import DEFAULT_BUFFER_SIZE, query
from .config import Instance
from .connector import connect
from .errors import CycleError
from .parser import MetricRecord, parse_and_derive
from .prometheus_wrapper import MetricFactory

logger = logging.getLogger(__name__)


def poll(instance: Instance, interval: float,
         buffer_size: int = DEFAULT_BUFFER_SIZE) -> List[MetricRecord]:
    """
    Run one cycle against a single daemon.

    Args:
        instance: Daemon to poll
        interval: Collection interval in seconds, used as the response timeout
        buffer_size: Response buffer capacity in bytes

    Raises:
        ConnectError: no transport could be opened
        QueryError: the stats exchange failed
    """
    try:
        sock = connect(instance)
        raw = query(sock, interval, buffer_size)
    except CycleError as e:
        logger.error(f"memcached instance {instance.name} ({instance.address}): {e}")
        raise

    if raw.truncated:
        logger.debug(f"Parsing truncated response from {instance.name}")
    return parse_and_derive(raw, instance)


class StatsExporter:
    """Polls all instances on a fixed interval and feeds a sink"""

    def __init__(self, instances: List[Instance], sink,
                 collect_interval: float = 10.0,
                 max_concurrent: int = 10,
                 buffer_size: int = DEFAULT_BUFFER_SIZE,
                 metric_factory: Optional[MetricFactory] = None):

        self.instances = list(instances)
        self.sink = sink
        self.collect_interval = collect_interval
        self.max_concurrent = max_concurrent
        self.buffer_size = buffer_size
        self.logger = logging.getLogger(__name__)

        self.memcached_up = None
        if metric_factory is not None:
            self.memcached_up = metric_factory.gauge(
                'memcached_up',
                'Whether the last stats cycle of the memcached instance succeeded',
                labelnames=['instance', 'address']
            )

        # Collection thread control
        self._running = False
        self._stop_event = threading.Event()
        self._collection_thread = None

    def _set_up(self, instance: Instance, is_up: bool):
        if self.memcached_up is not None:
            self.memcached_up.set(1 if is_up else 0,
                                  instance=instance.name, address=instance.address)

    async def _collect_single_instance(self, instance: Instance) -> Optional[List[MetricRecord]]:
        """Poll one instance in the executor and emit its records"""
        loop = asyncio.get_event_loop()
        try:
            records = await loop.run_in_executor(
                None, poll, instance, self.collect_interval, self.buffer_size
            )
        except CycleError:
            # Already logged by poll()
            self.sink.finish_cycle(instance.name, False)
            self._set_up(instance, False)
            return None
        except Exception as e:
            self.logger.error(f"Failed to collect metrics from {instance.name}: {e}", exc_info=True)
            self.sink.finish_cycle(instance.name, False)
            self._set_up(instance, False)
            return None

        for record in records:
            self.sink.emit(record)
        self.sink.finish_cycle(instance.name, True)
        self._set_up(instance, True)
        self.logger.debug(f"Collected {len(records)} records from {instance.name}")
        return records

    async def _collect_metrics(self) -> Dict[str, Optional[List[MetricRecord]]]:
        """Poll all instances concurrently, at most max_concurrent at a time"""
        if not self.instances:
            return {}

        semaphore = asyncio.Semaphore(self.max_concurrent)

        async def collect_with_semaphore(instance):
            async with semaphore:
                return await self._collect_single_instance(instance)

        start_time = time.time()
        results = await asyncio.gather(
            *[collect_with_semaphore(instance) for instance in self.instances]
        )
        elapsed = time.time() - start_time

        failed = sum(1 for r in results if r is None)
        self.logger.info(f"Collected metrics from {len(self.instances)} memcached instances "
                         f"({failed} failed) in {elapsed:.2f}s")
        return {instance.name: result for instance, result in zip(self.instances, results)}

    def collect_once(self) -> Dict[str, Optional[List[MetricRecord]]]:
        """Run a single tick; None marks an instance whose cycle failed"""
        loop = asyncio.new_event_loop()
        try:
            return loop.run_until_complete(self._collect_metrics())
        finally:
            loop.close()

    def _collection_loop(self):
        """Main collection loop running in a thread"""
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)

        try:
            while self._running:
                try:
                    loop.run_until_complete(self._collect_metrics())
                except Exception as e:
                    self.logger.error(f"Collection error: {e}")

                # Wait for next collection
                if self._stop_event.wait(self.collect_interval):
                    break
        finally:
            loop.close()

    def start(self):
        """Start the background collection thread"""
        self.logger.info(f"Monitoring {len(self.instances)} memcached instances "
                         f"every {self.collect_interval}s")
        self._running = True
        self._stop_event.clear()
        self._collection_thread = threading.Thread(
            target=self._collection_loop, daemon=True, name='memcached-collector'
        )
        self._collection_thread.start()

    def stop(self):
        """Stop the collection thread"""
        self.logger.info("Stopping exporter...")
        self._running = False
        self._stop_event.set()

        if self._collection_thread:
            self._collection_thread.join(timeout=5)
