#!/usr/bin/env python3
"""
Metrics Parser - Turns a raw 'stats' response into metric records

Each 'STAT <key> <value>' line either produces a record directly or feeds
the StatsAccumulator, which yields the combined records (cache space,
CPU time, network octets, hit ratio) once the whole response is read.
Parsing never fails: malformed lines and unparseable numbers only
mean fewer records.
"""

import re
import math
from typing import List, NamedTuple, Optional, Tuple, Union

from .client import RawResponse

NAN = float('nan')

GAUGE = 'gauge'
COUNTER = 'counter'

_LINE_SPLIT = re.compile(r'[\r\n]+')
_INT_PREFIX = re.compile(r'\s*([+-]?\d+)')
_FLOAT_PREFIX = re.compile(
    r'\s*([+-]?(?:(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?|inf(?:inity)?|nan))',
    re.IGNORECASE,
)

Number = Union[int, float]


class StatLine(NamedTuple):
    command: str
    key: str
    value: str


class MetricRecord(NamedTuple):
    metric_type: str
    type_instance: Optional[str]
    values: Tuple[Number, ...]
    kind: str
    instance: str


def parse_int(text: str) -> int:
    """Leading integer of text, 0 if there is none (atoll semantics)"""
    match = _INT_PREFIX.match(text)
    return int(match.group(1)) if match else 0


def parse_float(text: str) -> float:
    """Leading float of text, NaN if there is none"""
    match = _FLOAT_PREFIX.match(text)
    return float(match.group(1)) if match else NAN


def parse_atof(text: str) -> float:
    """Leading float of text, 0.0 if there is none (atof semantics)"""
    match = _FLOAT_PREFIX.match(text)
    return float(match.group(1)) if match else 0.0


def split_lines(raw: Union[RawResponse, bytes, str]) -> List[str]:
    """Non-empty lines of a response, split on CR/LF runs"""
    if isinstance(raw, RawResponse):
        raw = raw.data
    if isinstance(raw, bytes):
        raw = raw.decode('utf-8', errors='replace')
    return [line for line in _LINE_SPLIT.split(raw) if line]


def tokenize(line: str) -> Optional[StatLine]:
    """Split a line into command, key and value; None if malformed"""
    fields = line.split(None, 2)
    if len(fields) != 3:
        return None
    command, key, value = fields
    if not key:
        return None
    return StatLine(command, key, value)


class StatsAccumulator:
    """
    Values that only produce records in combination.

    Gauge slots start as NaN so that "not in this response" stays
    distinguishable from an observed zero; counter slots start at 0.
    An observed value without a numeric prefix is stored as 0.0.
    """

    def __init__(self):
        self.bytes_used = NAN
        self.bytes_total = NAN
        self.gets = NAN
        self.hits = NAN
        self.rusage_user = 0
        self.rusage_system = 0
        self.octets_rx = 0
        self.octets_tx = 0

    def derive(self, instance: str) -> List[MetricRecord]:
        """Combined records, in a fixed order"""
        records = []

        if (not math.isnan(self.bytes_used) and not math.isnan(self.bytes_total)
                and self.bytes_used <= self.bytes_total):
            records.append(MetricRecord('df', 'cache',
                                        (self.bytes_used, self.bytes_total - self.bytes_used),
                                        GAUGE, instance))

        if self.rusage_user != 0 or self.rusage_system != 0:
            records.append(MetricRecord('ps_cputime', None,
                                        (self.rusage_user, self.rusage_system),
                                        COUNTER, instance))

        if self.octets_rx != 0 or self.octets_tx != 0:
            records.append(MetricRecord('memcached_octets', None,
                                        (self.octets_rx, self.octets_tx),
                                        COUNTER, instance))

        if not math.isnan(self.gets) and not math.isnan(self.hits):
            ratio = NAN
            if self.gets != 0.0:
                ratio = 100.0 * self.hits / self.gets
            records.append(MetricRecord('percent', 'hitratio', (ratio,), GAUGE, instance))

        return records

    def __repr__(self):
        return (f"StatsAccumulator(bytes_used={self.bytes_used}, bytes_total={self.bytes_total}, "
                f"gets={self.gets}, hits={self.hits}, rusage_user={self.rusage_user}, "
                f"rusage_system={self.rusage_system}, octets_rx={self.octets_rx}, "
                f"octets_tx={self.octets_tx})")


def scan_line(stat: StatLine, acc: StatsAccumulator, instance: str) -> Optional[MetricRecord]:
    """Apply one stat line; returns a record if the key maps to one directly"""
    key, value = stat.key, stat.value

    # CPU time consumed by the daemon
    if key == 'rusage_user':
        acc.rusage_user = parse_int(value)
    elif key == 'rusage_system':
        acc.rusage_system = parse_int(value)

    elif key == 'threads':
        return MetricRecord('ps_count', None, (NAN, parse_float(value)), GAUGE, instance)
    elif key == 'curr_items':
        return MetricRecord('memcached_items', 'current', (parse_float(value),), GAUGE, instance)

    # Used and available cache space
    elif key == 'bytes':
        acc.bytes_used = parse_atof(value)
    elif key == 'limit_maxbytes':
        acc.bytes_total = parse_atof(value)

    elif key == 'curr_connections':
        return MetricRecord('memcached_connections', 'current', (parse_float(value),), GAUGE, instance)

    elif len(key) > 4 and key.startswith('cmd_'):
        name = key[4:]
        if name == 'get':
            acc.gets = parse_atof(value)
        return MetricRecord('memcached_command', name, (parse_int(value),), COUNTER, instance)

    # Hits, misses and evictions
    elif key == 'get_hits':
        acc.hits = parse_atof(value)
        return MetricRecord('memcached_ops', 'hits', (parse_int(value),), COUNTER, instance)
    elif key == 'get_misses':
        return MetricRecord('memcached_ops', 'misses', (parse_int(value),), COUNTER, instance)
    elif key == 'evictions':
        return MetricRecord('memcached_ops', 'evictions', (parse_int(value),), COUNTER, instance)

    # Network traffic
    elif key == 'bytes_read':
        acc.octets_rx = parse_int(value)
    elif key == 'bytes_written':
        acc.octets_tx = parse_int(value)

    return None


def parse_and_derive(raw: Union[RawResponse, bytes, str], instance) -> List[MetricRecord]:
    """
    Parse a stats response into metric records.

    Args:
        raw: Response as received from the daemon
        instance: Instance (or its name) the records are tagged with

    Returns:
        Direct records in response order, followed by the derived ones
    """
    name = instance if isinstance(instance, str) else instance.name
    acc = StatsAccumulator()
    records = []

    for line in split_lines(raw):
        stat = tokenize(line)
        if stat is None:
            continue
        record = scan_line(stat, acc, name)
        if record is not None:
            records.append(record)

    records.extend(acc.derive(name))
    return records
