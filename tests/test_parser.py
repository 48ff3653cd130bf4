"""Parser and derivation tests: key mapping, numeric parsing, combined records."""

import math

import pytest

from memstat_exporter.client import RawResponse
from memstat_exporter.config import Instance
from memstat_exporter.parser import (
    COUNTER, GAUGE, StatsAccumulator, parse_and_derive, parse_atof, parse_float, parse_int,
    split_lines, tokenize,
)

INSTANCE = Instance(name='cache1')


def _by_type(records):
    out = {}
    for r in records:
        out[(r.metric_type, r.type_instance)] = r
    return out


def test_sample_response_records(sample_stats):
    records = parse_and_derive(RawResponse(sample_stats), INSTANCE)
    by_type = _by_type(records)

    assert by_type[('memcached_connections', 'current')].values == (10.0,)
    assert by_type[('memcached_items', 'current')].values == (1234.0,)
    assert by_type[('memcached_command', 'get')].values == (200,)
    assert by_type[('memcached_command', 'set')].values == (80,)
    assert by_type[('memcached_command', 'flush')].values == (0,)
    assert by_type[('memcached_ops', 'hits')].values == (50,)
    assert by_type[('memcached_ops', 'misses')].values == (150,)
    assert by_type[('memcached_ops', 'evictions')].values == (3,)
    assert by_type[('memcached_octets', None)].values == (123456, 654321)
    assert by_type[('ps_cputime', None)].values == (12, 7)
    assert by_type[('percent', 'hitratio')].values == (25.0,)
    assert all(r.instance == 'cache1' for r in records)


def test_threads_fills_second_slot_only(sample_stats):
    record = _by_type(parse_and_derive(sample_stats, INSTANCE))[('ps_count', None)]
    assert record.kind == GAUGE
    assert math.isnan(record.values[0])
    assert record.values[1] == 4.0


def test_record_kinds(sample_stats):
    by_type = _by_type(parse_and_derive(sample_stats, INSTANCE))
    assert by_type[('memcached_command', 'get')].kind == COUNTER
    assert by_type[('memcached_ops', 'hits')].kind == COUNTER
    assert by_type[('memcached_items', 'current')].kind == GAUGE
    assert by_type[('df', 'cache')].kind == GAUGE


def test_derived_records_come_last_in_fixed_order(sample_stats):
    records = parse_and_derive(sample_stats, INSTANCE)
    assert [r.metric_type for r in records[-4:]] == ['df', 'ps_cputime', 'memcached_octets', 'percent']


@pytest.mark.parametrize('value', ['0', '1', '42', '18446744073709551615'])
def test_curr_items_gauge_equals_value(value):
    records = parse_and_derive(f"STAT curr_items {value}\r\nEND\r\n", INSTANCE)
    assert len(records) == 1
    assert records[0].values == (float(value),)


def test_space_usage_values_sum_to_total():
    records = parse_and_derive(b"STAT bytes 300\r\nSTAT limit_maxbytes 1000\r\nEND\r\n", INSTANCE)
    (df,) = records
    assert df.metric_type == 'df' and df.type_instance == 'cache'
    assert df.values == (300.0, 700.0)
    assert sum(df.values) == 1000.0


def test_space_usage_used_equal_total_is_emitted():
    records = parse_and_derive(b"STAT bytes 1000\r\nSTAT limit_maxbytes 1000\r\n", INSTANCE)
    assert records[0].values == (1000.0, 0.0)


def test_space_usage_suppressed_when_used_exceeds_total():
    records = parse_and_derive(b"STAT bytes 1001\r\nSTAT limit_maxbytes 1000\r\nEND\r\n", INSTANCE)
    assert records == []


def test_space_usage_suppressed_when_one_side_missing():
    assert parse_and_derive(b"STAT bytes 10\r\nEND\r\n", INSTANCE) == []
    assert parse_and_derive(b"STAT limit_maxbytes 10\r\nEND\r\n", INSTANCE) == []


def test_hit_ratio_unknown_when_no_gets():
    records = parse_and_derive(b"STAT cmd_get 0\r\nSTAT get_hits 0\r\nEND\r\n", INSTANCE)
    ratio = _by_type(records)[('percent', 'hitratio')]
    assert math.isnan(ratio.values[0])


def test_hit_ratio_value():
    records = parse_and_derive(b"STAT cmd_get 200\r\nSTAT get_hits 50\r\nEND\r\n", INSTANCE)
    assert _by_type(records)[('percent', 'hitratio')].values == (25.0,)


def test_hit_ratio_needs_both_sides():
    records = parse_and_derive(b"STAT get_hits 50\r\nEND\r\n", INSTANCE)
    assert ('percent', 'hitratio') not in _by_type(records)


def test_zero_counters_suppress_combined_records():
    raw = b"STAT rusage_user 0.5\r\nSTAT rusage_system 0\r\nSTAT bytes_read 0\r\nSTAT bytes_written 0\r\n"
    assert parse_and_derive(raw, INSTANCE) == []


def test_one_nonzero_counter_is_enough():
    records = parse_and_derive(b"STAT bytes_written 9\r\n", INSTANCE)
    assert records[0].values == (0, 9)


def test_unknown_keys_are_ignored():
    assert parse_and_derive(b"STAT pointer_size 64\r\nSTAT version 1.6.21\r\nEND\r\n", INSTANCE) == []


def test_cmd_prefix_requires_a_name():
    assert parse_and_derive(b"STAT cmd_ 5\r\n", INSTANCE) == []


def test_keys_are_case_sensitive():
    assert parse_and_derive(b"STAT CURR_ITEMS 5\r\nSTAT Threads 2\r\n", INSTANCE) == []


def test_malformed_lines_are_dropped():
    raw = b"garbage\r\nSTAT curr_items\r\n\r\n\n\rSTAT curr_connections 3\r\nEND\r\n"
    records = parse_and_derive(raw, INSTANCE)
    assert [(r.metric_type, r.values) for r in records] == [('memcached_connections', (3.0,))]


def test_stat_prefix_is_not_validated():
    records = parse_and_derive(b"FOO curr_items 7\r\n", INSTANCE)
    assert records[0].values == (7.0,)


def test_unparseable_values():
    records = parse_and_derive(b"STAT cmd_get abc\r\nSTAT curr_items xyz\r\n", INSTANCE)
    by_type = _by_type(records)
    assert by_type[('memcached_command', 'get')].values == (0,)
    assert math.isnan(by_type[('memcached_items', 'current')].values[0])


def test_garbage_gets_still_counts_as_observed():
    records = parse_and_derive(b"STAT cmd_get abc\r\nSTAT get_hits 5\r\nEND\r\n", INSTANCE)
    ratio = _by_type(records)[('percent', 'hitratio')]
    assert math.isnan(ratio.values[0])


def test_garbage_bytes_still_counts_as_observed():
    records = parse_and_derive(b"STAT bytes abc\r\nSTAT limit_maxbytes 100\r\n", INSTANCE)
    assert [(r.metric_type, r.values) for r in records] == [('df', (0.0, 100.0))]


def test_parsing_is_deterministic(sample_stats):
    raw = RawResponse(sample_stats)
    first = parse_and_derive(raw, INSTANCE)
    second = parse_and_derive(raw, INSTANCE)
    assert repr(first) == repr(second)


def test_instance_name_may_be_given_directly():
    records = parse_and_derive(b"STAT curr_items 1\r\n", 'other')
    assert records[0].instance == 'other'


@pytest.mark.parametrize('text,expected', [
    ('42', 42), ('  42', 42), ('-7', -7), ('12.9', 12), ('99abc', 99), ('', 0), ('x1', 0),
])
def test_parse_int(text, expected):
    assert parse_int(text) == expected


@pytest.mark.parametrize('text,expected', [
    ('42', 42.0), ('1.5', 1.5), ('.5', 0.5), ('1e3', 1000.0), ('3.25kb', 3.25), ('-2', -2.0),
])
def test_parse_float(text, expected):
    assert parse_float(text) == expected


def test_parse_float_without_number_is_unknown():
    assert math.isnan(parse_float('none'))
    assert math.isnan(parse_float(''))


@pytest.mark.parametrize('text,expected', [('1.5', 1.5), ('7kb', 7.0), ('abc', 0.0), ('', 0.0)])
def test_parse_atof(text, expected):
    assert parse_atof(text) == expected


def test_tokenize_keeps_rest_in_third_field():
    stat = tokenize('STAT version 1.6.21 extra words')
    assert stat.command == 'STAT'
    assert stat.key == 'version'
    assert stat.value == '1.6.21 extra words'


def test_tokenize_rejects_short_lines():
    assert tokenize('STAT only') is None
    assert tokenize('END') is None


def test_split_lines_skips_empty():
    assert split_lines(b"a\r\n\r\nb\n\rc") == ['a', 'b', 'c']


def test_accumulator_defaults():
    acc = StatsAccumulator()
    assert math.isnan(acc.bytes_used) and math.isnan(acc.bytes_total)
    assert math.isnan(acc.gets) and math.isnan(acc.hits)
    assert acc.rusage_user == 0 and acc.octets_tx == 0
    assert acc.derive('x') == []
