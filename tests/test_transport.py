"""Tests for the batching transport."""

import threading

import pytest

from statshouse.batch import HEADER_SIZE, MAX_DATAGRAM_SIZE, FieldMask
from statshouse.config import TransportConfig
from statshouse.errors import TransportClosedError
from statshouse.events import MetricOccurrence
from statshouse.sinks import NullSink
from statshouse.sinks.base import DatagramSink
from statshouse.transport import BatchState, Transport


class TestWrites:
    def test_counter_round_trip(self, transport, sink):
        transport.write_count("requests", 3.0, ("1", "2"), ("GET", "200"))
        transport.flush()

        assert len(sink.datagrams) == 1
        batch = sink.batches()[0]
        assert batch.record_count == 1
        record = batch.records[0]
        assert record.name == "requests"
        assert record.counter == 3.0
        assert record.tags == [("0", "test"), ("1", "GET"), ("2", "200")]
        assert record.field_mask == FieldMask.COUNTER | FieldMask.NEW_SEMANTIC

    def test_timestamp_passed_through(self, transport, sink):
        transport.write_count("requests", 1.0, timestamp=1_700_000_123)
        transport.flush()

        assert sink.records()[0].timestamp == 1_700_000_123

    def test_float_timestamp_truncated(self, transport, sink):
        transport.write_count("requests", 1.0, timestamp=1_700_000_123.75)
        transport.write_count("requests", 1.0, timestamp=0.5)
        transport.flush()

        first, second = sink.records()
        assert first.timestamp == 1_700_000_123
        assert second.timestamp is None
        assert not second.field_mask & FieldMask.TIMESTAMP

    def test_write_dispatches_on_kind(self, transport, sink):
        transport.write(MetricOccurrence.count("c", 2, [("1", "x")]))
        transport.write(MetricOccurrence.value_set("v", [1.0, 2.0]))
        transport.write(MetricOccurrence.unique_set("u", [7, 8], has_env=True))
        transport.flush()

        c, v, u = sink.records()
        assert c.counter == 2.0
        assert c.tag_dict == {"0": "test", "1": "x"}
        assert v.field_mask & FieldMask.VALUE
        assert v.values == [1.0, 2.0]
        assert u.field_mask & FieldMask.UNIQUE
        assert u.values == [7, 8]
        assert u.tags == []

    def test_empty_value_list_writes_nothing(self, transport, sink):
        transport.write_values("latency", [])
        transport.flush()
        assert sink.datagrams == []

    def test_record_count_matches_commits(self, transport, sink):
        for i in range(5):
            transport.write_count(f"m{i}", float(i))
        assert transport.pending_records == 5
        transport.flush()

        batch = sink.batches()[0]
        assert batch.record_count == 5
        assert [r.name for r in batch.records] == ["m0", "m1", "m2", "m3", "m4"]
        assert transport.pending_records == 0
        assert transport.pending_bytes == HEADER_SIZE


class TestCapacity:
    def test_overflow_flushes_prior_batch_once(self, transport, sink):
        # Each record is 40 bytes, so 30 fit under the 1232-byte ceiling
        for _ in range(30):
            transport.write_count("requests", 1.0)
        assert sink.datagrams == []

        transport.write_count("requests", 1.0)

        assert len(sink.datagrams) == 1
        assert sink.batches()[0].record_count == 30
        assert len(sink.datagrams[0]) <= 1232
        assert transport.pending_records == 1

    def test_datagrams_never_exceed_ceiling(self, transport, sink):
        for i in range(500):
            transport.write_count(f"metric_{i % 7}", float(i), ("1",), ("x" * (i % 50),))
        transport.flush()

        assert len(sink.datagrams) > 1
        assert all(len(d) <= 1232 for d in sink.datagrams)
        assert sum(b.record_count for b in sink.batches()) == 500

    def test_oversized_record_in_empty_batch_dropped_without_flush(self, transport, sink):
        transport.write_count("x" * 2000, 1.0)

        assert sink.datagrams == []
        assert transport.pending_records == 0
        assert transport.stats["records_dropped"] == 1

    def test_oversized_record_flushes_then_drops(self, transport, sink):
        transport.write_count("small", 1.0)
        transport.write_count("x" * 2000, 1.0)

        assert len(sink.datagrams) == 1
        assert [r.name for r in sink.records()] == ["small"]
        assert transport.pending_records == 0
        assert transport.pending_bytes == HEADER_SIZE
        assert transport.stats["records_dropped"] == 1

    def test_smaller_ceiling(self, sink, clock):
        transport = Transport(
            config=TransportConfig(env="test", max_payload_size=200), sink=sink, clock=clock,
        )
        for _ in range(10):
            transport.write_count("requests", 1.0)
        transport.flush()

        # 12 + 4 * 40 = 172 <= 200
        assert [b.record_count for b in sink.batches()] == [4, 4, 2]

    def test_hard_overflow_drops_without_flush(self, sink, clock):
        transport = Transport(
            config=TransportConfig(env="test", max_payload_size=MAX_DATAGRAM_SIZE),
            sink=sink,
            clock=clock,
        )
        transport.write_count("a" * 40000, 1.0)
        committed = transport.pending_bytes

        # The second header runs past the 65535-byte buffer itself
        transport.write_count("b" * 40000, 1.0)

        assert sink.datagrams == []
        assert transport.pending_records == 1
        assert transport.pending_bytes == committed
        assert transport.stats["records_dropped"] == 1

        transport.flush()
        assert [r.name for r in sink.records()] == ["a" * 40000]


class TestValueSplitting:
    def test_500_values_split_across_records(self, transport, sink):
        values = [float(i) for i in range(500)]
        transport.write_values("latency", values)
        transport.flush()

        records = sink.records()
        assert len(records) > 1
        assert [len(r.values) for r in records] == [148, 148, 148, 56]
        assert sum(len(r.values) for r in records) == 500
        assert [v for r in records for v in r.values] == values
        assert all(len(d) <= 1232 for d in sink.datagrams)
        assert all(r.name == "latency" and r.tags == [("0", "test")] for r in records)

    def test_split_records_share_timestamp(self, transport, sink):
        transport.write_values("latency", [0.5] * 400, ("1",), ("GET",), timestamp=1_700_000_000)
        transport.flush()

        records = sink.records()
        assert len(records) == 3
        assert {r.timestamp for r in records} == {1_700_000_000}
        assert all(r.tag_dict["1"] == "GET" for r in records)

    def test_values_fill_remaining_space_first(self, transport, sink):
        transport.write_count("requests", 1.0)
        transport.write_values("latency", [1.0] * 200)
        transport.flush()

        first, second = sink.batches()
        assert first.record_count == 2
        assert len(first.records[1].values) == 143
        assert len(second.records[0].values) == 57

    def test_uniques_split(self, transport, sink):
        values = list(range(-150, 150))
        transport.write_uniques("visitors", values)
        transport.flush()

        records = sink.records()
        assert len(records) == 3
        assert [v for r in records for v in r.values] == values
        assert all(r.field_mask & FieldMask.UNIQUE for r in records)

    def test_unfit_header_drops_all_values(self, transport, sink):
        transport.write_values("y" * 2000, [1.0, 2.0, 3.0])

        assert sink.datagrams == []
        assert transport.stats["values_dropped"] == 3


class TestFlushSchedule:
    def test_writes_within_interval_share_datagram(self, transport, sink, clock):
        transport.write_count("a", 1.0)
        clock.advance(0.3)
        transport.write_count("b", 1.0)
        assert sink.datagrams == []

        transport.flush()
        assert [r.name for r in sink.records()] == ["a", "b"]

    def test_late_write_flushes_prior_batch_first(self, transport, sink, clock):
        transport.write_count("a", 1.0)
        clock.advance(0.5)
        transport.write_count("b", 1.0)

        assert len(sink.datagrams) == 1
        assert [r.name for r in sink.records()] == ["a"]
        assert transport.pending_records == 1

        transport.flush()
        assert [r.name for r in sink.batches()[1].records] == ["b"]

    def test_deadline_is_strict(self, transport, sink, clock):
        transport.write_count("a", 1.0)
        clock.advance(0.4)
        transport.write_count("b", 1.0)
        assert sink.datagrams == []

    def test_write_after_idle_sends_immediately(self, transport, sink, clock):
        clock.advance(5.0)
        transport.write_count("a", 1.0)

        assert len(sink.datagrams) == 1
        assert transport.pending_records == 0

    def test_deadline_resets_after_send(self, transport, sink, clock):
        transport.write_count("a", 1.0)
        clock.advance(0.5)
        transport.write_count("b", 1.0)
        clock.advance(0.3)
        transport.write_count("c", 1.0)
        assert len(sink.datagrams) == 1

        clock.advance(0.2)
        transport.write_count("d", 1.0)
        assert [r.name for r in sink.batches()[1].records] == ["b", "c"]

    def test_flush_empty_is_noop(self, transport, sink):
        transport.flush()
        assert sink.datagrams == []


class TestClose:
    def test_close_sends_pending(self, transport, sink):
        for _ in range(3):
            transport.write_count("a", 1.0)
        transport.close()

        assert len(sink.datagrams) == 1
        assert sink.batches()[0].record_count == 3
        assert sink.closed

    def test_close_empty(self, transport, sink):
        transport.close()
        assert sink.datagrams == []
        assert sink.closed

    def test_close_twice(self, transport, sink):
        transport.write_count("a", 1.0)
        transport.close()
        transport.close()
        assert len(sink.datagrams) == 1

    def test_use_after_close(self, transport):
        transport.close()
        with pytest.raises(TransportClosedError):
            transport.write_count("a", 1.0)
        with pytest.raises(TransportClosedError):
            transport.write_values("a", [1.0])
        with pytest.raises(TransportClosedError):
            transport.flush()

    def test_context_manager(self, config, sink, clock):
        with Transport(config=config, sink=sink, clock=clock) as transport:
            transport.write_count("a", 1.0)
        assert len(sink.datagrams) == 1
        assert transport.state == BatchState.CLOSED


class TestSendErrors:
    def test_flush_error_propagates_and_resets(self, config, failing_sink, clock):
        transport = Transport(config=config, sink=failing_sink, clock=clock)
        transport.write_count("a", 1.0)

        with pytest.raises(OSError):
            transport.flush()

        assert transport.pending_records == 0
        assert transport.stats["send_errors"] == 1
        transport.flush()

    def test_error_on_deadline_flush_propagates_from_write(self, config, failing_sink, clock):
        transport = Transport(config=config, sink=failing_sink, clock=clock)
        transport.write_count("a", 1.0)
        clock.advance(1.0)

        with pytest.raises(OSError):
            transport.write_count("b", 1.0)

    def test_close_error_still_closes(self, config, failing_sink, clock):
        transport = Transport(config=config, sink=failing_sink, clock=clock)
        transport.write_count("a", 1.0)

        with pytest.raises(OSError):
            transport.close()

        assert failing_sink.closed
        assert transport.state == BatchState.CLOSED

    def test_sink_close_error_propagates(self, config, clock):
        class BrokenCloseSink(DatagramSink):
            def send(self, payload) -> None:
                pass

            def close(self) -> None:
                raise OSError("bad file descriptor")

        transport = Transport(config=config, sink=BrokenCloseSink(), clock=clock)
        with pytest.raises(OSError):
            transport.close()
        assert transport.state == BatchState.CLOSED


class _StateRecordingSink(DatagramSink):
    def __init__(self):
        self.transport = None
        self.states = []

    def send(self, payload) -> None:
        self.states.append(self.transport.state)


class TestState:
    def test_lifecycle(self, config, clock):
        sink = _StateRecordingSink()
        transport = Transport(config=config, sink=sink, clock=clock)
        sink.transport = transport

        assert transport.state == BatchState.EMPTY
        transport.write_count("a", 1.0)
        assert transport.state == BatchState.ACCUMULATING
        transport.flush()
        assert sink.states == [BatchState.SENDING]
        assert transport.state == BatchState.EMPTY
        transport.close()
        assert transport.state == BatchState.CLOSED


class TestDisabled:
    def test_disabled_mode_discards(self, clock):
        transport = Transport(config=TransportConfig(enabled=False), clock=clock)
        assert isinstance(transport.sink, NullSink)

        transport.write_count("a", 1.0)
        transport.write_values("b", [1.0] * 1000)
        transport.close()

        assert transport.sink.datagrams_discarded > 0
        assert transport.stats["records_dropped"] == 0


class TestConcurrency:
    def test_threads_serialize(self, config, sink):
        transport = Transport(config=config, sink=sink)

        def worker(n):
            for i in range(250):
                transport.write_count(f"worker_{n}", float(i))

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        transport.close()

        batches = sink.batches()
        assert sum(b.record_count for b in batches) == 1000
        assert all(len(d) <= 1232 for d in sink.datagrams)

    def test_stats(self, transport):
        transport.write_count("a", 1.0)
        stats = transport.stats
        assert stats["pending_records"] == 1
        assert stats["datagrams_sent"] == 0

        transport.flush()
        stats = transport.stats
        assert stats["datagrams_sent"] == 1
        assert stats["records_sent"] == 1
        assert stats["bytes_sent"] <= MAX_DATAGRAM_SIZE
