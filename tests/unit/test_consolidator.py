"""
Unit Tests - Session Consolidator
"""
from datetime import date, datetime, timedelta

import polars as pl
import pytest

from event_consolidation.consolidation.consolidator import (
    SessionConsolidator,
    assign_ids,
    bucket_index_expr,
    window_origin,
)
from event_consolidation.consolidation.errors import BatchAbortedError, PartitionConsolidationError
from event_consolidation.consolidation.models import PartitionKey
from event_consolidation.consolidation.partitioner import EventPartitioner

ORIGIN = datetime(2023, 2, 1, 2, 0)


def single_partition(events):
    result = EventPartitioner().partition(events)
    ((key, frame),) = result.partitions.items()
    return key, frame


def buckets_for(offsets):
    """Bucket index of events placed at the given offsets from ORIGIN"""
    frame = pl.DataFrame({"timestamp": [ORIGIN + offset for offset in offsets]}).with_columns(
        pl.col("timestamp").dt.cast_time_unit("us")
    )
    return frame.select(bucket_index_expr(ORIGIN, timedelta(minutes=360), 4))["bucket"].to_list()


class TestBucketIndex:
    """Tests for half-open bucket placement"""
    
    def test_boundaries_go_to_the_later_bucket(self):
        """+360 min opens bucket 2, +720 bucket 3, +1080 bucket 4"""
        assert buckets_for([
            timedelta(0),
            timedelta(minutes=360) - timedelta(microseconds=1),
            timedelta(minutes=360),
            timedelta(minutes=720),
            timedelta(minutes=1080) - timedelta(microseconds=1),
            timedelta(minutes=1080),
        ]) == [1, 1, 2, 3, 3, 4]
    
    def test_last_bucket_is_unbounded(self):
        """Anything past the last boundary stays in bucket 4"""
        assert buckets_for([timedelta(minutes=1439), timedelta(hours=100)]) == [4, 4]
    
    def test_custom_width_and_count(self):
        """Width and count are parameters"""
        frame = pl.DataFrame({"timestamp": [ORIGIN, ORIGIN + timedelta(minutes=90)]}).with_columns(
            pl.col("timestamp").dt.cast_time_unit("us")
        )
        buckets = frame.select(bucket_index_expr(ORIGIN, timedelta(minutes=30), 2))["bucket"]
        assert buckets.to_list() == [1, 2]


class TestWindowOrigin:
    """Tests for the derived window origin"""
    
    def test_origin_follows_current_events(self, make_event):
        """Adding an earlier event moves the origin"""
        _, frame = single_partition([make_event("u1", "2023-02-01 08:00:00")])
        assert window_origin(frame) == datetime(2023, 2, 1, 8, 0)
        
        _, frame = single_partition([
            make_event("u1", "2023-02-01 08:00:00"),
            make_event("u1", "2023-02-01 03:00:00"),
        ])
        assert window_origin(frame) == datetime(2023, 2, 1, 3, 0)


class TestConsolidatePartition:
    """Tests for per-partition aggregation"""
    
    def test_scenario_a(self, scenario_a_events):
        """Two buckets with summed measures and earliest timestamps"""
        key, frame = single_partition(scenario_a_events)
        
        sessions = SessionConsolidator().consolidate_partition(key, frame)
        
        assert sessions["bucket"].to_list() == [1, 2]
        assert sessions["volume"].to_list() == [3.0, 3.0]
        assert sessions["fee"].to_list() == [1.5, 1.5]
        assert sessions["event_count"].to_list() == [2, 1]
        assert sessions["representative_timestamp"].to_list() == [
            datetime(2023, 2, 1, 8, 0),
            datetime(2023, 2, 1, 14, 1),
        ]
        assert sessions["user_id"].to_list() == ["u1", "u1"]
        assert sessions["platform"].to_list() == ["web", "web"]
        assert sessions["date"].to_list() == [date(2023, 2, 1)] * 2
    
    def test_single_event(self, make_event):
        """One event yields one bucket-1 record equal to the event"""
        key, frame = single_partition([make_event("u1", "2023-02-01 10:15:00", volume=7.5, fee=2.25)])
        
        sessions = SessionConsolidator().consolidate_partition(key, frame)
        
        assert sessions.height == 1
        row = sessions.row(0, named=True)
        assert row["bucket"] == 1
        assert row["volume"] == 7.5
        assert row["fee"] == 2.25
        assert row["representative_timestamp"] == datetime(2023, 2, 1, 10, 15)
    
    def test_only_non_empty_buckets_are_emitted(self, make_event):
        """A gap over bucket 2 and 3 produces buckets 1 and 4 only"""
        key, frame = single_partition([
            make_event("u1", "2023-02-01 00:30:00"),
            make_event("u1", "2023-02-01 23:00:00"),
        ])
        
        sessions = SessionConsolidator().consolidate_partition(key, frame)
        
        assert sessions["bucket"].to_list() == [1, 4]
    
    def test_zero_measures_are_preserved(self, make_event):
        """Zero volume and fee are values, not gaps"""
        key, frame = single_partition([make_event("u1", "2023-02-01 08:00:00", volume=0.0, fee=0.0)])
        
        sessions = SessionConsolidator().consolidate_partition(key, frame)
        
        assert sessions["volume"].to_list() == [0.0]
        assert sessions["fee"].to_list() == [0.0]
    
    def test_input_is_not_mutated(self, scenario_a_events):
        """Consolidation leaves the partition frame untouched"""
        key, frame = single_partition(scenario_a_events)
        before = frame.clone()
        
        SessionConsolidator().consolidate_partition(key, frame)
        
        assert frame.equals(before)
        assert "bucket" not in frame.columns
    
    def test_overflowing_sum_raises(self, make_event):
        """A sum that leaves the float range fails the partition"""
        key, frame = single_partition([
            make_event("u1", "2023-02-01 08:00:00", volume=1e308),
            make_event("u1", "2023-02-01 08:01:00", volume=1e308),
        ])
        
        with pytest.raises(PartitionConsolidationError) as exc_info:
            SessionConsolidator().consolidate_partition(key, frame)
        
        assert exc_info.value.partition_key == key
    
    def test_invalid_configuration(self):
        """Non-positive width or count is rejected"""
        with pytest.raises(ValueError):
            SessionConsolidator(bucket_width=timedelta(0))
        with pytest.raises(ValueError):
            SessionConsolidator(bucket_count=0)


class TestConsolidate:
    """Tests for the map phase"""
    
    def test_failures_are_isolated(self, make_event):
        """One overflowing partition does not stop the others"""
        partitions = EventPartitioner().partition([
            make_event("ok", "2023-02-01 08:00:00"),
            make_event("big", "2023-02-01 08:00:00", fee=1e308),
            make_event("big", "2023-02-01 08:01:00", fee=1e308),
        ]).partitions
        
        result = SessionConsolidator().consolidate(partitions)
        
        assert result.consolidated_partitions == 1
        assert [f.partition_key.user_id for f in result.failures] == ["big"]
    
    def test_unexpected_errors_are_wrapped(self, make_event):
        """Any exception inside a partition becomes a partition failure"""
        class BrokenConsolidator(SessionConsolidator):
            def consolidate_partition(self, key, events):
                if key.user_id == "bad":
                    raise RuntimeError("boom")
                return super().consolidate_partition(key, events)
        
        partitions = EventPartitioner().partition([
            make_event("good", "2023-02-01 08:00:00"),
            make_event("bad", "2023-02-01 08:00:00"),
        ]).partitions
        
        result = BrokenConsolidator().consolidate(partitions)
        
        assert result.consolidated_partitions == 1
        assert len(result.failures) == 1
        assert "RuntimeError: boom" in result.failures[0].reason
    
    def test_threaded_map_matches_sequential(self, random_events):
        """Thread pool output numbers identically to the sequential pass"""
        partitions = EventPartitioner().partition(random_events).partitions
        
        sequential = assign_ids(SessionConsolidator(max_workers=1).consolidate(partitions).sessions)
        threaded = assign_ids(SessionConsolidator(max_workers=4).consolidate(partitions).sessions)
        
        assert threaded.equals(sequential)


class TestAssignIds:
    """Tests for the global numbering barrier"""
    
    def test_ids_follow_user_date_bucket_order(self, make_event):
        """Ids rank by user, then date, then bucket, across partitions"""
        partitions = EventPartitioner().partition([
            make_event("b", "2023-02-01 08:00:00"),
            make_event("a", "2023-02-02 08:00:00"),
            make_event("a", "2023-02-01 20:00:00"),
            make_event("a", "2023-02-01 08:00:00"),
        ]).partitions
        
        records = assign_ids(SessionConsolidator().consolidate(partitions).sessions)
        
        assert records["id"].to_list() == [1, 2, 3, 4]
        assert list(zip(records["user_id"], records["date"], records["bucket"])) == [
            ("a", date(2023, 2, 1), 1),
            ("a", date(2023, 2, 1), 3),
            ("a", date(2023, 2, 2), 1),
            ("b", date(2023, 2, 1), 1),
        ]
    
    def test_platform_breaks_remaining_ties(self, make_event):
        """Same user, date and bucket on two platforms number deterministically"""
        partitions = EventPartitioner().partition([
            make_event("a", "2023-02-01 08:00:00", platform="web"),
            make_event("a", "2023-02-01 09:00:00", platform="android"),
        ]).partitions
        
        records = assign_ids(SessionConsolidator().consolidate(partitions).sessions)
        
        assert records["platform"].to_list() == ["android", "web"]
    
    def test_empty_output(self):
        """No sessions yields an empty, typed frame"""
        records = assign_ids([])
        
        assert records.is_empty()
        assert records.columns[0] == "id"
    
    def test_failure_aborts_the_batch(self, scenario_a_events, monkeypatch):
        """Numbering errors surface as BatchAbortedError"""
        key, frame = single_partition(scenario_a_events)
        sessions = SessionConsolidator().consolidate_partition(key, frame)
        
        def fail(*args, **kwargs):
            raise MemoryError("exhausted")
        
        monkeypatch.setattr(pl, "concat", fail)
        
        with pytest.raises(BatchAbortedError):
            assign_ids([sessions])
