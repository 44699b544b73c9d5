"""
Unit Tests - Event Partitioner
"""
from datetime import date, datetime

import polars as pl
import pytest

from event_consolidation.consolidation import consolidate_events
from event_consolidation.consolidation.models import PartitionKey, RawEvent
from event_consolidation.consolidation.partitioner import EventPartitioner, to_frame


class TestToFrame:
    """Tests for raw batch conversion"""
    
    def test_models_and_mappings(self, make_event):
        """Models and mappings produce the same columns"""
        events = [
            RawEvent(user_id="u1", platform="web", timestamp=datetime(2023, 2, 1, 8), volume=1, fee=0.5),
            make_event("u2", datetime(2023, 2, 1, 9), platform="ios"),
        ]
        
        df = to_frame(events)
        
        assert df.columns == ["user_id", "platform", "timestamp", "volume", "fee"]
        assert df["platform"].to_list() == ["web", "ios"]
        assert df.schema["timestamp"] == pl.Datetime("us")
    
    def test_mixed_timestamp_values_become_text(self, make_event):
        """A mix of datetimes and strings is kept parseable"""
        events = [
            make_event("u1", datetime(2023, 2, 1, 8)),
            make_event("u1", "2023-02-01 09:00:00"),
        ]
        
        df = to_frame(events)
        
        assert df.schema["timestamp"] == pl.String
        assert df["timestamp"].to_list() == ["2023-02-01 08:00:00", "2023-02-01 09:00:00"]
    
    def test_off_type_values_become_text(self, make_event):
        """Dates among datetimes and non-scalar measures do not break the frame"""
        events = [
            make_event("u1", date(2023, 2, 1)),
            make_event("u2", datetime(2023, 2, 1, 9)),
            make_event("u3", datetime(2023, 2, 1, 10), volume=[1]),
        ]
        
        df = to_frame(events)
        
        assert df.schema["timestamp"] == pl.String
        assert df.schema["volume"] == pl.String
        assert df["timestamp"].to_list()[:2] == ["2023-02-01", "2023-02-01 09:00:00"]
    
    def test_dataframe_passthrough(self):
        """DataFrames are used as given"""
        df = pl.DataFrame({"user_id": ["u1"], "platform": ["web"], "timestamp": ["2023-02-01 08:00:00"]})
        assert to_frame(df) is df


class TestPrepare:
    """Tests for normalisation and rejection"""
    
    def test_null_identity_is_counted_not_rejected(self, make_event):
        """Missing and blank user ids are filtered silently"""
        events = [
            make_event("u1", "2023-02-01 08:00:00"),
            make_event(None, "2023-02-01 08:00:00"),
            make_event("   ", "not-a-date"),
        ]
        
        prepared = EventPartitioner().prepare(events)
        
        assert prepared.input_events == 3
        assert prepared.null_identity_events == 2
        assert prepared.malformed_events == []
        assert prepared.events["user_id"].to_list() == ["u1"]
    
    def test_malformed_events_are_rejected_individually(self, make_event):
        """Each bad row is rejected with its reason; good rows survive"""
        events = [
            make_event("u1", "2023-02-01 08:00:00"),
            make_event("u2", "not-a-date"),
            make_event("u3", None),
            make_event("u4", "2023-02-01 08:00:00", platform="desktop"),
            make_event("u5", "2023-02-01 08:00:00", volume=-1.0),
            make_event("u6", "2023-02-01 08:00:00", fee="abc"),
        ]
        
        prepared = EventPartitioner().prepare(events)
        reasons = {e.user_id: e.reason for e in prepared.malformed_events}
        
        assert reasons == {
            "u2": "unparsable timestamp",
            "u3": "missing timestamp",
            "u4": "unknown platform",
            "u5": "negative volume",
            "u6": "non-numeric fee",
        }
        assert [e.row_index for e in prepared.malformed_events] == [1, 2, 3, 4, 5]
        assert prepared.events["user_id"].to_list() == ["u1"]
        assert prepared.rejected_events["reason"].to_list() == [
            "unparsable timestamp",
            "missing timestamp",
            "unknown platform",
            "negative volume",
            "non-numeric fee",
        ]
    
    def test_off_type_rows_do_not_abort_the_batch(self, make_event):
        """Rows with off-type values are rejected; the rest consolidate"""
        events = [
            make_event("u1", date(2023, 2, 1)),
            make_event("u2", datetime(2023, 2, 1, 9)),
            make_event("u3", datetime(2023, 2, 1, 10), volume=[1]),
            make_event("u4", datetime(2023, 2, 1, 11), volume=2.0),
        ]
        
        prepared = EventPartitioner().prepare(events)
        run = consolidate_events(events)
        
        assert {e.user_id: e.reason for e in prepared.malformed_events} == {
            "u1": "unparsable timestamp",
            "u3": "non-numeric volume",
        }
        assert run.records["user_id"].to_list() == ["u2", "u4"]
        assert run.records["volume"].to_list() == [1.0, 2.0]
        assert run.report.malformed_count == 2
    
    def test_normalisation(self, make_event):
        """Platforms are lower-cased, ids trimmed, missing measures become zero"""
        events = [make_event(" u1 ", "2023-02-01T08:00:00", platform=" IOS", volume=None, fee=None)]
        
        prepared = EventPartitioner().prepare(events)
        row = prepared.events.row(0, named=True)
        
        assert row["user_id"] == "u1"
        assert row["platform"] == "ios"
        assert row["timestamp"] == datetime(2023, 2, 1, 8, 0)
        assert row["date"] == date(2023, 2, 1)
        assert row["volume"] == 0.0
        assert row["fee"] == 0.0
    
    def test_fractional_seconds_are_parsed(self, make_event):
        """Sub-second timestamps keep their precision"""
        prepared = EventPartitioner().prepare([make_event("u1", "2023-02-01 08:00:00.250000")])
        
        assert prepared.events["timestamp"][0] == datetime(2023, 2, 1, 8, 0, 0, 250000)
    
    def test_zone_designators_are_dropped(self, make_event):
        """ISO timestamps with a zone suffix keep their wall-clock time"""
        events = [
            make_event("u1", "2023-02-01T08:00:00Z"),
            make_event("u1", "2023-02-01T09:00:00+00:00"),
            make_event("u1", "2023-02-01T10:00:00.500+02:00"),
            make_event("u1", "2023-02-01 11:00:00"),
        ]
        
        prepared = EventPartitioner().prepare(events)
        
        assert prepared.malformed_events == []
        assert prepared.events["timestamp"].to_list() == [
            datetime(2023, 2, 1, 8),
            datetime(2023, 2, 1, 9),
            datetime(2023, 2, 1, 10, 0, 0, 500000),
            datetime(2023, 2, 1, 11),
        ]
    
    def test_missing_measure_columns_default_to_zero(self):
        """Batches without volume or fee columns are accepted"""
        df = pl.DataFrame({
            "user_id": ["u1"],
            "platform": ["web"],
            "timestamp": [datetime(2023, 2, 1, 8)],
        })
        
        prepared = EventPartitioner().prepare(df)
        
        assert prepared.events["volume"].to_list() == [0.0]
        assert prepared.events["fee"].to_list() == [0.0]
    
    def test_missing_required_column_raises(self):
        """A batch without timestamps cannot be partitioned at all"""
        df = pl.DataFrame({"user_id": ["u1"], "platform": ["web"]})
        
        with pytest.raises(ValueError, match="timestamp"):
            EventPartitioner().prepare(df)
    
    def test_empty_batch(self):
        """An empty batch prepares to nothing"""
        prepared = EventPartitioner().prepare([])
        
        assert prepared.input_events == 0
        assert prepared.events.is_empty()


class TestPartition:
    """Tests for grouping by identity key"""
    
    def test_groups_by_user_platform_and_day(self, make_event):
        """Each (user, platform, day) gets its own partition"""
        events = [
            make_event("u1", "2023-02-01 23:50:00"),
            make_event("u1", "2023-02-02 00:10:00"),
            make_event("u1", "2023-02-01 12:00:00", platform="android"),
            make_event("u2", "2023-02-01 12:00:00"),
        ]
        
        result = EventPartitioner().partition(events)
        
        assert set(result.partitions) == {
            PartitionKey("u1", "web", date(2023, 2, 1)),
            PartitionKey("u1", "web", date(2023, 2, 2)),
            PartitionKey("u1", "android", date(2023, 2, 1)),
            PartitionKey("u2", "web", date(2023, 2, 1)),
        }
        assert result.partition_count == 4
    
    def test_events_are_ordered_with_stable_ties(self, make_event):
        """Ascending timestamps; identical timestamps keep input order"""
        events = [
            make_event("u1", "2023-02-01 09:00:00", volume=1),
            make_event("u1", "2023-02-01 08:00:00", volume=2),
            make_event("u1", "2023-02-01 09:00:00", volume=3),
            make_event("u1", "2023-02-01 08:30:00", volume=4),
        ]
        
        result = EventPartitioner().partition(events)
        (events_df,) = result.partitions.values()
        
        assert events_df["volume"].to_list() == [2.0, 4.0, 1.0, 3.0]
    
    def test_null_identity_never_forms_a_partition(self, make_event):
        """Events without user_id are not grouped"""
        result = EventPartitioner().partition([make_event(None, "2023-02-01 08:00:00")])
        
        assert result.partitions == {}
        assert result.prepared.null_identity_events == 1
