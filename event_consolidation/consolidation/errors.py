"""
Consolidation Error Taxonomy

Per-event and per-partition errors are collected into the run report and never
abort a batch. BatchAbortedError is the only fatal condition.
"""

from typing import Any, Dict, Optional


class ConsolidationError(Exception):
    """Base class for consolidation errors"""
    code = "consolidation_error"
    
    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "message": str(self)}


class MalformedEventError(ConsolidationError):
    """A raw event could not be parsed into a usable timestamp or measure"""
    code = "malformed_event"
    
    def __init__(self, row_index: int, user_id: Optional[str], reason: str):
        self.row_index = row_index
        self.user_id = user_id
        self.reason = reason
        super().__init__(f"Event at row {row_index} (user_id={user_id!r}) rejected: {reason}")
    
    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "row_index": self.row_index,
            "user_id": self.user_id,
            "reason": self.reason,
        }


class NullIdentityEventError(ConsolidationError):
    """An event without user_id. Filtered and counted, never reported individually."""
    code = "null_identity"


class PartitionConsolidationError(ConsolidationError):
    """Aggregating one partition failed; its output is omitted from the run"""
    code = "partition_failed"
    
    def __init__(self, partition_key: Any, reason: str):
        self.partition_key = partition_key
        self.reason = reason
        super().__init__(f"Partition {tuple(partition_key)} failed: {reason}")
    
    def to_dict(self) -> Dict[str, Any]:
        user_id, platform, date = self.partition_key
        return {
            "code": self.code,
            "user_id": user_id,
            "platform": platform,
            "date": date.isoformat(),
            "reason": self.reason,
        }


class BatchAbortedError(ConsolidationError):
    """Global id assignment could not complete; the run produces no output"""
    code = "batch_aborted"
