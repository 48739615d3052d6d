"""Record identity and deduplicating accumulation."""

from .accumulator import MergeResult, RecordAccumulator, build_records
from .identity import record_identity

__all__ = ["MergeResult", "RecordAccumulator", "build_records", "record_identity"]
