"""Storage package."""
from workflow_engine.store.base import RecordStore
from workflow_engine.store.memory import InMemoryRecordStore

__all__ = ["InMemoryRecordStore", "RecordStore"]
