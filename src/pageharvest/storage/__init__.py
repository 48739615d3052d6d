"""Storage backends, checkpoints and batches."""

from .archive import PageArchiveHandler
from .backends import LocalStorage, MemoryStorage, create_storage
from .batch import Batch, BatchAssembler
from .checkpoint import Checkpoint, CheckpointStore

__all__ = [
    "Batch",
    "BatchAssembler",
    "Checkpoint",
    "CheckpointStore",
    "LocalStorage",
    "MemoryStorage",
    "PageArchiveHandler",
    "create_storage",
]
