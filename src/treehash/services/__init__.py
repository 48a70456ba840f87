"""Pipeline stages for treehash."""

from treehash.services.channel import BoundedChannel, ChannelClosed, CompletionBarrier
from treehash.services.filter import NameFilter
from treehash.services.hasher import compute_file_digest, hash_stream
from treehash.services.orchestrator import (
    PipelineError,
    PipelineStage,
    TraversalResult,
    TreeHashOrchestrator,
    ValidationError,
    traverse,
)
from treehash.services.walker import DirectoryWalker, walk
from treehash.services.workers import WorkerPool
from treehash.services.writer import RecordWriter, format_record

__all__ = [
    "BoundedChannel",
    "ChannelClosed",
    "CompletionBarrier",
    "DirectoryWalker",
    "NameFilter",
    "PipelineError",
    "PipelineStage",
    "RecordWriter",
    "TraversalResult",
    "TreeHashOrchestrator",
    "ValidationError",
    "WorkerPool",
    "compute_file_digest",
    "format_record",
    "hash_stream",
    "traverse",
    "walk",
]
