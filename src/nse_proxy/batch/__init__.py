"""Batch orchestration and result compilation."""

from .compiler import RequestMeta, compile_outcomes, http_status_for, select_status
from .orchestrator import BatchOrchestrator, BatchState, dedupe_symbols, partition_windows

__all__ = [
    "BatchOrchestrator",
    "BatchState",
    "RequestMeta",
    "compile_outcomes",
    "dedupe_symbols",
    "http_status_for",
    "partition_windows",
    "select_status",
]
