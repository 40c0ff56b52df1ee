"""Audit trail of task executions."""

from .records import TASK_EXECUTION, ExecutionRecord, build_records
from .store import AuditFile, FileAuditStore

__all__ = [
    "TASK_EXECUTION",
    "AuditFile",
    "ExecutionRecord",
    "FileAuditStore",
    "build_records",
]
