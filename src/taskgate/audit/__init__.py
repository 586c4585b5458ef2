"""TaskGate audit trail: failure-isolated writer and named queries."""

from taskgate.audit.recorder import AuditRecorder

__all__ = ["AuditRecorder"]
