"""TaskGate database layer."""

from taskgate.db.base import Base, get_session, init_db
from taskgate.db.tables import (
    AuditEntryTable,
    StatusHistoryTable,
    TaskAttachmentTable,
    TaskCommentTable,
    TaskTable,
    UserTable,
)

__all__ = [
    "Base",
    "get_session",
    "init_db",
    "AuditEntryTable",
    "StatusHistoryTable",
    "TaskAttachmentTable",
    "TaskCommentTable",
    "TaskTable",
    "UserTable",
]
