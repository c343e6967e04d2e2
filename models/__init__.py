"""Data models exposed by the Comedor application."""
from .journal_entry import JournalEntry
from .pending_op import OperationKind, PendingOperation

__all__ = ["JournalEntry", "OperationKind", "PendingOperation"]
