"""Backend collaborators for the progress sync engine."""

from .classify import FailureKind, classify_failure, is_duplicate_conflict
from .memory import InMemoryProgressBackend
from .supabase import SupabaseProgressBackend, SupabaseSettings
from .types import ProgressBackend, RecordOutcome

__all__ = [
    "FailureKind",
    "InMemoryProgressBackend",
    "ProgressBackend",
    "RecordOutcome",
    "SupabaseProgressBackend",
    "SupabaseSettings",
    "classify_failure",
    "is_duplicate_conflict",
]
