"""Storage components for message caching and workflow checkpointing.

This package provides:
- TTLMessageCache: per-topic memo of reconstructed message sequences
- WorkflowJournal: append-only JSONL checkpoint journal
"""

from topicquota.storage.cache import TTLMessageCache
from topicquota.storage.journal import WorkflowJournal

__all__ = [
    "TTLMessageCache",
    "WorkflowJournal",
]
