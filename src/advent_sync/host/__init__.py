"""Host runtime collaborators: persistent storage and reachability."""

from .reachability import ManualReachability, Reachability
from .storage import InMemoryKeyValueStore, JsonFileKeyValueStore, KeyValueStore

__all__ = [
    "InMemoryKeyValueStore",
    "JsonFileKeyValueStore",
    "KeyValueStore",
    "ManualReachability",
    "Reachability",
]
