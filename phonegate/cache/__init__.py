"""
Transient key-value storage for OTPs, pending signups and reset sessions.
"""
from .core import KeyValueStore, StoreStats, create_store
from .backends import InMemoryBackend, RedisBackend
from .serializers import JSONSerializer, json_serializer

__all__ = [
    "KeyValueStore", "StoreStats", "create_store",
    "InMemoryBackend", "RedisBackend",
    "JSONSerializer", "json_serializer",
]
