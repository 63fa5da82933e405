"""Credential pools, rotate-and-retry policy and rate-limit recovery."""

from lysis.keys.pool import KeyPool, parse_keys
from lysis.keys.recovery import RecoverySuspension
from lysis.keys.retry import ErrorClass, RetryController, RetryPolicy, classify_error
from lysis.keys.store import JsonFileStore, KeyValueStore, MemoryStore

__all__ = [
    "KeyPool",
    "parse_keys",
    "RecoverySuspension",
    "RetryController",
    "RetryPolicy",
    "ErrorClass",
    "classify_error",
    "KeyValueStore",
    "MemoryStore",
    "JsonFileStore",
]
