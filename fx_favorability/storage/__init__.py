"""Key-value persistence contract used by the history store.

Modules
-------
kv — ``KeyValueStore`` interface, in-memory implementation and JSON helpers
"""
