"""Per-rule mutex registry.

Every operation that moves a rule's cursor or active flag runs under
``rule_lock(rule_id)`` so writers in one process are serialized per rule.
Cross-process safety comes from the guarded cursor UPDATE in the engine.
"""

from __future__ import annotations

from threading import Lock
from weakref import WeakValueDictionary


# entries drop out once no caller holds the lock
_RULE_LOCKS: WeakValueDictionary[int, Lock] = WeakValueDictionary()
_RULE_LOCKS_GUARD = Lock()


def rule_lock(rule_id: int) -> Lock:
    with _RULE_LOCKS_GUARD:
        lock = _RULE_LOCKS.get(rule_id)
        if lock is None:
            lock = _RULE_LOCKS[rule_id] = Lock()
        return lock


def registered_locks() -> int:
    with _RULE_LOCKS_GUARD:
        return len(_RULE_LOCKS)
