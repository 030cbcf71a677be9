from __future__ import annotations

from moneyflow.services.locks import registered_locks, rule_lock


def test_same_rule_shares_one_lock_while_held():
    first = rule_lock(9001)
    assert rule_lock(9001) is first
    assert rule_lock(9002) is not first


def test_released_locks_leave_the_registry():
    baseline = registered_locks()
    lock = rule_lock(9003)
    with lock:
        assert registered_locks() == baseline + 1
    del lock
    assert registered_locks() == baseline
