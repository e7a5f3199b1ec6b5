"""Unit tests for the per-plan lock map"""

import threading
import uuid

from clinic_ledger.services.reconciliation import PlanLocks


def test_entry_released_after_hold():
    locks = PlanLocks()
    plan_id = uuid.uuid4()

    with locks.hold(plan_id):
        assert len(locks) == 1

    assert len(locks) == 0


def test_entry_released_when_body_raises():
    locks = PlanLocks()
    try:
        with locks.hold(uuid.uuid4()):
            raise ValueError("boom")
    except ValueError:
        pass

    assert len(locks) == 0


def test_many_plans_leave_no_entries():
    locks = PlanLocks()
    for _ in range(100):
        with locks.hold(uuid.uuid4()):
            pass

    assert len(locks) == 0


def test_waiter_keeps_entry_until_it_finishes():
    locks = PlanLocks()
    plan_id = uuid.uuid4()
    entered = threading.Event()
    order = []

    def waiter():
        entered.set()
        with locks.hold(plan_id):
            order.append("waiter")

    with locks.hold(plan_id):
        thread = threading.Thread(target=waiter)
        thread.start()
        entered.wait(timeout=5)
        order.append("holder")
        assert len(locks) == 1
    thread.join(timeout=5)

    assert order == ["holder", "waiter"]
    assert len(locks) == 0
