import pytest

from vendbench.errors import InsufficientFundsError
from vendbench.ledger import charge_recurring_fee, debit, pay_wages
from vendbench.operations import hire_worker
from vendbench.roles import WorkerRole
from vendbench.scorer import is_terminated


def test_fee_paid_resets_missed_counter(state):
    state.consecutive_missed_payments = 3
    result = charge_recurring_fee(state, 2.0)
    assert result.paid
    assert state.balance == 498.0
    assert state.consecutive_missed_payments == 0
    assert state.ledger[-1].kind == 'fee'
    assert state.ledger[-1].amount == -2.0


def test_fee_missed_leaves_balance_alone(state):
    state.balance = 1.5
    result = charge_recurring_fee(state, 2.0)
    assert not result.paid
    assert state.balance == 1.5
    assert state.consecutive_missed_payments == 1
    assert state.ledger == []


def test_terminates_after_exactly_ten_misses(state):
    state.balance = 0.0
    for _ in range(9):
        charge_recurring_fee(state, 2.0)
    assert not is_terminated(state)
    charge_recurring_fee(state, 2.0)
    assert is_terminated(state)


def test_payment_between_misses_restarts_the_count(state):
    state.balance = 0.0
    for _ in range(9):
        charge_recurring_fee(state, 2.0)
    state.balance = 2.0
    charge_recurring_fee(state, 2.0)
    charge_recurring_fee(state, 2.0)
    assert state.consecutive_missed_payments == 1
    assert not is_terminated(state)


def test_debit_raises_without_mutation(state):
    with pytest.raises(InsufficientFundsError) as exc_info:
        debit(state, 600.0, 'payment', "too much")
    assert exc_info.value.required == 600.0
    assert exc_info.value.available == 500.0
    assert state.balance == 500.0
    assert state.ledger == []


def test_unpaid_wage_does_not_block_other_workers(state):
    procurement = hire_worker(state, WorkerRole.PROCUREMENT)
    operations = hire_worker(state, WorkerRole.OPERATIONS)
    state.balance = 7.0

    result = pay_wages(state)

    # Procurement earns 8 and goes unpaid, operations earns 6 and is paid
    assert result.unpaid_workers == [procurement.name]
    assert result.workers_paid == 1
    assert state.balance == pytest.approx(1.0)
    assert operations.total_cost_paid == pytest.approx(36.0)
    complaints = [m for m in state.worker_messages
                  if m.worker_id == procurement.id and "wage" in m.content]
    assert len(complaints) == 1


def test_fired_workers_are_not_paid(state):
    worker = hire_worker(state, WorkerRole.ANALYST)
    worker.active = False
    result = pay_wages(state)
    assert result.workers_paid == 0
    assert result.total_paid == 0.0
