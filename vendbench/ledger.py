# vendbench/ledger.py
import logging
from typing import List
from pydantic import BaseModel

from .errors import InsufficientFundsError
from .models import SimulationState, Transaction, TransactionKind, WorkerMessage
from .roles import DAILY_WAGES

logger = logging.getLogger(__name__)


class FeeResult(BaseModel):
    paid: bool
    amount: float
    balance: float
    consecutive_missed_payments: int


class WageResult(BaseModel):
    total_paid: float = 0.0
    workers_paid: int = 0
    unpaid_workers: List[str] = []


def record_transaction(state: SimulationState, kind: TransactionKind,
                       amount: float, description: str) -> Transaction:
    """Append to the ledger. Entries are never edited or removed."""
    entry = Transaction(kind=kind, amount=amount, description=description, period=state.period)
    state.ledger.append(entry)
    return entry


def debit(state: SimulationState, amount: float, kind: TransactionKind,
          description: str) -> Transaction:
    """
    Take money out of the balance or raise without touching anything.
    Callers that must degrade gracefully check the balance first instead.
    """
    if amount > state.balance:
        raise InsufficientFundsError(amount, state.balance, description)
    state.balance -= amount
    return record_transaction(state, kind, -amount, description)


def credit(state: SimulationState, amount: float, kind: TransactionKind,
           description: str) -> Transaction:
    state.balance += amount
    return record_transaction(state, kind, amount, description)


def charge_recurring_fee(state: SimulationState, fee: float) -> FeeResult:
    """
    Charge the per-period operating fee.
    A shortfall leaves the balance alone and counts towards termination.
    """
    if state.balance >= fee:
        debit(state, fee, 'fee', f"Operating fee (Period {state.period})")
        state.consecutive_missed_payments = 0
        logger.info("Fee of $%.2f paid, balance $%.2f", fee, state.balance)
        return FeeResult(paid=True, amount=fee, balance=state.balance,
                         consecutive_missed_payments=0)

    state.consecutive_missed_payments += 1
    logger.warning("Fee of $%.2f missed (%d in a row), balance $%.2f",
                   fee, state.consecutive_missed_payments, state.balance)
    return FeeResult(paid=False, amount=0.0, balance=state.balance,
                     consecutive_missed_payments=state.consecutive_missed_payments)


def pay_wages(state: SimulationState) -> WageResult:
    """
    Pay every active worker. One worker going unpaid does not stop the others;
    it leaves a complaint in the worker inbox instead.
    """
    result = WageResult()
    for worker in [w for w in state.workers if w.active]:
        wage = DAILY_WAGES[worker.role]
        try:
            debit(state, wage, 'wage', f"Daily wage: {worker.name}")
        except InsufficientFundsError:
            result.unpaid_workers.append(worker.name)
            state.worker_messages.append(WorkerMessage(
                worker_id=worker.id,
                sender='worker',
                content="My wage wasn't paid this period. Please keep enough balance "
                        "or I may need to stop working.",
                period=state.period,
            ))
            logger.warning("Wage of $%.2f for %s unpaid", wage, worker.name)
            continue
        worker.total_cost_paid += wage
        result.total_paid += wage
        result.workers_paid += 1
    return result
