# vendbench/scorer.py
from typing import Dict, Any
from .models import SimulationState
from .config import BANKRUPTCY_THRESHOLD


def storage_value(state: SimulationState) -> float:
    return sum(item.quantity * item.unit_cost for item in state.storage)


def machine_value(state: SimulationState) -> float:
    return sum(slot.quantity * slot.unit_cost for slot in state.slots)


def net_worth(state: SimulationState) -> float:
    """
    Net Worth = Balance + Uncollected Cash + Inventory at cost.
    Unsold stock counts at what it cost, never at its sale price.
    """
    return state.balance + state.uncollected_cash + storage_value(state) + machine_value(state)


def is_terminated(state: SimulationState, threshold: int = BANKRUPTCY_THRESHOLD) -> bool:
    return state.consecutive_missed_payments >= threshold


def summarize(state: SimulationState, threshold: int = BANKRUPTCY_THRESHOLD) -> Dict[str, Any]:
    stock = storage_value(state)
    machine = machine_value(state)
    return {
        'period': state.period,
        'balance': round(state.balance, 2),
        'uncollected_cash': round(state.uncollected_cash, 2),
        'storage_value': round(stock, 2),
        'machine_value': round(machine, 2),
        'net_worth': round(state.balance + state.uncollected_cash + stock + machine, 2),
        'consecutive_missed_payments': state.consecutive_missed_payments,
        'terminated': is_terminated(state, threshold),
    }
