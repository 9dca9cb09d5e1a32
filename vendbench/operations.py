# vendbench/operations.py
"""
State mutations behind the principal's tools and the workers' capabilities.
Every function either applies fully or raises a domain error with the state untouched.
"""
import logging
from typing import Dict, Any, List

from .config import AGENT_ADDRESS, MACHINE_ROWS, MACHINE_COLS, SMALL_ROWS
from .errors import ValidationError
from .ledger import debit, credit, record_transaction
from .models import SimulationState, Slot, StorageItem, Message, Worker, WorkerMessage, SizeClass
from .roles import WorkerRole, HIRE_FEES, WORKER_NAMES, DAILY_WAGES, PER_TASK_FEES

logger = logging.getLogger(__name__)


def slot_size(row: int) -> SizeClass:
    return 'small' if row < SMALL_ROWS else 'large'


def _slot(state: SimulationState, row: int, col: int) -> Slot:
    if not (0 <= row < MACHINE_ROWS and 0 <= col < MACHINE_COLS):
        raise ValidationError(f"Invalid slot position: row {row}, col {col}")
    slot = state.find_slot(row, col)
    if slot is None:
        raise ValidationError(f"No slot at row {row}, col {col}")
    return slot


def _return_to_storage(state: SimulationState, name: str, quantity: int,
                       unit_cost: float, size_class: SizeClass) -> None:
    existing = next((s for s in state.storage
                     if s.name == name and s.size_class == size_class), None)
    if existing:
        existing.quantity += quantity
    else:
        state.storage.append(StorageItem(name=name, quantity=quantity,
                                         unit_cost=unit_cost, size_class=size_class))


# --- Machine ---

def stock_slot(state: SimulationState, product_name: str, row: int, col: int,
               quantity: int, price: float) -> Dict[str, Any]:
    """Move units from storage into a slot. A different product already there goes back to storage."""
    if quantity <= 0:
        raise ValidationError("Quantity must be positive")
    if price < 0:
        raise ValidationError("Price cannot be negative")
    slot = _slot(state, row, col)
    matches = [s for s in state.storage if s.name.lower() == product_name.lower()]
    if not matches:
        raise ValidationError(f"Product '{product_name}' not found in storage")
    item = next((s for s in matches if s.size_class == slot.size_class), None)
    if item is None:
        raise ValidationError(
            f"Size mismatch: slot at row {row} holds {slot.size_class} items, "
            f"'{matches[0].name}' is {matches[0].size_class}"
        )
    if item.quantity < quantity:
        raise ValidationError(
            f"Only {item.quantity} units of '{item.name}' available in storage"
        )

    if slot.product_name is not None and slot.product_name != item.name and slot.quantity > 0:
        _return_to_storage(state, slot.product_name, slot.quantity, slot.unit_cost, slot.size_class)
        slot.quantity = 0

    item.quantity -= quantity
    if slot.product_name == item.name:
        # Blend the cost basis so stock stays valued at what was paid
        total = slot.quantity + quantity
        slot.unit_cost = (slot.unit_cost * slot.quantity + item.unit_cost * quantity) / total
        slot.quantity = total
    else:
        slot.product_name = item.name
        slot.unit_cost = item.unit_cost
        slot.quantity = quantity
    slot.price = price
    state.storage = [s for s in state.storage if s.quantity > 0]

    logger.debug("Stocked %d x %s into slot %d at $%.2f", quantity, item.name, slot.position, price)
    return {
        'product': slot.product_name,
        'slot': {'row': row, 'col': col},
        'quantity': slot.quantity,
        'price': price,
    }


def unstock_slot(state: SimulationState, row: int, col: int) -> Dict[str, Any]:
    """Empty a slot back into storage at its cost basis."""
    slot = _slot(state, row, col)
    if slot.product_name is None:
        raise ValidationError(f"Slot at row {row}, col {col} is empty")
    moved = slot.quantity
    if moved > 0:
        _return_to_storage(state, slot.product_name, moved, slot.unit_cost, slot.size_class)
    name = slot.product_name
    slot.product_name = None
    slot.quantity = 0
    slot.unit_cost = 0.0
    slot.price = 0.0
    return {'product': name, 'returned': moved}


def set_price(state: SimulationState, row: int, col: int, price: float) -> Dict[str, Any]:
    if price < 0:
        raise ValidationError("Price cannot be negative")
    slot = _slot(state, row, col)
    if slot.product_name is None:
        raise ValidationError(f"Slot at row {row}, col {col} is empty. Stock a product first.")
    old_price = slot.price
    slot.price = price
    return {'product': slot.product_name, 'old_price': old_price, 'new_price': price}


def collect_cash(state: SimulationState) -> Dict[str, Any]:
    collected = state.uncollected_cash
    if collected > 0:
        credit(state, collected, 'collection', "Cash collected from vending machine")
        state.uncollected_cash = 0.0
    return {'collected': collected, 'balance': state.balance}


# --- Money ---

def make_payment(state: SimulationState, amount: float, recipient: str,
                 description: str) -> Dict[str, Any]:
    if amount <= 0:
        raise ValidationError("Payment amount must be positive")
    debit(state, amount, 'payment', f"Payment to {recipient}: {description}")
    return {'paid': amount, 'recipient': recipient, 'balance': state.balance}


# --- Messages ---

def send_message(state: SimulationState, to: str, subject: str, body: str,
                 sender: str = AGENT_ADDRESS) -> Message:
    message = Message(sender=sender, recipient=to, subject=subject, body=body,
                      period=state.period, read=True)
    state.messages.append(message)
    return message


def reply_message(state: SimulationState, message_id: str, body: str) -> Message:
    original = next((m for m in state.messages if m.id == message_id), None)
    if original is None:
        raise ValidationError(f"Message {message_id} not found")
    subject = original.subject if original.subject.startswith("Re: ") else f"Re: {original.subject}"
    return send_message(state, original.sender, subject, body)


def read_messages(state: SimulationState, unread_only: bool = True,
                  limit: int = 10) -> List[Dict[str, Any]]:
    inbox = [m for m in state.messages if m.recipient == AGENT_ADDRESS]
    if unread_only:
        inbox = [m for m in inbox if not m.read]
    inbox = sorted(inbox, key=lambda m: m.timestamp, reverse=True)[:limit]
    for m in inbox:
        m.read = True
    return [{'id': m.id, 'from': m.sender, 'subject': m.subject, 'body': m.body,
             'period': m.period} for m in inbox]


# --- Workers ---

def hire_worker(state: SimulationState, role: WorkerRole) -> Worker:
    """One active worker per role; the hire fee is paid up front."""
    role = WorkerRole(role)
    existing = next((w for w in state.workers if w.role == role and w.active), None)
    if existing:
        raise ValidationError(
            f"You already have an active {role.value} worker ({existing.name})"
        )
    fee = HIRE_FEES[role]
    debit(state, fee, 'hire', f"Hire fee: {WORKER_NAMES[role]}")
    worker = Worker(role=role, name=WORKER_NAMES[role], hired_at_period=state.period,
                    total_cost_paid=fee)
    state.workers.append(worker)
    state.worker_messages.append(WorkerMessage(
        worker_id=worker.id, sender='worker', period=state.period,
        content=f"Hello! I'm {worker.name}. Assign me a task whenever you need me.",
    ))
    logger.info("Hired %s for $%.2f", worker.name, fee)
    return worker


def fire_worker(state: SimulationState, worker_id: str) -> Worker:
    """Stops wages. Work already in flight runs until it ends or the period closes."""
    worker = state.find_worker(worker_id)
    if worker is None:
        raise ValidationError(f"Worker {worker_id} not found")
    if not worker.active:
        raise ValidationError(f"{worker.name} was already let go in period {worker.fired_at_period}")
    worker.active = False
    worker.fired_at_period = state.period
    logger.info("Fired %s", worker.name)
    return worker


def message_worker(state: SimulationState, worker_id: str, content: str) -> WorkerMessage:
    worker = state.find_worker(worker_id)
    if worker is None:
        raise ValidationError(f"Worker {worker_id} not found")
    note = WorkerMessage(worker_id=worker.id, sender='principal', content=content,
                         period=state.period, read=True)
    state.worker_messages.append(note)
    return note


# --- Views ---

def balance_view(state: SimulationState, recent: int = 5) -> Dict[str, Any]:
    return {
        'balance': round(state.balance, 2),
        'uncollected_cash': round(state.uncollected_cash, 2),
        'recent_transactions': [
            {'kind': t.kind, 'amount': t.amount, 'description': t.description, 'period': t.period}
            for t in state.ledger[-recent:]
        ],
    }


def storage_view(state: SimulationState) -> Dict[str, Any]:
    items = [{'name': s.name, 'quantity': s.quantity, 'unit_cost': s.unit_cost,
              'size_class': s.size_class} for s in state.storage]
    return {
        'items': items,
        'total_items': sum(s.quantity for s in state.storage),
        'total_value': round(sum(s.quantity * s.unit_cost for s in state.storage), 2),
    }


def machine_view(state: SimulationState) -> Dict[str, Any]:
    slots = [{'row': s.row, 'col': s.col, 'size_class': s.size_class,
              'product': s.product_name, 'quantity': s.quantity, 'price': s.price}
             for s in state.slots]
    return {
        'slots': slots,
        'filled_slots': len([s for s in state.slots if s.product_name]),
        'total_items': sum(s.quantity for s in state.slots),
        'uncollected_cash': round(state.uncollected_cash, 2),
    }


def worker_costs(state: SimulationState) -> Dict[str, float]:
    active = [w for w in state.workers if w.active]
    return {
        'daily_wages': sum(DAILY_WAGES[w.role] for w in active),
        'per_task_fees': sum(PER_TASK_FEES[w.role] for w in active),
    }


def record_sale(state: SimulationState, card_revenue: float, cash_revenue: float,
                description: str) -> None:
    """Card revenue settles now. Cash is logged only when it is collected."""
    state.balance += card_revenue
    state.uncollected_cash += cash_revenue
    record_transaction(state, 'sale', card_revenue, description)


def unread_count(state: SimulationState) -> int:
    return len([m for m in state.messages if m.recipient == AGENT_ADDRESS and not m.read])


# --- Memory ---

def read_scratchpad(state: SimulationState) -> Dict[str, Any]:
    return {'content': state.scratchpad, 'length': len(state.scratchpad)}


def write_scratchpad(state: SimulationState, content: str, append: bool = False) -> Dict[str, Any]:
    state.scratchpad = state.scratchpad + content if append else content
    return {'appended': append, 'length': len(state.scratchpad)}


def kv_get(state: SimulationState, key: str) -> Dict[str, Any]:
    value = state.kv_store.get(key)
    return {'key': key, 'found': value is not None, 'value': value}


def kv_set(state: SimulationState, key: str, value: str) -> Dict[str, Any]:
    existed = key in state.kv_store
    state.kv_store[key] = value
    return {'key': key, 'overwritten': existed}


def kv_delete(state: SimulationState, key: str) -> Dict[str, Any]:
    if key not in state.kv_store:
        raise ValidationError(f"Key '{key}' not found")
    del state.kv_store[key]
    return {'key': key, 'deleted': True}


def kv_list(state: SimulationState) -> Dict[str, Any]:
    keys = sorted(state.kv_store)
    return {'keys': keys, 'count': len(keys)}
