# vendbench/engine.py
import asyncio
import logging
import numpy as np
from typing import Dict, Any, List, Optional, Callable
from pydantic import BaseModel

from . import operations
from .backend import Backend
from .config import SimulationConfig, AGENT_ADDRESS, STORAGE_ADDRESS, MACHINE_ROWS, MACHINE_COLS
from .correspondence import Resolution, process_outgoing
from .demand import ParamCache, simulate_demand
from .ledger import FeeResult, WageResult, charge_recurring_fee, pay_wages
from .models import SimulationState, Slot, StorageItem, Message, SaleResult, WorkerExecution
from .operations import slot_size
from .roles import WorkerRole, marketplace_listing
from .scheduler import WorkerScheduler, TickReport, EventSink, status_report, worker_report
from .scorer import net_worth, is_terminated

logger = logging.getLogger(__name__)


class PeriodReport(BaseModel):
    period: int
    fee: FeeResult
    wages: WageResult
    finalized_tasks: List[str] = []
    correspondence: List[Resolution] = []
    deliveries: int = 0
    sales: List[SaleResult] = []
    total_revenue: float = 0.0
    net_worth: float
    terminated: bool


def create_initial_state(config: SimulationConfig) -> SimulationState:
    slots = []
    for row in range(MACHINE_ROWS):
        for col in range(MACHINE_COLS):
            slots.append(Slot(position=row * MACHINE_COLS + col, row=row, col=col,
                              size_class=slot_size(row)))
    return SimulationState(period=1, balance=config.starting_balance, slots=slots)


def apply_deliveries(state: SimulationState) -> int:
    """Move every due order into storage and notify the principal."""
    due = [o for o in state.pending_orders if not o.delivered and o.deliver_at_period <= state.period]
    for order in due:
        for item in order.items:
            existing = next((s for s in state.storage
                             if s.name == item.name and s.size_class == item.size_class), None)
            if existing:
                existing.quantity += item.quantity
            else:
                state.storage.append(StorageItem(name=item.name, quantity=item.quantity,
                                                 unit_cost=item.unit_cost,
                                                 size_class=item.size_class))
        order.delivered = True

        item_list = "\n".join(f"- {i.quantity}x {i.name}" for i in order.items)
        state.messages.append(Message(
            sender=order.supplier,
            recipient=AGENT_ADDRESS,
            subject="Your order has been delivered",
            body=(f"Your order has been delivered to your storage facility at {STORAGE_ADDRESS}.\n\n"
                  f"Items delivered:\n{item_list}\n\nTotal: ${order.total_paid:.2f}"),
            period=state.period,
        ))
        logger.info("Delivered order %s from %s (%d units)", order.id, order.supplier,
                    sum(i.quantity for i in order.items))
    return len(due)


async def advance_period(state: SimulationState, scheduler: WorkerScheduler, backend: Backend,
                         cache: ParamCache, rng: np.random.RandomState, config: SimulationConfig,
                         event_sink: Optional[EventSink] = None) -> PeriodReport:
    """
    Close the current period. The order matters: fee and wages settle before
    any sales, so a business that cannot pay today cannot sell its way out of it.
    """
    emit = event_sink or (lambda event: None)
    logger.info("Closing period %d", state.period)

    # 1. Nothing in flight crosses the boundary
    finalized = scheduler.finalize_at_period_boundary(state)

    # 2. Operating fee
    fee = charge_recurring_fee(state, config.daily_fee)
    emit({'event': 'fee', 'period': state.period, **fee.model_dump()})

    # 3. Wages
    wages = pay_wages(state)
    emit({'event': 'wage', 'period': state.period, **wages.model_dump()})

    # 4. Supplier correspondence
    resolutions = await process_outgoing(state, backend, config)
    for resolution in resolutions:
        emit({'event': 'correspondence', 'period': state.period, **resolution.model_dump()})

    # 5. Deliveries
    delivered = apply_deliveries(state)
    if delivered:
        emit({'event': 'delivery', 'period': state.period, 'orders': delivered})

    # 6. Customers
    sales = await simulate_demand(state, cache, backend, rng, config)
    for sale in sales:
        emit({'event': 'sale', 'period': state.period, **sale.model_dump()})

    # 7. Clock
    state.period += 1
    state.ticks_this_period = 0

    report = PeriodReport(
        period=state.period,
        fee=fee,
        wages=wages,
        finalized_tasks=[t.id for t in finalized],
        correspondence=resolutions,
        deliveries=delivered,
        sales=sales,
        total_revenue=round(sum(s.revenue for s in sales), 2),
        net_worth=round(net_worth(state), 2),
        terminated=is_terminated(state, config.bankruptcy_threshold),
    )
    logger.info("Period %d opened: revenue $%.2f, net worth $%.2f",
                report.period, report.total_revenue, report.net_worth)
    return report


class VendingEnv:
    """
    Owns the simulation state and serialises every mutating call through one lock,
    so the principal's actions, worker ticks and period closes never interleave.
    """

    def __init__(self, backend: Backend, config: Optional[SimulationConfig] = None,
                 scenario_file: Optional[str] = None, event_sink: Optional[EventSink] = None):
        if scenario_file:
            config = SimulationConfig.from_file(scenario_file)
        self.config = config or SimulationConfig()
        self.backend = backend
        self.rng = np.random.RandomState(self.config.seed)
        self.cache = ParamCache()
        self.events: List[Dict[str, Any]] = []
        self._event_sink = event_sink
        self.scheduler = WorkerScheduler(backend, self.config, event_sink=self._emit)
        self.state = create_initial_state(self.config)
        self.history: List[PeriodReport] = []
        self._lock = asyncio.Lock()

    def _emit(self, event: Dict[str, Any]) -> None:
        self.events.append(event)
        if self._event_sink is not None:
            self._event_sink(event)

    async def _mutate(self, fn: Callable, *args, **kwargs):
        async with self._lock:
            return fn(self.state, *args, **kwargs)

    # --- Driver entry points ---

    async def tick(self) -> TickReport:
        async with self._lock:
            return await self.scheduler.tick(self.state)

    async def advance_period(self) -> PeriodReport:
        async with self._lock:
            report = await advance_period(self.state, self.scheduler, self.backend, self.cache,
                                          self.rng, self.config, self._emit)
            self.history.append(report)
            return report

    @property
    def terminated(self) -> bool:
        return is_terminated(self.state, self.config.bankruptcy_threshold)

    # --- Workers ---

    async def hire(self, role: WorkerRole):
        return await self._mutate(operations.hire_worker, role)

    async def fire(self, worker_id: str):
        return await self._mutate(operations.fire_worker, worker_id)

    async def message_worker(self, worker_id: str, content: str):
        return await self._mutate(operations.message_worker, worker_id, content)

    async def assign(self, worker_id: str, task_description: str) -> WorkerExecution:
        return await self._mutate(self.scheduler.assign, worker_id, task_description)

    async def approve(self, execution_id: str, context: str = "") -> WorkerExecution:
        return await self._mutate(self.scheduler.approve, execution_id, context)

    async def deny(self, execution_id: str, context: str = "") -> WorkerExecution:
        return await self._mutate(self.scheduler.deny, execution_id, context)

    # --- Machine and money ---

    async def stock_slot(self, product_name: str, row: int, col: int, quantity: int, price: float):
        return await self._mutate(operations.stock_slot, product_name, row, col, quantity, price)

    async def unstock_slot(self, row: int, col: int):
        return await self._mutate(operations.unstock_slot, row, col)

    async def set_price(self, row: int, col: int, price: float):
        return await self._mutate(operations.set_price, row, col, price)

    async def collect_cash(self):
        return await self._mutate(operations.collect_cash)

    async def make_payment(self, amount: float, recipient: str, description: str):
        return await self._mutate(operations.make_payment, amount, recipient, description)

    async def send_message(self, to: str, subject: str, body: str) -> Message:
        return await self._mutate(operations.send_message, to, subject, body)

    async def reply_message(self, message_id: str, body: str) -> Message:
        return await self._mutate(operations.reply_message, message_id, body)

    async def read_messages(self, unread_only: bool = True, limit: int = 10):
        return await self._mutate(operations.read_messages, unread_only, limit)

    # --- Memory ---

    async def read_scratchpad(self):
        return await self._mutate(operations.read_scratchpad)

    async def write_scratchpad(self, content: str, append: bool = False):
        return await self._mutate(operations.write_scratchpad, content, append)

    async def kv_get(self, key: str):
        return await self._mutate(operations.kv_get, key)

    async def kv_set(self, key: str, value: str):
        return await self._mutate(operations.kv_set, key, value)

    async def kv_delete(self, key: str):
        return await self._mutate(operations.kv_delete, key)

    async def kv_list(self):
        return await self._mutate(operations.kv_list)

    # --- Prompt context ---

    def observation(self) -> Dict[str, Any]:
        state = self.state
        return {
            'period': state.period,
            'balance': round(state.balance, 2),
            'uncollected_cash': round(state.uncollected_cash, 2),
            'storage': operations.storage_view(state),
            'machine': operations.machine_view(state),
            'unread_messages': operations.unread_count(state),
            'pending_orders': len([o for o in state.pending_orders if not o.delivered]),
            'marketplace': marketplace_listing([w.role for w in state.workers if w.active]),
            'worker_costs': operations.worker_costs(state),
            'workers': worker_report(state),
            'tasks': [status_report(state, execution_id=e.id) for e in state.active_executions],
            'consecutive_missed_payments': state.consecutive_missed_payments,
            'net_worth': round(net_worth(state), 2),
            'memory_keys': sorted(state.kv_store),
        }
