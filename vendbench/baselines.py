# vendbench/baselines.py
"""
Deterministic stand-ins for the model backend and for the principal, used to
run the benchmark end to end without an API key.
"""
import re
import zlib
from collections import defaultdict, deque
from typing import Deque, Dict, Iterable, List, Optional, Union, Any

from .backend import (
    AgentSession, AgentTurn, Backend, ChargeAccount, CreateShipment, SendReply,
    GetBalance, ViewMachine, ViewStorage, CollectCash,
)
from .models import OrderItem, ProductParams
from .roles import Capability

Scripted = Union[AgentTurn, Exception]


class ScriptedBackend(Backend):
    """
    Replays queued turns per session owner (a worker id or a supplier address).
    Queue an Exception to make that turn fail. An empty queue finishes the task.
    """

    def __init__(self, params: Optional[Dict[str, ProductParams]] = None,
                 default_params: Optional[ProductParams] = None):
        self.params = dict(params or {})
        self.default_params = default_params or ProductParams(
            reference_price=2.0, base_demand=8.0, elasticity=1.0)
        self.turns: Dict[str, Deque[Scripted]] = defaultdict(deque)
        self.param_calls: List[str] = []
        self.sessions: List[AgentSession] = []

    def script(self, owner: str, *turns: Scripted) -> None:
        self.turns[owner].extend(turns)

    async def next_turn(self, session: AgentSession) -> AgentTurn:
        if session not in self.sessions:
            self.sessions.append(session)
        queue = self.turns[session.owner]
        if not queue:
            return AgentTurn(text="Done.")
        turn = queue.popleft()
        if isinstance(turn, Exception):
            raise turn
        return turn

    async def product_params(self, product_name: str) -> ProductParams:
        self.param_calls.append(product_name)
        return self.params.get(product_name, self.default_params)


# --- Heuristic backend ---

# name: (unit cost, size class)
CATALOG = {
    'Coca-Cola': (0.75, 'large'),
    'Water': (0.40, 'large'),
    'Energy Drink': (1.20, 'large'),
    'Iced Tea': (0.70, 'large'),
    'Chips': (0.50, 'small'),
    'Candy Bar': (0.45, 'small'),
    'Granola Bar': (0.60, 'small'),
    'Cookies': (0.55, 'small'),
}

DRINK_WORDS = ('cola', 'water', 'drink', 'tea', 'coffee', 'juice', 'soda')

ORDER_LINE = re.compile(r'^\s*(\d+)\s*x\s*(.+?)\s*$', re.IGNORECASE | re.MULTILINE)


def _stable_fraction(name: str) -> float:
    return (zlib.crc32(name.lower().encode()) % 1000) / 1000.0


def guess_size(name: str) -> str:
    known = CATALOG.get(name)
    if known:
        return known[1]
    return 'large' if any(w in name.lower() for w in DRINK_WORDS) else 'small'


def wholesale_cost(name: str) -> float:
    known = CATALOG.get(name)
    if known:
        return known[0]
    return round(0.4 + _stable_fraction(name) * 0.8, 2)


def parse_order(body: str) -> List[OrderItem]:
    """Order lines look like '20 x Chips'."""
    items = []
    for qty, name in ORDER_LINE.findall(body):
        name = name.strip()
        items.append(OrderItem(name=name, quantity=int(qty), unit_cost=wholesale_cost(name),
                               size_class=guess_size(name)))
    return items


class HeuristicBackend(Backend):
    """Rule-based supplier and workers with name-derived demand parameters."""

    async def product_params(self, product_name: str) -> ProductParams:
        f = _stable_fraction(product_name)
        reference = wholesale_cost(product_name) * 2.5
        return ProductParams(reference_price=round(reference, 2),
                             base_demand=round(4 + f * 8, 1),
                             elasticity=round(1.0 + f, 2))

    async def next_turn(self, session: AgentSession) -> AgentTurn:
        if Capability.CHARGE_ACCOUNT in session.capabilities:
            return self._supplier_turn(session)
        return self._worker_turn(session)

    def _supplier_turn(self, session: AgentSession) -> AgentTurn:
        # Charge first, then ship only if the charge went through
        items = parse_order(session.history[0]['content'])
        if session.turns_taken == 0:
            if not items:
                price_list = "\n".join(f"- {name}: ${cost:.2f} ({size})"
                                       for name, (cost, size) in CATALOG.items())
                return AgentTurn(tool_calls=[SendReply(
                    subject="Price list",
                    body=f"Thanks for reaching out. Our current wholesale prices:\n{price_list}\n\n"
                         f"Order by sending lines like '20 x Chips'.")])
            total = round(sum(i.quantity * i.unit_cost for i in items), 2)
            return AgentTurn(tool_calls=[
                ChargeAccount(amount=total, description=f"{len(items)} line order"),
            ])
        if session.turns_taken > 1 or not items:
            return AgentTurn(text="Request processed.")

        charge = session.history[-1]['content'][0]
        if 'error' in charge:
            return AgentTurn(tool_calls=[SendReply(
                subject="Order declined",
                body=f"We could not charge your account: {charge['error']}")])
        total = charge['output']['charged']
        lines = "\n".join(f"- {i.quantity}x {i.name} @ ${i.unit_cost:.2f}" for i in items)
        return AgentTurn(tool_calls=[
            CreateShipment(items=items, total_amount=total),
            SendReply(subject="Order confirmation",
                      body=f"Your order is confirmed:\n{lines}\nTotal: ${total:.2f}"),
        ])

    def _worker_turn(self, session: AgentSession) -> AgentTurn:
        # First step looks around, second reports
        if session.turns_taken == 0:
            calls: List[Any] = [GetBalance()]
            if Capability.VIEW_MACHINE in session.capabilities:
                calls.append(ViewMachine())
            if Capability.VIEW_STORAGE in session.capabilities:
                calls.append(ViewStorage())
            if Capability.COLLECT_CASH in session.capabilities:
                calls.append(CollectCash())
            return AgentTurn(text="Checking the current position.", tool_calls=calls)
        results = session.history[-2]['content'] if len(session.history) >= 2 else []
        summary = "; ".join(str(r.get('output', r.get('error'))) for r in results
                            if isinstance(r, dict))
        return AgentTurn(text=f"Report: {summary}" if summary else "Task complete.")


# --- Baseline principal ---

class SmartPrincipal:
    """
    Orders a fixed assortment, keeps the machine stocked at a markup over cost,
    hires an operations worker and hands it the cash runs.
    """

    def __init__(self, supplier: str = "orders@vendingwholesale.com",
                 assortment: Optional[Iterable[str]] = None, reorder_every: int = 5):
        self.supplier = supplier
        self.assortment = list(assortment or CATALOG.keys())
        self.reorder_every = reorder_every
        self.markup = 2.5

    def act(self, obs: Dict[str, Any]) -> List[Dict[str, Any]]:
        actions: List[Dict[str, Any]] = []

        # 1. Restock from the supplier
        awaiting = obs['pending_orders'] > 0 or obs['storage']['total_items'] > 0
        if obs['period'] % self.reorder_every == 1 and not awaiting and obs['balance'] > 60:
            body = "\n".join(f"10 x {name}" for name in self.assortment)
            actions.append({'op': 'send_message', 'to': self.supplier,
                            'subject': "Order", 'body': body})

        # 2. Fill empty slots, matching size classes
        free = [s for s in obs['machine']['slots'] if s['quantity'] == 0]
        for item in obs['storage']['items']:
            slot = next((s for s in free if s['size_class'] == item['size_class']), None)
            if slot is None:
                continue
            free.remove(slot)
            actions.append({'op': 'stock_slot', 'product_name': item['name'],
                            'row': slot['row'], 'col': slot['col'],
                            'quantity': item['quantity'],
                            'price': round(item['unit_cost'] * self.markup, 2)})

        # 3. Delegate cash collection
        ops_worker = next((w for w in obs['workers']
                           if w['role'] == 'operations' and w['status'] == 'active'), None)
        if ops_worker is None:
            if obs['balance'] > 150:
                actions.append({'op': 'hire', 'role': 'operations'})
        elif obs['uncollected_cash'] > 10 and not obs['tasks']:
            actions.append({'op': 'assign', 'worker_id': ops_worker['worker_id'],
                            'task': "Collect the cash from the machine and report the balance."})

        # 4. Approve anything a worker is blocked on
        for task in obs['tasks']:
            if task['status'] == 'waiting_approval':
                actions.append({'op': 'approve', 'execution_id': task['execution_id']})
        return actions
