# vendbench/models.py
import uuid
from datetime import datetime
from typing import Literal, Dict, List, Optional, Set, Any
from pydantic import BaseModel, ConfigDict, Field

from .errors import InvariantViolation
from .roles import WorkerRole

SizeClass = Literal['small', 'large']
ExecutionStatus = Literal['running', 'waiting_approval', 'completed', 'failed']
TransactionKind = Literal[
    'fee', 'wage', 'hire', 'task_fee', 'payment', 'supplier_charge', 'collection', 'sale'
]

# Allowed execution status moves; completed and failed are absorbing
TRANSITIONS: Dict[str, Set[str]] = {
    'running': {'waiting_approval', 'completed', 'failed'},
    'waiting_approval': {'running', 'completed'},
    'completed': set(),
    'failed': set(),
}


def new_id() -> str:
    return uuid.uuid4().hex


class StorageItem(BaseModel):
    name: str
    quantity: int
    unit_cost: float
    size_class: SizeClass


class Slot(BaseModel):
    position: int
    row: int
    col: int
    size_class: SizeClass
    product_name: Optional[str] = None
    quantity: int = 0
    unit_cost: float = 0.0
    price: float = 0.0


class OrderItem(BaseModel):
    name: str
    quantity: int = Field(gt=0)
    unit_cost: float = Field(ge=0)
    size_class: SizeClass


class PendingOrder(BaseModel):
    id: str = Field(default_factory=new_id)
    supplier: str
    items: List[OrderItem]
    total_paid: float
    ordered_at_period: int
    deliver_at_period: int
    delivered: bool = False


class Message(BaseModel):
    id: str = Field(default_factory=new_id)
    sender: str
    recipient: str
    subject: str
    body: str
    period: int
    timestamp: datetime = Field(default_factory=datetime.now)
    read: bool = False


class WorkerMessage(BaseModel):
    id: str = Field(default_factory=new_id)
    worker_id: str
    sender: Literal['principal', 'worker']
    content: str
    period: int
    read: bool = False


class Transaction(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_id)
    kind: TransactionKind
    amount: float
    description: str
    period: int
    timestamp: datetime = Field(default_factory=datetime.now)


class Worker(BaseModel):
    id: str = Field(default_factory=new_id)
    role: WorkerRole
    name: str
    active: bool = True
    hired_at_period: int
    fired_at_period: Optional[int] = None
    tasks_completed: int = 0
    total_cost_paid: float = 0.0


class ApprovalRequest(BaseModel):
    id: str = Field(default_factory=new_id)
    kind: Literal['payment', 'action']
    description: str
    amount: Optional[float] = None
    ticks_waiting: int = 0


class ToolRecord(BaseModel):
    tool: str
    input: Dict[str, Any] = {}
    output: Any = None


class Step(BaseModel):
    number: int
    text: Optional[str] = None
    tool_calls: List[ToolRecord] = []
    timestamp: datetime = Field(default_factory=datetime.now)


class WorkerExecution(BaseModel):
    id: str = Field(default_factory=new_id)
    worker_id: str
    task_description: str
    status: ExecutionStatus = 'running'
    steps: List[Step] = []
    step_count: int = 0
    max_steps: int
    cost: float
    started_at_period: int
    pending_approval: Optional[ApprovalRequest] = None
    # Decision text handed to the worker on its next step
    feedback: Optional[str] = None
    # Approved request a gated action may consume once
    granted: Optional[ApprovalRequest] = None
    result: Optional[str] = None

    @property
    def is_active(self) -> bool:
        return self.status in ('running', 'waiting_approval')

    def transition(self, status: ExecutionStatus) -> None:
        if status not in TRANSITIONS[self.status]:
            raise InvariantViolation(
                f"Execution {self.id} cannot move from {self.status} to {status}"
            )
        self.status = status


class CompletedTask(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    worker_id: str
    description: str
    status: Literal['completed', 'failed']
    result: Optional[str]
    tools_used: List[str]
    cost: float
    step_count: int
    assigned_at_period: int
    completed_at_period: int


class SimulationState(BaseModel):
    period: int = 1
    balance: float
    uncollected_cash: float = 0.0
    storage: List[StorageItem] = []
    slots: List[Slot]
    workers: List[Worker] = []
    active_executions: List[WorkerExecution] = []
    task_history: List[CompletedTask] = []
    pending_orders: List[PendingOrder] = []
    messages: List[Message] = []
    processed_ids: Set[str] = set()
    worker_messages: List[WorkerMessage] = []
    consecutive_missed_payments: int = 0
    ledger: List[Transaction] = []
    # Principal memory; workers may be granted read access
    scratchpad: str = ""
    kv_store: Dict[str, str] = {}
    # Cleared when the period advances
    ticks_this_period: int = 0

    def find_worker(self, worker_id: str) -> Optional[Worker]:
        return next((w for w in self.workers if w.id == worker_id), None)

    def find_execution(self, execution_id: str) -> Optional[WorkerExecution]:
        return next((e for e in self.active_executions if e.id == execution_id), None)

    def find_slot(self, row: int, col: int) -> Optional[Slot]:
        return next((s for s in self.slots if s.row == row and s.col == col), None)


class ProductParams(BaseModel):
    reference_price: float = Field(gt=0)
    base_demand: float = Field(ge=0)
    elasticity: float = Field(ge=0)


class SaleResult(BaseModel):
    product_name: str
    position: int
    quantity: int
    revenue: float
    card_revenue: float
    cash_revenue: float
