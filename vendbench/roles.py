# vendbench/roles.py
from enum import Enum
from typing import Dict, FrozenSet, List, Any


class WorkerRole(str, Enum):
    ANALYST = 'analyst'
    PROCUREMENT = 'procurement'
    OPERATIONS = 'operations'


class Capability(str, Enum):
    GET_BALANCE = 'get_balance'
    VIEW_STORAGE = 'view_storage'
    VIEW_MACHINE = 'view_machine'
    READ_MESSAGES = 'read_messages'
    SEND_MESSAGE = 'send_message'
    REPLY_MESSAGE = 'reply_message'
    MAKE_PAYMENT = 'make_payment'
    STOCK_SLOT = 'stock_slot'
    SET_PRICE = 'set_price'
    COLLECT_CASH = 'collect_cash'
    REQUEST_APPROVAL = 'request_approval'
    # Memory
    READ_SCRATCHPAD = 'read_scratchpad'
    WRITE_SCRATCHPAD = 'write_scratchpad'
    KV_GET = 'kv_get'
    KV_SET = 'kv_set'
    KV_DELETE = 'kv_delete'
    KV_LIST = 'kv_list'
    # Supplier-only primitives
    CHARGE_ACCOUNT = 'charge_account'
    CREATE_SHIPMENT = 'create_shipment'
    SEND_REPLY = 'send_reply'


# Worker Economics
HIRE_FEES: Dict[WorkerRole, float] = {
    WorkerRole.ANALYST: 25.0,
    WorkerRole.PROCUREMENT: 40.0,
    WorkerRole.OPERATIONS: 30.0,
}

DAILY_WAGES: Dict[WorkerRole, float] = {
    WorkerRole.ANALYST: 5.0,
    WorkerRole.PROCUREMENT: 8.0,
    WorkerRole.OPERATIONS: 6.0,
}

PER_TASK_FEES: Dict[WorkerRole, float] = {
    WorkerRole.ANALYST: 2.0,
    WorkerRole.PROCUREMENT: 3.0,
    WorkerRole.OPERATIONS: 2.0,
}

WORKER_NAMES: Dict[WorkerRole, str] = {
    WorkerRole.ANALYST: "Alex the Analyst",
    WorkerRole.PROCUREMENT: "Pat the Procurement Specialist",
    WorkerRole.OPERATIONS: "Omar the Operations Manager",
}

ROLE_CAPABILITIES: Dict[WorkerRole, FrozenSet[Capability]] = {
    WorkerRole.ANALYST: frozenset({
        Capability.GET_BALANCE,
        Capability.VIEW_STORAGE,
        Capability.VIEW_MACHINE,
        Capability.READ_SCRATCHPAD,
        Capability.KV_GET,
        Capability.KV_LIST,
        Capability.REQUEST_APPROVAL,
    }),
    WorkerRole.PROCUREMENT: frozenset({
        Capability.GET_BALANCE,
        Capability.VIEW_STORAGE,
        Capability.READ_MESSAGES,
        Capability.SEND_MESSAGE,
        Capability.REPLY_MESSAGE,
        Capability.MAKE_PAYMENT,
        Capability.REQUEST_APPROVAL,
    }),
    WorkerRole.OPERATIONS: frozenset({
        Capability.GET_BALANCE,
        Capability.VIEW_STORAGE,
        Capability.VIEW_MACHINE,
        Capability.STOCK_SLOT,
        Capability.SET_PRICE,
        Capability.COLLECT_CASH,
        Capability.REQUEST_APPROVAL,
    }),
}

SUPPLIER_CAPABILITIES: FrozenSet[Capability] = frozenset({
    Capability.CHARGE_ACCOUNT,
    Capability.CREATE_SHIPMENT,
    Capability.SEND_REPLY,
})

# Actions a role may only take after the principal signs off
APPROVAL_GATED: Dict[WorkerRole, FrozenSet[Capability]] = {
    WorkerRole.ANALYST: frozenset(),
    WorkerRole.PROCUREMENT: frozenset({Capability.MAKE_PAYMENT}),
    WorkerRole.OPERATIONS: frozenset({Capability.SET_PRICE}),
}

ROLE_DESCRIPTIONS: Dict[WorkerRole, str] = {
    WorkerRole.ANALYST: "Data analysis and market research specialist.",
    WorkerRole.PROCUREMENT: "Supplier relations and ordering specialist.",
    WorkerRole.OPERATIONS: "Machine stocking, pricing and cash collection specialist.",
}


def marketplace_listing(active_roles: List[WorkerRole]) -> List[Dict[str, Any]]:
    """One entry per role with costs, capabilities and whether it is already hired."""
    listing = []
    for role in WorkerRole:
        listing.append({
            'role': role.value,
            'name': WORKER_NAMES[role],
            'description': ROLE_DESCRIPTIONS[role],
            'capabilities': sorted(c.value for c in ROLE_CAPABILITIES[role]),
            'needs_approval_for': sorted(c.value for c in APPROVAL_GATED[role]),
            'hire_fee': HIRE_FEES[role],
            'daily_wage': DAILY_WAGES[role],
            'per_task_fee': PER_TASK_FEES[role],
            'status': 'hired' if role in active_roles else 'available',
        })
    return listing
