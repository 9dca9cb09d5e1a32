# vendbench/tools.py
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, List, Optional

from . import operations
from .backend import (
    AgentTurn, ToolCall, GetBalance, ViewStorage, ViewMachine, ReadMessages, SendMessage,
    ReplyMessage, MakePayment, StockSlot, SetPrice, CollectCash, ReadScratchpad, WriteScratchpad,
    KvGet, KvSet, KvDelete, KvList, RequestApproval, ChargeAccount, CreateShipment, SendReply,
)
from .config import SimulationConfig, AGENT_ADDRESS
from .errors import SimulationError
from .ledger import debit
from .models import SimulationState, WorkerExecution, ApprovalRequest, PendingOrder, Message
from .roles import Capability

logger = logging.getLogger(__name__)


@dataclass
class ToolContext:
    state: SimulationState
    config: SimulationConfig
    capabilities: FrozenSet[Capability]
    gated: FrozenSet[Capability] = frozenset()
    execution: Optional[WorkerExecution] = None
    # Supplier exchanges only
    supplier: Optional[str] = None
    requester: str = AGENT_ADDRESS
    subject: str = ""
    replied: bool = False
    used: List[str] = field(default_factory=list)


def _request_approval(ctx: ToolContext, kind: str, description: str,
                      amount: Optional[float] = None) -> Dict[str, Any]:
    execution = ctx.execution
    if execution is None:
        return {'error': "Approvals are only available to workers"}
    execution.pending_approval = ApprovalRequest(kind=kind, description=description, amount=amount)
    execution.transition('waiting_approval')
    logger.info("Execution %s waiting for approval: %s", execution.id, description)
    return {
        'status': 'waiting',
        'message': "Approval request submitted. You cannot continue until your manager responds.",
    }


def _consume_grant(ctx: ToolContext, kind: str, amount: Optional[float] = None) -> bool:
    grant = ctx.execution.granted if ctx.execution else None
    if grant is None or grant.kind != kind:
        return False
    # A payment grant without an amount covers the next payment
    if amount is not None and grant.amount is not None and amount > grant.amount + 1e-9:
        return False
    ctx.execution.granted = None
    return True


def _needs_approval(ctx: ToolContext, call: ToolCall) -> Optional[Dict[str, Any]]:
    """Approval request details when a gated action is over its limit and not yet signed off."""
    if isinstance(call, MakePayment) and Capability.MAKE_PAYMENT in ctx.gated:
        if call.amount > ctx.config.payment_approval_threshold \
                and not _consume_grant(ctx, 'payment', call.amount):
            return {'kind': 'payment', 'amount': call.amount,
                    'description': f"Pay ${call.amount:.2f} to {call.recipient}: {call.description}"}
    if isinstance(call, SetPrice) and Capability.SET_PRICE in ctx.gated:
        slot = ctx.state.find_slot(call.row, call.col)
        if slot is not None and slot.price > 0:
            change = abs(call.price - slot.price) / slot.price
            if change > ctx.config.price_change_approval_ratio \
                    and not _consume_grant(ctx, 'action'):
                return {'kind': 'action', 'amount': None,
                        'description': f"Change price of {slot.product_name} from "
                                       f"${slot.price:.2f} to ${call.price:.2f}"}
    return None


def _dispatch(ctx: ToolContext, call: ToolCall) -> Any:
    state = ctx.state
    if isinstance(call, GetBalance):
        return operations.balance_view(state)
    if isinstance(call, ViewStorage):
        return operations.storage_view(state)
    if isinstance(call, ViewMachine):
        return operations.machine_view(state)
    if isinstance(call, ReadMessages):
        return {'messages': operations.read_messages(state, call.unread_only, call.limit)}
    if isinstance(call, SendMessage):
        message = operations.send_message(state, call.to, call.subject, call.body)
        return {'message_id': message.id, 'sent_to': call.to}
    if isinstance(call, ReplyMessage):
        message = operations.reply_message(state, call.message_id, call.body)
        return {'message_id': message.id, 'sent_to': message.recipient}
    if isinstance(call, MakePayment):
        return operations.make_payment(state, call.amount, call.recipient, call.description)
    if isinstance(call, StockSlot):
        return operations.stock_slot(state, call.product_name, call.row, call.col,
                                     call.quantity, call.price)
    if isinstance(call, SetPrice):
        return operations.set_price(state, call.row, call.col, call.price)
    if isinstance(call, CollectCash):
        return operations.collect_cash(state)
    if isinstance(call, ReadScratchpad):
        return operations.read_scratchpad(state)
    if isinstance(call, WriteScratchpad):
        return operations.write_scratchpad(state, call.content, call.append)
    if isinstance(call, KvGet):
        return operations.kv_get(state, call.key)
    if isinstance(call, KvSet):
        return operations.kv_set(state, call.key, call.value)
    if isinstance(call, KvDelete):
        return operations.kv_delete(state, call.key)
    if isinstance(call, KvList):
        return operations.kv_list(state)
    if isinstance(call, RequestApproval):
        return _request_approval(ctx, call.kind, call.description, call.amount)
    if isinstance(call, ChargeAccount):
        debit(state, call.amount, 'supplier_charge', f"Supplier charge ({ctx.supplier}): {call.description}")
        logger.info("Supplier %s charged $%.2f", ctx.supplier, call.amount)
        return {'charged': call.amount, 'customer_balance': state.balance}
    if isinstance(call, CreateShipment):
        order = PendingOrder(
            supplier=ctx.supplier or "unknown@supplier.com",
            items=call.items,
            total_paid=call.total_amount,
            ordered_at_period=state.period,
            deliver_at_period=state.period + ctx.config.delivery_lead_time,
        )
        state.pending_orders.append(order)
        logger.info("Shipment of %d units from %s due period %d",
                    sum(i.quantity for i in call.items), order.supplier, order.deliver_at_period)
        return {'order_id': order.id, 'delivery_period': order.deliver_at_period}
    if isinstance(call, SendReply):
        state.messages.append(Message(sender=ctx.supplier or "unknown@supplier.com",
                                      recipient=ctx.requester, subject=call.subject,
                                      body=call.body, period=state.period))
        ctx.replied = True
        return {'sent': True}
    raise TypeError(f"Unhandled tool call {call!r}")


def execute_tool(ctx: ToolContext, call: ToolCall) -> Dict[str, Any]:
    """Run one call. Domain failures come back as an error result, never as an exception."""
    capability = Capability(call.tool)
    if capability not in ctx.capabilities:
        return {'tool': call.tool, 'error': f"'{call.tool}' is not available to you"}

    approval = _needs_approval(ctx, call)
    if approval is not None:
        return {'tool': call.tool, **_request_approval(ctx, **approval)}

    try:
        output = _dispatch(ctx, call)
    except SimulationError as e:
        return {'tool': call.tool, 'error': str(e)}
    ctx.used.append(call.tool)
    return {'tool': call.tool, 'output': output}


def execute_turn(ctx: ToolContext, turn: AgentTurn) -> List[Dict[str, Any]]:
    """Run a turn's calls in order, stopping once the execution is parked on an approval."""
    results = []
    for call in turn.tool_calls:
        if ctx.execution is not None and ctx.execution.status == 'waiting_approval':
            results.append({'tool': call.tool, 'error': "Skipped: waiting for approval"})
            continue
        results.append(execute_tool(ctx, call))
    return results
