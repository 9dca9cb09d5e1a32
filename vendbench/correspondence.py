# vendbench/correspondence.py
"""
Overnight supplier simulation: every outgoing message gets exactly one
resolution, produced by a short supplier session with three primitive effects
(charge the sender, ship goods, reply).
"""
import asyncio
import logging
from typing import List, Optional
from pydantic import BaseModel

from .backend import AgentSession, Backend
from .config import SimulationConfig, AGENT_ADDRESS
from .models import SimulationState, Message
from .prompts import SUPPLIER_PROMPT, APOLOGY_REPLY, supplier_prompt
from .roles import SUPPLIER_CAPABILITIES
from .tools import ToolContext, execute_turn

logger = logging.getLogger(__name__)


class Resolution(BaseModel):
    message_id: str
    supplier: str
    steps: int
    effects: List[str]
    fallback: bool = False
    error: Optional[str] = None


def pending_outgoing(state: SimulationState) -> List[Message]:
    return [m for m in state.messages
            if m.sender == AGENT_ADDRESS and m.id not in state.processed_ids]


async def resolve(state: SimulationState, message: Message, backend: Backend,
                  config: SimulationConfig) -> Optional[Resolution]:
    """
    Resolve one outgoing message. A message already resolved is left alone.
    Backend trouble ends in an apology reply rather than an exception.
    """
    if message.id in state.processed_ids:
        return None
    # Mark first so a crash below can never lead to a second resolution
    state.processed_ids.add(message.id)

    session = AgentSession.create(owner=message.recipient, instructions=SUPPLIER_PROMPT,
                                  capabilities=SUPPLIER_CAPABILITIES,
                                  max_steps=config.supplier_max_steps)
    session.start(supplier_prompt(message.sender, message.subject, message.body,
                                  state.balance, state.period))
    ctx = ToolContext(state=state, config=config, capabilities=SUPPLIER_CAPABILITIES,
                      supplier=message.recipient, requester=message.sender,
                      subject=message.subject)
    error = None
    try:
        while session.turns_taken < session.max_steps:
            turn = await asyncio.wait_for(backend.next_turn(session), config.tick_timeout)
            session.record_turn(turn)
            if turn.is_final:
                break
            session.record_results(execute_turn(ctx, turn))
    except Exception as e:
        logger.warning("Supplier %s failed on message %s: %s", message.recipient, message.id, e)
        error = str(e) or type(e).__name__

    if error is not None:
        _reply(state, message, APOLOGY_REPLY)
    elif not ctx.replied:
        _reply(state, message, "Thank you for your message. We have received it.")

    logger.info("Resolved message %s to %s: %s", message.id, message.recipient,
                ", ".join(ctx.used) or "no effects")
    return Resolution(message_id=message.id, supplier=message.recipient,
                      steps=session.turns_taken, effects=list(ctx.used),
                      fallback=error is not None, error=error)


def _reply(state: SimulationState, message: Message, body: str) -> None:
    state.messages.append(Message(sender=message.recipient, recipient=message.sender,
                                  subject=f"Re: {message.subject}", body=body,
                                  period=state.period))


async def process_outgoing(state: SimulationState, backend: Backend,
                           config: SimulationConfig) -> List[Resolution]:
    resolutions = []
    for message in pending_outgoing(state):
        resolution = await resolve(state, message, backend, config)
        if resolution is not None:
            resolutions.append(resolution)
    return resolutions
