# vendbench/backend.py
"""
Narrow contract with the language-model backend.

A session carries the role-scoped instructions, the capabilities the role may
use, and the running transcript. The backend is asked for one turn at a time;
the simulation executes the requested tool calls itself and feeds the results
back, so a role can never reach an operation outside its table.
"""
import json
import re
from abc import ABC, abstractmethod
from typing import Annotated, Any, Dict, FrozenSet, List, Literal, Optional, Union
from pydantic import BaseModel, Field, ValidationError as SchemaError

from .errors import BackendFailure
from .models import OrderItem, ProductParams
from .roles import Capability


# --- Tool calls (closed set, tagged by `tool`) ---

class GetBalance(BaseModel):
    tool: Literal['get_balance'] = 'get_balance'


class ViewStorage(BaseModel):
    tool: Literal['view_storage'] = 'view_storage'


class ViewMachine(BaseModel):
    tool: Literal['view_machine'] = 'view_machine'


class ReadMessages(BaseModel):
    tool: Literal['read_messages'] = 'read_messages'
    unread_only: bool = True
    limit: int = Field(default=10, gt=0)


class SendMessage(BaseModel):
    tool: Literal['send_message'] = 'send_message'
    to: str
    subject: str
    body: str


class ReplyMessage(BaseModel):
    tool: Literal['reply_message'] = 'reply_message'
    message_id: str
    body: str


class MakePayment(BaseModel):
    tool: Literal['make_payment'] = 'make_payment'
    amount: float = Field(gt=0)
    recipient: str
    description: str


class StockSlot(BaseModel):
    tool: Literal['stock_slot'] = 'stock_slot'
    product_name: str
    row: int = Field(ge=0)
    col: int = Field(ge=0)
    quantity: int = Field(gt=0)
    price: float = Field(ge=0)


class SetPrice(BaseModel):
    tool: Literal['set_price'] = 'set_price'
    row: int = Field(ge=0)
    col: int = Field(ge=0)
    price: float = Field(ge=0)


class CollectCash(BaseModel):
    tool: Literal['collect_cash'] = 'collect_cash'


class ReadScratchpad(BaseModel):
    tool: Literal['read_scratchpad'] = 'read_scratchpad'


class WriteScratchpad(BaseModel):
    tool: Literal['write_scratchpad'] = 'write_scratchpad'
    content: str
    append: bool = False


class KvGet(BaseModel):
    tool: Literal['kv_get'] = 'kv_get'
    key: str


class KvSet(BaseModel):
    tool: Literal['kv_set'] = 'kv_set'
    key: str
    value: str


class KvDelete(BaseModel):
    tool: Literal['kv_delete'] = 'kv_delete'
    key: str


class KvList(BaseModel):
    tool: Literal['kv_list'] = 'kv_list'


class RequestApproval(BaseModel):
    tool: Literal['request_approval'] = 'request_approval'
    kind: Literal['payment', 'action']
    description: str
    amount: Optional[float] = Field(default=None, ge=0)


class ChargeAccount(BaseModel):
    tool: Literal['charge_account'] = 'charge_account'
    amount: float = Field(gt=0)
    description: str


class CreateShipment(BaseModel):
    tool: Literal['create_shipment'] = 'create_shipment'
    items: List[OrderItem]
    total_amount: float = Field(ge=0)


class SendReply(BaseModel):
    tool: Literal['send_reply'] = 'send_reply'
    subject: str
    body: str


ToolCall = Annotated[
    Union[GetBalance, ViewStorage, ViewMachine, ReadMessages, SendMessage, ReplyMessage,
          MakePayment, StockSlot, SetPrice, CollectCash, ReadScratchpad, WriteScratchpad,
          KvGet, KvSet, KvDelete, KvList, RequestApproval,
          ChargeAccount, CreateShipment, SendReply],
    Field(discriminator='tool'),
]


class AgentTurn(BaseModel):
    """One reasoning step: optional text plus the tool calls it wants run."""
    text: Optional[str] = None
    tool_calls: List[ToolCall] = []

    @property
    def is_final(self) -> bool:
        return not self.tool_calls


# --- Sessions ---

class AgentSession:
    """
    Conversation state for one worker execution or one supplier exchange.
    Built with create() and only usable once start() has seeded the opening prompt.
    """

    def __init__(self, owner: str, instructions: str, capabilities: FrozenSet[Capability],
                 max_steps: int):
        self.owner = owner
        self.instructions = instructions
        self.capabilities = capabilities
        self.max_steps = max_steps
        self.history: List[Dict[str, Any]] = []
        self.started = False

    @classmethod
    def create(cls, owner: str, instructions: str, capabilities: FrozenSet[Capability],
               max_steps: int) -> "AgentSession":
        return cls(owner, instructions, capabilities, max_steps)

    def start(self, opening_prompt: str) -> None:
        if self.started:
            raise RuntimeError(f"Session for {self.owner} already started")
        self.started = True
        self.history.append({'role': 'user', 'content': opening_prompt})

    @property
    def turns_taken(self) -> int:
        return len([h for h in self.history if h['role'] == 'assistant'])

    def prompt(self, content: str) -> None:
        self.history.append({'role': 'user', 'content': content})

    def record_turn(self, turn: AgentTurn) -> None:
        self.history.append({'role': 'assistant', 'content': turn.model_dump()})

    def record_results(self, results: List[Dict[str, Any]]) -> None:
        self.history.append({'role': 'tool', 'content': results})


# --- Backend ---

class Backend(ABC):
    @abstractmethod
    async def next_turn(self, session: AgentSession) -> AgentTurn:
        """Produce the next turn for a started session. May raise anything."""

    @abstractmethod
    async def product_params(self, product_name: str) -> ProductParams:
        """Estimate reference price, base demand and elasticity for a product."""


def parse_turn(response_text: str) -> AgentTurn:
    """Extract the JSON turn from raw model output."""
    match = re.search(r'\{.*\}', response_text, re.DOTALL)
    json_str = match.group(0) if match else response_text
    try:
        return AgentTurn.model_validate(json.loads(json_str))
    except (json.JSONDecodeError, SchemaError) as e:
        raise BackendFailure(f"Malformed model output: {e}") from e


def parse_params(response_text: str) -> ProductParams:
    match = re.search(r'\{.*\}', response_text, re.DOTALL)
    json_str = match.group(0) if match else response_text
    try:
        return ProductParams.model_validate(json.loads(json_str))
    except (json.JSONDecodeError, SchemaError) as e:
        raise BackendFailure(f"Malformed product parameters: {e}") from e
