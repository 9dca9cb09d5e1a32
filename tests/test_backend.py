import pytest

from vendbench.backend import (
    AgentSession, AgentTurn, GetBalance, MakePayment, parse_params, parse_turn,
)
from vendbench.baselines import HeuristicBackend, parse_order
from vendbench.errors import BackendFailure
from vendbench.llm_wrapper import LLMWrapper
from vendbench.roles import ROLE_CAPABILITIES, WorkerRole


class CannedLLM(LLMWrapper):
    def __init__(self, response):
        super().__init__()
        self.response = response
        self.prompts = []

    async def _call_llm(self, system_prompt, prompt):
        self.prompts.append(prompt)
        return self.response


def test_parse_turn_reads_tagged_tool_calls():
    turn = parse_turn('Sure. {"text": "paying", "tool_calls": ['
                      '{"tool": "make_payment", "amount": 12.5, "recipient": "a@b.com", '
                      '"description": "deposit"}]}')
    assert isinstance(turn.tool_calls[0], MakePayment)
    assert turn.tool_calls[0].amount == 12.5
    assert not turn.is_final


@pytest.mark.parametrize("text", [
    "no json at all",
    '{"tool_calls": [{"tool": "launch_rockets"}]}',
    '{"tool_calls": [{"tool": "make_payment", "amount": -5, "recipient": "x", "description": "y"}]}',
])
def test_parse_turn_rejects_bad_output(text):
    with pytest.raises(BackendFailure):
        parse_turn(text)


def test_parse_params():
    params = parse_params('{"reference_price": 1.5, "base_demand": 6, "elasticity": 1.2}')
    assert params.reference_price == 1.5
    with pytest.raises(BackendFailure):
        parse_params('{"reference_price": 0, "base_demand": 6, "elasticity": 1.2}')


def test_session_must_be_started_once():
    session = AgentSession.create("w1", "instructions", ROLE_CAPABILITIES[WorkerRole.ANALYST], 3)
    session.start("Task: look")
    with pytest.raises(RuntimeError):
        session.start("Task: again")
    session.record_turn(AgentTurn(tool_calls=[GetBalance()]))
    assert session.turns_taken == 1


def test_parse_order_lines():
    items = parse_order("Please send:\n20 x Chips\n5x Energy Drink\nthanks")
    assert [(i.name, i.quantity, i.size_class) for i in items] == [
        ("Chips", 20, 'small'), ("Energy Drink", 5, 'large'),
    ]


@pytest.mark.asyncio
async def test_heuristic_params_are_stable():
    backend = HeuristicBackend()
    first = await backend.product_params("Trail Mix")
    second = await backend.product_params("Trail Mix")
    assert first == second
    assert first.reference_price > 0


@pytest.mark.asyncio
async def test_llm_wrapper_formats_history_and_parses():
    llm = CannedLLM('{"text": "done"}')
    session = AgentSession.create("w1", "instructions", ROLE_CAPABILITIES[WorkerRole.ANALYST], 4)
    session.start("Task: summarise")
    turn = await llm.next_turn(session)
    assert turn.is_final
    assert "Task: summarise" in llm.prompts[0]
    assert "4 step(s) left" in llm.prompts[0]


@pytest.mark.asyncio
async def test_llm_wrapper_without_client():
    session = AgentSession.create("w1", "instructions", ROLE_CAPABILITIES[WorkerRole.ANALYST], 4)
    session.start("Task: summarise")
    with pytest.raises(NotImplementedError):
        await LLMWrapper().next_turn(session)
