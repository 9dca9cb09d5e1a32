import asyncio

import pytest

from vendbench import operations
from vendbench.backend import (
    AgentTurn, GetBalance, KvGet, KvList, MakePayment, ReadMessages, RequestApproval, SetPrice,
    WriteScratchpad,
)
from vendbench.baselines import ScriptedBackend
from vendbench.config import SimulationConfig
from vendbench.errors import InvariantViolation, ValidationError
from vendbench.models import WorkerExecution
from vendbench.roles import WorkerRole
from vendbench.scheduler import (
    BOUNDARY_WAITING_RESULT, WorkerScheduler, format_transcript, status_report, worker_report,
)


def transitions(events, execution_id):
    return [(e['from'], e['to']) for e in events
            if e['event'] == 'worker_transition' and e['execution_id'] == execution_id]


@pytest.fixture
def procurement(state):
    return operations.hire_worker(state, WorkerRole.PROCUREMENT)


@pytest.mark.asyncio
async def test_large_payment_waits_for_approval(state, backend, scheduler, events, procurement):
    payment = MakePayment(amount=25.0, recipient="vendor@example.com", description="deposit")
    backend.script(procurement.id,
                   AgentTurn(text="Paying the deposit", tool_calls=[payment]),
                   AgentTurn(tool_calls=[payment]),
                   AgentTurn(text="Deposit paid."))
    execution = scheduler.assign(state, procurement.id, "Pay the $25 deposit")
    balance = state.balance

    await scheduler.tick(state)
    assert execution.status == 'waiting_approval'
    assert execution.pending_approval.amount == 25.0
    assert state.balance == balance

    # Nothing steps while waiting
    report = await scheduler.tick(state)
    assert report.stepped == []

    scheduler.approve(state, execution.id, "Go ahead")
    assert execution.status == 'running'
    await scheduler.tick(state)
    assert state.balance == balance - 25.0
    await scheduler.tick(state)

    assert execution.status == 'completed'
    assert state.active_executions == []
    task = state.task_history[-1]
    assert task.result == "Deposit paid."
    assert 'make_payment' in task.tools_used
    assert transitions(events, execution.id) == [
        (None, 'running'),
        ('running', 'waiting_approval'),
        ('waiting_approval', 'running'),
        ('running', 'completed'),
    ]


@pytest.mark.asyncio
async def test_denied_payment_is_never_made(state, backend, scheduler, procurement):
    backend.script(procurement.id,
                   AgentTurn(tool_calls=[MakePayment(amount=50.0, recipient="x@example.com",
                                                     description="bulk order")]),
                   AgentTurn(text="Understood, cancelled."))
    execution = scheduler.assign(state, procurement.id, "Place a bulk order")
    balance = state.balance

    await scheduler.tick(state)
    scheduler.deny(state, execution.id, "Too expensive")
    session = scheduler.session(execution.id)
    await scheduler.tick(state)

    assert execution.status == 'completed'
    assert state.balance == balance
    assert "denied" in session.history[-2]['content']
    assert any(m.content.startswith("Denied") for m in state.worker_messages)


@pytest.mark.asyncio
async def test_small_payment_needs_no_approval(state, backend, scheduler, procurement):
    backend.script(procurement.id,
                   AgentTurn(tool_calls=[MakePayment(amount=15.0, recipient="x@example.com",
                                                     description="sample")]))
    execution = scheduler.assign(state, procurement.id, "Buy a sample")
    balance = state.balance
    await scheduler.tick(state)
    assert execution.status == 'running'
    assert state.balance == balance - 15.0


@pytest.mark.asyncio
async def test_price_change_limit(stocked_state, backend, scheduler):
    state = stocked_state
    operations.stock_slot(state, "Chips", 0, 0, 10, 2.0)
    worker = operations.hire_worker(state, WorkerRole.OPERATIONS)
    backend.script(worker.id,
                   AgentTurn(tool_calls=[SetPrice(row=0, col=0, price=2.2)]),
                   AgentTurn(tool_calls=[SetPrice(row=0, col=0, price=3.0)]))
    execution = scheduler.assign(state, worker.id, "Tune prices")

    await scheduler.tick(state)
    assert state.find_slot(0, 0).price == 2.2
    await scheduler.tick(state)
    assert execution.status == 'waiting_approval'
    assert state.find_slot(0, 0).price == 2.2


@pytest.mark.asyncio
async def test_capabilities_are_enforced(state, backend, scheduler):
    analyst = operations.hire_worker(state, WorkerRole.ANALYST)
    backend.script(analyst.id,
                   AgentTurn(tool_calls=[MakePayment(amount=5.0, recipient="x@example.com",
                                                     description="sneaky")]))
    execution = scheduler.assign(state, analyst.id, "Look around")
    balance = state.balance
    await scheduler.tick(state)
    assert state.balance == balance
    assert "not available" in execution.steps[0].tool_calls[0].output


@pytest.mark.asyncio
async def test_max_steps_completes_the_task(state, backend, procurement):
    config = SimulationConfig(worker_max_steps=2)
    scheduler = WorkerScheduler(backend, config)
    backend.script(procurement.id, *[AgentTurn(tool_calls=[GetBalance()]) for _ in range(3)])
    execution = scheduler.assign(state, procurement.id, "Keep checking")
    await scheduler.tick(state)
    await scheduler.tick(state)
    assert execution.status == 'completed'
    assert execution.step_count == 2
    assert state.task_history[-1].step_count == 2


@pytest.mark.asyncio
async def test_backend_error_fails_the_task_and_keeps_the_fee(state, backend, scheduler, procurement):
    backend.script(procurement.id, RuntimeError("connection reset"))
    execution = scheduler.assign(state, procurement.id, "Anything")
    assert state.balance == 500.0 - 40.0 - 3.0

    await scheduler.tick(state)
    assert execution.status == 'failed'
    assert "connection reset" in execution.result
    assert state.balance == 500.0 - 40.0 - 3.0
    assert procurement.tasks_completed == 1


@pytest.mark.asyncio
async def test_ticks_step_all_running_workers(state, backend, scheduler, procurement):
    analyst = operations.hire_worker(state, WorkerRole.ANALYST)
    backend.script(procurement.id, AgentTurn(tool_calls=[GetBalance()]))
    backend.script(analyst.id, AgentTurn(tool_calls=[GetBalance()]))
    first = scheduler.assign(state, procurement.id, "one")
    second = scheduler.assign(state, analyst.id, "two")
    report = await scheduler.tick(state)
    assert set(report.stepped) == {first.id, second.id}


def test_one_task_per_worker(state, scheduler, procurement):
    scheduler.assign(state, procurement.id, "first")
    balance = state.balance
    with pytest.raises(ValidationError):
        scheduler.assign(state, procurement.id, "second")
    assert state.balance == balance


def test_fired_worker_cannot_be_assigned(state, scheduler, procurement):
    operations.fire_worker(state, procurement.id)
    with pytest.raises(ValidationError):
        scheduler.assign(state, procurement.id, "anything")


def test_unknown_worker(state, scheduler):
    with pytest.raises(ValidationError):
        scheduler.assign(state, "nobody", "anything")


def test_approve_requires_a_waiting_execution(state, scheduler, procurement):
    execution = scheduler.assign(state, procurement.id, "anything")
    with pytest.raises(ValidationError):
        scheduler.approve(state, execution.id)
    with pytest.raises(ValidationError):
        scheduler.deny(state, "missing")


@pytest.mark.asyncio
async def test_period_boundary_closes_waiting_tasks(state, backend, scheduler, procurement):
    backend.script(procurement.id,
                   AgentTurn(tool_calls=[MakePayment(amount=30.0, recipient="x@example.com",
                                                     description="order")]))
    execution = scheduler.assign(state, procurement.id, "Order")
    await scheduler.tick(state)

    finished = scheduler.finalize_at_period_boundary(state)

    assert [t.id for t in finished] == [execution.id]
    assert finished[0].status == 'completed'
    assert finished[0].result == BOUNDARY_WAITING_RESULT
    assert state.active_executions == []
    assert scheduler.session(execution.id) is None


@pytest.mark.asyncio
async def test_stale_approval_is_denied(state, backend, procurement):
    config = SimulationConfig(approval_timeout_ticks=2)
    scheduler = WorkerScheduler(backend, config)
    backend.script(procurement.id,
                   AgentTurn(tool_calls=[MakePayment(amount=30.0, recipient="x@example.com",
                                                     description="order")]),
                   AgentTurn(text="Gave up."))
    execution = scheduler.assign(state, procurement.id, "Order")

    await scheduler.tick(state)
    await scheduler.tick(state)
    assert execution.status == 'waiting_approval'
    report = await scheduler.tick(state)

    assert {'execution_id': execution.id, 'from': 'waiting_approval', 'to': 'running'} \
        in report.transitions
    assert execution.status == 'completed'
    assert state.balance == 500.0 - 40.0 - 3.0


def test_terminal_states_are_absorbing():
    execution = WorkerExecution(worker_id="w", task_description="t", max_steps=3, cost=1.0,
                                started_at_period=1)
    execution.transition('completed')
    with pytest.raises(InvariantViolation):
        execution.transition('running')


@pytest.mark.asyncio
async def test_reports(state, backend, scheduler, procurement):
    backend.script(procurement.id,
                   AgentTurn(text="Checking", tool_calls=[GetBalance()]),
                   AgentTurn(text="All good."))
    execution = scheduler.assign(state, procurement.id, "Check the balance")
    await scheduler.tick(state)

    live = status_report(state, worker_id=procurement.id)
    assert live['status'] == 'running'
    assert "get_balance" in live['transcript']

    await scheduler.tick(state)
    done = status_report(state, execution_id=execution.id)
    assert done['finished']
    assert done['tools_used'] == ['get_balance']
    assert status_report(state, worker_id=procurement.id)['status'] == 'idle'

    row = worker_report(state)[0]
    assert row['tasks_completed'] == 1
    assert row['success_rate'] == 1.0
    assert "Task: Check the balance" in format_transcript(execution)


class SlowBackend(ScriptedBackend):
    async def next_turn(self, session):
        await asyncio.sleep(1.0)
        return AgentTurn(text="Too late.")


@pytest.mark.asyncio
async def test_requested_payment_goes_through_once_approved(state, backend, scheduler, procurement):
    backend.script(procurement.id,
                   AgentTurn(tool_calls=[RequestApproval(kind='payment',
                                                         description="Deposit for new supplier")]),
                   AgentTurn(tool_calls=[MakePayment(amount=25.0, recipient="vendor@example.com",
                                                     description="deposit")]),
                   AgentTurn(text="Deposit paid."))
    execution = scheduler.assign(state, procurement.id, "Pay the deposit")
    balance = state.balance

    await scheduler.tick(state)
    assert execution.status == 'waiting_approval'
    scheduler.approve(state, execution.id)
    await scheduler.tick(state)

    assert execution.status == 'running'
    assert state.balance == balance - 25.0
    assert execution.granted is None


@pytest.mark.asyncio
async def test_analyst_reads_memory_but_cannot_write(state, backend, scheduler):
    state.kv_store["best_seller"] = "Chips"
    analyst = operations.hire_worker(state, WorkerRole.ANALYST)
    backend.script(analyst.id,
                   AgentTurn(tool_calls=[KvGet(key="best_seller"), KvList(),
                                         WriteScratchpad(content="overwritten")]))
    execution = scheduler.assign(state, analyst.id, "Review the notes")
    await scheduler.tick(state)

    outputs = [record.output for record in execution.steps[0].tool_calls]
    assert outputs[0]['value'] == "Chips"
    assert outputs[1]['keys'] == ["best_seller"]
    assert "not available" in outputs[2]
    assert state.scratchpad == ""


@pytest.mark.asyncio
async def test_analyst_has_no_mailbox_access(state, backend, scheduler):
    analyst = operations.hire_worker(state, WorkerRole.ANALYST)
    backend.script(analyst.id, AgentTurn(tool_calls=[ReadMessages()]))
    execution = scheduler.assign(state, analyst.id, "Summarise the inbox")
    await scheduler.tick(state)

    assert "not available" in execution.steps[0].tool_calls[0].output


@pytest.mark.asyncio
async def test_slow_backend_call_fails_the_task(state, procurement):
    scheduler = WorkerScheduler(SlowBackend(), SimulationConfig(tick_timeout=0.05))
    execution = scheduler.assign(state, procurement.id, "Anything")
    report = await scheduler.tick(state)
    assert execution.status == 'failed'
    assert "TimeoutError" in execution.result
    assert {'execution_id': execution.id, 'from': 'running', 'to': 'failed'} in report.transitions
