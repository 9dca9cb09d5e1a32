import asyncio

import pytest

from vendbench.backend import AgentTurn, GetBalance
from vendbench.baselines import HeuristicBackend, ScriptedBackend, SmartPrincipal
from vendbench.config import SimulationConfig
from vendbench.diagnostics import Diagnostics
from vendbench.engine import VendingEnv
from vendbench.errors import SimulationError, ValidationError
from vendbench.models import StorageItem
from vendbench.roles import WorkerRole


def stock_chips(env):
    env.state.storage = [StorageItem(name="Chips", quantity=40, unit_cost=0.5, size_class='small')]


@pytest.mark.asyncio
async def test_fee_is_charged_before_sales():
    env = VendingEnv(ScriptedBackend(), SimulationConfig(seed=3))
    stock_chips(env)
    await env.stock_slot("Chips", 0, 0, 40, 1.5)
    env.state.balance = 1.0

    report = await env.advance_period()

    assert not report.fee.paid
    assert report.total_revenue > 0
    assert env.state.consecutive_missed_payments == 1
    assert env.state.balance > 1.0
    assert report.period == 2


@pytest.mark.asyncio
async def test_orders_arrive_after_lead_time():
    env = VendingEnv(HeuristicBackend())
    await env.send_message("orders@vendingwholesale.com", "Order", "10 x Chips")

    for _ in range(3):
        report = await env.advance_period()
        assert env.state.storage == []
    report = await env.advance_period()

    assert report.deliveries == 1
    assert [(s.name, s.quantity) for s in env.state.storage] == [("Chips", 10)]
    subjects = [m['subject'] for m in await env.read_messages(limit=20)]
    assert "Your order has been delivered" in subjects
    kinds = {e['event'] for e in env.events}
    assert {'fee', 'wage', 'correspondence', 'delivery'} <= kinds


@pytest.mark.asyncio
async def test_boundary_ends_running_tasks():
    backend = ScriptedBackend()
    env = VendingEnv(backend)
    worker = await env.hire(WorkerRole.ANALYST)
    backend.script(worker.id, *[AgentTurn(tool_calls=[GetBalance()]) for _ in range(5)])
    execution = await env.assign(worker.id, "Watch the balance")
    await env.tick()

    report = await env.advance_period()

    assert report.finalized_tasks == [execution.id]
    assert env.state.active_executions == []
    assert env.state.task_history[-1].status == 'completed'


@pytest.mark.asyncio
async def test_bankruptcy_after_ten_missed_fees():
    env = VendingEnv(ScriptedBackend(), SimulationConfig(starting_balance=0.0))
    for _ in range(9):
        report = await env.advance_period()
        assert not report.terminated
    report = await env.advance_period()
    assert report.terminated
    assert env.terminated


@pytest.mark.asyncio
async def test_concurrent_calls_are_serialised():
    env = VendingEnv(ScriptedBackend())
    results = await asyncio.gather(env.hire(WorkerRole.OPERATIONS),
                                   env.hire(WorkerRole.OPERATIONS),
                                   return_exceptions=True)
    failures = [r for r in results if isinstance(r, BaseException)]
    assert len(failures) == 1
    assert isinstance(failures[0], ValidationError)
    assert env.state.balance == 470.0


@pytest.mark.asyncio
async def test_observation_shape():
    env = VendingEnv(ScriptedBackend())
    obs = env.observation()
    assert obs['period'] == 1
    assert obs['balance'] == 500.0
    assert len(obs['machine']['slots']) == 12
    assert {m['role'] for m in obs['marketplace']} == {'analyst', 'procurement', 'operations'}
    assert obs['net_worth'] == 500.0


@pytest.mark.asyncio
async def test_baseline_run_makes_sales():
    env = VendingEnv(HeuristicBackend(), SimulationConfig(seed=11))
    principal = SmartPrincipal()
    diagnostics = Diagnostics("test")

    for _ in range(12):
        for action in principal.act(env.observation()):
            op = action.pop('op')
            try:
                if op == 'hire':
                    await env.hire(WorkerRole(action['role']))
                elif op == 'assign':
                    await env.assign(action['worker_id'], action['task'])
                elif op == 'approve':
                    await env.approve(action['execution_id'])
                else:
                    await getattr(env, op)(**action)
            except SimulationError:
                pass
        await env.tick()
        await env.tick()
        report = await env.advance_period()
        diagnostics.record_period(report, env.state)

    summary = diagnostics.generate_report()
    assert summary['periods_survived'] == 12
    assert summary['metrics']['units_sold'] > 0
    assert summary['strategy'] != "Bankrupt"


@pytest.mark.asyncio
async def test_principal_memory_through_the_env():
    env = VendingEnv(ScriptedBackend())
    await env.write_scratchpad("Reorder chips on Mondays.")
    await env.kv_set("supplier", "orders@vendingwholesale.com")
    assert (await env.read_scratchpad())['content'] == "Reorder chips on Mondays."
    assert (await env.kv_get("supplier"))['found']
    assert env.observation()['memory_keys'] == ["supplier"]
    await env.kv_delete("supplier")
    assert (await env.kv_list())['count'] == 0
