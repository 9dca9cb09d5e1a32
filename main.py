# main.py
import sys
import json
import os
import asyncio
import logging
from vendbench.baselines import HeuristicBackend, SmartPrincipal
from vendbench.diagnostics import Diagnostics
from vendbench.engine import VendingEnv
from vendbench.errors import SimulationError
from vendbench.llm_wrapper import LLMWrapper
from vendbench.roles import WorkerRole
from vendbench.scenarios import SCENARIO_DEFINITIONS, get_scenario
from colorama import Fore, Style, init

init(autoreset=True)

TICKS_PER_PERIOD = 3


async def apply_action(env: VendingEnv, action):
    op = action['op']
    if op == 'send_message':
        return await env.send_message(action['to'], action['subject'], action['body'])
    if op == 'stock_slot':
        return await env.stock_slot(action['product_name'], action['row'], action['col'],
                                    action['quantity'], action['price'])
    if op == 'hire':
        return await env.hire(WorkerRole(action['role']))
    if op == 'assign':
        return await env.assign(action['worker_id'], action['task'])
    if op == 'approve':
        return await env.approve(action['execution_id'])
    raise ValueError(f"Unknown action {op}")


async def run_simulation(scenario_id="V-01", total_periods=60, verbose=False, backend=None):
    if verbose:
        print(f"{Fore.CYAN}Initializing Vend-Bench Scenario: {scenario_id}{Style.RESET_ALL}")

    config = get_scenario(scenario_id)
    env = VendingEnv(backend or HeuristicBackend(), config=config)
    principal = SmartPrincipal()
    diagnostics = Diagnostics(scenario_id, config.bankruptcy_threshold)

    for _ in range(total_periods):
        obs = env.observation()
        if verbose:
            print(f"\n{Fore.YELLOW}--- PERIOD {obs['period']} ---{Style.RESET_ALL}")
            print(f"Balance: ${obs['balance']:.2f} | Net worth: ${obs['net_worth']:.2f}")

        # Principal decides
        for action in principal.act(obs):
            try:
                await apply_action(env, action)
            except SimulationError as e:
                if verbose:
                    print(f"{Fore.RED}{action['op']} failed: {e}{Style.RESET_ALL}")

        # Workers step
        for _ in range(TICKS_PER_PERIOD):
            tick = await env.tick()
            if verbose:
                for change in tick.transitions:
                    print(f"{Fore.LIGHTBLACK_EX}Task {change['execution_id'][:8]}: "
                          f"{change['from']} -> {change['to']}{Style.RESET_ALL}")

        # Night
        report = await env.advance_period()
        diagnostics.record_period(report, env.state)

        if verbose:
            if not report.fee.paid:
                print(f"{Fore.RED}CRITICAL: missed daily fee "
                      f"({report.fee.consecutive_missed_payments} in a row){Style.RESET_ALL}")
            for resolution in report.correspondence:
                print(f"{Fore.LIGHTBLACK_EX}Supplier {resolution.supplier}: "
                      f"{', '.join(resolution.effects) or 'no effects'}{Style.RESET_ALL}")
            print(f"Sold {sum(s.quantity for s in report.sales)} units for ${report.total_revenue:.2f}")

        if report.terminated:
            break

    report = diagnostics.generate_report()
    net_worth = report['final_net_worth']

    if verbose:
        print(f"\n{Fore.GREEN}Simulation Complete.{Style.RESET_ALL}")
        print(f"Final Net Worth: ${net_worth:.2f}")
        print("\n=== DIAGNOSTIC REPORT ===")
        print(f"Strategy: {report['strategy']}")
        print(f"Periods Survived: {report['periods_survived']}")
        print(f"Units Sold: {report['metrics']['units_sold']}")
        print(f"Final Balance: ${report['final_balance']:.2f}")
        print("=========================")

    return net_worth


async def run_baseline():
    print(f"{Fore.MAGENTA}=== STARTING BASELINE RUN ==={Style.RESET_ALL}")

    if not os.path.exists("results"):
        os.makedirs("results")

    print(f"{'Scenario':<20} | {'Smart':<10}")
    print("-" * 35)

    results = {}
    for s_def in SCENARIO_DEFINITIONS:
        s_id = s_def['id']
        print(f"{s_id:<20} | ", end="", flush=True)
        net_worth = await run_simulation(s_id)
        color = Fore.GREEN if net_worth > config_start(s_id) else Fore.RED
        print(f"{color}${net_worth:,.0f}{Style.RESET_ALL}")
        results[s_id] = net_worth

    with open("results/Smart.json", "w") as f:
        json.dump(results, f, indent=2)
    print(f"\n{Fore.CYAN}Results saved to results/ directory.{Style.RESET_ALL}")


def config_start(scenario_id):
    return get_scenario(scenario_id).starting_balance


if __name__ == "__main__":
    logging.basicConfig(level=logging.WARNING, format="%(levelname)s %(name)s: %(message)s")
    # Check if user wants a specific single run or the full baseline
    if len(sys.argv) > 1 and sys.argv[1] == "--single":
        asyncio.run(run_simulation(verbose=True))
    elif len(sys.argv) > 1 and sys.argv[1] == "--llm":
        # Workers, suppliers and demand come from the model; LLMWrapper._call_llm must be implemented
        model = sys.argv[2] if len(sys.argv) > 2 else "gemini-pro"
        asyncio.run(run_simulation(verbose=True, backend=LLMWrapper(model)))
    else:
        asyncio.run(run_baseline())
