# vendbench/scheduler.py
"""
Cooperative stepper for delegated worker tasks.

Workers do not run on their own. Each time the principal takes a step it calls
tick(), and every running execution advances by exactly one backend turn. The
backend calls of one tick are awaited together; their results are then applied
to the state one execution at a time, so the state only ever has one writer.
"""
import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional
from pydantic import BaseModel

from .backend import AgentSession, AgentTurn, Backend
from .config import SimulationConfig
from .errors import ValidationError
from .ledger import debit
from .models import (
    SimulationState, Worker, WorkerExecution, CompletedTask, Step, ToolRecord,
    WorkerMessage, ExecutionStatus,
)
from .prompts import WORKER_PROMPTS, CONTINUE_PROMPT, task_prompt, approval_feedback
from .roles import ROLE_CAPABILITIES, APPROVAL_GATED, PER_TASK_FEES
from .tools import ToolContext, execute_turn

logger = logging.getLogger(__name__)

EventSink = Callable[[Dict[str, Any]], None]

BOUNDARY_RESULT = "Task ended at period boundary."
BOUNDARY_WAITING_RESULT = "Task ended at period boundary. Pending approval was not resolved."
STALE_APPROVAL_NOTE = "No decision was made in time."


class TickReport(BaseModel):
    tick: int
    stepped: List[str] = []
    transitions: List[Dict[str, str]] = []


class WorkerScheduler:
    def __init__(self, backend: Backend, config: SimulationConfig,
                 event_sink: Optional[EventSink] = None):
        self.backend = backend
        self.config = config
        self._event_sink = event_sink
        self._sessions: Dict[str, AgentSession] = {}

    # --- Lifecycle ---

    def assign(self, state: SimulationState, worker_id: str, task_description: str) -> WorkerExecution:
        """
        Hand a task to an idle, active worker. The per-task fee is taken now and
        is not refunded whatever the outcome.
        """
        worker = state.find_worker(worker_id)
        if worker is None:
            raise ValidationError(f"Worker {worker_id} not found")
        if not worker.active:
            raise ValidationError(
                f"{worker.name} is no longer employed (let go in period {worker.fired_at_period})"
            )
        current = next((e for e in state.active_executions if e.worker_id == worker_id), None)
        if current is not None:
            raise ValidationError(
                f"{worker.name} is already working on task {current.id} ({current.status})"
            )

        fee = PER_TASK_FEES[worker.role]
        debit(state, fee, 'task_fee', f"Task fee: {worker.name}")
        worker.total_cost_paid += fee

        execution = WorkerExecution(
            worker_id=worker.id,
            task_description=task_description,
            max_steps=self.config.worker_max_steps,
            cost=fee,
            started_at_period=state.period,
        )
        state.active_executions.append(execution)
        self.create(execution, worker)
        self.start(execution)
        logger.info("Assigned task %s to %s", execution.id, worker.name)
        self._emit({'event': 'worker_transition', 'execution_id': execution.id,
                    'worker_id': worker.id, 'from': None, 'to': 'running'})
        return execution

    def create(self, execution: WorkerExecution, worker: Worker) -> AgentSession:
        session = AgentSession.create(
            owner=worker.id,
            instructions=WORKER_PROMPTS[worker.role],
            capabilities=ROLE_CAPABILITIES[worker.role],
            max_steps=execution.max_steps,
        )
        self._sessions[execution.id] = session
        return session

    def start(self, execution: WorkerExecution) -> None:
        self._sessions[execution.id].start(task_prompt(execution.task_description))

    def session(self, execution_id: str) -> Optional[AgentSession]:
        return self._sessions.get(execution_id)

    # --- Ticking ---

    async def tick(self, state: SimulationState) -> TickReport:
        state.ticks_this_period += 1
        report = TickReport(tick=state.ticks_this_period)
        self._expire_stale_approvals(state, report)

        running = [e for e in state.active_executions if e.status == 'running']
        if not running:
            return report

        outcomes = await asyncio.gather(
            *(self._next_turn(e) for e in running), return_exceptions=True
        )
        for execution, outcome in zip(running, outcomes):
            report.stepped.append(execution.id)
            self._apply(state, execution, outcome, report)
        return report

    async def _next_turn(self, execution: WorkerExecution) -> AgentTurn:
        session = self._sessions[execution.id]
        if execution.step_count > 0:
            prompt = CONTINUE_PROMPT
            if execution.feedback:
                prompt = f"{execution.feedback}\n{CONTINUE_PROMPT}"
            session.prompt(prompt)
        elif execution.feedback:
            # Decision arrived before the first step ran
            session.prompt(execution.feedback)
        execution.feedback = None
        return await asyncio.wait_for(self.backend.next_turn(session), self.config.tick_timeout)

    def _apply(self, state: SimulationState, execution: WorkerExecution, outcome,
               report: TickReport) -> None:
        if isinstance(outcome, BaseException):
            message = str(outcome) or type(outcome).__name__
            logger.warning("Execution %s failed: %s", execution.id, message)
            self._finish(state, execution, 'failed', f"Task failed: {message}", report)
            return

        worker = state.find_worker(execution.worker_id)
        session = self._sessions[execution.id]
        session.record_turn(outcome)
        ctx = ToolContext(state=state, config=self.config,
                          capabilities=ROLE_CAPABILITIES[worker.role],
                          gated=APPROVAL_GATED[worker.role], execution=execution)
        results = execute_turn(ctx, outcome)
        if results:
            session.record_results(results)

        execution.steps.append(Step(
            number=execution.step_count,
            text=outcome.text,
            tool_calls=[ToolRecord(tool=call.tool, input=call.model_dump(exclude={'tool'}),
                                   output=result.get('output', result.get('error')))
                        for call, result in zip(outcome.tool_calls, results)],
        ))
        execution.step_count += 1

        if execution.status == 'waiting_approval':
            self._record(report, execution, 'running', 'waiting_approval')
            return
        if outcome.is_final:
            self._finish(state, execution, 'completed', outcome.text or "Task completed", report)
        elif execution.step_count >= execution.max_steps:
            self._finish(state, execution, 'completed',
                         outcome.text or "Task completed (max steps reached)", report)

    # --- Approvals ---

    def approve(self, state: SimulationState, execution_id: str, context: str = "") -> WorkerExecution:
        return self._decide(state, execution_id, True, context)

    def deny(self, state: SimulationState, execution_id: str, context: str = "") -> WorkerExecution:
        return self._decide(state, execution_id, False, context)

    def _decide(self, state: SimulationState, execution_id: str, approved: bool,
                context: str, report: Optional[TickReport] = None) -> WorkerExecution:
        execution = state.find_execution(execution_id)
        if execution is None:
            raise ValidationError(f"Execution {execution_id} not found")
        if execution.status != 'waiting_approval' or execution.pending_approval is None:
            raise ValidationError(
                f"Execution {execution_id} is not waiting for approval (status: {execution.status})"
            )

        request = execution.pending_approval
        execution.pending_approval = None
        execution.granted = request if approved else None
        execution.feedback = approval_feedback(approved, request.description, context)
        execution.transition('running')

        verdict = "Approved" if approved else "Denied"
        amount = f" (${request.amount:.2f})" if request.amount is not None else ""
        state.worker_messages.append(WorkerMessage(
            worker_id=execution.worker_id, sender='principal', period=state.period, read=True,
            content=f"{verdict}: {request.description}{amount}" + (f". {context}" if context else ""),
        ))
        logger.info("%s request on execution %s: %s", verdict, execution.id, request.description)
        if report is not None:
            self._record(report, execution, 'waiting_approval', 'running')
        else:
            self._emit({'event': 'worker_transition', 'execution_id': execution.id,
                        'worker_id': execution.worker_id, 'from': 'waiting_approval', 'to': 'running'})
        return execution

    def _expire_stale_approvals(self, state: SimulationState, report: TickReport) -> None:
        limit = self.config.approval_timeout_ticks
        if limit is None:
            return
        for execution in [e for e in state.active_executions if e.status == 'waiting_approval']:
            execution.pending_approval.ticks_waiting += 1
            if execution.pending_approval.ticks_waiting >= limit:
                self._decide(state, execution.id, False, STALE_APPROVAL_NOTE, report)

    # --- Endings ---

    def finalize_at_period_boundary(self, state: SimulationState) -> List[CompletedTask]:
        """Hard cutoff: nothing in flight survives into the next period."""
        finished = []
        for execution in [e for e in state.active_executions if e.is_active]:
            waiting = execution.status == 'waiting_approval'
            result = execution.result or (BOUNDARY_WAITING_RESULT if waiting else BOUNDARY_RESULT)
            finished.append(self._finish(state, execution, 'completed', result))
        state.active_executions = []
        return finished

    def _finish(self, state: SimulationState, execution: WorkerExecution,
                status: ExecutionStatus, result: str,
                report: Optional[TickReport] = None) -> CompletedTask:
        previous = execution.status
        execution.transition(status)
        execution.result = result
        execution.pending_approval = None
        execution.granted = None

        tools_used = list(dict.fromkeys(
            record.tool for step in execution.steps for record in step.tool_calls
        ))
        task = CompletedTask(
            id=execution.id,
            worker_id=execution.worker_id,
            description=execution.task_description,
            status=status,
            result=result,
            tools_used=tools_used,
            cost=execution.cost,
            step_count=execution.step_count,
            assigned_at_period=execution.started_at_period,
            completed_at_period=state.period,
        )
        state.task_history.append(task)
        worker = state.find_worker(execution.worker_id)
        if worker is not None:
            worker.tasks_completed += 1
        state.active_executions = [e for e in state.active_executions if e.id != execution.id]
        self._sessions.pop(execution.id, None)

        logger.info("Execution %s %s: %s", execution.id, status, result)
        if report is not None:
            self._record(report, execution, previous, status)
        else:
            self._emit({'event': 'worker_transition', 'execution_id': execution.id,
                        'worker_id': execution.worker_id, 'from': previous, 'to': status})
        return task

    def _record(self, report: TickReport, execution: WorkerExecution, old: str, new: str) -> None:
        report.transitions.append({'execution_id': execution.id, 'from': old, 'to': new})
        self._emit({'event': 'worker_transition', 'execution_id': execution.id,
                    'worker_id': execution.worker_id, 'from': old, 'to': new})

    def _emit(self, event: Dict[str, Any]) -> None:
        if self._event_sink is not None:
            self._event_sink(event)


# --- Reporting ---

def format_transcript(execution: WorkerExecution) -> str:
    lines = [
        f"Task: {execution.task_description}",
        f"Status: {execution.status}",
        f"Steps: {execution.step_count}/{execution.max_steps}",
        "",
    ]
    for step in execution.steps:
        lines.append(f"--- Step {step.number + 1} ---")
        if step.text:
            lines.append(f"Worker: {step.text}")
        for record in step.tool_calls:
            lines.append(f"Tool: {record.tool}")
            lines.append(f"  Input: {record.input}")
            lines.append(f"  Output: {record.output}")
        lines.append("")
    if execution.pending_approval:
        request = execution.pending_approval
        lines.append("--- PENDING APPROVAL ---")
        lines.append(f"Type: {request.kind}")
        lines.append(f"Description: {request.description}")
        if request.amount is not None:
            lines.append(f"Amount: ${request.amount:.2f}")
    if execution.result:
        lines.append("--- RESULT ---")
        lines.append(execution.result)
    return "\n".join(lines)


def status_report(state: SimulationState, execution_id: Optional[str] = None,
                  worker_id: Optional[str] = None) -> Dict[str, Any]:
    """Current or historical status of one task, looked up by execution or worker."""
    if execution_id:
        execution = state.find_execution(execution_id)
        if execution is None:
            task = next((t for t in state.task_history if t.id == execution_id), None)
            if task is None:
                raise ValidationError(f"Execution {execution_id} not found")
            return {'execution_id': task.id, 'status': task.status, 'finished': True,
                    'result': task.result, 'tools_used': task.tools_used,
                    'step_count': task.step_count, 'cost': task.cost}
    elif worker_id:
        worker = state.find_worker(worker_id)
        if worker is None:
            raise ValidationError(f"Worker {worker_id} not found")
        execution = next((e for e in state.active_executions if e.worker_id == worker_id), None)
        if execution is None:
            return {'worker': worker.name, 'status': 'idle', 'active': worker.active}
    else:
        raise ValidationError("Provide an execution id or a worker id")

    pending = execution.pending_approval
    return {
        'execution_id': execution.id,
        'status': execution.status,
        'finished': False,
        'steps': execution.step_count,
        'max_steps': execution.max_steps,
        'pending_approval': pending.model_dump() if pending else None,
        'transcript': format_transcript(execution),
    }


def worker_report(state: SimulationState) -> List[Dict[str, Any]]:
    reports = []
    for worker in state.workers:
        tasks = [t for t in state.task_history if t.worker_id == worker.id]
        succeeded = len([t for t in tasks if t.status == 'completed'])
        end = state.period if worker.active else worker.fired_at_period
        reports.append({
            'worker_id': worker.id,
            'name': worker.name,
            'role': worker.role.value,
            'status': 'active' if worker.active else 'terminated',
            'periods_employed': end - worker.hired_at_period + 1,
            'tasks_completed': worker.tasks_completed,
            'success_rate': round(succeeded / len(tasks), 2) if tasks else 0.0,
            'total_cost_paid': round(worker.total_cost_paid, 2),
        })
    return reports
