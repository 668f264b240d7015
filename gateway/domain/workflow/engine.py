"""Durable workflow engine.

``WorkflowEngine`` runs a workflow definition as a LangGraph state machine.
Each pass through the ``execute`` node runs exactly one step and picks the
next one; the graph ends in ``pause`` when a step needs approval, or in
``finish`` when the steps run out or a branch points nowhere.

Execution state is persisted after every step transition. Pausing returns
control to the caller; ``resume`` re-enters the same graph with a cursor
positioned after the approved step. Leaving ``paused`` goes through a claim
lock, so each pause is resumed or rejected at most once.
"""

import asyncio
import inspect
import uuid
from typing import Awaitable, Callable, List, Mapping, Optional, Tuple, TypedDict, Union

import structlog
from langchain_core.tools import BaseTool
from langgraph.errors import GraphRecursionError
from langgraph.graph import END, StateGraph

from gateway.domain.errors import BranchResolutionError
from gateway.domain.models.session import utcnow
from gateway.domain.models.workflow import (
    ExecutionStatus,
    StepDefinition,
    StepResult,
    TriggerSource,
    WorkflowDefinition,
    WorkflowExecution,
)
from gateway.infrastructure.persistence.repository import WorkflowExecutionRepository
from .executor import ModelClientProvider, execute_step, resolve_next_step

logger = structlog.get_logger(__name__)

DEFAULT_MAX_TRANSITIONS = 1000
CANCELLED_ERROR = "cancelled"

ApprovalCallback = Callable[[WorkflowExecution, StepDefinition], Union[None, Awaitable[None]]]


class _WorkflowGraphState(TypedDict, total=False):
    """Mutable LangGraph state for one engine pass.

    ``index`` is the position of the next step to run; ``outcome`` is set to
    ``pause`` or ``finish`` to leave the execute loop; ``failure`` carries a
    fatal engine error into the ``finish`` node.
    """

    execution: WorkflowExecution
    definition: WorkflowDefinition
    tools: Mapping[str, BaseTool]
    on_approval_needed: Optional[ApprovalCallback]
    index: int
    outcome: Optional[str]
    failure: Optional[str]


def _is_step_approved(execution: WorkflowExecution, step_id: str) -> bool:
    result = execution.step_results.get(step_id)
    return result is not None and result.status == "success"


def _last_failure(execution: WorkflowExecution) -> Optional[str]:
    failures = [r for r in execution.step_results.values() if r.status == "failure"]
    if not failures:
        return None
    latest = max(failures, key=lambda r: r.completed_at)
    return None if latest.output is None else str(latest.output)


class WorkflowEngine:
    """Execute and resume workflow definitions with durable state"""

    def __init__(
        self,
        repository: WorkflowExecutionRepository,
        model_client: Optional[ModelClientProvider] = None,
        max_transitions: int = DEFAULT_MAX_TRANSITIONS,
    ):
        self.repository = repository
        self.model_client = model_client
        self.max_transitions = max_transitions
        self._claim_lock = asyncio.Lock()
        self._graph = self._build_graph()

    def _build_graph(self):
        """Build and compile the LangGraph state machine."""
        g = StateGraph(_WorkflowGraphState)
        g.add_node("start", self._node_start)
        g.add_node("execute", self._node_execute)
        g.add_node("pause", self._node_pause)
        g.add_node("finish", self._node_finish)

        g.set_entry_point("start")
        g.add_edge("start", "execute")
        g.add_conditional_edges(
            "execute",
            self._route_after_execute,
            {
                "pause": "pause",
                "finish": "finish",
                "continue": "execute",
            },
        )
        g.add_edge("pause", END)
        g.add_edge("finish", END)
        return g.compile()

    async def execute(
        self,
        workflow_id: str,
        definition: WorkflowDefinition,
        trigger_source: TriggerSource = "manual",
        tools: Optional[Mapping[str, BaseTool]] = None,
        on_approval_needed: Optional[ApprovalCallback] = None,
    ) -> WorkflowExecution:
        """Start a new execution from the first step"""
        execution = WorkflowExecution(
            id=uuid.uuid4().hex,
            workflow_id=workflow_id,
            triggered_by=trigger_source,
        )
        logger.info(
            "Starting workflow",
            workflow_id=workflow_id,
            execution_id=execution.id,
            triggered_by=trigger_source,
        )
        return await self._run(execution, definition, tools or {}, 0, on_approval_needed)

    async def resume(
        self,
        execution_id: str,
        definition: WorkflowDefinition,
        tools: Optional[Mapping[str, BaseTool]] = None,
        on_approval_needed: Optional[ApprovalCallback] = None,
    ) -> WorkflowExecution:
        """Continue a paused execution after its pending step was approved.

        An unknown or non-paused execution comes back as a ``failed`` record
        and is not persisted.
        """
        claimed, stored = await self._claim(execution_id)
        if claimed is None:
            if stored is None:
                logger.error("Cannot resume unknown execution", execution_id=execution_id)
                return WorkflowExecution(
                    id=execution_id,
                    workflow_id="unknown",
                    status="failed",
                    error=f"Execution {execution_id} not found",
                )
            logger.error(
                "Cannot resume execution that is not paused",
                execution_id=execution_id,
                status=stored.status,
            )
            return stored.model_copy(
                update={
                    "status": "failed",
                    "error": f"Execution {execution_id} is not paused (status: {stored.status})",
                }
            )
        return await self._continue(claimed, definition, tools, on_approval_needed)

    async def approve(
        self,
        execution_id: str,
        step_id: str,
        definition: WorkflowDefinition,
        tools: Optional[Mapping[str, BaseTool]] = None,
        on_approval_needed: Optional[ApprovalCallback] = None,
    ) -> Optional[WorkflowExecution]:
        """Resume an execution only if it is still paused on ``step_id``.

        Returns ``None`` when the pause was already resolved, for example by
        another client answering the same broadcast approval request.
        """
        claimed, _ = await self._claim(execution_id, step_id)
        if claimed is None:
            return None
        return await self._continue(claimed, definition, tools, on_approval_needed)

    async def reject(
        self,
        execution_id: str,
        reason: str,
        step_id: Optional[str] = None,
    ) -> Optional[WorkflowExecution]:
        """Fail a paused execution whose pending step was denied"""
        async with self._claim_lock:
            execution = await self.repository.get(execution_id)
            if execution is None or execution.status != "paused":
                return None
            if step_id is not None and execution.current_step_id != step_id:
                return None

            if execution.current_step_id:
                execution.step_results[execution.current_step_id] = StepResult(status="failure", output=reason)
            execution.status = "failed"
            execution.error = reason
            execution.paused_at = None
            execution.completed_at = utcnow()
            await self.repository.save(execution)

        logger.info(
            "Workflow approval denied",
            workflow_id=execution.workflow_id,
            execution_id=execution_id,
            step_id=execution.current_step_id,
        )
        return execution

    async def _claim(
        self,
        execution_id: str,
        step_id: Optional[str] = None,
    ) -> Tuple[Optional[WorkflowExecution], Optional[WorkflowExecution]]:
        """Move a paused execution to ``running`` and persist it under the claim lock.

        Returns ``(claimed, None)`` on success, otherwise ``(None, stored)``
        with whatever record the repository holds.
        """
        async with self._claim_lock:
            execution = await self.repository.get(execution_id)
            if execution is None or execution.status != "paused":
                return None, execution
            if step_id is not None and execution.current_step_id != step_id:
                return None, execution

            if execution.current_step_id:
                paused = execution.step_results.get(execution.current_step_id)
                if paused is not None and paused.status == "paused":
                    execution.step_results[execution.current_step_id] = StepResult(
                        status="success", output=paused.output
                    )
            execution.status = "running"
            execution.paused_at = None
            await self.repository.save(execution)
            return execution, None

    async def _continue(
        self,
        execution: WorkflowExecution,
        definition: WorkflowDefinition,
        tools: Optional[Mapping[str, BaseTool]],
        on_approval_needed: Optional[ApprovalCallback],
    ) -> WorkflowExecution:
        logger.info("Resuming workflow execution", execution_id=execution.id, workflow_id=execution.workflow_id)
        start_index = 0
        if execution.current_step_id:
            start_index = definition.step_index(execution.current_step_id) + 1
        return await self._run(execution, definition, tools or {}, start_index, on_approval_needed)

    async def get_execution(self, execution_id: str) -> Optional[WorkflowExecution]:
        return await self.repository.get(execution_id)

    async def list_executions(
        self,
        workflow_id: Optional[str] = None,
        status: Optional[ExecutionStatus] = None,
    ) -> List[WorkflowExecution]:
        return await self.repository.list(workflow_id=workflow_id, status=status)

    async def _run(
        self,
        execution: WorkflowExecution,
        definition: WorkflowDefinition,
        tools: Mapping[str, BaseTool],
        start_index: int,
        on_approval_needed: Optional[ApprovalCallback],
    ) -> WorkflowExecution:
        """Shared step loop; failures end up in the execution.

        Cancellation is the only exception that propagates, and the execution
        is persisted as ``failed`` before it does.
        """
        state: _WorkflowGraphState = {
            "execution": execution,
            "definition": definition,
            "tools": tools,
            "on_approval_needed": on_approval_needed,
            "index": start_index,
            "outcome": None,
            "failure": None,
        }
        try:
            await self.repository.save(execution)
            final = await self._graph.ainvoke(state, config={"recursion_limit": self.max_transitions})
            return final["execution"]
        except GraphRecursionError:
            execution.status = "failed"
            execution.error = f"Workflow exceeded {self.max_transitions} step transitions"
            logger.error(
                "Workflow exceeded transition limit",
                workflow_id=execution.workflow_id,
                execution_id=execution.id,
            )
        except asyncio.CancelledError:
            execution.status = "failed"
            execution.error = CANCELLED_ERROR
            execution.completed_at = utcnow()
            logger.warning(
                "Workflow execution cancelled",
                workflow_id=execution.workflow_id,
                execution_id=execution.id,
                step_id=execution.current_step_id,
            )
            await self.repository.save(execution)
            raise
        except Exception as e:
            execution.status = "failed"
            execution.error = str(e) or e.__class__.__name__
            logger.error(
                "Workflow engine error",
                workflow_id=execution.workflow_id,
                execution_id=execution.id,
                error=execution.error,
                exc_info=True,
            )

        try:
            await self.repository.save(execution)
        except Exception as e:
            logger.error("Failed to persist failed execution", execution_id=execution.id, error=str(e))
        return execution

    async def _node_start(self, state: _WorkflowGraphState) -> _WorkflowGraphState:
        """Graph entry node"""
        logger.debug(
            "Workflow graph entered",
            execution_id=state["execution"].id,
            index=state["index"],
        )
        return {"outcome": None, "failure": None}

    async def _node_execute(self, state: _WorkflowGraphState) -> _WorkflowGraphState:
        """Run the step at ``index`` and resolve the one after it"""
        execution = state["execution"]
        definition = state["definition"]
        index = state["index"]

        if index >= len(definition.steps):
            return {"outcome": "finish"}

        step = definition.steps[index]
        execution.current_step_id = step.id

        if step.approval_required and not _is_step_approved(execution, step.id):
            return {"execution": execution, "outcome": "pause"}

        result = await execute_step(
            step,
            execution.step_results,
            state["tools"],
            error=_last_failure(execution),
            model_client=self.model_client,
        )
        execution.step_results[step.id] = result
        await self.repository.save(execution)
        logger.info(
            "Workflow step completed",
            execution_id=execution.id,
            step_id=step.id,
            status=result.status,
        )

        next_step_id = resolve_next_step(step, result)
        if next_step_id is None:
            return {"execution": execution, "index": index + 1, "outcome": None}

        next_index = definition.step_index(next_step_id)
        if next_index < 0:
            error = BranchResolutionError(step.id, next_step_id)
            return {"execution": execution, "outcome": "finish", "failure": error.message}
        return {"execution": execution, "index": next_index, "outcome": None}

    def _route_after_execute(self, state: _WorkflowGraphState) -> str:
        outcome = state.get("outcome")
        if outcome in ("pause", "finish"):
            return outcome
        return "continue"

    async def _node_pause(self, state: _WorkflowGraphState) -> _WorkflowGraphState:
        """Persist the paused execution and notify whoever must approve"""
        execution = state["execution"]
        step = state["definition"].steps[state["index"]]

        execution.status = "paused"
        execution.paused_at = utcnow()
        execution.step_results[step.id] = StepResult(status="paused", output=None)
        await self.repository.save(execution)
        logger.info(
            "Workflow paused for approval",
            workflow_id=execution.workflow_id,
            execution_id=execution.id,
            step_id=step.id,
        )

        callback = state.get("on_approval_needed")
        if callback is not None:
            try:
                outcome = callback(execution, step)
                if inspect.isawaitable(outcome):
                    await outcome
            except Exception as e:
                logger.error("Approval callback failed", execution_id=execution.id, error=str(e))
        return {"execution": execution}

    async def _node_finish(self, state: _WorkflowGraphState) -> _WorkflowGraphState:
        execution = state["execution"]
        failure = state.get("failure")

        if failure:
            execution.status = "failed"
            execution.error = failure
            logger.info("Workflow failed", workflow_id=execution.workflow_id, execution_id=execution.id, error=failure)
        else:
            execution.status = "completed"
            execution.completed_at = utcnow()
            execution.current_step_id = None
            logger.info("Workflow completed", workflow_id=execution.workflow_id, execution_id=execution.id)

        await self.repository.save(execution)
        return {"execution": execution}
