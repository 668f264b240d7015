"""Workflow handlers: trigger, approval and listings.

Approvals are checked against the persisted execution rather than the
connection that triggered it, so a paused workflow can be approved after a
reconnect or from another client.
"""

import structlog

from gateway.application.services import GatewayServices
from gateway.domain.models.workflow import StepDefinition, WorkflowExecution
from gateway.domain.workflow.engine import ApprovalCallback
from ..connection_state import ConnectionState, PendingWorkflowApproval
from ..schema.events import (
    ErrorEvent,
    WorkflowApprovalRequest,
    WorkflowExecutionListEvent,
    WorkflowListEvent,
    WorkflowStatusEvent,
    WorkflowSummary,
)
from ..schema.messages import WorkflowApproval, WorkflowExecutionList, WorkflowList, WorkflowTrigger
from ..transport import Transport

logger = structlog.get_logger(__name__)


def _approval_callback(transport: Transport, conn: ConnectionState) -> ApprovalCallback:
    async def on_approval_needed(execution: WorkflowExecution, step: StepDefinition) -> None:
        conn.pending_workflow_approvals[execution.id] = PendingWorkflowApproval(
            execution.id, execution.workflow_id, step.id
        )
        await transport.send(
            WorkflowApprovalRequest(
                execution_id=execution.id,
                workflow_id=execution.workflow_id,
                step_id=step.id,
                action=step.action,
                tool=step.tool,
                args=step.args,
            )
        )

    return on_approval_needed


async def _no_pending_approval(transport: Transport, msg: WorkflowApproval) -> None:
    await transport.send(
        ErrorEvent(
            request_id=msg.id,
            code="NO_PENDING_APPROVAL",
            message=f"No pending approval for step {msg.step_id} of execution {msg.execution_id}",
        )
    )


async def handle_workflow_trigger(
    services: GatewayServices,
    transport: Transport,
    msg: WorkflowTrigger,
    conn: ConnectionState,
) -> None:
    definition = services.workflows.require(msg.workflow_id)
    execution = await services.engine.execute(
        msg.workflow_id,
        definition,
        "manual",
        services.workflow_tools(),
        _approval_callback(transport, conn),
    )
    await transport.send(WorkflowStatusEvent.from_execution(execution, msg.id))


async def handle_workflow_approval(
    services: GatewayServices,
    transport: Transport,
    msg: WorkflowApproval,
    conn: ConnectionState,
) -> None:
    """Resolve a paused step; only the first answer for a pause takes effect"""
    pending = conn.pending_workflow_approvals.pop(msg.execution_id, None)
    execution = await services.engine.get_execution(msg.execution_id)
    if execution is None or execution.status != "paused" or execution.current_step_id != msg.step_id:
        await _no_pending_approval(transport, msg)
        return
    if pending is None:
        logger.info("Approving workflow paused outside this connection", execution_id=msg.execution_id)

    if not msg.approved:
        outcome = await services.engine.reject(
            msg.execution_id, f"Step {msg.step_id} was not approved", step_id=msg.step_id
        )
    else:
        definition = services.workflows.require(execution.workflow_id)
        outcome = await services.engine.approve(
            msg.execution_id,
            msg.step_id,
            definition,
            services.workflow_tools(),
            _approval_callback(transport, conn),
        )

    if outcome is None:
        logger.info("Workflow approval already resolved", execution_id=msg.execution_id, step_id=msg.step_id)
        await _no_pending_approval(transport, msg)
        return
    await transport.send(WorkflowStatusEvent.from_execution(outcome, msg.id))


async def handle_workflow_list(
    services: GatewayServices,
    transport: Transport,
    msg: WorkflowList,
    conn: ConnectionState,
) -> None:
    workflows = [
        WorkflowSummary(
            id=workflow_id,
            name=definition.name,
            description=definition.description,
            step_count=len(definition.steps),
        )
        for workflow_id, definition in services.workflows.items()
    ]
    await transport.send(WorkflowListEvent(request_id=msg.id, workflows=workflows))


async def handle_workflow_execution_list(
    services: GatewayServices,
    transport: Transport,
    msg: WorkflowExecutionList,
    conn: ConnectionState,
) -> None:
    executions = await services.engine.list_executions(msg.workflow_id, msg.status)
    await transport.send(WorkflowExecutionListEvent(request_id=msg.id, executions=executions))
