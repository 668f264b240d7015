from gateway.application.services import GatewayServices
from ..connection_state import ConnectionState
from ..schema.events import ContextInspection, SessionListEvent, UsageReport
from ..schema.messages import ContextInspect, SessionList, UsageQuery
from ..transport import Transport


async def handle_context_inspect(
    services: GatewayServices,
    transport: Transport,
    msg: ContextInspect,
    conn: ConnectionState,
) -> None:
    """Section-by-section breakdown of what the next turn would send"""
    session = await services.sessions.require(msg.session_id)
    inspection = await services.assembler.inspect(session.messages, session.model, msg.thread_id)
    await transport.send(
        ContextInspection(
            request_id=msg.id,
            session_id=session.id,
            sections=inspection.sections,
            totals=inspection.totals,
        )
    )


async def handle_usage_query(
    services: GatewayServices,
    transport: Transport,
    msg: UsageQuery,
    conn: ConnectionState,
) -> None:
    totals = await services.usage.totals(msg.session_id)
    await transport.send(
        UsageReport(
            request_id=msg.id,
            session_id=msg.session_id,
            per_model=totals.per_model,
            grand_total=totals.grand_total,
        )
    )


async def handle_session_list(
    services: GatewayServices,
    transport: Transport,
    msg: SessionList,
    conn: ConnectionState,
) -> None:
    await transport.send(SessionListEvent(request_id=msg.id, sessions=await services.sessions.list()))
