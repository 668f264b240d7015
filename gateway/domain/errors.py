from typing import List, Optional


class GatewayError(Exception):
    """Base error carrying a stable protocol error code"""

    code = "INTERNAL_ERROR"

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code


class SessionNotFoundError(GatewayError):
    code = "SESSION_NOT_FOUND"

    def __init__(self, session_id: str):
        super().__init__(f"Session {session_id} not found")
        self.session_id = session_id


class ProviderNotConfiguredError(GatewayError):
    code = "PROVIDER_NOT_CONFIGURED"

    def __init__(self, provider: str, available: List[str]):
        listed = ", ".join(available) if available else "none"
        super().__init__(
            f'Provider "{provider}" is not configured. Available providers: {listed}'
        )
        self.provider = provider


class WorkflowNotFoundError(GatewayError):
    code = "WORKFLOW_NOT_FOUND"

    def __init__(self, workflow_id: str):
        super().__init__(f"Workflow {workflow_id} not found")
        self.workflow_id = workflow_id


class ScheduleNotFoundError(GatewayError):
    code = "SCHEDULE_NOT_FOUND"

    def __init__(self, schedule_id: str):
        super().__init__(f"Schedule {schedule_id} not found")
        self.schedule_id = schedule_id


class LLMError(GatewayError):
    """Raised when a model provider call fails"""

    code = "LLM_ERROR"


class BranchResolutionError(GatewayError):
    """A workflow step pointed at a step id that does not exist"""

    code = "WORKFLOW_BRANCH_ERROR"

    def __init__(self, step_id: str, target: str):
        super().__init__(f"Step {step_id} branched to unknown step: {target}")
        self.step_id = step_id
        self.target = target


class ConditionError(GatewayError):
    """A branch condition uses syntax outside the supported grammar"""

    code = "INVALID_CONDITION"


class ThreadNotFoundError(GatewayError):
    code = "THREAD_NOT_FOUND"

    def __init__(self, thread_id: str):
        super().__init__(f"Thread {thread_id} not found")
        self.thread_id = thread_id
