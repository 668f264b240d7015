from typing import Any, Dict, List, Literal, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator
from datetime import datetime

from .session import utcnow


StepAction = Literal["tool", "model", "noop"]
StepStatus = Literal["success", "failure", "paused"]
ExecutionStatus = Literal["running", "paused", "completed", "failed"]
TriggerSource = Literal["manual", "cron", "heartbeat"]


class BranchDefinition(BaseModel):
    """Conditional jump evaluated against the step result"""
    condition: str
    goto: str


class StepDefinition(BaseModel):
    """A single workflow step"""
    model_config = ConfigDict(populate_by_name=True)

    id: str
    action: StepAction
    tool: Optional[str] = None
    args: Dict[str, Any] = Field(default_factory=dict)
    prompt: Optional[str] = None
    approval_required: bool = Field(default=False, alias="approvalRequired")
    on_success: Optional[str] = Field(default=None, alias="onSuccess")
    on_failure: Optional[str] = Field(default=None, alias="onFailure")
    branches: List[BranchDefinition] = Field(default_factory=list)
    timeout: Optional[int] = Field(default=None, description="Timeout in milliseconds")


class WorkflowDefinition(BaseModel):
    """Static workflow loaded from a YAML or JSON file"""
    name: str
    description: Optional[str] = None
    trigger: Optional[Dict[str, Any]] = None
    steps: List[StepDefinition] = Field(min_length=1)

    @field_validator("steps")
    @classmethod
    def _unique_step_ids(cls, steps: List[StepDefinition]) -> List[StepDefinition]:
        seen = set()
        for step in steps:
            if step.id in seen:
                raise ValueError(f"Duplicate step id: {step.id}")
            seen.add(step.id)
        return steps

    def step_index(self, step_id: str) -> int:
        """Index of a step by id, -1 if absent"""
        for index, step in enumerate(self.steps):
            if step.id == step_id:
                return index
        return -1


class StepResult(BaseModel):
    status: StepStatus
    output: Any = None
    completed_at: datetime = Field(default_factory=utcnow)


class WorkflowExecution(BaseModel):
    """Durable execution state, persisted after every step transition"""
    id: str
    workflow_id: str
    status: ExecutionStatus = "running"
    current_step_id: Optional[str] = None
    step_results: Dict[str, StepResult] = Field(default_factory=dict)
    started_at: datetime = Field(default_factory=utcnow)
    paused_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    error: Optional[str] = None
    triggered_by: TriggerSource = "manual"

    @property
    def is_terminal(self) -> bool:
        return self.status in ("completed", "failed")
