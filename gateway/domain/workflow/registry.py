from typing import Dict, List, Optional, Sequence

import structlog

from gateway.domain.errors import WorkflowNotFoundError
from gateway.domain.models.workflow import WorkflowDefinition
from .loader import discover_workflows

logger = structlog.get_logger(__name__)


class WorkflowRegistry:
    """Known workflow definitions keyed by workflow id"""

    def __init__(self, dirs: Sequence[str] = ()):
        self.dirs = list(dirs)
        self._definitions: Dict[str, WorkflowDefinition] = {}

    def reload(self) -> int:
        discovered = discover_workflows(self.dirs)
        self._definitions = {wid: found.definition for wid, found in discovered.items()}
        return len(self._definitions)

    def register(self, workflow_id: str, definition: WorkflowDefinition) -> None:
        self._definitions[workflow_id] = definition
        logger.debug("Workflow registered", workflow_id=workflow_id, steps=len(definition.steps))

    def get(self, workflow_id: str) -> Optional[WorkflowDefinition]:
        return self._definitions.get(workflow_id)

    def require(self, workflow_id: str) -> WorkflowDefinition:
        definition = self._definitions.get(workflow_id)
        if definition is None:
            raise WorkflowNotFoundError(workflow_id)
        return definition

    def items(self) -> List[tuple]:
        return sorted(self._definitions.items())

    def __contains__(self, workflow_id: str) -> bool:
        return workflow_id in self._definitions

    def __len__(self) -> int:
        return len(self._definitions)
