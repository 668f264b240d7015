import json
from pathlib import Path
from typing import Dict, Iterable, NamedTuple, Union

import structlog
import yaml
from pydantic import ValidationError

from gateway.domain.models.workflow import WorkflowDefinition

logger = structlog.get_logger(__name__)

YAML_SUFFIXES = (".yaml", ".yml")
JSON_SUFFIX = ".workflow.json"


class DiscoveredWorkflow(NamedTuple):
    workflow_id: str
    path: Path
    definition: WorkflowDefinition


def workflow_id_for(path: Path) -> str:
    """Workflows are keyed by file stem (``deploy.workflow.json`` -> ``deploy``)"""
    name = path.name
    if name.endswith(JSON_SUFFIX):
        return name[: -len(JSON_SUFFIX)]
    return path.stem


def is_workflow_file(path: Path) -> bool:
    return path.suffix.lower() in YAML_SUFFIXES or path.name.endswith(JSON_SUFFIX)


def load_workflow_definition(path: Union[str, Path]) -> WorkflowDefinition:
    """Load and validate one definition; raises ValueError or ValidationError"""
    path = Path(path)
    raw = path.read_text(encoding="utf-8")
    if path.suffix.lower() in YAML_SUFFIXES:
        data = yaml.safe_load(raw)
    elif path.name.endswith(JSON_SUFFIX) or path.suffix.lower() == ".json":
        data = json.loads(raw)
    else:
        raise ValueError(
            f"Unsupported workflow file extension: {path.suffix} (expected .yaml, .yml or .workflow.json)"
        )
    return WorkflowDefinition.model_validate(data)


def discover_workflows(dirs: Iterable[Union[str, Path]]) -> Dict[str, DiscoveredWorkflow]:
    """Scan ``dirs`` (not recursively) for workflow files; invalid ones are skipped"""
    found: Dict[str, DiscoveredWorkflow] = {}
    for directory in dirs:
        directory = Path(directory).expanduser()
        if not directory.is_dir():
            logger.info("Workflow directory not found, skipping", directory=str(directory))
            continue

        for path in sorted(directory.iterdir()):
            if not path.is_file() or not is_workflow_file(path):
                continue
            try:
                definition = load_workflow_definition(path)
            except (OSError, ValueError, ValidationError, yaml.YAMLError) as e:
                logger.info("Skipping invalid workflow file", path=str(path), error=str(e))
                continue

            workflow_id = workflow_id_for(path)
            if workflow_id in found:
                logger.warning("Duplicate workflow id, keeping first", workflow_id=workflow_id, path=str(path))
                continue
            found[workflow_id] = DiscoveredWorkflow(workflow_id, path, definition)

    logger.info("Workflows discovered", count=len(found))
    return found
