import pytest

from gateway.config import GatewayConfig
from gateway.domain.memory.memory_manager import MemoryManager


@pytest.fixture
def workspace(tmp_path):
    path = tmp_path / "workspace"
    path.mkdir()
    return path


@pytest.fixture
def memory_dir(tmp_path):
    path = tmp_path / "memory"
    path.mkdir()
    return path


@pytest.fixture
def memory_manager(memory_dir):
    return MemoryManager(str(memory_dir))


@pytest.fixture
def gateway_config(tmp_path, workspace, memory_dir):
    workflows = tmp_path / "workflows"
    workflows.mkdir()
    return GatewayConfig(
        memory_dir=str(memory_dir),
        workspace_dir=str(workspace),
        workflow_dirs=[str(workflows)],
        default_model="fake:model",
    )
