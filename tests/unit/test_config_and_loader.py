import json

import pytest

from gateway.config import load_config
from gateway.domain.errors import WorkflowNotFoundError
from gateway.domain.workflow.loader import discover_workflows, load_workflow_definition, workflow_id_for
from gateway.domain.workflow.registry import WorkflowRegistry

WORKFLOW_YAML = """
name: Nightly report
description: Collect and summarize
steps:
  - id: collect
    action: tool
    tool: list_files
    args:
      path: "."
  - id: publish
    action: noop
    approvalRequired: true
"""


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ("GATEWAY_CONFIG", "GATEWAY_DATABASE_URL", "DATABASE_URL", "GATEWAY_HOST", "GATEWAY_PORT", "GATEWAY_LOG_LEVEL"):
        monkeypatch.delenv(name, raising=False)


def test_defaults_when_file_missing(tmp_path):
    config = load_config(str(tmp_path / "absent.yaml"))
    assert config.host == "127.0.0.1"
    assert config.security_mode == "limited-control"
    assert set(config.providers) == {"anthropic", "openai", "google", "ollama"}


def test_yaml_values_and_env_overrides(tmp_path, monkeypatch):
    path = tmp_path / "config.yaml"
    path.write_text(
        "port: 9000\n"
        "routing_mode: manual\n"
        "model_tiers:\n"
        "  budget: openai:gpt-4o-mini\n"
        "tool_approval:\n"
        "  default_tier: always\n"
    )
    monkeypatch.setenv("GATEWAY_PORT", "9100")
    monkeypatch.setenv("GATEWAY_DATABASE_URL", "sqlite://:memory:")

    config = load_config(str(path))

    assert config.port == 9100
    assert config.routing_mode == "manual"
    assert config.model_tiers == {"budget": "openai:gpt-4o-mini"}
    assert config.tool_approval.default_tier == "always"
    assert config.database_url == "sqlite://:memory:"


def test_config_path_from_env(tmp_path, monkeypatch):
    path = tmp_path / "gateway.yaml"
    path.write_text("agent_id: work\n")
    monkeypatch.setenv("GATEWAY_CONFIG", str(path))
    assert load_config().agent_id == "work"


def test_workflow_ids_come_from_file_names(tmp_path):
    assert workflow_id_for(tmp_path / "deploy.workflow.json") == "deploy"
    assert workflow_id_for(tmp_path / "nightly.yaml") == "nightly"


def test_load_yaml_definition(tmp_path):
    path = tmp_path / "nightly.yml"
    path.write_text(WORKFLOW_YAML)
    definition = load_workflow_definition(path)
    assert definition.name == "Nightly report"
    assert definition.steps[1].approval_required is True


def test_unsupported_extension(tmp_path):
    path = tmp_path / "flow.toml"
    path.write_text("")
    with pytest.raises(ValueError):
        load_workflow_definition(path)


def test_discovery_skips_invalid_files(tmp_path):
    (tmp_path / "nightly.yaml").write_text(WORKFLOW_YAML)
    (tmp_path / "deploy.workflow.json").write_text(
        json.dumps({"name": "Deploy", "steps": [{"id": "go", "action": "noop"}]})
    )
    (tmp_path / "broken.yaml").write_text("name: Broken\nsteps: []\n")
    (tmp_path / "dupes.yaml").write_text(
        "name: Dupes\nsteps:\n  - {id: a, action: noop}\n  - {id: a, action: noop}\n"
    )
    (tmp_path / "notes.txt").write_text("not a workflow")

    found = discover_workflows([tmp_path, tmp_path / "missing"])

    assert sorted(found) == ["deploy", "nightly"]
    assert found["deploy"].definition.name == "Deploy"


def test_registry_reload_and_require(tmp_path):
    (tmp_path / "nightly.yaml").write_text(WORKFLOW_YAML)
    registry = WorkflowRegistry([str(tmp_path)])

    assert registry.reload() == 1
    assert "nightly" in registry
    assert registry.require("nightly").name == "Nightly report"
    with pytest.raises(WorkflowNotFoundError) as info:
        registry.require("other")
    assert info.value.code == "WORKFLOW_NOT_FOUND"
