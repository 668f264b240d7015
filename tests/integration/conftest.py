import pytest
from fastapi.testclient import TestClient

from gateway.application.services import GatewayServices
from gateway.application.websocket.ws_server import create_app
from tests.fakes import FakeModelClient

RELEASE_WORKFLOW = """
name: Release
description: Build, approve, publish
steps:
  - id: build
    action: noop
  - id: publish
    action: tool
    tool: write_file
    approvalRequired: true
    args:
      path: released.txt
      content: "{{steps.build.status}}"
  - id: announce
    action: tool
    tool: write_file
    args:
      path: announced.txt
      content: done
"""


@pytest.fixture
def fake_model():
    return FakeModelClient()


@pytest.fixture
def services(gateway_config, fake_model, monkeypatch):
    monkeypatch.delenv("GATEWAY_DATABASE_URL", raising=False)
    for directory in gateway_config.workflow_dirs:
        with open(f"{directory}/release.yaml", "w") as f:
            f.write(RELEASE_WORKFLOW)

    gateway_config.model_tiers = {"high": "fake:model", "standard": "fake:model", "budget": "fake:model"}
    services = GatewayServices(gateway_config)
    services.providers.register_client("fake:model", fake_model)
    services.workflows.reload()
    return services


@pytest.fixture
def client(services):
    app = create_app(services, is_trusted_peer=lambda host: True)
    with TestClient(app) as client:
        yield client

