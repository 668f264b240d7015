"""Command line entry point for running the gateway."""

from typing import Optional

import typer
import uvicorn

from gateway.application.services import GatewayServices
from gateway.application.websocket.ws_server import create_app
from gateway.config import load_config
from gateway.infrastructure.observability.logging import setup_logging

app = typer.Typer(help="Local agent gateway")


@app.command()
def serve(
    config_path: Optional[str] = typer.Option(None, "--config", help="Path to the YAML config file"),
    port: Optional[int] = typer.Option(None, "--port", help="Override the configured port"),
) -> None:
    """Run the websocket gateway on the loopback interface."""
    config = load_config(config_path)
    if port:
        config.port = port
    setup_logging(config.log_level, config.log_format)

    uvicorn.run(create_app(GatewayServices(config)), host=config.host, port=config.port, log_config=None)


@app.command()
def workflows(config_path: Optional[str] = typer.Option(None, "--config", help="Path to the YAML config file")) -> None:
    """List the workflow definitions found in the configured directories."""
    config = load_config(config_path)
    services = GatewayServices(config)
    services.workflows.reload()
    for workflow_id, definition in services.workflows.items():
        typer.echo(f"{workflow_id}\t{definition.name}\t{len(definition.steps)} steps")


if __name__ == "__main__":
    app()
