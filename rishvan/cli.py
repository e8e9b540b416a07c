"""CLI for Rishvan - ask a human from an agent, answer through a shared web UI."""

from __future__ import annotations

import asyncio
import logging
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

import click

from rishvan import __version__
from rishvan.config import DEFAULT_DB_PATH, DEFAULT_HOST, DEFAULT_PORT, Settings

if TYPE_CHECKING:
    from rishvan.ask import AskService
    from rishvan.coordinator import InstanceCoordinator
    from rishvan.manager import RequestManager
    from rishvan.notifier import NotificationBroker
    from rishvan.store import RequestStore

logger = logging.getLogger(__name__)


def _configure_logging(level: str) -> None:
    # stdout carries the MCP stdio protocol, so logs go to stderr
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )


@dataclass
class Runtime:
    """Components constructed once per process and shared explicitly."""

    settings: Settings
    store: RequestStore
    broker: NotificationBroker
    manager: RequestManager
    coordinator: InstanceCoordinator
    service: AskService

    def close(self) -> None:
        self.broker.close()
        self.manager.close()
        self.coordinator.shutdown()


def build_runtime(settings: Settings) -> Runtime:
    """Wire store, broker, manager, web app, coordinator and ask service."""
    from rishvan.ask import AskService
    from rishvan.coordinator import InstanceCoordinator
    from rishvan.manager import RequestManager
    from rishvan.notifier import NotificationBroker
    from rishvan.store import RequestStore
    from rishvan.webserver import create_app

    store = RequestStore(settings.db_path)
    broker = NotificationBroker()
    manager = RequestManager(store)
    app = create_app(settings, manager, broker, store)
    coordinator = InstanceCoordinator(settings, app)
    service = AskService(settings, coordinator, manager, broker)
    return Runtime(
        settings=settings,
        store=store,
        broker=broker,
        manager=manager,
        coordinator=coordinator,
        service=service,
    )


def _server_options(func):
    func = click.option(
        "--db",
        "db_path",
        envvar="RISHVAN_DB",
        default=str(DEFAULT_DB_PATH),
        type=click.Path(dir_okay=False),
        help="Path to the request database",
    )(func)
    func = click.option("--host", envvar="RISHVAN_HOST", default=DEFAULT_HOST, help="Host to bind to")(func)
    func = click.option("--port", envvar="RISHVAN_PORT", default=DEFAULT_PORT, help="Shared UI port")(func)
    return func


@click.group()
@click.version_option(version=__version__, prog_name="rishvan-mcp")
@click.option("--log-level", default="info", help="Logging level (written to stderr)")
def main(log_level: str) -> None:
    """Rishvan - ask a human from inside an agent.

    Questions from every agent process on this machine are answered
    through one shared local web UI.
    """
    _configure_logging(log_level)


@main.command()
@click.option("--ide", "source_name", envvar="RISHVAN_IDE", required=True, help="Name of the IDE / agent integration")
@_server_options
@click.option("--no-browser", envvar="RISHVAN_NO_BROWSER", is_flag=True, help="Do not open the UI in a browser")
def mcp(source_name: str, port: int, host: str, db_path: str, no_browser: bool) -> None:
    """Run the MCP stdio server exposing the ask_rishvan tool.

    \b
    Configure in .mcp.json:
        {
            "mcpServers": {
                "rishvan": {
                    "command": "rishvan-mcp",
                    "args": ["mcp", "--ide", "my-ide"]
                }
            }
        }
    """
    from mcp_rishvan.server import create_server

    settings = Settings(
        source_name=source_name,
        host=host,
        port=port,
        db_path=Path(db_path),
        open_browser=not no_browser,
    )
    runtime = build_runtime(settings)
    try:
        create_server(runtime.service).run()
    finally:
        runtime.close()


@main.command()
@_server_options
def serve(port: int, host: str, db_path: str) -> None:
    """Run the shared UI endpoint in the foreground."""
    from rishvan.coordinator import PortInUseError, Role, ServerStartError

    settings = Settings(source_name="rishvan", host=host, port=port, db_path=Path(db_path))
    runtime = build_runtime(settings)
    try:
        role = runtime.coordinator.resolve_role()
    except (PortInUseError, ServerStartError) as e:
        runtime.close()
        raise click.ClickException(str(e))

    if role is Role.SECONDARY:
        click.echo(f"Rishvan is already running at {settings.base_url}")
        return

    click.echo(f"Serving Rishvan UI at {settings.base_url} (Ctrl+C to stop)")
    try:
        runtime.coordinator.wait()
    except KeyboardInterrupt:
        pass
    finally:
        runtime.close()


@main.command()
@click.argument("question")
@click.option("--ide", "source_name", envvar="RISHVAN_IDE", default="cli", help="Name of the asking integration")
@click.option("--app", "app_name", required=True, help="Application or project context")
@_server_options
@click.option("--no-browser", envvar="RISHVAN_NO_BROWSER", is_flag=True, help="Do not open the UI in a browser")
def ask(question: str, source_name: str, app_name: str, port: int, host: str, db_path: str, no_browser: bool) -> None:
    """Ask a human a question and print the answer.

    \b
    Example:
        rishvan-mcp ask --app myapp "Which database should we use?"
    """
    from rishvan.coordinator import PortInUseError, ServerStartError
    from rishvan.manager import InvalidRequestError
    from rishvan.remote import RemoteError

    settings = Settings(
        source_name=source_name,
        host=host,
        port=port,
        db_path=Path(db_path),
        open_browser=not no_browser,
    )
    runtime = build_runtime(settings)
    try:
        answer = asyncio.run(runtime.service.ask(app_name, question))
    except (InvalidRequestError, PortInUseError, RemoteError, ServerStartError) as e:
        raise click.ClickException(str(e))
    except KeyboardInterrupt:
        raise click.Abort()
    finally:
        runtime.close()

    click.echo(answer)


@main.command()
@click.option("--source", "source_name", default=None, help="Only requests from this integration")
@click.option("--app", "app_name", default=None, help="Only requests for this application")
@click.option("--status", type=click.Choice(["pending", "responded"]), default=None, help="Only requests in this status")
@click.option(
    "--db",
    "db_path",
    envvar="RISHVAN_DB",
    default=str(DEFAULT_DB_PATH),
    type=click.Path(dir_okay=False),
    help="Path to the request database",
)
@click.option("--raw", is_flag=True, help="Output raw JSON instead of formatted text")
def requests(source_name: str | None, app_name: str | None, status: str | None, db_path: str, raw: bool) -> None:
    """List stored requests, newest first."""
    from rishvan.schemas import RequestStatus
    from rishvan.store import RequestStore, StoreError

    try:
        store = RequestStore(db_path)
        results = store.list_requests(
            source_name=source_name,
            app_name=app_name,
            status=RequestStatus(status) if status else None,
        )
    except StoreError as e:
        raise click.ClickException(str(e))

    if raw:
        import json
        click.echo(json.dumps([r.model_dump(mode="json") for r in results], indent=2))
        return

    if not results:
        click.echo("No requests found.")
        return

    for r in results:
        click.echo(f"#{r.id} [{r.status.value}] {r.source_name}/{r.app_name}: {r.question}")
        if r.response:
            click.echo(f"    -> {r.response}")


if __name__ == "__main__":
    main()
