"""CLI: init, serve, status, projects, export, credits."""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from pathlib import Path

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from artify.config import PLAN_CREDITS, Config
from artify.core.credits import CreditLedger
from artify.core.export import concept_markdown, export_filename, project_json
from artify.core.projects import ProjectStore
from artify.errors import ArtifyError
from artify.events.bus import EventBus
from artify.storage.sqlite_store import SQLiteStore


def _workspace_db(path: str) -> tuple[Config, Path]:
    """Load the workspace config and exit if its database is missing."""
    config = Config.load(Path(path).expanduser().resolve())
    if not config.db_path.exists():
        click.echo(f"Error: No database at {config.db_path}. Run 'artify init' first.", err=True)
        sys.exit(1)
    return config, config.db_path


@click.group()
@click.version_option(package_name="artify-create")
def main() -> None:
    """Artify CREATE: from raw game idea to validated concept card."""


@main.command()
@click.argument("path", type=click.Path(), default="~/.artify")
@click.option("--admin", "admins", multiple=True, help="Admin email (repeatable)")
@click.option("--mock-auth/--no-mock-auth", default=False, help="Use the development user")
def init(path: str, admins: tuple[str, ...], mock_auth: bool) -> None:
    """Initialize a new artify workspace."""
    workspace = Path(path).expanduser().resolve()
    config = Config(workspace_path=workspace).with_overrides(
        admin_emails=list(admins), mock_auth=mock_auth
    )

    async def _init() -> None:
        store = SQLiteStore(config.db_path, wal_mode=config.wal_mode)
        await store.initialize()
        await store.close()
        config.save()

    asyncio.run(_init())
    click.echo(f"Initialized workspace at {workspace}")
    click.echo(f"Database: {config.db_path}")
    click.echo("Add to your MCP client config:")
    click.echo(f'  "artify": {{"command": "artify", "args": ["serve", "{workspace}"]}}')


@main.command()
@click.argument("path", type=click.Path(exists=True))
@click.option("--transport", type=click.Choice(["stdio", "http"]), default="stdio")
@click.option("--host", default="127.0.0.1", show_default=True)
@click.option("--port", default=8000, show_default=True, type=int)
def serve(path: str, transport: str, host: str, port: int) -> None:
    """Start the MCP server (http also serves /video-unlock, /genres, /debug)."""
    config, db_path = _workspace_db(path)
    logging.basicConfig(
        level=config.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    from artify.server import create_server

    server = create_server(str(db_path), config)
    if transport == "http":
        server.run(transport="http", host=host, port=port)
    else:
        server.run(transport="stdio")


@main.command()
@click.argument("path", type=click.Path(exists=True))
def status(path: str) -> None:
    """Show workspace status."""
    config, db_path = _workspace_db(path)

    async def _status() -> dict:
        store = SQLiteStore(db_path, wal_mode=config.wal_mode)
        try:
            await store.initialize()
            return await store.get_stats()
        finally:
            await store.close()

    stats = asyncio.run(_status())
    stats["config"] = config.public_flags()
    click.echo(json.dumps(stats, indent=2))


@main.command()
@click.argument("path", type=click.Path(exists=True))
@click.option("--user", "user_id", required=True, help="Owner user ID")
@click.option("--all", "include_archived", is_flag=True, help="Include archived projects")
def projects(path: str, user_id: str, include_archived: bool) -> None:
    """List a user's projects, most recently updated first."""
    config, db_path = _workspace_db(path)

    async def _list() -> list:
        store = SQLiteStore(db_path, wal_mode=config.wal_mode)
        await store.initialize()
        try:
            return await ProjectStore(store, EventBus()).list_for_user(
                user_id, include_archived=include_archived
            )
        finally:
            await store.close()

    rows = asyncio.run(_list())
    if not rows:
        click.echo(f"No projects for {user_id}")
        return

    table = Table(title=f"Projects for {user_id}")
    table.add_column("ID", style="dim")
    table.add_column("Title")
    table.add_column("Stage", style="cyan")
    table.add_column("Version", justify="right")
    table.add_column("Updated")
    for p in rows:
        title = p.title or "[dim]untitled[/dim]"
        if p.archived:
            title += " [yellow](archived)[/yellow]"
        table.add_row(p.id[:8], title, str(p.stage), str(p.version), p.updated_at[:19])
    Console().print(table)


@main.command()
@click.argument("path", type=click.Path(exists=True))
@click.argument("project_id")
@click.option("--format", "fmt", type=click.Choice(["md", "json"]), default="md")
@click.option("--output", type=click.Path(file_okay=False), default=None, help="Target directory")
def export(path: str, project_id: str, fmt: str, output: str | None) -> None:
    """Export a project as markdown or JSON."""
    config, db_path = _workspace_db(path)

    async def _load():
        store = SQLiteStore(db_path, wal_mode=config.wal_mode)
        await store.initialize()
        try:
            return await ProjectStore(store, EventBus()).load(project_id)
        finally:
            await store.close()

    try:
        project = asyncio.run(_load())
    except ArtifyError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    text = concept_markdown(project) if fmt == "md" else project_json(project)
    if output is None:
        click.echo(text)
        return

    target = Path(output).expanduser() / export_filename(project, fmt)
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(text)
    click.echo(f"Wrote {target}")


@main.group()
def credits() -> None:
    """Inspect and manage credit accounts."""


@credits.command()
@click.argument("path", type=click.Path(exists=True))
@click.argument("user_id")
@click.option("--history", "limit", default=0, type=int, help="Show N recent movements")
def show(path: str, user_id: str, limit: int) -> None:
    """Show a user's balance, plan and unlocks."""
    config, db_path = _workspace_db(path)

    async def _show() -> tuple:
        store = SQLiteStore(db_path, wal_mode=config.wal_mode)
        await store.initialize()
        try:
            info = await CreditLedger(store, EventBus()).get_credits(user_id)
            log = await store.get_credit_log(user_id, limit=limit) if limit else []
            return info, log
        finally:
            await store.close()

    try:
        info, log = asyncio.run(_show())
    except ArtifyError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    cap = "uncapped" if info.cap is None else str(info.cap)
    Console().print(
        Panel(
            f"Balance: [bold]{info.balance}[/bold] / {cap}\n"
            f"Plan: {info.plan or 'none'}\n"
            f"Unlocks: {', '.join(sorted(info.unlocks)) or 'none'}",
            title=f"Credits: {user_id}",
        )
    )
    if log:
        table = Table(title="Recent movements")
        table.add_column("When")
        table.add_column("Delta", justify="right")
        table.add_column("Balance", justify="right")
        table.add_column("Reason")
        for entry in log:
            delta = entry["delta"]
            style = "green" if delta > 0 else "red"
            table.add_row(
                entry["created_at"][:19],
                f"[{style}]{delta:+d}[/{style}]",
                str(entry["balance_after"]),
                entry["reason"],
            )
        Console().print(table)


@credits.command("set-plan")
@click.argument("path", type=click.Path(exists=True))
@click.argument("user_id")
@click.argument("plan", type=click.Choice([*PLAN_CREDITS, "none"]))
@click.option("--email", default=None, help="Email used when the account is new")
def set_plan(path: str, user_id: str, plan: str, email: str | None) -> None:
    """Put a user on a plan and reset their balance to its allowance."""
    config, db_path = _workspace_db(path)

    async def _set_plan():
        store = SQLiteStore(db_path, wal_mode=config.wal_mode)
        await store.initialize()
        try:
            ledger = CreditLedger(store, EventBus())
            await ledger.ensure_account(user_id, email)
            return await ledger.set_plan(user_id, None if plan == "none" else plan)
        finally:
            await store.close()

    info = asyncio.run(_set_plan())
    click.echo(f"{user_id}: plan={info.plan or 'none'} balance={info.balance}")
