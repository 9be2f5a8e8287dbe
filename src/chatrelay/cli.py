"""
ChatRelay CLI - command-line interface for ChatRelay.

Server management plus the session-management commands available to chat
users: listing sessions and working directories, inspecting a conversation,
switching a channel, and housekeeping.
"""

from datetime import timedelta
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from chatrelay.logging_config import setup_logging

app = typer.Typer(
    name="chatrelay",
    help="ChatRelay - Serialized chat-channel relay to a reasoning engine",
    no_args_is_help=True,
)

console = Console()


def _get_relay():
    """Build the relay service used by the session commands."""
    from chatrelay.engine.claude_cli import ClaudeCLIEngine
    from chatrelay.services.relay import MessageRelay

    return MessageRelay(engine=ClaudeCLIEngine())


def _init_logging() -> None:
    # Fall back to console logging if file logging is not permitted
    try:
        setup_logging(context="cli")
    except PermissionError:
        import logging

        logging.basicConfig(level=logging.INFO)


def _fail(message: str) -> None:
    console.print(f"[bold red]Error:[/bold red] {message}")
    raise typer.Exit(1)


def _print_sessions(summaries, title: str) -> None:
    if not summaries:
        console.print("[yellow]No sessions found[/yellow]")
        return

    table = Table(title=title)
    table.add_column("Session", style="cyan", no_wrap=True)
    table.add_column("Working Dir", style="white")
    table.add_column("User", style="dim")
    table.add_column("Messages", justify="right", style="green")
    table.add_column("Updated", style="dim")
    for summary in summaries:
        updated = summary.root.updated_at
        table.add_row(
            summary.session_id,
            summary.working_directory,
            summary.system_user,
            str(summary.message_count),
            updated.strftime("%Y-%m-%d %H:%M") if updated else "",
        )
    console.print(table)


@app.command()
def sessions(
    limit: int = typer.Option(10, help="Maximum number of sessions"),
    context: Optional[str] = typer.Option(
        None, "--context", help="Only sessions of this working directory"
    ),
) -> None:
    """
    List root sessions, most recently updated first.
    """
    from chatrelay.exceptions import StorageError

    _init_logging()
    relay = _get_relay()
    try:
        if context:
            summaries = relay.list_by_context(context, limit)
            title = f"Sessions in {context}"
        else:
            summaries = relay.list_recent(limit)
            title = "Recent sessions"
    except StorageError as e:
        _fail(str(e))

    _print_sessions(summaries, title)


@app.command()
def contexts(
    limit: int = typer.Option(10, help="Maximum number of working directories"),
) -> None:
    """
    List working directories that have sessions.
    """
    from chatrelay.exceptions import StorageError

    _init_logging()
    try:
        directories = _get_relay().list_distinct_contexts(limit)
    except StorageError as e:
        _fail(str(e))

    if not directories:
        console.print("[yellow]No working directories found[/yellow]")
        return

    console.print("[bold]Working directories:[/bold]")
    for directory in directories:
        console.print(f"  • {directory}")


@app.command()
def chain(
    session_id: str = typer.Argument(..., help="Root session identifier"),
) -> None:
    """
    Show a conversation with every exchange in order.
    """
    from chatrelay.exceptions import SessionNotFound, StorageError

    _init_logging()
    try:
        root, conversation = _get_relay().get_chain(session_id)
    except SessionNotFound:
        _fail(f"Session not found: {session_id}")
    except StorageError as e:
        _fail(str(e))

    console.print(f"[bold blue]Session:[/bold blue] {root.session_id}")
    console.print(f"  Working Dir: {root.working_directory}")
    console.print(f"  User: {root.system_user}")
    console.print(f"  Exchanges: {len(conversation)}")
    console.print()
    if root.user_prompt:
        console.print(f"[bold]User:[/bold] {root.user_prompt}")
    for exchange in conversation.ordered():
        console.print(f"[cyan]{exchange.session_id}[/cyan]")
        if exchange.ai_response:
            console.print(f"[bold]Assistant:[/bold] {exchange.ai_response}")
        if exchange.user_prompt:
            console.print(f"[bold]User:[/bold] {exchange.user_prompt}")


@app.command()
def switch(
    channel_id: str = typer.Argument(..., help="Chat channel identifier"),
    target: str = typer.Argument(..., help="Root session or exchange identifier"),
) -> None:
    """
    Bind a channel to an existing session.

    The next message on the channel resumes from the session's newest
    exchange.
    """
    from chatrelay.exceptions import SessionNotFound, StorageError

    _init_logging()
    try:
        root, leaf = _get_relay().switch_to(channel_id, target)
    except SessionNotFound:
        _fail(f"Session not found: {target}")
    except StorageError as e:
        _fail(str(e))

    console.print(f"[green]✓ Channel {channel_id} switched to session[/green]")
    console.print(f"  Session: {root.session_id}")
    console.print(f"  Resumes from: {leaf.session_id if leaf else 'new conversation'}")


@app.command("delete-session")
def delete_session(
    session_id: str = typer.Argument(..., help="Root session identifier"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
) -> None:
    """
    Delete a root session and all of its exchanges.
    """
    from chatrelay.exceptions import SessionNotFound, StorageError

    _init_logging()
    if not yes:
        typer.confirm(f"Delete session {session_id} and all its exchanges?", abort=True)

    try:
        _get_relay().delete_session(session_id)
    except SessionNotFound:
        _fail(f"Session not found: {session_id}")
    except StorageError as e:
        _fail(str(e))

    console.print(f"[green]✓ Deleted session {session_id}[/green]")


@app.command()
def reap(
    timeout: Optional[int] = typer.Option(
        None, help="Release busy flags older than this many seconds"
    ),
) -> None:
    """
    Release channels left busy by a crashed exchange.
    """
    from chatrelay.config import settings
    from chatrelay.db.connection import unit_of_work
    from chatrelay.exceptions import StorageError
    from chatrelay.queue.channel_queue import ChannelMessageQueue

    _init_logging()
    seconds = timeout if timeout is not None else settings.stale_processing_timeout_seconds
    try:
        with unit_of_work(_get_relay().session_factory, "reap_stale") as session:
            released = ChannelMessageQueue(session).reap_stale(timedelta(seconds=seconds))
    except StorageError as e:
        _fail(str(e))

    console.print(f"[green]✓ Released {released} stale channel(s)[/green]")


@app.command("init-db")
def init_db() -> None:
    """
    Create the database tables.

    Prefer `alembic upgrade head` for managed deployments.
    """
    from sqlalchemy.exc import SQLAlchemyError

    from chatrelay.db.connection import init_db as create_tables

    _init_logging()
    try:
        create_tables()
    except SQLAlchemyError as e:
        _fail(f"Could not create tables: {e}")

    console.print("[green]✓ Database tables created[/green]")


@app.command()
def serve(
    host: Optional[str] = typer.Option(None, help="Host to bind to"),
    port: Optional[int] = typer.Option(None, help="Port to bind to"),
    reload: bool = typer.Option(False, help="Enable auto-reload"),
) -> None:
    """
    Start the FastAPI server.
    """
    import uvicorn

    from chatrelay.config import settings

    host = host or settings.api_host
    port = port or settings.api_port

    console.print("[bold green]Starting ChatRelay API server...[/bold green]")
    console.print(f"  Host: {host}")
    console.print(f"  Port: {port}")
    console.print(f"  Reload: {reload}")
    console.print(f"\n  API docs: http://{host}:{port}/docs")

    uvicorn.run(
        "chatrelay.api.app:app",
        host=host,
        port=port,
        reload=reload,
    )


if __name__ == "__main__":
    app()
