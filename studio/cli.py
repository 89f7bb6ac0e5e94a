import asyncio
from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from studio.core.exceptions import StudioError

console = Console()
cli_app = typer.Typer(name="genai-studio", help="GenAI Studio conversation and assistant CLI")


def _run_async(coro):
    """Run async code from sync CLI context."""
    return asyncio.run(coro)


async def _ensure_db():
    from studio.core.database import init_db
    await init_db()


def _store():
    from studio.services.conversations import ConversationStore
    return ConversationStore()


def _fail(error: StudioError) -> None:
    console.print(f"[bold red]{error.message}[/bold red]")
    raise typer.Exit(code=1)


@cli_app.callback()
def main_callback(
    log_level: str = typer.Option("warning", "--log-level", help="debug, info, warning or error"),
):
    from studio.core.logging import configure_logging
    configure_logging(log_level)


@cli_app.command("list")
def list_conversations():
    """List conversations, most recently updated first."""
    async def _list():
        await _ensure_db()
        return await _store().list_conversations()

    try:
        conversations = _run_async(_list())
    except StudioError as e:
        _fail(e)

    if not conversations:
        console.print("[dim]No conversations found.[/dim]")
        return

    table = Table(title="Conversations")
    table.add_column("ID", style="cyan")
    table.add_column("Title")
    table.add_column("Messages", justify="right", style="green")
    table.add_column("Updated")

    for conv in conversations:
        table.add_row(conv.id, conv.title, str(conv.message_count), conv.updated_at.strftime("%Y-%m-%d %H:%M"))

    console.print(table)


@cli_app.command("show")
def show_conversation(
    conversation_id: str = typer.Argument(help="Conversation ID"),
):
    """Print a conversation transcript."""
    async def _show():
        await _ensure_db()
        return await _store().get_conversation(conversation_id)

    try:
        conv = _run_async(_show())
    except StudioError as e:
        _fail(e)

    console.print(f"\n[bold]{conv.title}[/bold]  [dim]{conv.id}[/dim]\n")
    for msg in conv.messages:
        style = "cyan" if msg.role == "user" else "green"
        model = f" · {msg.model}" if msg.model else ""
        console.print(f"[{style}]{msg.role}[/{style}] [dim]{msg.timestamp:%Y-%m-%d %H:%M:%S}{model}[/dim]")
        console.print(f"{msg.content}\n")


@cli_app.command("rename")
def rename_conversation(
    conversation_id: str = typer.Argument(help="Conversation ID"),
    title: str = typer.Argument(help="New title"),
):
    """Rename a conversation."""
    async def _rename():
        await _ensure_db()
        await _store().rename_conversation(conversation_id, title)

    try:
        _run_async(_rename())
    except StudioError as e:
        _fail(e)
    console.print("[bold green]Conversation renamed.[/bold green]")


@cli_app.command("delete")
def delete_conversation(
    conversation_id: str = typer.Argument(help="Conversation ID"),
):
    """Delete a conversation and all of its messages."""
    async def _delete():
        await _ensure_db()
        await _store().delete_conversation(conversation_id)

    try:
        _run_async(_delete())
    except StudioError as e:
        _fail(e)
    console.print("[bold red]Conversation deleted.[/bold red]")


@cli_app.command("export")
def export_conversations(
    conversation_id: str = typer.Argument(None, help="Conversation ID; omit to export every conversation"),
    output: Path = typer.Option(None, "--output", "-o", help="Write to this file instead of stdout"),
):
    """Export conversations as JSON."""
    async def _export():
        await _ensure_db()
        store = _store()
        if conversation_id:
            return await store.export_conversation(conversation_id)
        return await store.export_all()

    try:
        blob = _run_async(_export())
    except StudioError as e:
        _fail(e)

    if output:
        output.write_text(blob, encoding="utf-8")
        console.print(f"[bold green]Exported to {output}[/bold green]")
    else:
        typer.echo(blob)


@cli_app.command("import")
def import_conversations(
    path: Path = typer.Argument(exists=True, dir_okay=False, help="JSON file produced by export"),
):
    """Import conversations under fresh IDs."""
    blob = path.read_text(encoding="utf-8")

    async def _import():
        await _ensure_db()
        return await _store().import_conversations(blob)

    try:
        result = _run_async(_import())
    except StudioError as e:
        _fail(e)

    if not result:
        console.print("[yellow]Nothing imported: the file is not a valid conversation export.[/yellow]")
        raise typer.Exit(code=1)
    console.print(f"[bold green]Imported {result.imported} conversation(s).[/bold green]")
    if result.skipped:
        console.print(f"[yellow]Skipped {result.skipped} invalid item(s).[/yellow]")


@cli_app.command("migrate-legacy")
def migrate_legacy():
    """Move conversations from the legacy key-value format into the structured store."""
    async def _migrate():
        await _ensure_db()
        return await _store().migrate_legacy_format()

    try:
        result = _run_async(_migrate())
    except StudioError as e:
        _fail(e)

    if not result:
        console.print("[dim]No legacy data to migrate.[/dim]")
        return
    console.print(f"[bold green]Migrated {result.conversations} conversation(s).[/bold green]")


@cli_app.command("stats")
def stats():
    """Show conversation and message counts."""
    async def _stats():
        await _ensure_db()
        return await _store().stats()

    try:
        counts = _run_async(_stats())
    except StudioError as e:
        _fail(e)

    console.print(f"  Conversations: {counts.conversations}")
    console.print(f"  Messages:      {counts.messages}")


@cli_app.command("ask")
def ask(
    prompt: str = typer.Argument(help="Message to send"),
    conversation_id: str = typer.Option(None, "--conversation", "-c", help="Continue this conversation"),
    new: bool = typer.Option(False, "--new", help="Start a new conversation"),
    api_key: str = typer.Option(None, "--api-key", envvar="GENAI_API_KEY", help="Gemini API key"),
    temperature: float = typer.Option(0.7, "--temperature", min=0.0, max=2.0),
    max_tokens: int = typer.Option(None, "--max-tokens", min=1),
):
    """Send one chat message and store both turns."""
    async def _ask():
        from studio.runtime import Studio

        async with Studio(api_key=api_key) as studio:
            if new:
                await studio.session.create_conversation()
            elif conversation_id:
                await studio.session.select(conversation_id)
            response = await studio.send_chat_message(prompt, temperature=temperature, max_tokens=max_tokens)
            return response, studio.session.active_conversation_id

    try:
        response, active_id = _run_async(_ask())
    except StudioError as e:
        _fail(e)

    console.print(response.text)
    console.print(f"\n[dim]{response.model} · conversation {active_id}[/dim]")


def main():
    cli_app()


if __name__ == "__main__":
    main()
