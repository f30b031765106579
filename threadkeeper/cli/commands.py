"""CLI commands for threadkeeper."""

import asyncio
from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from threadkeeper import __logo__, __version__
from threadkeeper.agent.compactor import Compactor
from threadkeeper.agent.tokens import cost_of_history
from threadkeeper.config.loader import get_config_path, load_config, save_config
from threadkeeper.config.schema import Config
from threadkeeper.session.checkpoint import FileCheckpointStore

app = typer.Typer(
    name="threadkeeper",
    help=f"{__logo__} threadkeeper - conversation history engine",
    no_args_is_help=True,
)

console = Console()


def version_callback(value: bool):
    if value:
        console.print(f"{__logo__} threadkeeper v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        None, "--version", "-v", callback=version_callback, is_eager=True
    ),
):
    """threadkeeper - conversation history engine."""
    pass


def _load(config_path: Path | None) -> Config:
    return load_config(config_path)


def _store(config: Config, directory: Path | None) -> FileCheckpointStore:
    return FileCheckpointStore(directory or config.autosave.checkpoint_path)


# ============================================================================
# Checkpoints
# ============================================================================


@app.command()
def checkpoints(
    directory: Path = typer.Option(None, "--dir", "-d", help="Checkpoint directory"),
    config_path: Path = typer.Option(None, "--config", "-c", help="Config file"),
):
    """List stored checkpoints, newest first."""
    store = _store(_load(config_path), directory)
    found = store.list_checkpoints()
    if not found:
        console.print(f"[yellow]No checkpoints in {store.directory}[/yellow]")
        return

    table = Table(title="Checkpoints")
    table.add_column("Tag", style="cyan")
    table.add_column("Turns", justify="right")
    table.add_column("Tokens", justify="right")
    table.add_column("Modified")

    for info in found:
        history = asyncio.run(store.load(info.tag))
        table.add_row(
            info.tag,
            str(len(history)),
            str(cost_of_history(history)),
            info.modified_at.strftime("%Y-%m-%d %H:%M"),
        )
    console.print(table)


@app.command()
def count(
    tag: str = typer.Argument(..., help="Checkpoint tag"),
    directory: Path = typer.Option(None, "--dir", "-d", help="Checkpoint directory"),
    config_path: Path = typer.Option(None, "--config", "-c", help="Config file"),
):
    """Show turn count and token cost of one checkpoint."""
    config = _load(config_path)
    store = _store(config, directory)
    history = asyncio.run(store.load(tag))
    if not history:
        console.print(f"[red]Checkpoint {tag} not found or empty[/red]")
        raise typer.Exit(1)
    console.print(f"{tag}: {len(history)} turns, {cost_of_history(history)} tokens")
    if Compactor(config.autosave).should_compact(history):
        console.print(
            f"[yellow]Over the compression threshold ({config.autosave.compress_after}); "
            f"run `threadkeeper compact {tag}`[/yellow]"
        )


@app.command()
def init(
    config_path: Path = typer.Option(None, "--config", "-c", help="Config file"),
    force: bool = typer.Option(False, "--force", "-f", help="Overwrite an existing file"),
):
    """Write a default configuration file."""
    path = config_path or get_config_path()
    if path.exists() and not force:
        console.print(f"[yellow]Config already exists at {path}[/yellow] (use --force to overwrite)")
        raise typer.Exit(1)
    save_config(Config(), path)
    console.print(f"[green]✓[/green] Wrote {path}")


@app.command()
def compact(
    tag: str = typer.Argument(..., help="Checkpoint tag"),
    directory: Path = typer.Option(None, "--dir", "-d", help="Checkpoint directory"),
    config_path: Path = typer.Option(None, "--config", "-c", help="Config file"),
):
    """Apply the configured token budget to a stored checkpoint."""
    config = _load(config_path)
    store = _store(config, directory)

    async def _run() -> None:
        history = await store.load(tag)
        if not history:
            console.print(f"[red]Checkpoint {tag} not found or empty[/red]")
            raise typer.Exit(1)

        result = await Compactor(config.autosave).compact(history, tag)
        if not result.changed:
            console.print(f"Within budget ({result.tokens_before} tokens); nothing to do")
            return

        await store.save(result.history, result.tag)
        console.print(
            f"[green]✓[/green] {result.action}: {len(history)} -> {len(result.history)} turns, "
            f"{result.tokens_before} -> {result.tokens_after} tokens, saved as {result.tag}"
        )

    asyncio.run(_run())


# ============================================================================
# Run
# ============================================================================


@app.command()
def run(
    prompt: str = typer.Argument(..., help="Message to send"),
    resume_session: bool = typer.Option(False, "--resume", "-r", help="Resume latest checkpoint"),
    tag: str = typer.Option(None, "--tag", "-t", help="Resume a specific checkpoint"),
    config_path: Path = typer.Option(None, "--config", "-c", help="Config file"),
):
    """Send one message and print the reply."""
    from threadkeeper.agent.autosave import resume
    from threadkeeper.agent.loop import AgentLoop
    from threadkeeper.providers.litellm_provider import LiteLLMProvider

    config = _load(config_path)
    store = _store(config, None)
    provider = LiteLLMProvider(
        api_key=config.provider.api_key or None,
        api_base=config.provider.api_base,
        default_model=config.provider.model,
    )

    async def _run() -> None:
        session = None
        if resume_session or tag:
            session = await resume(store, tag)
        loop = AgentLoop(provider, config=config, session=session, store=store)
        reply = await loop.process(prompt)
        console.print(reply.text)
        if loop.session.tag:
            console.print(f"[dim]session {loop.session.tag}[/dim]")

    asyncio.run(_run())
