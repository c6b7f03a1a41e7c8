"""Main entry point for Camwatch."""

import asyncio
import os
import sys
from pathlib import Path

import typer

from camwatch.agent import Agent
from camwatch.cli import EXIT_COMMANDS, TerminalUI
from camwatch.config import Config, get_config, set_config
from camwatch.exceptions import CamwatchError
from camwatch.logging import configure_logging, get_logger
from camwatch.memory import MemoryStoreHandle

log = get_logger(__name__)

app = typer.Typer(help="Camwatch - check your network cameras by asking")
memory_app = typer.Typer(help="Inspect or reset long-term memory")
app.add_typer(memory_app, name="memory")


def _load_config(config: str = "") -> Config:
    if not config:
        return Config.load()
    try:
        return Config.from_yaml(Path(config))
    except Exception as e:
        log.error("Failed to load config", path=config, error=str(e))
        return Config.load()


async def handle_input(ui: TerminalUI, agent: Agent, text: str) -> None:
    """Run one user input through the agent and print the answer."""
    ui.begin_turn()
    try:
        state = await agent.handle(text)
    except CamwatchError as e:
        ui.end_assistant_stream()
        ui.print_error(str(e))
        return
    ui.finish_turn(state.reply)
    ui.print_tokens(agent.last_usage)


async def run_interactive(ui: TerminalUI, agent: Agent) -> None:
    """Prompt/response loop until ``exit`` or end of input."""
    ui.print_welcome()
    try:
        while True:
            try:
                user_input = await asyncio.to_thread(ui.prompt, "> ")
            except (EOFError, KeyboardInterrupt):
                break
            text = user_input.strip()
            if not text:
                continue
            if text.lower() in EXIT_COMMANDS:
                break
            await handle_input(ui, agent, text)
    finally:
        await agent.close()


def main(
    config: str = "",
    model: str = "",
    provider: str = "",
    no_stream: bool = False,
    verbose: bool = False,
    show_tools: bool = False,
) -> None:
    """Start a Camwatch interactive session."""
    if verbose:
        os.environ["CAMWATCH_LOGGING__LEVEL"] = "DEBUG"

    cfg = _load_config(config)
    if model:
        cfg.model.model = model
    if provider:
        cfg.model.provider = provider
    if no_stream:
        cfg.model.streaming = False
    set_config(cfg)
    configure_logging("DEBUG" if verbose else None)

    ui = TerminalUI(show_tools=show_tools)
    agent = Agent(
        config=cfg,
        status_callback=ui.set_runtime_status,
        stream_callback=ui.print_streaming,
        tool_output_callback=ui.print_tool_result,
    )
    try:
        asyncio.run(run_interactive(ui, agent))
    except KeyboardInterrupt:
        log.info("Shutting down...")
        sys.exit(0)


@app.command()
def run(
    config: str = typer.Option("", "-c", "--config", help="Path to config file"),
    model: str = typer.Option("", "-m", "--model", help="Override model"),
    provider: str = typer.Option("", "-p", "--provider", help="Override provider"),
    no_stream: bool = typer.Option(False, "--no-stream", help="Disable streaming"),
    verbose: bool = typer.Option(False, "-v", "--verbose", help="Debug logging"),
    show_tools: bool = typer.Option(False, "--show-tools", help="Print raw tool output"),
) -> None:
    """Start the interactive session."""
    main(config, model, provider, no_stream, verbose, show_tools)


@app.command()
def version() -> None:
    """Show version information."""
    from camwatch import __version__

    typer.echo(f"Camwatch v{__version__}")


def _memory_handle(config: str) -> MemoryStoreHandle:
    cfg = _load_config(config)
    set_config(cfg)
    configure_logging()
    return MemoryStoreHandle.from_config(cfg)


@memory_app.command("stats")
def memory_stats(
    config: str = typer.Option("", "-c", "--config", help="Path to config file"),
) -> None:
    """Show record count, dimension and location."""
    handle = _memory_handle(config)
    try:
        stats = asyncio.run(handle.stats())
    except CamwatchError as e:
        TerminalUI().print_error(str(e))
        raise typer.Exit(code=1)
    TerminalUI().print_memory_stats(stats)


@memory_app.command("search")
def memory_search(
    query: str = typer.Argument(..., help="Text to look up"),
    top_k: int = typer.Option(0, "-k", "--top-k", help="Number of results (default: memory.top_k)"),
    config: str = typer.Option("", "-c", "--config", help="Path to config file"),
) -> None:
    """Show the stored exchanges closest to QUERY."""
    handle = _memory_handle(config)
    k = top_k or int(get_config().memory.top_k)
    try:
        hits = asyncio.run(handle.search_scored(query, k))
    except CamwatchError as e:
        TerminalUI().print_error(str(e))
        raise typer.Exit(code=1)
    TerminalUI().print_memory_hits(hits)


@memory_app.command("clear")
def memory_clear(
    yes: bool = typer.Option(False, "-y", "--yes", help="Do not ask for confirmation"),
    config: str = typer.Option("", "-c", "--config", help="Path to config file"),
) -> None:
    """Delete every stored exchange."""
    handle = _memory_handle(config)
    ui = TerminalUI()
    if not yes and not ui.confirm(f"Delete all memories in {handle.directory}?"):
        raise typer.Exit(code=1)
    try:
        asyncio.run(handle.clear())
    except CamwatchError as e:
        ui.print_error(str(e))
        raise typer.Exit(code=1)
    ui.print_success("Memory cleared")


if __name__ == "__main__":
    app()
