"""Command line front end for streamwire."""

from __future__ import annotations

import asyncio
import logging
import sys
from pathlib import Path

import click
from rich.console import Console
from rich.table import Table

from streamwire.config import ProviderSettings, load_config
from streamwire.diagnostics import DiagnosticsSink, JsonlSink, LoggingSink
from streamwire.errors import StreamwireError
from streamwire.llm.handler import CompletionHandler, CreateMessageOptions
from streamwire.types import EventKind

console = Console()
err_console = Console(stderr=True)


def _make_handler(ctx: click.Context) -> CompletionHandler:
    settings: ProviderSettings = ctx.obj["settings"]
    return CompletionHandler(settings, diagnostics=ctx.obj["diagnostics"])


@click.group()
@click.option("--config", "-c", "config_path", default=None,
              help="Path to streamwire.yaml (auto-detected from CWD or ~/.config/streamwire/)")
@click.option("--provider", "-p", default=None, help="Provider name (deepseek, openai, ...)")
@click.option("--verbose", "-v", is_flag=True, help="Verbose logging")
@click.pass_context
def main(ctx: click.Context, config_path: str | None, provider: str | None, verbose: bool):
    """streamwire - streaming chat completions for OpenAI-compatible APIs."""
    config, config_file = load_config(config_path)

    if verbose:
        logging.basicConfig(level=logging.DEBUG)
    else:
        logging.basicConfig(level=getattr(logging, config.log_level.upper(), logging.WARNING))

    diagnostics: DiagnosticsSink = LoggingSink()
    if config.diagnostics_file:
        jsonl = JsonlSink(Path(config.diagnostics_file).expanduser())
        ctx.call_on_close(jsonl.close)
        diagnostics = jsonl

    ctx.ensure_object(dict)
    ctx.obj["config_file"] = config_file
    ctx.obj["settings"] = config.active_settings(provider)
    ctx.obj["diagnostics"] = diagnostics


@main.command()
@click.argument("prompt")
@click.option("--system", "-s", "system_prompt", default="You are a helpful assistant.",
              help="System prompt")
@click.option("--max-tokens", type=int, default=None, help="Cap completion tokens")
@click.option("--temperature", type=float, default=None, help="Sampling temperature")
@click.pass_context
def chat(ctx: click.Context, prompt: str, system_prompt: str,
         max_tokens: int | None, temperature: float | None):
    """Stream an answer to PROMPT."""
    try:
        handler = _make_handler(ctx)
    except StreamwireError as e:
        err_console.print(f"[red]{e}[/red]")
        sys.exit(1)

    options = CreateMessageOptions(
        include_max_tokens=True if max_tokens else None,
        max_tokens=max_tokens,
        temperature=temperature,
    )

    async def _run() -> int:
        history = [{"role": "user", "content": prompt}]
        async for event in handler.create_message(system_prompt, history, options):
            if event.kind == EventKind.REASONING:
                console.print(event.text, style="dim", end="")
            elif event.kind == EventKind.CONTENT:
                console.print(event.text, end="", markup=False, highlight=False)
            elif event.kind == EventKind.USAGE and event.usage is not None:
                u = event.usage
                console.print(
                    f"\n[dim]tokens: {u.input_tokens} in / {u.output_tokens} out[/dim]",
                    end="",
                )
            elif event.kind == EventKind.ERROR:
                err_console.print(f"\n[red]{event.error_kind.value} error: {event.message}[/red]")
                return 1
        console.print()
        return 0

    sys.exit(asyncio.run(_run()))


@main.command()
@click.argument("prompt")
@click.pass_context
def complete(ctx: click.Context, prompt: str):
    """Answer PROMPT without streaming output."""
    try:
        handler = _make_handler(ctx)
        text = asyncio.run(handler.complete_prompt(prompt))
    except StreamwireError as e:
        err_console.print(f"[red]{e}[/red]")
        sys.exit(1)
    console.print(text, markup=False, highlight=False)


@main.command()
@click.pass_context
def models(ctx: click.Context):
    """List model ids advertised by the provider."""
    try:
        handler = _make_handler(ctx)
    except StreamwireError as e:
        err_console.print(f"[red]{e}[/red]")
        sys.exit(1)
    ids = asyncio.run(handler.list_models())
    if not ids:
        console.print("[yellow]No models returned.[/yellow]")
        return
    for model_id in ids:
        console.print(model_id)


@main.command()
@click.pass_context
def info(ctx: click.Context):
    """Show the resolved provider and model selection."""
    settings: ProviderSettings = ctx.obj["settings"]
    config_file = ctx.obj["config_file"]
    try:
        model = _make_handler(ctx).get_model()
    except StreamwireError as e:
        err_console.print(f"[red]{e}[/red]")
        sys.exit(1)

    table = Table(title=f"{settings.display_name} @ {settings.url}")
    table.add_column("Setting", style="cyan")
    table.add_column("Value")
    table.add_row("config", str(config_file) if config_file else "defaults")
    table.add_row("model", model.id)
    table.add_row("context window", str(model.info.context_window))
    table.add_row("max tokens", str(model.max_tokens) if model.max_tokens else "-")
    table.add_row("temperature", str(model.temperature))
    table.add_row("streaming", str(settings.streaming))
    table.add_row("format", settings.format or "auto")
    table.add_row("prompt cache", str(model.info.supports_prompt_cache))
    console.print(table)


if __name__ == "__main__":
    main()
