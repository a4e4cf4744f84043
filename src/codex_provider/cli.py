"""Codex provider CLI.

Runs one generation against a local ``codex mcp-server`` and streams it to
the terminal. Answer text goes to stdout; reasoning and command output go to
stderr so the answer can be piped.

Usage:
    codex-provider run "Summarize this repo"
    codex-provider run "Fix the tests" --model gpt-5-codex --exec-output
    codex-provider run "Explain" --no-reasoning --debug
    codex-provider models
    codex-provider models --format json
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import sys
from typing import Any

import click

from .cancellation import CancellationToken
from .debug import DEBUG_ENV_VAR
from .options import PROVIDER_ID
from .plugin import DEFAULT_MODELS
from .protocol.events import Channel, Finish, GenerationOutcome, TextDelta
from .provider import CallOptions, CodexLanguageModel

FORMAT_TABLE = "table"
FORMAT_JSON = "json"

DEFAULT_MODEL = "gpt-5-codex"


def _configure_logging(debug: bool) -> None:
    """Send all logging to stderr; stdout carries the answer."""
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    stderr_handler = logging.StreamHandler(sys.stderr)
    stderr_handler.setFormatter(
        logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    )
    root_logger.addHandler(stderr_handler)
    root_logger.setLevel(logging.DEBUG if debug else logging.WARNING)


@click.group()
def main() -> None:
    """Drive the Codex MCP server as a streaming language model."""


@main.command("run")
@click.argument("prompt")
@click.option("--model", "-m", default=DEFAULT_MODEL, show_default=True, help="Model id")
@click.option("--binary", default="codex", show_default=True, help="Codex executable")
@click.option("--cwd", type=click.Path(file_okay=False), help="Working directory for the agent")
@click.option(
    "--reasoning-effort",
    type=click.Choice(["minimal", "low", "medium", "high"]),
    default="minimal",
    show_default=True,
)
@click.option("--reasoning/--no-reasoning", default=True, help="Stream reasoning to stderr")
@click.option("--exec-output", is_flag=True, help="Stream command output to stderr")
@click.option("--system", "system_prompt", help="System instructions")
@click.option("--debug", is_flag=True, help="Log RPC traffic to stderr")
def run_command(
    prompt: str,
    model: str,
    binary: str,
    cwd: str | None,
    reasoning_effort: str,
    reasoning: bool,
    exec_output: bool,
    system_prompt: str | None,
    debug: bool,
) -> None:
    """Run PROMPT through codex and stream the answer."""
    _configure_logging(debug)
    if debug:
        os.environ[DEBUG_ENV_VAR] = "1"

    messages: list[dict[str, Any]] = []
    if system_prompt:
        messages.append({"role": "system", "content": system_prompt})
    messages.append({"role": "user", "content": prompt})

    provider_options = {
        "binary": binary,
        "cwd": cwd,
        "reasoningEffort": reasoning_effort,
        "streamReasoning": reasoning,
        "streamCommandOutput": exec_output,
    }

    try:
        outcome = asyncio.run(_stream(model, messages, provider_options))
    except KeyboardInterrupt:
        click.echo("\nAborted", err=True)
        sys.exit(130)

    if outcome != GenerationOutcome.STOP:
        sys.exit(1)


async def _stream(
    model_id: str,
    messages: list[dict[str, Any]],
    provider_options: dict[str, Any],
) -> GenerationOutcome:
    token = CancellationToken()
    model = CodexLanguageModel(model_id)
    stream = model.do_stream(
        CallOptions(
            prompt=messages,
            cancel_token=token,
            provider_options={PROVIDER_ID: provider_options},
        )
    )

    outcome = GenerationOutcome.ERROR
    try:
        async for part in stream:
            if isinstance(part, TextDelta):
                if part.id == Channel.TEXT.value:
                    click.echo(part.delta, nl=False)
                else:
                    click.secho(part.delta, nl=False, err=True, dim=True)
            elif isinstance(part, Finish):
                outcome = part.outcome
                click.echo()
                if part.error is not None:
                    click.echo(f"Error: {part.error}", err=True)
    except asyncio.CancelledError:
        token.cancel("interrupted")
        raise
    finally:
        await stream.aclose()

    return outcome


@main.command("models")
@click.option(
    "--format",
    "output_format",
    type=click.Choice([FORMAT_TABLE, FORMAT_JSON]),
    default=FORMAT_TABLE,
    help="Output format",
)
def models_command(output_format: str) -> None:
    """List the default codex model catalogue."""
    if output_format == FORMAT_JSON:
        click.echo(json.dumps(DEFAULT_MODELS, indent=2))
        return

    click.echo(f"{'ID':<20} {'Name':<15} {'Reasoning':<9}")
    click.echo("-" * 46)
    for model_id, info in DEFAULT_MODELS.items():
        reasoning = "yes" if info.get("reasoning") else ""
        click.echo(f"{model_id:<20} {info['name']:<15} {reasoning:<9}")


if __name__ == "__main__":
    main()
