from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Optional

import typer
import uvicorn

from whisperly.core.apikeys import FileSecretsStore, build_secrets, is_valid_api_key_format
from whisperly.core.bootstrap import build_runtime
from whisperly.core.config import Settings, get_settings
from whisperly.core.context import FileContextProvider, PushedContextProvider
from whisperly.core.llm import build_text_service
from whisperly.core.models import (
    ChangeToneProfessional,
    CheckGrammar,
    ExplainSimply,
    Failed,
    ProcessVoiceCommand,
    Streaming,
    Succeeded,
    SummarizeScreen,
    UiState,
    UserIntent,
)
from whisperly.core.prompts import TEMPLATES


cli = typer.Typer(name="whisperly", help="Whisperly overlay engine")
key_cli = typer.Typer(help="Gemini API key")

cli.add_typer(key_cli, name="key")

ASK_ACTIONS = ("summarize", "grammar", "tone", "explain", "command")


@cli.command()
def serve() -> None:
    """Start the HTTP / WebSocket bridge."""
    settings = get_settings()
    uvicorn.run("whisperly.main:app", host=settings.host, port=settings.port)


def _intent_for(action: str, command: Optional[str]) -> UserIntent:
    if action == "summarize":
        return SummarizeScreen()
    if action == "grammar":
        return CheckGrammar()
    if action == "tone":
        return ChangeToneProfessional()
    if action == "explain":
        return ExplainSimply()
    if action == "command":
        if not command:
            raise typer.BadParameter("--command is required for the 'command' action")
        return ProcessVoiceCommand(command)
    raise typer.BadParameter(f"unknown action {action!r}; choose from {', '.join(ASK_ACTIONS)}")


async def _ask(settings: Settings, intent: UserIntent, context_provider) -> UiState:
    runtime = build_runtime(
        settings,
        context_provider=context_provider,
        text_service=build_text_service(settings, build_secrets(settings)),
    )
    printed = 0

    def _echo(state: UiState) -> None:
        nonlocal printed
        response = state.response_state
        if isinstance(response, (Streaming, Succeeded)):
            text = response.partial_text if isinstance(response, Streaming) else response.final_text
            typer.echo(text[printed:], nl=False)
            printed = len(text)

    runtime.store.add_state_listener(_echo)
    try:
        runtime.store.dispatch(intent)
        await runtime.store.join()
        return runtime.store.current_state
    finally:
        await runtime.aclose()


@cli.command()
def ask(
    action: str = typer.Argument(..., help="summarize | grammar | tone | explain | command"),
    context_file: Optional[Path] = typer.Option(None, "--context-file", help="File holding the screen text"),
    text: Optional[str] = typer.Option(None, "--text", help="Screen text given inline"),
    command: Optional[str] = typer.Option(None, "--command", help="Instruction for the 'command' action"),
) -> None:
    """Run one action headless and print the streamed answer."""
    intent = _intent_for(action, command)
    if context_file is not None:
        provider = FileContextProvider(context_file)
    else:
        provider = PushedContextProvider(text or "")
    state = asyncio.run(_ask(get_settings(), intent, provider))
    response = state.response_state
    if isinstance(response, Succeeded):
        typer.echo("")
        return
    if isinstance(response, Failed):
        typer.echo(f"\n[{response.kind.value}] {response.message}", err=True)
        raise typer.Exit(code=1)
    typer.echo("\nNo response.", err=True)
    raise typer.Exit(code=1)


@cli.command()
def prompts(show: bool = typer.Option(False, "--show", help="Print the template bodies")) -> None:
    """List the prompt templates."""
    for template_id, body in TEMPLATES.items():
        typer.echo(template_id)
        if show:
            typer.echo(body)


def _store() -> FileSecretsStore:
    return FileSecretsStore(get_settings().secrets_file)


@key_cli.command("set")
def key_set(
    key: str = typer.Argument(..., help="Gemini API key"),
    force: bool = typer.Option(False, "--force", help="Save even if the format looks wrong"),
) -> None:
    if not is_valid_api_key_format(key) and not force:
        typer.echo("This does not look like a Gemini API key (use --force to save anyway).", err=True)
        raise typer.Exit(code=1)
    _store().save_api_key(key)
    typer.echo("API key saved")


@key_cli.command("clear")
def key_clear() -> None:
    if _store().clear_api_key():
        typer.echo("API key removed")
    else:
        typer.echo("No stored API key")


@key_cli.command("show")
def key_show() -> None:
    key = build_secrets(get_settings()).get_api_key()
    if not key:
        typer.echo("No API key configured")
        return
    masked = key[:4] + "..." + key[-4:] if len(key) > 8 else "***"
    typer.echo(masked)


@key_cli.command("test")
def key_test() -> None:
    """Check the configured text service answers."""
    settings = get_settings()

    async def _probe() -> bool:
        service = build_text_service(settings, build_secrets(settings))
        try:
            return await service.test_connection()
        finally:
            await service.aclose()

    try:
        ok = asyncio.run(_probe())
    except Exception as exc:
        typer.echo(f"Connection failed: {exc}", err=True)
        raise typer.Exit(code=1)
    typer.echo("Connection OK" if ok else "Unexpected answer from the AI service")
    if not ok:
        raise typer.Exit(code=1)


if __name__ == "__main__":
    cli()
