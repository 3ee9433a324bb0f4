"""Prompt Library CLI: server control and a terminal front end for the API."""

import asyncio
import json
import logging
import os
import sys
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional

import click
from pydantic import ValidationError

from .client import PromptClient
from .config import ClientSettings, ServerSettings
from .errors import ApiError, AuthExpired, PromptLibError
from .library import PromptLibrary, new_draft
from .logging_config import setup_colored_logging
from .models import Prompt, SessionOut
from .ocr import OCR_LANGUAGES, OcrAdapter
from .utils import append_text

logger = logging.getLogger(__name__)


def _run_async(coro):
    """Run an async function synchronously."""
    return asyncio.run(coro)


# --- session file ---


def _load_token(path: Path) -> Optional[str]:
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (FileNotFoundError, ValueError):
        return None
    return data.get("token") if isinstance(data, dict) else None


def _save_session(path: Path, session: SessionOut) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps({"email": session.email, "token": session.token}), encoding="utf-8")
    os.chmod(path, 0o600)


def _client(settings: ClientSettings) -> PromptClient:
    return PromptClient(
        settings.api_url,
        token=_load_token(settings.session_file),
        timeout=settings.request_timeout,
    )


def _sign_in(settings: ClientSettings, email: Optional[str] = None) -> SessionOut:
    """Prompt for credentials, sign in and remember the session."""
    email = email or click.prompt("Email")
    password = click.prompt("Password", hide_input=True)

    async def run():
        return await PromptClient(settings.api_url, timeout=settings.request_timeout).login(email, password)

    try:
        session = _run_async(run())
    except ApiError as e:
        raise click.ClickException(e.message)

    _save_session(settings.session_file, session)
    return session


def _with_library(ctx: click.Context, action: Callable[[PromptLibrary], Awaitable[Any]]) -> Any:
    """Run an action against the API, sending the user to sign in on a 401.

    This is the only place that reacts to an expired session: after signing
    in, the interrupted command is run once more.
    """
    settings: ClientSettings = ctx.obj["settings"]

    async def run():
        return await action(PromptLibrary(_client(settings)))

    try:
        try:
            return _run_async(run())
        except AuthExpired as e:
            click.echo("You are not signed in or your session has expired.", err=True)
            if not sys.stdin.isatty():
                raise click.ClickException("Run 'promptlib login' first.") from e
            session = _sign_in(settings)
            click.echo(f"Signed in as {session.email}. Resuming '{ctx.command_path}'.", err=True)
            return _run_async(run())
    except AuthExpired:
        raise click.ClickException("Still unauthorized after signing in.")
    except PromptLibError as e:
        raise click.ClickException(e.message)


def _format_row(prompt: Prompt) -> str:
    tags = ",".join(prompt.tags)
    tool = prompt.ai_tool or ""
    updated = prompt.updated_at.astimezone().strftime("%Y-%m-%d %H:%M")
    title = prompt.title if len(prompt.title) <= 40 else prompt.title[:39] + "…"
    return f"{prompt.id[:8]:<10} {title:<41} {tool:<10} {updated:<17} {tags}"


async def _run_ocr(adapter: OcrAdapter, image: Path, language: Optional[str]):
    """Run OCR with a progress line on stderr. Ctrl+C cancels the job."""
    job = adapter.start(image, language)
    try:
        async for percent in job.progress():
            click.echo(f"\rExtracting… {percent:>3}%", nl=False, err=True)
        click.echo("", err=True)
        return await job.result()
    except asyncio.CancelledError:
        job.cancel()
        raise


@click.group()
@click.option("-v", "--verbose", is_flag=True, help="Enable verbose output")
@click.pass_context
def cli(ctx, verbose):
    """Prompt Library - capture and organize the prompts you use with AI tools."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["settings"] = ClientSettings()
    setup_colored_logging(verbose)


# --- server ---


def _server_settings() -> ServerSettings:
    try:
        return ServerSettings()
    except ValidationError as e:
        click.echo(f"Error loading settings: {e}", err=True)
        click.echo("Set PROMPTLIB_DATABASE_URL (e.g. sqlite:///data/prompts.db) in the environment or .env", err=True)
        sys.exit(1)


@cli.command("serve")
@click.option("--host", default=None, help="Bind address (default: from PROMPTLIB_HOST)")
@click.option("--port", default=None, type=int, help="Port (default: from PROMPTLIB_PORT)")
def serve_cmd(host, port):
    """Start the API server."""
    import uvicorn

    from .app import create_app

    settings = _server_settings()
    if host:
        settings.host = host
    if port:
        settings.port = port

    app = create_app(settings)
    uvicorn.run(app, host=settings.host, port=settings.port, log_level="info")


@cli.command("init-db")
def init_db_cmd():
    """Create the database tables (runs the one-time migration if needed)."""
    from .db import init_db

    settings = _server_settings()
    _run_async(init_db(settings.db_path))
    click.echo(f"Database initialized at {settings.db_path}")


# --- account ---


@cli.command()
@click.option("--email", prompt=True, help="Account email")
@click.password_option(help="At least 6 characters")
@click.pass_context
def register(ctx, email, password):
    """Create an account and sign in."""
    settings: ClientSettings = ctx.obj["settings"]

    async def run():
        client = PromptClient(settings.api_url, timeout=settings.request_timeout)
        principal = await client.register(email, password)
        session = await client.login(principal.email, password)
        return session

    try:
        session = _run_async(run())
    except ApiError as e:
        raise click.ClickException(e.message)

    _save_session(settings.session_file, session)
    click.echo(f"Account created. Signed in as {session.email}.")


@cli.command()
@click.option("--email", default=None, help="Account email")
@click.pass_context
def login(ctx, email):
    """Sign in and remember the session."""
    session = _sign_in(ctx.obj["settings"], email)
    click.echo(f"Signed in as {session.email}.")


@cli.command()
@click.pass_context
def logout(ctx):
    """Forget the stored session."""
    settings: ClientSettings = ctx.obj["settings"]
    settings.session_file.unlink(missing_ok=True)
    click.echo("Signed out.")


# --- prompts ---


@cli.command("list")
@click.option("-s", "--search", default=None, help="Text to look for in content, title, tags, context, description")
@click.option("--tag", default=None, help="Only prompts with this tag")
@click.option("--tool", "ai_tool", default=None, help="Only prompts for this AI tool")
@click.option("--json", "as_json", is_flag=True, help="Print JSON instead of a table")
@click.pass_context
def list_cmd(ctx, search, tag, ai_tool, as_json):
    """List saved prompts, newest first."""

    async def action(library: PromptLibrary):
        await library.refresh()
        return library

    library = _with_library(ctx, action)
    prompts = library.filter(text=search, tag=tag.lower() if tag else None, ai_tool=ai_tool)

    if as_json:
        click.echo(json.dumps([p.to_api() for p in prompts], indent=2, ensure_ascii=False))
        return

    if not prompts:
        click.echo("No prompts found.")
        return

    click.echo(f"{'ID':<10} {'Title':<41} {'Tool':<10} {'Updated':<17} Tags")
    click.echo("-" * 100)
    for prompt in prompts:
        click.echo(_format_row(prompt))

    if library.all_tags():
        click.echo("")
        click.echo(f"Tags: {', '.join(library.all_tags())}")


def _prompt_fields(func):
    """Shared metadata options for capture and edit."""
    options = [
        click.option("--title", default=None, help="Short title (default: start of the content)"),
        click.option("--tags", default=None, help="Comma or space separated tags"),
        click.option("--context", default=None, help="When/where this prompt was used"),
        click.option("--description", default=None, help="Notes"),
        click.option("--tool", "ai_tool", default=None, help="AI tool, e.g. ChatGPT, Claude, Cursor"),
        click.option("--use-case", default=None, help="What the prompt achieved"),
        click.option("--rating", default=None, type=click.IntRange(1, 5), help="Effectiveness 1-5"),
    ]
    for option in reversed(options):
        func = option(func)
    return func


@cli.command()
@click.argument("content", required=False)
@_prompt_fields
@click.option(
    "--from-file",
    "from_files",
    multiple=True,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Append a markdown/text file to the content",
)
@click.option(
    "--image",
    default=None,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Extract text from an image with OCR",
)
@click.option("--lang", default=None, type=click.Choice(sorted(OCR_LANGUAGES)), help="OCR language")
@click.pass_context
def capture(ctx, content, title, tags, context, description, ai_tool, use_case, rating, from_files, image, lang):
    """Save a new prompt."""
    settings: ClientSettings = ctx.obj["settings"]
    text = content or ""
    from_image = False

    for path in from_files:
        text = append_text(text, path.read_text(encoding="utf-8"))

    if image is not None:
        adapter = OcrAdapter.from_settings(settings)
        try:
            result = _run_async(_run_ocr(adapter, image, lang))
        except PromptLibError as e:
            raise click.ClickException(e.message)
        if result.found:
            text = append_text(text, result.text)
            from_image = True
        else:
            click.echo("No text was found in the image.", err=True)

    if not text.strip() and not sys.stdin.isatty():
        text = sys.stdin.read()

    try:
        draft = new_draft(
            text,
            title=title or "",
            tags=tags or "",
            context=context or "",
            description=description or "",
            ai_tool=ai_tool or "",
            use_case=use_case or "",
            rating=rating,
            from_image=from_image,
        )
    except PromptLibError as e:
        raise click.ClickException(e.message)

    async def action(library: PromptLibrary):
        return await library.save(draft)

    prompt = _with_library(ctx, action)
    click.echo(f"Saved {prompt.id}: {prompt.title}")


@cli.command()
@click.argument("prompt_id")
@click.option("--content", default=None, help="Replace the prompt text")
@_prompt_fields
@click.pass_context
def edit(ctx, prompt_id, content, title, tags, context, description, ai_tool, use_case, rating):
    """Change fields of a saved prompt. Pass an empty string to clear a field."""
    changes = {
        name: value
        for name, value in {
            "content": content,
            "title": title,
            "tags": tags,
            "context": context,
            "description": description,
            "ai_tool": ai_tool,
            "use_case": use_case,
            "rating": rating,
        }.items()
        if value is not None
    }
    if not changes:
        raise click.UsageError("Nothing to change.")

    async def action(library: PromptLibrary):
        return await library.update(prompt_id, **changes)

    prompt = _with_library(ctx, action)
    click.echo(f"Updated {prompt.id}: {prompt.title}")


@cli.command()
@click.argument("prompt_id")
@click.confirmation_option(prompt="Delete this prompt?")
@click.pass_context
def delete(ctx, prompt_id):
    """Delete a saved prompt."""

    async def action(library: PromptLibrary):
        await library.remove(prompt_id)

    _with_library(ctx, action)
    click.echo(f"Deleted {prompt_id}.")


@cli.command()
@click.option(
    "-o",
    "--output",
    default=".",
    help="Directory for prompt-library-YYYY-MM-DD.json, or '-' for stdout",
)
@click.pass_context
def export(ctx, output):
    """Export all prompts as JSON."""

    async def action(library: PromptLibrary):
        await library.refresh()
        return library

    library = _with_library(ctx, action)
    if not library.prompts:
        click.echo("Nothing to export.", err=True)
        return

    if output == "-":
        click.echo(library.export_json())
        return

    dest = library.export_to(Path(output))
    click.echo(f"Exported {len(library.prompts)} prompt(s) to {dest}")


@cli.command()
@click.argument("image", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--lang", default=None, type=click.Choice(sorted(OCR_LANGUAGES)), help="OCR language")
@click.pass_context
def ocr(ctx, image, lang):
    """Print the text found in an image (runs locally)."""
    adapter = OcrAdapter.from_settings(ctx.obj["settings"])
    try:
        result = _run_async(_run_ocr(adapter, image, lang))
    except PromptLibError as e:
        raise click.ClickException(e.message)

    if not result.found:
        click.echo("No text was found in the image.", err=True)
        sys.exit(2)
    click.echo(result.text)
