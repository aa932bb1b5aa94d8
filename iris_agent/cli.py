"""Command-line interface for IRIS Agent."""

import asyncio
import logging
import sys
from typing import Optional

import click

from .config import load_config
from .errors import AuthenticationError, CommandRejectedError, SettingsInvariantError
from .formatters import CLIFormatter, MessageType
from .interactive import ReadlineHandler, TabCompleter
from .logging_utils import setup_logging
from .session import SessionManager

EXIT_WORDS = ("exit", "quit", "q")


def async_command(f):
    """Decorator to run async commands in the event loop."""

    def wrapper(*args, **kwargs):
        return asyncio.run(f(*args, **kwargs))

    wrapper.__name__ = f.__name__
    wrapper.__doc__ = f.__doc__
    return wrapper


@click.group()
@click.option('--log-level', default=None, help='Logging level (DEBUG, INFO, WARNING, ERROR)')
@click.option('--config', '--config-file', help='Path to configuration file (YAML, TOML, or JSON)')
@click.option('--no-color', is_flag=True, help='Disable colored output')
@click.pass_context
def cli(ctx, log_level: Optional[str], config: Optional[str], no_color: bool):
    """IRIS Agent - natural language room booking assistant."""
    ctx.ensure_object(dict)

    try:
        app_config = load_config(config_file=config)
    except Exception as e:
        click.echo(f"❌ Error: {e}", err=True)
        sys.exit(1)
    ctx.obj['config'] = app_config

    # CLI flag overrides config
    setup_logging(log_level or app_config.log_level)

    ctx.obj['formatter'] = CLIFormatter(use_colors=False if no_color else None)
    ctx.obj['session'] = SessionManager.from_config(app_config)


@cli.command()
@click.option('--email', prompt=True, help='Account email')
@click.option('--password', prompt=True, hide_input=True, help='Account password')
@click.pass_context
@async_command
async def login(ctx, email: str, password: str):
    """Log in to the booking service and remember the session."""
    session: SessionManager = ctx.obj['session']
    formatter: CLIFormatter = ctx.obj['formatter']

    session.bootstrap()
    if session.is_authenticated:
        click.echo(formatter.format_message(
            f"Already logged in as {session.user.display_name}", MessageType.INFO))
        await session.close()
        return

    try:
        user = await session.login(email, password)
    except AuthenticationError as e:
        click.echo(formatter.format_error(e.message), err=True)
        sys.exit(1)
    finally:
        await session.close()
    click.echo(formatter.format_message(f"Logged in as {user.display_name}", MessageType.SUCCESS))


@cli.command()
@click.pass_context
def logout(ctx):
    """Forget the stored session."""
    session: SessionManager = ctx.obj['session']
    formatter: CLIFormatter = ctx.obj['formatter']

    session.bootstrap()
    if not session.is_authenticated:
        click.echo(formatter.format_message("Not logged in", MessageType.INFO))
        return
    session.logout()
    click.echo(formatter.format_message("Logged out", MessageType.SUCCESS))


@cli.command()
@click.pass_context
@async_command
async def health(ctx):
    """Check whether the intent service is reachable."""
    session: SessionManager = ctx.obj['session']
    formatter: CLIFormatter = ctx.obj['formatter']

    status = await session.check_health()
    if status.connected:
        click.echo(formatter.format_message("Intent service connected", MessageType.SUCCESS))
    else:
        click.echo(formatter.format_error("Intent service disconnected"))
        sys.exit(1)


@cli.command()
@click.option('--nlp/--no-nlp', default=None, help='Enable or disable local pattern parsing')
@click.option('--llm/--no-llm', default=None, help='Enable or disable the AI intent parser')
@click.pass_context
def settings(ctx, nlp: Optional[bool], llm: Optional[bool]):
    """Show or change resolver settings."""
    session: SessionManager = ctx.obj['session']
    formatter: CLIFormatter = ctx.obj['formatter']

    session.bootstrap()
    if nlp is not None or llm is not None:
        try:
            session.update_settings(use_simple_nlp=nlp, use_llm=llm)
        except SettingsInvariantError as e:
            click.echo(formatter.format_error(e.message), err=True)
            sys.exit(1)
        except OSError as e:
            click.echo(formatter.format_error(str(e), "Could not save settings"), err=True)
            sys.exit(1)

    current = session.settings
    click.echo(f"Simple NLP: {'on' if current.use_simple_nlp else 'off'}")
    click.echo(f"LLM:        {'on' if current.use_llm else 'off'}")


@cli.command()
@click.argument('command', nargs=-1, required=True)
@click.pass_context
@async_command
async def run(ctx, command):
    """Run a single command, e.g. iris-agent run "is skagen free tomorrow at 8"."""
    session: SessionManager = ctx.obj['session']
    formatter: CLIFormatter = ctx.obj['formatter']

    session.bootstrap()
    try:
        if session.get_settings().use_llm:
            await session.check_health()
        outcome = await session.submit(" ".join(command))
    except CommandRejectedError as e:
        click.echo(formatter.format_error(e.message, "Please log in first"), err=True)
        sys.exit(1)
    finally:
        await session.close()

    click.echo(formatter.format_outcome(outcome))
    if not outcome.success:
        sys.exit(1)


@cli.command()
@click.pass_context
@async_command
async def interactive(ctx):
    """Start interactive mode."""
    session: SessionManager = ctx.obj['session']
    formatter: CLIFormatter = ctx.obj['formatter']
    logger = logging.getLogger(__name__)

    session.bootstrap()
    if not session.is_authenticated:
        click.echo(formatter.format_error("Not logged in. Run 'iris-agent login' first."), err=True)
        sys.exit(1)

    session.start_background()
    loop = asyncio.get_running_loop()
    readline_handler = ReadlineHandler(ctx.obj['config'].storage.history_file)
    completer = TabCompleter(session.processor.builtins, get_line=readline_handler.line_buffer)
    readline_handler.set_completer(completer.complete)
    click.echo(formatter.format_message(
        f"Welcome, {session.user.display_name}. Type 'help' for commands, 'exit' to quit.",
        MessageType.SUCCESS,
    ))

    try:
        while True:
            prompt = formatter.format_prompt(demo=session.state.value.endswith("demo_mode"))
            try:
                user_input = (await loop.run_in_executor(
                    None, readline_handler.input_with_prompt, prompt
                )).strip()
            except (KeyboardInterrupt, EOFError):
                break

            if not user_input:
                continue
            if user_input.lower() in EXIT_WORDS:
                break

            try:
                if user_input.lower() == "retry":
                    outcome = await session.retry()
                elif user_input.lower() == "reset":
                    session.processor.reset()
                    continue
                else:
                    outcome = await session.submit(user_input)
            except CommandRejectedError as e:
                click.echo(formatter.format_error(e.message))
                break
            except Exception as e:
                logger.exception("Unexpected error in interactive mode")
                click.echo(formatter.format_error(str(e)))
                continue

            if outcome.metadata.get("clear_screen"):
                click.clear()
                continue
            text = formatter.format_outcome(outcome)
            if text:
                click.echo(text)
    finally:
        readline_handler.save_history()
        await session.close()
        click.echo(formatter.format_message("Goodbye!", MessageType.SUCCESS))


if __name__ == '__main__':
    cli()
