import asyncio
import logging
import sys

import click
import uvicorn
from rich.console import Console

from taskscope.config.config import SETTING_KEYS
from taskscope.config.logging_config import setup_logging
from taskscope.config.settings import settings
from taskscope.services.controller import PipelineController
from taskscope.services.display import TerminalDisplay
from taskscope.services.errors import ServiceError

# Set up logging
logger = logging.getLogger(__name__)

# Initialize console
console = Console()


def _controller() -> PipelineController:
    try:
        return PipelineController()
    except ServiceError as e:
        console.print(f"[red]Failed to open data store: {e}[/red]")
        sys.exit(1)


def _fail(action: str, error: Exception):
    logger.error(f"{action} failed: {error}")
    console.print(f"[red]{action} failed: {error}[/red]")
    sys.exit(1)


@click.group()
@click.option('--debug', is_flag=True, help='Enable debug output')
def cli(debug):
    """taskscope: screen capture and AI task tracking"""
    settings.validate_paths()
    setup_logging(debug=debug or settings.DEBUG)


@cli.command()
@click.option('--interval', type=float, default=None, help='Seconds between captures')
@click.option('--description', default=None, help='What you are working on')
@click.option('--title', default=None, help='Session title')
def start(interval, description, title):
    """Capture in the foreground until interrupted"""
    try:
        from taskscope.services.runner import run_service
        console.print("[yellow]Starting capture (Ctrl+C to stop)...[/yellow]")
        session_id = run_service(interval, description, title)
        console.print(f"[green]Session {session_id} ended[/green]")
    except Exception as e:
        _fail("Capture", e)


@cli.command()
@click.option('--host', default=settings.WEB_HOST, help='Host to bind to')
@click.option('--port', default=settings.WEB_PORT, type=int, help='Port to bind to')
def serve(host: str, port: int):
    """Serve the HTTP API"""
    from taskscope.web.app import create_app
    app = create_app(_controller())
    click.echo(f"Starting API on http://{host}:{port}")
    uvicorn.run(app, host=host, port=port)


@cli.command()
def monitors():
    """List available monitors"""
    try:
        TerminalDisplay(console).show_monitors(_controller().list_monitors())
    except ServiceError as e:
        _fail("Listing monitors", e)


@cli.command()
@click.option('--status', 'status_filter', type=click.Choice(['all', 'pending', 'completed']),
              default='all', help='Which sessions to show')
@click.option('--limit', default=20, help='Maximum sessions to show')
def sessions(status_filter, limit):
    """List capture sessions"""
    controller = _controller()
    try:
        TerminalDisplay(console).show_sessions(controller.get_sessions(status_filter, limit))
    except ServiceError as e:
        _fail("Listing sessions", e)
    finally:
        controller.store.close()


@cli.command()
@click.option('--session', 'session_id', type=int, default=None, help='Only tasks from this session')
@click.option('--limit', default=20, help='Maximum tasks to show')
def tasks(session_id, limit):
    """List inferred tasks"""
    controller = _controller()
    try:
        if session_id is not None:
            found = controller.get_session_tasks(session_id)
            TerminalDisplay(console).show_tasks(found, title=f"Tasks in session {session_id}")
        else:
            TerminalDisplay(console).show_tasks(controller.get_tasks(limit))
    except ServiceError as e:
        _fail("Listing tasks", e)
    finally:
        controller.store.close()


@cli.command()
@click.option('--session', 'session_id', type=int, default=None, help='Analyze one session')
@click.option('--all', 'all_sessions', is_flag=True, help='Catch up every ended session')
@click.option('--limit', default=0, help='Maximum screenshots (0 for no limit)')
def analyze(session_id, all_sessions, limit):
    """Analyze screenshots that have no task yet"""
    controller = _controller()

    async def run():
        try:
            if all_sessions:
                return await controller.analyze_all_pending()
            if session_id is not None:
                return await controller.analyze_session(session_id, limit)
            return await controller.analyze_pending(limit)
        finally:
            controller.store.close()

    try:
        processed = asyncio.run(run())
        console.print(f"[green]Analyzed {processed} capture groups[/green]")
    except ServiceError as e:
        _fail("Analysis", e)


@cli.command('clear-pending')
@click.confirmation_option(prompt='Delete every unanalyzed screenshot?')
def clear_pending():
    """Delete unanalyzed screenshots and their files"""
    controller = _controller()
    try:
        console.print(f"[green]Deleted {controller.clear_pending()} screenshots[/green]")
    except ServiceError as e:
        _fail("Clearing screenshots", e)
    finally:
        controller.store.close()


@cli.command('delete-session')
@click.argument('session_id', type=int)
@click.confirmation_option(prompt='Delete this session and its screenshots?')
def delete_session(session_id):
    """Delete a session, its screenshots and orphaned tasks"""
    controller = _controller()
    try:
        removed = controller.delete_session(session_id)
        console.print(f"[green]Deleted session {session_id} ({removed} screenshots)[/green]")
    except ServiceError as e:
        _fail("Deleting session", e)
    finally:
        controller.store.close()


@cli.group()
def config():
    """Read and change runtime settings"""
    pass


@config.command('get')
@click.argument('key', required=False, type=click.Choice(SETTING_KEYS))
def config_get(key):
    """Show one setting, or all of them"""
    controller = _controller()
    try:
        if key:
            value = controller.get_setting(key)
            click.echo(value if value is not None else "")
        else:
            TerminalDisplay(console).show_settings(controller.get_settings())
    finally:
        controller.store.close()


@config.command('set')
@click.argument('key', type=click.Choice(SETTING_KEYS))
@click.argument('value')
def config_set(key, value):
    """Change a setting; applies from the next capture tick"""
    controller = _controller()
    try:
        controller.set_setting(key, value)
        console.print(f"[green]{key} = {controller.get_setting(key)}[/green]")
    except ServiceError as e:
        _fail("Saving setting", e)
    finally:
        controller.store.close()


@cli.command('check-ollama')
@click.option('--pull', is_flag=True, help='Download the configured model if it is missing')
def check_ollama(pull):
    """Check that a local Ollama server is reachable"""
    controller = _controller()

    async def run():
        try:
            return await controller.check_ollama(pull_missing=pull)
        finally:
            controller.store.close()

    try:
        models = asyncio.run(run())
    except ServiceError as e:
        _fail("Ollama check", e)
    console.print(f"[green]Ollama is running with {len(models)} models[/green]")
    for name in models:
        console.print(f"  • {name}")


if __name__ == '__main__':
    cli()
