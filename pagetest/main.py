import importlib
import os
import sys
import time
import logging
from importlib.metadata import PackageNotFoundError, version

import click
from playwright.sync_api import Error as PlaywrightError

from pagetest.session.controller import TestSession, testsession
from pagetest.shared.errors import SessionError
from pagetest.utils.config import SessionConfig

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("cli")


def load_builder(target: str):
    """Imports a page builder given as ``package.module:function``."""
    module_name, sep, attr = target.partition(":")
    if not sep or not module_name or not attr:
        raise click.BadParameter(f"expected MODULE:FUNCTION, got '{target}'", param_hint="BUILDER")
    # Builders usually live next to the tests that use them
    if os.getcwd() not in sys.path:
        sys.path.insert(0, os.getcwd())
    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise click.BadParameter(f"cannot import '{module_name}': {e}", param_hint="BUILDER")
    builder = getattr(module, attr, None)
    if not callable(builder):
        raise click.BadParameter(f"'{attr}' in '{module_name}' is not callable", param_hint="BUILDER")
    return builder


@click.group()
def cli():
    """pagetest - serve pages into a browser and check they come up."""
    pass


@cli.command()
@click.argument("builder")
@click.option("--host", default=None, help="Address to bind the application server to")
@click.option("--port", default=None, type=int, help="Port to bind the application server to")
@click.option("--timeout", default=None, type=float, help="Seconds to wait for the page to become ready")
@click.option("--config", "config_path", default=None, type=click.Path(exists=True, dir_okay=False), help="YAML session config")
def check(builder, host, port, timeout, config_path):
    """Serve BUILDER (module:function) headless and report whether the page becomes ready."""
    page_builder = load_builder(builder)
    config = SessionConfig.load(config_path)

    try:
        with testsession(page_builder, config=config, host=host, port=port, timeout=timeout, headless=True) as session:
            count = session.evaluate("(root) => root.childElementCount", session.page_root_handle)
            click.echo(f"Ready: {session.url} ({count} root element{'s' if count != 1 else ''})")
    except (SessionError, PlaywrightError) as e:
        # Playwright errors here are usually a missing browser binary or a dead driver
        raise click.ClickException(str(e))


@cli.command()
@click.argument("builder")
@click.option("--host", default=None, help="Address to bind the application server to")
@click.option("--port", default=None, type=int, help="Port to bind the application server to")
@click.option("--headless/--no-headless", default=False, help="Run the browser headless")
@click.option("--reload-every", default=0.0, type=float, help="Reload the page every N seconds (0 disables)")
@click.option("--config", "config_path", default=None, type=click.Path(exists=True, dir_okay=False), help="YAML session config")
def preview(builder, host, port, headless, reload_every, config_path):
    """Serve BUILDER in a browser window until Ctrl+C or the window is closed."""
    page_builder = load_builder(builder)
    config = SessionConfig.load(config_path)
    session = TestSession(page_builder, config=config, host=host, port=port, headless=headless)

    try:
        with session:
            logger.info(f"Previewing {builder} at {session.url}. Press Ctrl+C to stop.")
            last_reload = time.monotonic()
            while session.window is not None and session.window.exists:
                # Yield to the browser so the window stays responsive
                session.window.pump(0.2)
                if reload_every and time.monotonic() - last_reload >= reload_every:
                    session.reload()
                    last_reload = time.monotonic()
            logger.info("Browser window closed.")
    except KeyboardInterrupt:
        logger.info("Ctrl+C received, closing session.")
    except (SessionError, PlaywrightError) as e:
        raise click.ClickException(str(e))


@cli.command()
def status():
    """Show installed browser stack and session defaults."""
    for dist in ("playwright", "fastapi", "uvicorn"):
        try:
            click.echo(f"{dist}: {version(dist)}")
        except PackageNotFoundError:
            click.echo(f"{dist}: not installed")
    defaults = SessionConfig()
    click.echo(f"Default endpoint: {defaults.url}")
    click.echo(f"Default ready timeout: {defaults.timeout}s")


if __name__ == "__main__":
    cli()
