"""Command line interface for cf-explorer."""

import asyncio
from pathlib import Path
from typing import Awaitable, Callable, NoReturn, Optional, TypeVar

import typer

from cf_explorer.config import CONFIG_FILE, get_settings
from cf_explorer.errors import InvalidRefreshTokenError
from cf_explorer.logging.setup import setup_logging
from cf_explorer.models import App, CloudFoundryInstance, Organization, Space
from cf_explorer.session import SessionOrchestrator

T = TypeVar("T")

app = typer.Typer(help="Browse and manage Cloud Foundry orgs, spaces and apps")
config_app = typer.Typer(help="cf-explorer configuration management")
app.add_typer(config_app, name="config")

API_OPTION_HELP = "Cloud Controller API address"
API_ENV_VAR = "CF_EXPLORER_API_ADDRESS"
SKIP_SSL_OPTION_HELP = "Do not verify the server certificate"

INIT_CONFIG_TEMPLATE = """# cf-explorer configuration

cli:
  # executable_path: /usr/local/bin/cf
  config_dir: ~/.cf-explorer/cf-home

api:
  connect_timeout: 20.0
  read_timeout: 60.0
  default_api_version: 3.0.0
  min_supported_api_version: 2.128.0

session:
  retry_amount: 1
  thread_pool_workers: 8

logging:
  level: INFO
  # file_path: ~/.cf-explorer/cf-explorer.log
"""


def _notify(title: str, message: str) -> None:
    typer.echo(f"[WARN] {title} {message}", err=True)


def _run(operation: Callable[[SessionOrchestrator], Awaitable[T]]) -> T:
    """Run one orchestrator operation; a dead session exits with status 1."""
    setup_logging()
    orchestrator = SessionOrchestrator(notify=_notify)

    async def runner() -> T:
        try:
            return await operation(orchestrator)
        finally:
            await orchestrator.aclose()

    try:
        return asyncio.run(runner())
    except InvalidRefreshTokenError as e:
        typer.echo(f"[ERROR] {e}", err=True)
        raise typer.Exit(1)


def _fail(explanation: Optional[str]) -> NoReturn:
    typer.echo(f"[ERROR] {explanation or 'Unknown error'}", err=True)
    raise typer.Exit(1)


def _instance(api: str, skip_ssl_validation: bool = False) -> CloudFoundryInstance:
    return CloudFoundryInstance(name=api, api_address=api, skip_ssl_validation=skip_ssl_validation)


async def _find_org(
    orchestrator: SessionOrchestrator, instance: CloudFoundryInstance, org_name: str
) -> Organization:
    result = await orchestrator.list_orgs(instance)
    if not result.succeeded:
        _fail(result.explanation)
    for org in result.content or []:
        if org.name == org_name:
            return org
    _fail(f"Org '{org_name}' not found")


async def _find_space(
    orchestrator: SessionOrchestrator,
    instance: CloudFoundryInstance,
    org_name: str,
    space_name: str,
) -> Space:
    org = await _find_org(orchestrator, instance, org_name)
    result = await orchestrator.list_spaces(org)
    if not result.succeeded:
        _fail(result.explanation)
    for space in result.content or []:
        if space.name == space_name:
            return space
    _fail(f"Space '{space_name}' not found in org '{org_name}'")


async def _find_app(
    orchestrator: SessionOrchestrator,
    instance: CloudFoundryInstance,
    org_name: str,
    space_name: str,
    app_name: str,
) -> App:
    space = await _find_space(orchestrator, instance, org_name, space_name)
    result = await orchestrator.list_apps(space)
    if not result.succeeded:
        _fail(result.explanation)
    for found in result.content or []:
        if found.name == app_name:
            return found
    _fail(f"App '{app_name}' not found in space '{space_name}'")


# ----------------------------------------------------------------------
# config
# ----------------------------------------------------------------------


@config_app.command("init")
def config_init(
    force: bool = typer.Option(False, "--force", "-f", help="Overwrite an existing file"),
):
    """Create a config.yaml with the default settings."""
    if CONFIG_FILE.exists() and not force:
        typer.echo(f"[SKIP] Skipping {CONFIG_FILE.name} (already exists)")
        return
    try:
        CONFIG_FILE.write_text(INIT_CONFIG_TEMPLATE)
    except OSError as e:
        typer.echo(f"[ERROR] Failed to write {CONFIG_FILE.name}: {e}", err=True)
        raise typer.Exit(1)
    typer.echo(f"[OK] Created {CONFIG_FILE.name}")


@config_app.command("show")
def config_show():
    """Show the effective configuration."""
    try:
        settings = get_settings()
    except Exception as e:
        typer.echo(f"[ERROR] Failed to load configuration: {e}", err=True)
        raise typer.Exit(1)
    typer.echo(settings.export_yaml())


# ----------------------------------------------------------------------
# session
# ----------------------------------------------------------------------


@app.command()
def login(
    api: str = typer.Option(..., "--api", "-a", envvar=API_ENV_VAR, help=API_OPTION_HELP),
    username: str = typer.Option(..., "--username", "-u", help="User name"),
    password: str = typer.Option(..., "--password", "-p", prompt=True, hide_input=True),
    proxy: Optional[str] = typer.Option(None, "--proxy", help="HTTPS proxy URL"),
    skip_ssl_validation: bool = typer.Option(
        False, "--skip-ssl-validation", help=SKIP_SSL_OPTION_HELP
    ),
):
    """Log in through the cf CLI."""
    result = _run(
        lambda o: o.connect(
            api, username, password, proxy=proxy, skip_ssl_validation=skip_ssl_validation
        )
    )
    if not result.success:
        _fail(result.error_message)
    typer.echo(f"[OK] Logged in to {api} as {username}")


@app.command()
def logout():
    """Log out and forget the cached access token."""
    result = _run(lambda o: o.logout())
    if not result.succeeded:
        _fail(result.explanation)
    typer.echo("[OK] Logged out")


# ----------------------------------------------------------------------
# listing
# ----------------------------------------------------------------------


@app.command()
def orgs(
    api: str = typer.Option(..., "--api", "-a", envvar=API_ENV_VAR, help=API_OPTION_HELP),
    skip_ssl_validation: bool = typer.Option(
        False, "--skip-ssl-validation", help=SKIP_SSL_OPTION_HELP
    ),
):
    """List orgs."""
    result = _run(lambda o: o.list_orgs(_instance(api, skip_ssl_validation)))
    if not result.succeeded:
        _fail(result.explanation)
    for org in result.content or []:
        typer.echo(org.name)


@app.command()
def spaces(
    org: str = typer.Argument(..., help="Org name"),
    api: str = typer.Option(..., "--api", "-a", envvar=API_ENV_VAR, help=API_OPTION_HELP),
    skip_ssl_validation: bool = typer.Option(
        False, "--skip-ssl-validation", help=SKIP_SSL_OPTION_HELP
    ),
):
    """List the spaces of an org."""

    async def operation(o: SessionOrchestrator):
        found = await _find_org(o, _instance(api, skip_ssl_validation), org)
        return await o.list_spaces(found)

    result = _run(operation)
    if not result.succeeded:
        _fail(result.explanation)
    for space in result.content or []:
        typer.echo(space.name)


@app.command()
def apps(
    org: str = typer.Argument(..., help="Org name"),
    space: str = typer.Argument(..., help="Space name"),
    api: str = typer.Option(..., "--api", "-a", envvar=API_ENV_VAR, help=API_OPTION_HELP),
    skip_ssl_validation: bool = typer.Option(
        False, "--skip-ssl-validation", help=SKIP_SSL_OPTION_HELP
    ),
):
    """List the apps of a space with their state."""

    async def operation(o: SessionOrchestrator):
        found = await _find_space(o, _instance(api, skip_ssl_validation), org, space)
        return await o.list_apps(found)

    result = _run(operation)
    if not result.succeeded:
        _fail(result.explanation)
    for found in result.content or []:
        typer.echo(f"{found.name}\t{found.state}")


# ----------------------------------------------------------------------
# app actions
# ----------------------------------------------------------------------


@app.command()
def start(
    org: str = typer.Argument(..., help="Org name"),
    space: str = typer.Argument(..., help="Space name"),
    name: str = typer.Argument(..., help="App name"),
    api: str = typer.Option(..., "--api", "-a", envvar=API_ENV_VAR, help=API_OPTION_HELP),
    skip_ssl_validation: bool = typer.Option(
        False, "--skip-ssl-validation", help=SKIP_SSL_OPTION_HELP
    ),
):
    """Start an app."""

    async def operation(o: SessionOrchestrator):
        found = await _find_app(o, _instance(api, skip_ssl_validation), org, space, name)
        return await o.start_app(found)

    result = _run(operation)
    if not result.succeeded:
        _fail(result.explanation)
    typer.echo(f"[OK] Started {name}")


@app.command()
def stop(
    org: str = typer.Argument(..., help="Org name"),
    space: str = typer.Argument(..., help="Space name"),
    name: str = typer.Argument(..., help="App name"),
    api: str = typer.Option(..., "--api", "-a", envvar=API_ENV_VAR, help=API_OPTION_HELP),
    skip_ssl_validation: bool = typer.Option(
        False, "--skip-ssl-validation", help=SKIP_SSL_OPTION_HELP
    ),
):
    """Stop an app."""

    async def operation(o: SessionOrchestrator):
        found = await _find_app(o, _instance(api, skip_ssl_validation), org, space, name)
        return await o.stop_app(found)

    result = _run(operation)
    if not result.succeeded:
        _fail(result.explanation)
    typer.echo(f"[OK] Stopped {name}")


@app.command()
def delete(
    org: str = typer.Argument(..., help="Org name"),
    space: str = typer.Argument(..., help="Space name"),
    name: str = typer.Argument(..., help="App name"),
    api: str = typer.Option(..., "--api", "-a", envvar=API_ENV_VAR, help=API_OPTION_HELP),
    skip_ssl_validation: bool = typer.Option(
        False, "--skip-ssl-validation", help=SKIP_SSL_OPTION_HELP
    ),
    remove_routes: bool = typer.Option(
        False, "--remove-routes", "-r", help="Delete the app's routes first"
    ),
):
    """Delete an app."""

    async def operation(o: SessionOrchestrator):
        found = await _find_app(o, _instance(api, skip_ssl_validation), org, space, name)
        return await o.delete_app(found, remove_routes=remove_routes)

    result = _run(operation)
    if not result.succeeded:
        _fail(result.explanation)
    typer.echo(f"[OK] Deleted {name}")


@app.command()
def logs(
    org: str = typer.Argument(..., help="Org name"),
    space: str = typer.Argument(..., help="Space name"),
    name: str = typer.Argument(..., help="App name"),
    api: str = typer.Option(..., "--api", "-a", envvar=API_ENV_VAR, help=API_OPTION_HELP),
    skip_ssl_validation: bool = typer.Option(
        False, "--skip-ssl-validation", help=SKIP_SSL_OPTION_HELP
    ),
):
    """Show recent logs of an app."""

    async def operation(o: SessionOrchestrator):
        found = await _find_app(o, _instance(api, skip_ssl_validation), org, space, name)
        return await o.get_recent_logs(found)

    result = _run(operation)
    if not result.succeeded:
        _fail(result.explanation)
    typer.echo(result.content or "")


@app.command()
def push(
    org: str = typer.Argument(..., help="Org name"),
    space: str = typer.Argument(..., help="Space name"),
    name: str = typer.Argument(..., help="App name"),
    api: str = typer.Option(..., "--api", "-a", envvar=API_ENV_VAR, help=API_OPTION_HELP),
    skip_ssl_validation: bool = typer.Option(
        False, "--skip-ssl-validation", help=SKIP_SSL_OPTION_HELP
    ),
    path: Optional[Path] = typer.Option(None, "--path", "-p", help="App directory"),
    manifest: Optional[Path] = typer.Option(None, "--manifest", "-f", help="Manifest file"),
    buildpack: Optional[str] = typer.Option(None, "--buildpack", "-b"),
    stack: Optional[str] = typer.Option(None, "--stack", "-s"),
    command: Optional[str] = typer.Option(None, "--command", "-c", help="Start command"),
):
    """Deploy an app with cf push, streaming its output."""

    async def operation(o: SessionOrchestrator):
        target = await _find_space(o, _instance(api, skip_ssl_validation), org, space)
        return await o.deploy_app(
            name,
            target.parent,
            target,
            app_dir=str(path) if path else None,
            manifest_path=str(manifest) if manifest else None,
            buildpack=buildpack,
            stack=stack,
            start_command=command,
            stdout_callback=typer.echo,
            stderr_callback=lambda line: typer.echo(line, err=True),
        )

    result = _run(operation)
    if not result.succeeded:
        _fail(result.explanation)
    typer.echo(f"[OK] {result.explanation}")


if __name__ == "__main__":
    app()
