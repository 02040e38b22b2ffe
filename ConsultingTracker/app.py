"""Command line entry point running one sync command in a Qt application.

Usage::

    consulting-tracker connect
    consulting-tracker push
    consulting-tracker pull
    consulting-tracker disconnect
    consulting-tracker status
    consulting-tracker open
"""
import logging
import sys
from typing import Optional, Sequence

import click
from PySide6 import QtCore, QtGui

from . import __version__
from .core import auth
from .core import database
from .core import service
from .core import sync
from .log import log
from .settings import lib
from .status import status
from .ui import actions


GUI_COMMANDS = {'open'}


def set_application_properties(app: QtCore.QCoreApplication) -> None:
    app.setApplicationName(lib.app_name)
    app.setOrganizationName('')
    app.setApplicationVersion(__version__)


class Application(QtCore.QCoreApplication):
    """Headless QCoreApplication configuring application metadata."""

    def __init__(self, argv: Optional[Sequence[str]] = None) -> None:
        if argv is None:
            argv = sys.argv

        super().__init__(list(argv))
        set_application_properties(self)


class GuiApplication(QtGui.QGuiApplication):
    """QGuiApplication for commands that hand work to the desktop, like opening a browser."""

    def __init__(self, argv: Optional[Sequence[str]] = None) -> None:
        if argv is None:
            argv = sys.argv

        super().__init__(list(argv))
        set_application_properties(self)


def application_type(args: Sequence[str]) -> type:
    """Return the application class a command line needs. Sync commands stay headless."""
    return GuiApplication if GUI_COMMANDS.intersection(args) else Application


def create_sync_api(db_path: Optional[str] = None) -> sync.SyncAPI:
    """Wire a store, credential manager, gateway and sync service for this device."""
    store = database.DatabaseAPI(db_path)
    auth_manager = auth.AuthManager()
    gateway = service.SheetsGateway(auth_manager)
    return sync.SyncAPI(store, gateway, auth_manager)


def echo_status(api: sync.SyncAPI) -> None:
    s = api.status
    click.echo(f'State:      {s.state.value}')
    click.echo(f'Connected:  {"yes" if s.is_connected else "no"}')
    click.echo(f'Document:   {api.document_url or "-"}')
    click.echo(f'Last sync:  {api.store.get_last_sync() or "-"}')
    if s.last_push_at:
        click.echo(f'Last push:  {s.last_push_at}')
    if s.last_error:
        click.echo(f'Error:      {s.last_error}')


def _finish(api: sync.SyncAPI) -> None:
    echo_status(api)
    if api.status.state == sync.SyncState.Error:
        raise click.ClickException(api.status.last_error or 'Sync failed.')


@click.group()
@click.version_option(__version__, prog_name=lib.app_name)
@click.option('--db', 'db_path', type=click.Path(dir_okay=False), default=None,
              help='Path of the local store database. Defaults to the app-data location.')
@click.option('--log-level', type=click.Choice(list(log.LOG_LEVELS), case_sensitive=False), default='warning',
              show_default=True, help='Lowest level of log messages written to stderr.')
@click.pass_context
def cli(ctx: click.Context, db_path: Optional[str], log_level: str) -> None:
    """Back up consulting records to Google Sheets."""
    log.set_logging_level(log.LOG_LEVELS[log_level.lower()])
    api = create_sync_api(db_path)
    ctx.obj = api
    ctx.call_on_close(api.shutdown)


@cli.command()
@click.pass_obj
def connect(api: sync.SyncAPI) -> None:
    """Sign in, then find or create the backup spreadsheet and sync with it."""
    api.connect_remote()
    _finish(api)


@cli.command()
@click.pass_obj
def push(api: sync.SyncAPI) -> None:
    """Push local records to the backup spreadsheet now."""
    if not api.push(immediate=True) and api.status.state != sync.SyncState.Error:
        click.echo('Nothing pushed.')
    _finish(api)


@cli.command()
@click.pass_obj
def pull(api: sync.SyncAPI) -> None:
    """Replace local records with the backup spreadsheet's contents."""
    api.pull()
    _finish(api)


@cli.command()
@click.pass_obj
def disconnect(api: sync.SyncAPI) -> None:
    """Sign out and forget the backup spreadsheet. The spreadsheet itself is kept."""
    api.disconnect_remote()
    _finish(api)


@cli.command('open')
@click.pass_obj
def open_document(api: sync.SyncAPI) -> None:
    """Open the backup spreadsheet in the browser."""
    url = api.document_url
    if not url:
        raise click.ClickException(status.get_message(status.Status.DocumentNotConfigured))
    click.echo(url)
    if not actions.open_document(url):
        click.echo('Could not open a browser; open the URL above manually.')


@cli.command('status')
@click.pass_obj
def show_status(api: sync.SyncAPI) -> None:
    """Print the sync status of this device."""
    echo_status(api)


def exec_(argv: Optional[Sequence[str]] = None) -> None:
    """Run one sync command inside a Qt application and exit.

    Sync commands run headless; ``open`` starts a QGuiApplication so the desktop can
    hand the URL to a browser.

    Args:
        argv: Full argument vector, program name first. Defaults to ``sys.argv``.
    """
    argv = list(argv if argv is not None else sys.argv)
    app = QtCore.QCoreApplication.instance() or application_type(argv[1:])(argv)
    logging.debug(f'Running {lib.app_name} {app.applicationVersion()} with arguments {argv[1:]}')
    cli.main(args=argv[1:], prog_name=lib.app_name)


if __name__ == '__main__':
    exec_()
