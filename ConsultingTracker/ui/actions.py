"""Application-wide Qt signals and utility slots for ConsultingTracker.

This module provides:
    - open_document slot: opens a remote backup spreadsheet in the browser.
    - Signals: custom Qt signals for errors and remote document actions.
"""
import logging

from PySide6 import QtCore, QtGui


def has_desktop_session() -> bool:
    """Return True when the running application can hand URLs to the desktop."""
    return isinstance(QtCore.QCoreApplication.instance(), QtGui.QGuiApplication)


@QtCore.Slot(str)
def open_document(url: str) -> bool:
    """
    Opens the remote backup spreadsheet in the default browser.

    Args:
        url (str): The spreadsheet URL, as returned by ``SyncAPI.document_url``.

    Returns:
        bool: True when the URL was handed to the browser.
    """
    if not url:
        logging.warning('No backup spreadsheet is configured; nothing to open.')
        return False
    if not has_desktop_session():
        logging.warning(f'No desktop session to open a browser from. Open {url} manually.')
        return False

    logging.debug(f'Opening spreadsheet: {url}')
    if not QtGui.QDesktopServices.openUrl(QtCore.QUrl(url)):
        logging.warning(f'Could not open a browser. Open {url} manually.')
        return False
    return True


class Signals(QtCore.QObject):
    """Centralized Qt signals for application-wide events."""
    openDocumentRequested = QtCore.Signal(str)

    error = QtCore.Signal(str)

    def __init__(self):
        super().__init__()
        self._connect_signals()

    def _connect_signals(self):
        self.openDocumentRequested.connect(open_document)


signals = Signals()
