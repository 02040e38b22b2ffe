"""Google Sheets remote gateway with asynchronous execution helpers.

The gateway stores a snapshot in one spreadsheet, one worksheet per collection plus the
profile and sync metadata worksheets. Every public gateway method shapes failures into
status exceptions:

- :class:`status.NotAuthenticatedException` when the credential is missing, expired or
  rejected (HTTP 401, refresh failures, or an error message mentioning authentication).
- :class:`status.ServiceUnavailableException` for everything else: HTTP errors, socket
  timeouts, SSL errors and malformed responses.

Gateway methods block. The sync service runs them through :func:`start_asynchronous`,
which moves the call to an :class:`AsyncWorker` thread and waits in a local event loop.
"""

import functools
import logging
import socket
import ssl
import threading
import time
from typing import Any, Callable, Dict, List, Optional, Tuple

import google.auth.exceptions
from PySide6 import QtCore
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from . import mapper
from .auth import AuthExpiredError
from .models import Snapshot
from ..settings import lib
from ..status import status

SPREADSHEET_MIME_TYPE = 'application/vnd.google-apps.spreadsheet'
DOCUMENT_URL = 'https://docs.google.com/spreadsheets/d/{document_id}/edit'

MAX_RETRIES: int = 3
AUTH_SIGNALS: Tuple[str, ...] = ('401', 'auth', 'credential', 'token')


def classify_error(ex: BaseException) -> status.BaseStatusException:
    """Convert any remote call failure into a status exception.

    Status exceptions are returned unchanged.

    Args:
        ex: The exception raised by the remote call.

    Returns:
        status.BaseStatusException: The exception to raise in its place.
    """
    if isinstance(ex, status.BaseStatusException):
        return ex
    if isinstance(ex, (AuthExpiredError, google.auth.exceptions.RefreshError)):
        return status.NotAuthenticatedException(str(ex))

    if isinstance(ex, HttpError):
        code: Optional[int] = ex.resp.status if ex.resp else None
        reason = str(getattr(ex, 'reason', '') or '').lower()
        if code == 401 or any(s in reason for s in AUTH_SIGNALS):
            return status.NotAuthenticatedException(f'HTTP {code}: {ex}')
        if code == 404:
            return status.DocumentNotFoundException(f'HTTP 404: {ex}')
        return status.ServiceUnavailableException(f'HTTP {code}: {ex}')

    if isinstance(ex, socket.timeout):
        return status.ServiceUnavailableException(f'Timeout error: {ex}')
    if isinstance(ex, ssl.SSLError):
        return status.ServiceUnavailableException(f'SSL error: {ex}')

    if any(s in str(ex).lower() for s in AUTH_SIGNALS):
        return status.NotAuthenticatedException(str(ex))
    return status.ServiceUnavailableException(str(ex) or type(ex).__name__)


def shaped(func: Callable[..., Any]) -> Callable[..., Any]:
    """Decorator raising :func:`classify_error` results in place of raw remote errors."""

    @functools.wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return func(*args, **kwargs)
        except status.BaseStatusException:
            raise
        except Exception as ex:
            raise classify_error(ex) from ex

    return wrapper


def get_document_url(document_id: str) -> str:
    """Return the browser URL of a remote document."""
    return DOCUMENT_URL.format(document_id=document_id)


def _range(table: str, cells: str = '') -> str:
    escaped = table.replace("'", "''")
    return f"'{escaped}'!{cells}" if cells else f"'{escaped}'"


class SheetsGateway:
    """Remote gateway storing snapshots in a Google Sheets spreadsheet.

    Args:
        auth: The credential manager providing ``get_valid_credentials()``.
        num_retries: Retries for 429/5xx responses. Defaults to the ``max_retries`` setting.
    """

    def __init__(self, auth: Any, num_retries: Optional[int] = None) -> None:
        self.auth = auth
        self._num_retries = num_retries
        self._lock = threading.Lock()
        self._sheets: Any = None
        self._drive: Any = None

    @property
    def num_retries(self) -> int:
        if self._num_retries is not None:
            return self._num_retries
        return lib.settings['max_retries'] or MAX_RETRIES

    def sheets(self) -> Any:
        """
        Builds (or returns cached) Google Sheets service client.

        Credentials are validated on every call, which may raise when they expired.
        """
        creds = self.auth.get_valid_credentials()
        with self._lock:
            if self._sheets is None:
                self._sheets = build('sheets', 'v4', credentials=creds, cache_discovery=False)
                logging.debug('Google Sheets service client created successfully.')
            return self._sheets

    def drive(self) -> Any:
        """Builds (or returns cached) Google Drive service client."""
        creds = self.auth.get_valid_credentials()
        with self._lock:
            if self._drive is None:
                self._drive = build('drive', 'v3', credentials=creds, cache_discovery=False)
                logging.debug('Google Drive service client created successfully.')
            return self._drive

    def clear_service(self) -> None:
        """
        Clears the cached service clients.
        """
        with self._lock:
            for client in (self._sheets, self._drive):
                try:
                    if client:
                        client.close()
                except Exception as ex:
                    logging.debug(f'Failed closing cached service client: {ex}')
            self._sheets = None
            self._drive = None

    def _execute(self, request: Any) -> Any:
        return request.execute(num_retries=self.num_retries)

    @shaped
    def find_document(self, title: str) -> Optional[str]:
        """
        Search Drive for a spreadsheet with the given title.

        Trashed files are ignored. When several match, the most recently modified wins.

        Returns:
            The document id, or None if no spreadsheet carries the title.
        """
        escaped = title.replace('\\', '\\\\').replace("'", "\\'")
        query = f"name = '{escaped}' and mimeType = '{SPREADSHEET_MIME_TYPE}' and trashed = false"
        logging.debug(f'Searching Drive for "{title}".')
        result: Dict[str, Any] = self._execute(self.drive().files().list(
            q=query,
            spaces='drive',
            orderBy='modifiedTime desc',
            fields='files(id, name, modifiedTime)',
            pageSize=10,
        ))
        files: List[Dict[str, Any]] = result.get('files', [])
        if not files:
            logging.debug(f'No spreadsheet named "{title}" found.')
            return None
        if len(files) > 1:
            logging.warning(f'Found {len(files)} spreadsheets named "{title}"; using the most recently modified.')
        return files[0]['id']

    @shaped
    def create_document(self, title: str) -> str:
        """
        Create a spreadsheet holding every expected worksheet.

        Returns:
            The new document id.
        """
        body = {
            'properties': {'title': title},
            'sheets': [{'properties': {'title': name}} for name in mapper.ALL_TABLES],
        }
        result: Dict[str, Any] = self._execute(
            self.sheets().spreadsheets().create(body=body, fields='spreadsheetId')
        )
        document_id = result.get('spreadsheetId')
        if not document_id:
            raise status.ServiceUnavailableException('No spreadsheet id returned from the Sheets API.')
        logging.info(f'Created spreadsheet "{title}" ({document_id}).')
        return document_id

    @shaped
    def get_table_names(self, document_id: str) -> List[str]:
        """Return the titles of every worksheet in the document."""
        result: Dict[str, Any] = self._execute(self.sheets().spreadsheets().get(
            spreadsheetId=document_id,
            fields='sheets(properties(title))'
        ))
        if not result:
            raise status.ServiceUnavailableException('No result returned from the Sheets API.')
        return [s.get('properties', {}).get('title', '') for s in result.get('sheets', [])]

    @shaped
    def ensure_document_exists(self, document_id: Optional[str], title: Optional[str] = None) -> str:
        """
        Return ``document_id`` when it is accessible, otherwise create a new document.

        Args:
            document_id: The stored document id, if any.
            title: Title for a new document. Defaults to the ``document_title`` setting.
        """
        if document_id:
            try:
                self.get_table_names(document_id)
                return document_id
            except status.DocumentNotFoundException:
                logging.warning(f'Spreadsheet "{document_id}" is gone; creating a new one.')
        return self.create_document(title or lib.settings['document_title'])

    @shaped
    def ensure_tables_exist(self, document_id: str) -> List[str]:
        """
        Add every expected worksheet that is missing, in a single batch request.

        Returns:
            The names of the worksheets that were added.
        """
        existing = set(self.get_table_names(document_id))
        missing = [name for name in mapper.ALL_TABLES if name not in existing]
        if not missing:
            return []

        logging.info(f'Adding missing worksheets: [{", ".join(missing)}].')
        requests = [{'addSheet': {'properties': {'title': name}}} for name in missing]
        self._execute(self.sheets().spreadsheets().batchUpdate(
            spreadsheetId=document_id,
            body={'requests': requests}
        ))
        return missing

    @shaped
    def clear_table(self, document_id: str, name: str) -> None:
        """
        Clear every cell of a worksheet. A missing worksheet is a no-op.
        """
        try:
            self._execute(self.sheets().spreadsheets().values().clear(
                spreadsheetId=document_id, range=_range(name), body={}
            ))
        except HttpError as ex:
            code = ex.resp.status if ex.resp else None
            if code == 400 and 'unable to parse range' in str(ex).lower():
                logging.debug(f'Worksheet "{name}" does not exist; nothing to clear.')
                return
            raise

    @shaped
    def clear_tables(self, document_id: str, names: List[str]) -> None:
        """Clear several existing worksheets in one request."""
        self._execute(self.sheets().spreadsheets().values().batchClear(
            spreadsheetId=document_id,
            body={'ranges': [_range(n) for n in names]}
        ))

    @shaped
    def write_tables(self, document_id: str, tables: Dict[str, mapper.Table]) -> None:
        """
        Write several tables, each starting at A1, in a single request.

        Values are written as plain text (RAW input). Any failure fails the whole write.
        """
        data = [{'range': _range(name, 'A1'), 'values': rows} for name, rows in tables.items()]
        logging.debug(f'Writing {len(data)} tables to "{document_id}".')
        self._execute(self.sheets().spreadsheets().values().batchUpdate(
            spreadsheetId=document_id,
            body={'valueInputOption': 'RAW', 'data': data}
        ))

    @shaped
    def read_tables(self, document_id: str, names: List[str]) -> Dict[str, mapper.Table]:
        """
        Read several worksheets in one request.

        Returns:
            A table per requested name. Worksheets missing remotely read as empty tables.
        """
        existing = set(self.get_table_names(document_id))
        present = [n for n in names if n in existing]
        tables: Dict[str, mapper.Table] = {n: [] for n in names}
        if not present:
            return tables

        result: Dict[str, Any] = self._execute(self.sheets().spreadsheets().values().batchGet(
            spreadsheetId=document_id,
            ranges=[_range(n) for n in present],
            majorDimension='ROWS',
            valueRenderOption='FORMATTED_VALUE',
        ))
        value_ranges: List[Dict[str, Any]] = result.get('valueRanges', [])
        if len(value_ranges) != len(present):
            raise status.ServiceUnavailableException(
                f'Expected {len(present)} ranges from the Sheets API, got {len(value_ranges)}.'
            )
        for name, vr in zip(present, value_ranges):
            tables[name] = vr.get('values', [])
        logging.debug(f'Read {", ".join(f"{n}={max(len(t) - 1, 0)}" for n, t in tables.items())} rows.')
        return tables

    @shaped
    def read_metadata(self, document_id: str) -> Optional[str]:
        """Return the remote ``lastModified`` marker, or None for a legacy document."""
        tables = self.read_tables(document_id, [mapper.META_TABLE])
        return mapper.meta_from_rows(tables[mapper.META_TABLE])

    @shaped
    def write_metadata(self, document_id: str, timestamp: str) -> None:
        self.write_tables(document_id, {mapper.META_TABLE: mapper.meta_to_rows(timestamp)})

    @shaped
    def push_snapshot(self, document_id: str, snapshot: Snapshot, stamp: str) -> None:
        """
        Replace the remote contents with ``snapshot``.

        The metadata marker is written last, so a failed push never advances it.

        Args:
            document_id: The remote document.
            snapshot: The complete state to store.
            stamp: The ``lastModified`` value recorded for this push.
        """
        self.ensure_tables_exist(document_id)
        self.clear_tables(document_id, mapper.ENTITY_TABLES)
        self.write_tables(document_id, mapper.snapshot_to_tables(snapshot))
        self.write_metadata(document_id, stamp)
        logging.info(f'Pushed {snapshot.counts()} to "{document_id}" at {stamp}.')

    @shaped
    def pull_snapshot(self, document_id: str) -> Tuple[Snapshot, Optional[str]]:
        """
        Read the remote contents.

        Returns:
            The remote snapshot and its ``lastModified`` marker (None for a legacy document).
        """
        names = mapper.read_table_names() + [mapper.META_TABLE]
        tables = self.read_tables(document_id, names)
        snapshot = mapper.tables_to_snapshot(tables)
        last_modified = mapper.meta_from_rows(tables[mapper.META_TABLE])
        logging.info(f'Pulled {snapshot.counts()} from "{document_id}" (lastModified={last_modified}).')
        return snapshot, last_modified

    def get_document_url(self, document_id: str) -> str:
        return get_document_url(document_id)


class AsyncWorker(QtCore.QThread):
    """
    Generic worker thread with retry logic for blocking functions.

    Status exceptions and expired credentials are final; anything else is retried.

    Signals:
        resultReady (object): Emitted with the function's result on success.
        errorOccurred (object): Emitted with the exception on failure.
    """
    resultReady = QtCore.Signal(object)
    errorOccurred = QtCore.Signal(object)

    def __init__(self, func: Callable[..., Any], *args: Any, **kwargs: Any) -> None:
        super().__init__()
        self.func = func
        self.args = args

        self.max_attempts = kwargs.pop('max_attempts', MAX_RETRIES)
        self.wait_seconds = kwargs.pop('wait_seconds', 2.0)
        self.kwargs = kwargs

    def run(self) -> None:
        attempts = 0
        last_exception = None
        while attempts < self.max_attempts:
            attempts += 1
            try:
                result = self.func(*self.args, **self.kwargs)
                self.resultReady.emit(result)
                return
            except (status.BaseStatusException, AuthExpiredError) as ex:
                self.errorOccurred.emit(ex)
                return
            except Exception as ex:
                logging.debug(f'Attempt {attempts}/{self.max_attempts} failed: {ex}')
                last_exception = ex
                if attempts < self.max_attempts:
                    time.sleep(self.wait_seconds)
        # All retries exhausted
        self.errorOccurred.emit(last_exception)


def start_asynchronous(func: Callable[..., Any], *args: Any, total_timeout: Optional[int] = None,
                       **kwargs: Any) -> Any:
    """
    Generic asynchronous operation wrapper.

    Runs ``func`` on an AsyncWorker and spins a local event loop until it finishes, so
    timers and signals keep being serviced while the call is in flight.

    Args:
        func: The blocking function to run.
        *args, **kwargs: Arguments passed to func.
        total_timeout (int): Optional total operation timeout in seconds.

    Returns:
        The result of the function on success.

    Raises:
        status.BaseStatusException: The shaped error of the failed call, or a
            ServiceUnavailableException when the operation timed out.
    """
    worker: AsyncWorker = AsyncWorker(func, *args, **kwargs)

    result: Dict[str, Any] = {'data': None, 'error': None, 'done': False}
    loop: QtCore.QEventLoop = QtCore.QEventLoop()

    worker.resultReady.connect(
        lambda d: (result.update({'data': d, 'done': True}), loop.quit()), QtCore.Qt.QueuedConnection)
    worker.errorOccurred.connect(
        lambda err: (result.update({'error': err, 'done': True}), loop.quit()), QtCore.Qt.QueuedConnection)

    worker.start()

    timer: Optional[QtCore.QTimer] = None
    if total_timeout:
        timer = QtCore.QTimer()
        timer.setSingleShot(True)
        timer.setInterval(total_timeout * 1000)
        timer.timeout.connect(loop.quit)
        timer.start()

    loop.exec()
    if timer:
        timer.stop()

    if not result['done']:
        worker.terminate()
        worker.wait()
        raise status.ServiceUnavailableException(f'Operation timed out after {total_timeout} seconds.')

    worker.wait()
    if result['error'] is not None:
        raise classify_error(result['error'])
    return result['data']


def run_inline(func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
    """Run ``func`` on the calling thread with the same error shaping as :func:`start_asynchronous`."""
    try:
        return func(*args, **kwargs)
    except status.BaseStatusException:
        raise
    except Exception as ex:
        raise classify_error(ex) from ex
