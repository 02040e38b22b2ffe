"""Unittest base class and in-memory fakes for creating a clean, offline test environment."""
import json
import logging
import shutil
import tempfile
import unittest
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import httplib2
from PySide6 import QtCore
from googleapiclient.errors import HttpError

from ConsultingTracker.core import mapper
from ConsultingTracker.core import models
from ConsultingTracker.core import service
from ConsultingTracker.core.auth import AuthExpiredError
from ConsultingTracker.settings import lib

_app: Optional[QtCore.QCoreApplication] = None


def ensure_app() -> QtCore.QCoreApplication:
    """Return the running QCoreApplication, creating one for the test process if needed."""
    global _app
    app = QtCore.QCoreApplication.instance()
    if not app:
        _app = QtCore.QCoreApplication([])
        app = _app
        logging.debug('QtCore.QCoreApplication initialized for tests.')
    return app


def wait(msec: int) -> None:
    """Spin a local event loop for ``msec`` milliseconds so timers can fire."""
    loop = QtCore.QEventLoop()
    QtCore.QTimer.singleShot(msec, loop.quit)
    loop.exec()


def http_error(code: int, message: str = 'error') -> HttpError:
    """Build a googleapiclient HttpError carrying ``code`` and ``message``."""
    content = json.dumps({'error': {'code': code, 'message': message}}).encode('utf-8')
    return HttpError(httplib2.Response({'status': code}), content)


def make_client(client_id: str = 'c1', name: str = 'Acme', updated_at: str = '2025-01-01T10:00:00+00:00',
                **fields: Any) -> models.Client:
    return models.Client(id=client_id, name=name, created_at=updated_at, updated_at=updated_at, **fields)


def make_snapshot(clients: int = 0, stamp: str = '2025-01-01T10:00:00+00:00') -> models.Snapshot:
    """Build a snapshot with ``clients`` clients, one project and one time entry per client."""
    snapshot = models.Snapshot()
    for i in range(clients):
        client = make_client(f'c{i + 1}', f'Client {i + 1}', stamp, rate=100.0 + i)
        snapshot.clients.append(client)
        snapshot.projects.append(models.Project(
            id=f'p{i + 1}', client_id=client.id, name=f'Project {i + 1}', created_at=stamp, updated_at=stamp))
        snapshot.time_entries.append(models.TimeEntry(
            id=f't{i + 1}', client_id=client.id, date='2025-01-02', project_id=f'p{i + 1}', hours=2.5,
            description='Work', created_at=stamp, updated_at=stamp))
    return snapshot


class BaseTestCase(unittest.TestCase):
    """Base test case with a clean config directory and a temporary store location."""

    config_paths: lib.ConfigPaths
    tmp_dir: str

    def setUp(self) -> None:
        """Set up a clean config directory and reinitialize the settings API."""
        ensure_app()

        # Prepare config paths
        self.config_paths = lib.ConfigPaths()
        config_dir: Path = self.config_paths.config_dir
        if config_dir.exists():
            shutil.rmtree(config_dir)
            logging.debug(f'Removed test config directory {config_dir}')

        # Reinitialize settings API
        lib.settings = lib.SettingsAPI()
        logging.debug('SettingsAPI reinitialized.')

        self.tmp_dir = tempfile.mkdtemp(prefix='consultingtracker_test_')
        self.db_path = Path(self.tmp_dir) / 'store.db'

    def tearDown(self) -> None:
        shutil.rmtree(self.tmp_dir, ignore_errors=True)
        config_dir: Path = self.config_paths.config_dir
        if config_dir.exists():
            shutil.rmtree(config_dir)


class FakeRemote:
    """In-memory remote documents shared by the fake gateways of several devices.

    Documents hold the same tables the real gateway writes, produced by the real mapper.
    """

    def __init__(self) -> None:
        self.documents: Dict[str, Dict[str, Any]] = {}
        self._counter = 0

    def add_document(self, title: str, snapshot: Optional[models.Snapshot] = None,
                     last_modified: Optional[str] = None) -> str:
        self._counter += 1
        document_id = f'doc-{self._counter}'
        tables: Dict[str, mapper.Table] = {name: [] for name in mapper.ALL_TABLES}
        if snapshot is not None:
            tables.update(mapper.snapshot_to_tables(snapshot))
        if last_modified:
            tables[mapper.META_TABLE] = mapper.meta_to_rows(last_modified)
        self.documents[document_id] = {'title': title, 'tables': tables}
        return document_id

    def tables(self, document_id: str) -> Dict[str, mapper.Table]:
        return self.documents[document_id]['tables']

    def snapshot(self, document_id: str) -> models.Snapshot:
        return mapper.tables_to_snapshot(self.tables(document_id))

    def last_modified(self, document_id: str) -> Optional[str]:
        return mapper.meta_from_rows(self.tables(document_id)[mapper.META_TABLE])


class FakeGateway:
    """Gateway double recording every remote call.

    Set ``failures[method_name]`` to an exception to make that method raise it.
    ``before_push`` runs at the start of ``push_snapshot``, which is where a test can
    simulate another trigger arriving while the push is in flight.
    """

    def __init__(self, remote: Optional[FakeRemote] = None) -> None:
        self.remote = remote or FakeRemote()
        self.calls: List[str] = []
        self.failures: Dict[str, BaseException] = {}
        self.before_push: Optional[Callable[[], None]] = None
        self.cleared = 0

    def _record(self, name: str) -> None:
        self.calls.append(name)
        if name in self.failures:
            raise self.failures[name]

    def find_document(self, title: str) -> Optional[str]:
        self._record('find_document')
        matches = [k for k, v in self.remote.documents.items() if v['title'] == title]
        return matches[-1] if matches else None

    def create_document(self, title: str) -> str:
        self._record('create_document')
        return self.remote.add_document(title)

    def ensure_document_exists(self, document_id: Optional[str], title: Optional[str] = None) -> str:
        self._record('ensure_document_exists')
        if document_id in self.remote.documents:
            return document_id
        return self.remote.add_document(title or 'Untitled')

    def read_metadata(self, document_id: str) -> Optional[str]:
        self._record('read_metadata')
        return self.remote.last_modified(document_id)

    def pull_snapshot(self, document_id: str):
        self._record('pull_snapshot')
        return self.remote.snapshot(document_id), self.remote.last_modified(document_id)

    def push_snapshot(self, document_id: str, snapshot: models.Snapshot, stamp: str) -> None:
        self._record('push_snapshot')
        if self.before_push:
            self.before_push()
        tables = self.remote.tables(document_id)
        tables.update(mapper.snapshot_to_tables(snapshot))
        tables[mapper.META_TABLE] = mapper.meta_to_rows(stamp)

    def get_document_url(self, document_id: str) -> str:
        return service.get_document_url(document_id)

    def clear_service(self) -> None:
        self.cleared += 1


class FakeAuth:
    """Credential manager double."""

    def __init__(self, valid: bool = True) -> None:
        self.valid = valid
        self.acquired = 0
        self.revoked = 0
        self.acquire_error: Optional[BaseException] = None
        self.calls: List[str] = []

    def has_valid_token(self) -> bool:
        return self.valid

    def acquire_token(self) -> str:
        self.calls.append('acquire_token')
        self.acquired += 1
        if self.acquire_error:
            raise self.acquire_error
        self.valid = True
        return 'token'

    def get_valid_credentials(self) -> object:
        if not self.valid:
            raise AuthExpiredError('No credentials')
        return object()

    def revoke(self) -> None:
        self.calls.append('revoke')
        self.revoked += 1
        self.valid = False


class _Request:
    """Mimics a googleapiclient HttpRequest: the call only happens on ``execute``."""

    def __init__(self, stub: 'StubSheetsService', name: str, func: Callable[[], Any]) -> None:
        self.stub = stub
        self.name = name
        self.func = func

    def execute(self, num_retries: int = 0) -> Any:
        self.stub.calls.append(self.name)
        if self.name in self.stub.failures:
            raise self.stub.failures[self.name]
        return self.func()


def _table_name(range_: str) -> str:
    name = range_.split('!')[0]
    if name.startswith("'") and name.endswith("'"):
        name = name[1:-1].replace("''", "'")
    return name


class StubSheetsService:
    """Stub of the Sheets v4 and Drive v3 resources, backed by in-memory tables.

    Only the calls the gateway makes are implemented. Set ``failures[name]`` (for example
    ``'values.batchUpdate'``) to make that request raise on execute.
    """

    def __init__(self) -> None:
        self.documents: Dict[str, Dict[str, mapper.Table]] = {}
        self.titles: Dict[str, str] = {}
        self.calls: List[str] = []
        self.failures: Dict[str, BaseException] = {}
        self.closed = False

    def close(self) -> None:
        self.closed = True

    # Drive
    def files(self) -> 'StubSheetsService':
        return self

    def list(self, q: str = '', **kwargs: Any) -> _Request:
        def _list():
            files = [{'id': k, 'name': v} for k, v in self.titles.items() if f"name = '{v}'" in q]
            return {'files': list(reversed(files))}
        return _Request(self, 'files.list', _list)

    # Sheets
    def spreadsheets(self) -> 'StubSheetsService':
        return self

    def values(self) -> '_StubValues':
        return _StubValues(self)

    def create(self, body: Dict[str, Any], fields: str = '') -> _Request:
        def _create():
            document_id = f'sheet-{len(self.documents) + 1}'
            self.titles[document_id] = body['properties']['title']
            self.documents[document_id] = {s['properties']['title']: [] for s in body.get('sheets', [])}
            return {'spreadsheetId': document_id}
        return _Request(self, 'create', _create)

    def get(self, spreadsheetId: str, fields: str = '') -> _Request:
        def _get():
            if spreadsheetId not in self.documents:
                raise http_error(404, 'Requested entity was not found.')
            return {'sheets': [{'properties': {'title': t}} for t in self.documents[spreadsheetId]]}
        return _Request(self, 'get', _get)

    def batchUpdate(self, spreadsheetId: str, body: Dict[str, Any]) -> _Request:
        def _batch_update():
            for request in body['requests']:
                self.documents[spreadsheetId][request['addSheet']['properties']['title']] = []
            return {}
        return _Request(self, 'batchUpdate', _batch_update)


class _StubValues:

    def __init__(self, stub: StubSheetsService) -> None:
        self.stub = stub

    def _tables(self, spreadsheetId: str) -> Dict[str, mapper.Table]:
        return self.stub.documents[spreadsheetId]

    def clear(self, spreadsheetId: str, range: str, body: Dict[str, Any]) -> _Request:
        def _clear():
            tables = self._tables(spreadsheetId)
            name = _table_name(range)
            if name not in tables:
                raise http_error(400, f'Unable to parse range: {range}')
            tables[name] = []
            return {}
        return _Request(self.stub, 'values.clear', _clear)

    def batchClear(self, spreadsheetId: str, body: Dict[str, Any]) -> _Request:
        def _batch_clear():
            tables = self._tables(spreadsheetId)
            for range_ in body['ranges']:
                tables[_table_name(range_)] = []
            return {}
        return _Request(self.stub, 'values.batchClear', _batch_clear)

    def batchUpdate(self, spreadsheetId: str, body: Dict[str, Any]) -> _Request:
        def _batch_update():
            assert body['valueInputOption'] == 'RAW'
            tables = self._tables(spreadsheetId)
            for item in body['data']:
                tables[_table_name(item['range'])] = [list(row) for row in item['values']]
            return {}
        return _Request(self.stub, 'values.batchUpdate', _batch_update)

    def batchGet(self, spreadsheetId: str, ranges: List[str], **kwargs: Any) -> _Request:
        def _batch_get():
            tables = self._tables(spreadsheetId)
            # Sheets omits 'values' for empty ranges and trims trailing empty cells
            value_ranges = []
            for range_ in ranges:
                rows = [self._trim(row) for row in tables[_table_name(range_)]]
                value_ranges.append({'range': range_, 'values': rows} if rows else {'range': range_})
            return {'valueRanges': value_ranges}
        return _Request(self.stub, 'values.batchGet', _batch_get)

    @staticmethod
    def _trim(row: List[str]) -> List[str]:
        row = list(row)
        while row and row[-1] == '':
            row.pop()
        return row
