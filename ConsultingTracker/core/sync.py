"""Sync service keeping the local entity store backed up to a remote spreadsheet.

The local store is authoritative. Local writes re-arm a debounce timer; when it fires,
the current local state is pushed. Before writing, the push asks the conflict detector
whether another device pushed since this device last synced. If one did, the remote
snapshot is merged with the local one (last write wins per record), written back to the
store, and the merged result is pushed.

Only one operation runs at a time. A push trigger that arrives while a push, pull or
connect is in flight is dropped: the in-flight push reads the store when it starts, and a
later edit re-arms the timer. A pull requested during a push is deferred and runs once
the push ends.

A disconnect may run while a push, pull or connect waits on the remote. Work that was in
flight then finishes without touching the sync state or status the disconnect reset.

Remote calls go through an injectable runner. The default runs them on a worker thread
under a local event loop (see :func:`service.start_asynchronous`), which is where timers,
signals and re-entrant calls get serviced.
"""
import dataclasses
import enum
import logging
from typing import Any, Callable, Optional

from PySide6 import QtCore

from . import conflict
from . import merge
from . import models
from . import service
from ..settings import lib
from ..status import status


class SyncState(enum.StrEnum):
    """Enum for the states of the sync service."""
    Idle = 'idle'
    Pushing = 'pushing'
    Pulling = 'pulling'
    Conflict = 'conflict'
    Error = 'error'


class Operation(enum.StrEnum):
    """Enum for the operations guarded by the single-flight flag."""
    Push = 'push'
    Pull = 'pull'
    Connect = 'connect'


@dataclasses.dataclass(frozen=True)
class SyncStatus:
    """Immutable status value handed to observers."""
    state: SyncState = SyncState.Idle
    is_connected: bool = False
    last_push_at: Optional[str] = None
    last_error: Optional[str] = None


AUTH_ERROR_MESSAGE: str = status.get_message(status.Status.NotAuthenticated)


class SyncAPI(QtCore.QObject):
    """Orchestrates pushes, pulls and the connect/disconnect lifecycle for one device.

    Args:
        store: The entity store (``DatabaseAPI``).
        gateway: The remote gateway (``SheetsGateway``).
        auth: The credential manager (``AuthManager``).
        runner: Callable running a remote call, ``runner(func, *args)``. Defaults to
            :func:`service.start_asynchronous`.
        debounce_seconds: Delay between the last local change and the push. Defaults to
            the ``debounce_seconds`` setting.
        document_title: Title used to find or create the remote document. Defaults to the
            ``document_title`` setting.
        parent: Optional Qt parent.

    Signals:
        statusChanged (SyncStatus): Emitted on every status change.
        documentChanged (str): Emitted when a new remote document id is stored.
    """
    statusChanged = QtCore.Signal(object)
    documentChanged = QtCore.Signal(str)

    def __init__(
            self,
            store: Any,
            gateway: Any,
            auth: Any,
            runner: Optional[Callable[..., Any]] = None,
            debounce_seconds: Optional[float] = None,
            document_title: Optional[str] = None,
            parent: Optional[QtCore.QObject] = None
    ) -> None:
        super().__init__(parent)
        self.store = store
        self.gateway = gateway
        self.auth = auth

        self._runner = runner or service.start_asynchronous
        self._debounce_seconds = debounce_seconds
        self._document_title = document_title

        self._busy: Optional[Operation] = None
        self._pull_pending: bool = False
        self._alive: bool = True
        # Bumped by disconnect_remote so in-flight work can tell it was detached
        self._epoch: int = 0

        self._timer = QtCore.QTimer(self)
        self._timer.setSingleShot(True)

        self._status = SyncStatus(
            is_connected=bool(self.store.get_document_id() and self.auth.has_valid_token())
        )

        self._connect_signals()

    def _connect_signals(self) -> None:
        self._timer.timeout.connect(self.push)
        self.store.dataChanged.connect(self.notify_local_change)

    @property
    def debounce_seconds(self) -> float:
        if self._debounce_seconds is not None:
            return self._debounce_seconds
        return float(lib.settings['debounce_seconds'])

    @property
    def document_title(self) -> str:
        return self._document_title or lib.settings['document_title']

    @property
    def status(self) -> SyncStatus:
        return self._status

    @property
    def is_busy(self) -> bool:
        return self._busy is not None

    @property
    def is_push_scheduled(self) -> bool:
        return self._timer.isActive()

    @property
    def document_url(self) -> Optional[str]:
        """Browser URL of the remote document, or None when not connected to one."""
        document_id = self.store.get_document_id()
        return self.gateway.get_document_url(document_id) if document_id else None

    def _set_status(self, **changes: Any) -> None:
        if not self._alive:
            return
        self._status = dataclasses.replace(self._status, **changes)
        logging.debug(f'Sync status: {self._status}')
        self.statusChanged.emit(self._status)

    def _fail(self, ex: BaseException, keep_message: bool = False) -> None:
        """Move to the error state with a readable message."""
        if isinstance(ex, status.NotAuthenticatedException):
            message = str(ex) if keep_message else AUTH_ERROR_MESSAGE
            self._set_status(state=SyncState.Error, is_connected=False, last_error=message)
            return
        self._set_status(state=SyncState.Error, last_error=str(ex) or type(ex).__name__)

    def _call(self, func: Callable[..., Any], *args: Any) -> Any:
        return self._runner(func, *args)

    def _detached(self, epoch: int, operation: Operation) -> bool:
        """Return True when a disconnect ran while ``operation`` was waiting on the remote."""
        if self._epoch == epoch:
            return False
        logging.info(f'Disconnected during {operation.value}; result discarded.')
        return True

    @QtCore.Slot(str)
    def notify_local_change(self, collection: str = '') -> None:
        """Re-arm the debounce timer after a local write.

        Does nothing until a remote document has been configured.
        """
        if not self._alive:
            return
        if not self.store.get_document_id():
            logging.debug('Local change ignored: no remote document configured.')
            return
        logging.debug(f'Local change in "{collection}"; push scheduled in {self.debounce_seconds}s.')
        self._timer.start(int(self.debounce_seconds * 1000))

    @QtCore.Slot()
    def push(self, immediate: bool = False) -> bool:
        """Push the current local state to the remote document.

        Never prompts for sign-in: without a usable token the push is skipped.

        Args:
            immediate: Cancel a pending debounced push and push now.

        Returns:
            bool: True when the remote document was written.
        """
        if immediate:
            self._timer.stop()
        if not self._alive:
            return False
        if self._busy:
            logging.debug(f'Push dropped: {self._busy.value} already in flight.')
            return False

        document_id = self.store.get_document_id()
        if not document_id:
            logging.debug('Push skipped: no remote document configured.')
            return False
        if not self.auth.has_valid_token():
            logging.info('Push skipped: no valid token. Reconnect to resume syncing.')
            return False

        self._busy = Operation.Push
        try:
            return self._push(document_id)
        finally:
            self._busy = None
            self._run_pending_pull()

    def _push(self, document_id: str) -> bool:
        epoch = self._epoch
        try:
            local = self.store.snapshot()
            if local.is_empty():
                logging.warning('Local store is empty; refusing to overwrite the remote backup.')
                self._set_status(state=SyncState.Idle)
                return False

            self._set_status(state=SyncState.Pushing, last_error=None)
            last_sync = self.store.get_last_sync()
            result = self._call(conflict.check_for_conflict, self.gateway, document_id, last_sync)
            if self._detached(epoch, Operation.Push):
                return False

            if result.has_conflict:
                self._set_status(state=SyncState.Conflict)
                local = merge.merge(local, result.remote_snapshot)
                self.store.replace_all(local)

            stamp = models.now_str()
            self._call(self.gateway.push_snapshot, document_id, local, stamp)
            if self._detached(epoch, Operation.Push):
                return False
            self.store.set_last_sync(stamp)
        except status.BaseStatusException as ex:
            if not self._detached(epoch, Operation.Push):
                self._fail(ex)
            return False
        except Exception as ex:
            logging.error(f'Unexpected error during push: {ex}', exc_info=True)
            if not self._detached(epoch, Operation.Push):
                self._fail(ex)
            return False

        self._set_status(state=SyncState.Idle, is_connected=True, last_push_at=stamp, last_error=None)
        return True

    def _run_pending_pull(self) -> None:
        if self._pull_pending and self._alive:
            self._pull_pending = False
            logging.debug('Running the pull deferred during push.')
            self.pull()

    @QtCore.Slot()
    def pull(self) -> bool:
        """Replace the local store with the remote document's contents.

        User-initiated: may run the interactive sign-in when no usable token is stored.

        Returns:
            bool: True when the local store was replaced.
        """
        if not self._alive:
            return False
        if self._busy == Operation.Push:
            logging.debug('Pull deferred until the push in flight finishes.')
            self._pull_pending = True
            return False
        if self._busy:
            logging.debug(f'Pull dropped: {self._busy.value} already in flight.')
            return False

        document_id = self.store.get_document_id()
        if not document_id:
            self._fail(status.DocumentNotConfiguredException())
            return False

        self._busy = Operation.Pull
        epoch = self._epoch
        try:
            self._set_status(state=SyncState.Pulling, last_error=None)
            self.auth.acquire_token()
            if self._detached(epoch, Operation.Pull):
                return False
            return self._pull(document_id)
        except status.BaseStatusException as ex:
            if not self._detached(epoch, Operation.Pull):
                self._fail(ex, keep_message=True)
            return False
        except Exception as ex:
            logging.error(f'Unexpected error during pull: {ex}', exc_info=True)
            if not self._detached(epoch, Operation.Pull):
                self._fail(ex)
            return False
        finally:
            self._busy = None

    def _pull(self, document_id: str) -> bool:
        epoch = self._epoch
        self._set_status(state=SyncState.Pulling, last_error=None)
        snapshot, last_modified = self._call(self.gateway.pull_snapshot, document_id)
        if self._detached(epoch, Operation.Pull):
            return False
        self.store.replace_all(snapshot)
        if last_modified:
            self.store.set_last_sync(last_modified)
        else:
            logging.info('Remote document has no lastModified marker; last sync time left unchanged.')
        self._set_status(state=SyncState.Idle, is_connected=True, last_error=None)
        return True

    @QtCore.Slot()
    def connect_remote(self) -> bool:
        """Sign in and attach this device to the remote document.

        The token is acquired before any other remote work. Without a stored document, an
        existing one is searched for by title and a new one created only when none exists.
        A fresh device with an empty store pulls from a found document; otherwise the local
        state is pushed.

        Returns:
            bool: True when the device ended up connected without error.
        """
        if not self._alive:
            return False
        if self._busy:
            logging.debug(f'Connect dropped: {self._busy.value} already in flight.')
            return False

        self._busy = Operation.Connect
        epoch = self._epoch
        try:
            self.auth.acquire_token()

            stored_id = self.store.get_document_id()
            if stored_id:
                document_id = self._call(self.gateway.ensure_document_exists, stored_id, self.document_title)
                found = document_id == stored_id
            else:
                document_id = self._call(self.gateway.find_document, self.document_title)
                found = document_id is not None
                if not found:
                    document_id = self._call(self.gateway.create_document, self.document_title)
            if self._detached(epoch, Operation.Connect):
                return False

            if document_id != stored_id:
                self.store.set_document_id(document_id)
                if self._alive:
                    self.documentChanged.emit(document_id)
            self._set_status(is_connected=True)

            if found and self.store.is_empty():
                logging.info('Empty local store on connect; pulling the existing remote document.')
                self._pull(document_id)
            else:
                self._push(document_id)
            return self._epoch == epoch and self._status.state != SyncState.Error
        except status.BaseStatusException as ex:
            if not self._detached(epoch, Operation.Connect):
                self._fail(ex, keep_message=True)
            return False
        except Exception as ex:
            logging.error(f'Unexpected error during connect: {ex}', exc_info=True)
            if not self._detached(epoch, Operation.Connect):
                self._fail(ex)
            return False
        finally:
            self._busy = None

    @QtCore.Slot()
    def disconnect_remote(self) -> None:
        """Detach from the remote document and sign out.

        The remote document is left untouched.
        """
        self._timer.stop()
        self._pull_pending = False
        self._epoch += 1

        try:
            self._call(self.auth.revoke)
        except status.BaseStatusException as ex:
            logging.warning(f'Could not revoke the credential: {ex}')

        self.gateway.clear_service()
        self.store.clear_sync_state()
        self._set_status(state=SyncState.Idle, is_connected=False, last_push_at=None, last_error=None)
        logging.info('Disconnected from the remote document.')

    def shutdown(self) -> None:
        """Stop reacting to changes and suppress status updates from in-flight work."""
        self._alive = False
        self._timer.stop()
        self._pull_pending = False
        try:
            self.store.dataChanged.disconnect(self.notify_local_change)
        except (RuntimeError, TypeError) as ex:
            logging.debug(f'Store signal already disconnected: {ex}')
