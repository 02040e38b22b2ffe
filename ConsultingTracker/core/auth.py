"""
Google OAuth2 authentication and credential management.

Provides the :class:`AuthManager` used by the sync service and the remote gateway: a
non-interactive path that loads and refreshes stored credentials, an interactive path
that runs the installed-app flow on a worker thread, and revocation on disconnect.
"""

import logging
import threading
import time
import urllib.parse
from typing import Any, Optional

import google.auth.exceptions
import google.auth.transport.requests
import google.oauth2.credentials
import google_auth_oauthlib.flow
from PySide6 import QtCore

from ..settings import lib
from ..status import status

SCOPES = [
    'https://www.googleapis.com/auth/spreadsheets',
    'https://www.googleapis.com/auth/drive.file',
]
REVOKE_URL = 'https://oauth2.googleapis.com/revoke'


class AuthExpiredError(Exception):
    """Raised when credentials are missing or expired and require interactive sign-in."""
    pass


def save_creds(creds: google.oauth2.credentials.Credentials, path=None) -> None:
    """
    Save OAuth2 credentials to the configured token file.

    Args:
        creds: Credentials to save.
        path: Optional destination. Defaults to the configured credentials path.
    """
    path = path or lib.settings.creds_path
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, 'w', encoding='utf-8') as token_file:
        token_file.write(creds.to_json())

    logging.debug(f'Credentials saved to {path}.')


class AuthFlowWorker(QtCore.QThread):
    """
    Runs OAuth web flow in a background thread.

    Signals:
        resultReady (object): Emitted with credentials on success.
        errorOccurred (object): Emitted with the exception on failure.
    """
    resultReady = QtCore.Signal(object)
    errorOccurred = QtCore.Signal(object)

    def __init__(self, flow: google_auth_oauthlib.flow.InstalledAppFlow, parent=None):
        super().__init__(parent)
        self.flow = flow

    def run(self):
        logging.debug(f"[Thread-{threading.get_ident()}] AuthFlowWorker.run: flow.run_local_server start at {time.time()}")
        try:
            creds = self.flow.run_local_server(port=0)
            if not creds or not creds.token:
                self.errorOccurred.emit(
                    status.NotAuthenticatedException('Authentication did not complete successfully.')
                )
            else:
                self.resultReady.emit(creds)
        except Exception as ex:
            logging.debug(f"[Thread-{threading.get_ident()}] AuthFlowWorker.run: exception: {ex}")
            self.errorOccurred.emit(ex)


class AuthManager:
    """Manages OAuth2 credentials with thread-safe refresh.

    Args:
        settings: Optional settings instance. Defaults to the module-level settings, resolved
            on every use so a reinitialized settings object is picked up.
    """

    def __init__(self, settings: Optional[lib.SettingsAPI] = None):
        self._lock = threading.Lock()
        self._creds: Optional[google.oauth2.credentials.Credentials] = None
        self._settings = settings

    @property
    def settings(self) -> lib.SettingsAPI:
        return self._settings or lib.settings

    def _load_creds(self) -> google.oauth2.credentials.Credentials:
        creds_path = self.settings.creds_path
        if not creds_path.exists():
            raise AuthExpiredError('No credentials found; interactive authentication required')
        try:
            creds = google.oauth2.credentials.Credentials.from_authorized_user_file(str(creds_path))
        except Exception as ex:
            # Credentials file invalid → remove and require re-authentication
            creds_path.unlink(missing_ok=True)
            raise status.CredsInvalidException('Failed to load credentials') from ex

        granted = getattr(creds, 'scopes', None)
        if granted and not set(SCOPES).issubset(set(granted)):
            logging.debug('Stored credentials have mismatched scopes. Re-authentication required.')
            raise AuthExpiredError('Stored credentials lack the required scopes')
        return creds

    def get_valid_credentials(self) -> google.oauth2.credentials.Credentials:
        """
        Return valid credentials without any UI.

        Raises:
            AuthExpiredError: if no credentials exist or a full interactive flow is required.
            status.NotAuthenticatedException: if an auto-refresh fails.
            status.CredsInvalidException: if stored credentials are corrupt.
        """
        with self._lock:
            if self._creds is None:
                self._creds = self._load_creds()

            # Attempt non-interactive refresh if expired
            if self._creds.expired:
                if self._creds.refresh_token:
                    try:
                        self._creds.refresh(google.auth.transport.requests.Request())
                        save_creds(self._creds, self.settings.creds_path)
                    except Exception as ex:
                        raise status.NotAuthenticatedException('Failed to auto-refresh credentials') from ex
                else:
                    raise AuthExpiredError('Credentials expired; interactive authentication required')

            return self._creds

    def has_valid_token(self) -> bool:
        """Return True when a stored credential is usable without prompting.

        An expired token still counts when it carries a refresh token. Nothing is refreshed
        and no error is reported here.
        """
        with self._lock:
            creds = self._creds
            if creds is None:
                if not self.settings.creds_path.exists():
                    return False
                try:
                    creds = google.oauth2.credentials.Credentials.from_authorized_user_file(
                        str(self.settings.creds_path))
                except (ValueError, OSError) as ex:
                    logging.debug(f'Stored credentials are unreadable: {ex}')
                    return False
        return bool(creds.token or creds.refresh_token) and (not creds.expired or bool(creds.refresh_token))

    def _create_flow(self) -> google_auth_oauthlib.flow.InstalledAppFlow:
        if not self.settings.client_secret_path.exists():
            raise status.ClientSecretNotFoundException
        data = self.settings.load_client_secret()
        self.settings.validate_client_secret(data)
        return google_auth_oauthlib.flow.InstalledAppFlow.from_client_config(data, scopes=SCOPES)

    def acquire_token(self) -> google.oauth2.credentials.Credentials:
        """
        Return valid credentials, running the interactive sign-in when needed.

        A cached valid token is returned immediately. Otherwise the installed-app flow runs
        on a worker thread while a local event loop waits for it.

        Raises:
            status.AuthenticationTimeoutException: If sign-in does not finish within ``auth_timeout``.
            status.NotAuthenticatedException: If the flow fails or is cancelled.
            status.ClientSecretNotFoundException: If the client secret file is missing.
            status.ClientSecretInvalidException: If the client secret is incomplete.
        """
        try:
            return self.get_valid_credentials()
        except (AuthExpiredError, status.NotAuthenticatedException, status.CredsInvalidException) as ex:
            logging.info(f'Interactive sign-in required: {ex}')

        flow = self._create_flow()
        timeout = self.settings['auth_timeout']

        auth_worker = AuthFlowWorker(flow)
        result = {'creds': None, 'error': None}
        loop = QtCore.QEventLoop()

        auth_worker.resultReady.connect(
            lambda c: (result.update({'creds': c}), loop.quit()), QtCore.Qt.QueuedConnection)
        auth_worker.errorOccurred.connect(
            lambda err: (result.update({'error': err}), loop.quit()), QtCore.Qt.QueuedConnection)

        auth_worker.start()

        timer = QtCore.QTimer()
        timer.setSingleShot(True)
        timer.timeout.connect(loop.quit)
        timer.start(timeout * 1000)

        loop.exec()
        timer.stop()

        if result['creds'] is None and result['error'] is None:
            if auth_worker.isRunning():
                auth_worker.terminate()
                auth_worker.wait()
            raise status.AuthenticationTimeoutException(f'No response from the browser after {timeout} seconds.')

        auth_worker.wait()

        if result['error']:
            err = result['error']
            if isinstance(err, status.BaseStatusException):
                raise err
            raise status.NotAuthenticatedException(f'OAuth flow failed: {err}')

        creds = result['creds']
        with self._lock:
            save_creds(creds, self.settings.creds_path)
            self._creds = creds
        logging.info('Signed in to Google.')
        return creds

    def revoke(self) -> None:
        """
        Revoke the stored token at Google and delete the credentials file.

        Revocation is best-effort; local credentials are always removed.
        """
        with self._lock:
            creds: Any = self._creds
            self._creds = None

        if creds is None and self.settings.creds_path.exists():
            try:
                creds = google.oauth2.credentials.Credentials.from_authorized_user_file(
                    str(self.settings.creds_path))
            except (ValueError, OSError) as ex:
                logging.debug(f'Could not read credentials to revoke: {ex}')

        token = (creds.refresh_token or creds.token) if creds else None
        if token:
            try:
                request = google.auth.transport.requests.Request()
                response = request(
                    url=REVOKE_URL,
                    method='POST',
                    body=urllib.parse.urlencode({'token': token}),
                    headers={'content-type': 'application/x-www-form-urlencoded'},
                )
                logging.debug(f'Token revocation responded with HTTP {response.status}.')
            except google.auth.exceptions.TransportError as ex:
                logging.warning(f'Token revocation failed, removing local credentials anyway: {ex}')

        self.sign_out()

    def sign_out(self) -> None:
        """
        Delete stored credentials to sign out the user.
        """
        self._creds = None
        creds_path = self.settings.creds_path
        if creds_path.exists():
            logging.debug(f'Deleting {creds_path}...')
            creds_path.unlink()
            logging.debug('Successfully signed out.')
        else:
            logging.debug('No credentials file found. No action taken.')
