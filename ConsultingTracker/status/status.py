"""Status definitions and exceptions for ConsultingTracker.

This module provides:
    - Status: enumeration of possible application states
    - STATUS_MESSAGE: user-facing messages for each status
    - get_message: retrieve the message for a status
    - BaseStatusException: base exception carrying a Status
    - Specific exceptions (e.g., ServiceUnavailableException) raised by the sync services
"""
import enum
import logging
from typing import Dict


class Status(enum.StrEnum):
    """Enumeration of application status codes."""
    UnknownStatus = enum.auto()
    Okay = enum.auto()

    # Config status
    ConfigNotFound = enum.auto()
    ConfigInvalid = enum.auto()

    # Authentication status
    ClientSecretNotFound = enum.auto()
    ClientSecretInvalid = enum.auto()
    CredsInvalid = enum.auto()
    NotAuthenticated = enum.auto()
    AuthenticationTimeout = enum.auto()

    # Remote document status
    DocumentNotConfigured = enum.auto()
    DocumentNotFound = enum.auto()

    # Service status
    ServiceUnavailable = enum.auto()

    # Local store status
    StoreInvalid = enum.auto()


STATUS_MESSAGE: Dict[Status, str] = {
    Status.UnknownStatus: 'Unknown status. Please check the settings.',
    Status.Okay: 'Everything is okay.',

    Status.ConfigNotFound: 'Could not find the application config.',
    Status.ConfigInvalid: 'The application config seems to be incomplete, or contains invalid values.',

    Status.ClientSecretNotFound: 'Could not find the google client secret. Have you set up a valid Google client secret?',
    Status.ClientSecretInvalid: 'Could not verify the client secret. Have you set up a valid Google client secret?',
    Status.CredsInvalid: 'Could not verify the credentials. Please connect your Google account again.',
    Status.NotAuthenticated: 'Authentication expired. Reconnect to resume syncing.',
    Status.AuthenticationTimeout: 'Sign-in timed out. Please try connecting again.',

    Status.DocumentNotConfigured: 'No backup spreadsheet is configured. Connect to create or find one.',
    Status.DocumentNotFound: 'Could not find the backup spreadsheet. It may have been deleted or unshared.',

    Status.ServiceUnavailable: 'Google Sheets service is unavailable. Please check your connection.',
    Status.StoreInvalid: 'The local data store could not be opened.',
}


def get_message(status: Status) -> str:
    """
    Get the message for a given status.

    Args:
        status (Status): The status enum.

    Returns:
        str: The message associated with the status.
    """
    return STATUS_MESSAGE.get(status, 'Unknown status')


class BaseStatusException(Exception):
    """Base exception for status-based errors in ConsultingTracker.

    Attributes:
        status (Status): Status code associated with this error.
        status_message (str): User-facing message for the status.
        detail (str): The additional context passed in, if any.

    Args:
        message (str): Optional additional context for the error.
    """
    status = Status.UnknownStatus

    def __init__(self, message: str = None):
        self.status_message = get_message(self.status)
        self.detail = message or ''
        exception_message = f'{self.status_message} {message}' if message else self.status_message
        super().__init__(exception_message)

        logging.error(exception_message)

        from ..ui.actions import signals
        signals.error.emit(message or self.status_message)


class UnknownException(BaseStatusException):
    """Exception for an unknown error during status processing."""
    pass


class ConfigNotFoundException(BaseStatusException):
    """Exception raised when the application configuration file cannot be found."""
    status = Status.ConfigNotFound


class ConfigInvalidException(BaseStatusException):
    """Exception raised when the application configuration is invalid or malformed."""
    status = Status.ConfigInvalid


class ClientSecretNotFoundException(BaseStatusException):
    """Exception raised when the Google OAuth client secret file cannot be found."""
    status = Status.ClientSecretNotFound


class ClientSecretInvalidException(BaseStatusException):
    """Exception raised when the Google OAuth client secret is invalid or malformed."""
    status = Status.ClientSecretInvalid


class CredsInvalidException(BaseStatusException):
    """Exception raised when stored Google credentials are invalid or corrupt."""
    status = Status.CredsInvalid


class NotAuthenticatedException(BaseStatusException):
    """Exception raised when the credential is missing, expired or rejected by Google."""
    status = Status.NotAuthenticated


class AuthenticationTimeoutException(NotAuthenticatedException):
    """Exception raised when the interactive sign-in did not complete in time."""
    status = Status.AuthenticationTimeout


class DocumentNotConfiguredException(BaseStatusException):
    """Exception raised when no remote document reference is stored locally."""
    status = Status.DocumentNotConfigured


class ServiceUnavailableException(BaseStatusException):
    """Exception raised when a remote call fails: network, quota or malformed response."""
    status = Status.ServiceUnavailable


class DocumentNotFoundException(ServiceUnavailableException):
    """Exception raised when the stored remote document cannot be accessed."""
    status = Status.DocumentNotFound


class StoreInvalidException(BaseStatusException):
    """Exception raised when the local entity store is corrupted or cannot be opened."""
    status = Status.StoreInvalid
