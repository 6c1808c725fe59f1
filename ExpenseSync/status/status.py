"""Status definitions and exceptions for ExpenseSync.

This module provides:
    - Status: enumeration of possible application states
    - STATUS_MESSAGE: user-facing messages for each status
    - get_message: retrieve the message for a status
    - BaseStatusException: base exception carrying a Status
    - Specific exceptions used by the client, the sync coordinator and the server
"""
import enum
import logging
from typing import Dict


class Status(enum.StrEnum):
    """Enumeration of application status codes."""
    UnknownStatus = enum.auto()
    Okay = enum.auto()

    # Config status
    ClientConfigNotFound = enum.auto()
    ClientConfigInvalid = enum.auto()

    # Input status
    ValidationFailed = enum.auto()

    # Authentication status
    NotAuthenticated = enum.auto()
    NotLoggedIn = enum.auto()
    StudentIdTaken = enum.auto()

    # Ownership status
    NotFound = enum.auto()

    # Service status
    ServiceUnavailable = enum.auto()

    CacheInvalid = enum.auto()


STATUS_MESSAGE: Dict[Status, str] = {
    Status.UnknownStatus: 'Unknown status. Please check the settings.',
    Status.Okay: 'Everything is okay.',

    Status.ClientConfigNotFound: 'Could not find the client config.',
    Status.ClientConfigInvalid: 'The client config seems to be incomplete, or contains invalid values.',

    Status.ValidationFailed: 'The submitted data is invalid.',

    Status.NotAuthenticated: 'Please log in again.',
    Status.NotLoggedIn: 'No user is logged in. Please log in first.',
    Status.StudentIdTaken: 'Student ID already registered. Please login instead.',

    Status.NotFound: 'Expense not found.',

    Status.ServiceUnavailable: 'The expense service is unavailable. Please check your connection.',
    Status.CacheInvalid: 'The local cache is invalid. Try syncing with the server again.',
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
    """Base exception for status-based errors in ExpenseSync.

    Attributes:
        status (Status): Status code associated with this error.
        status_message (str): User-facing message for the status.
        detail (str): The additional context passed in, if any.
        log_level (int): Level the error is logged at when raised.
        broadcast (bool): Whether the error is emitted through `signals.error`.

    Args:
        message (str): Optional additional context for the error.
    """
    status = Status.UnknownStatus
    log_level = logging.ERROR
    broadcast = True

    def __init__(self, message: str = None):
        self.status_message = get_message(self.status)
        self.detail = message or ''
        exception_message = f'{self.status_message} {message}' if message else self.status_message
        super().__init__(exception_message)

        logging.log(self.log_level, exception_message)

        if self.broadcast:
            from ..signals import signals
            signals.error.emit(message or self.status_message)


class UnknownException(BaseStatusException):
    """Exception for an unknown error during status processing."""
    pass


class ClientConfigNotFoundException(BaseStatusException):
    """Exception raised when the client configuration file cannot be found."""
    status = Status.ClientConfigNotFound


class ClientConfigInvalidException(BaseStatusException):
    """Exception raised when the client configuration is invalid or malformed."""
    status = Status.ClientConfigInvalid


class ValidationException(BaseStatusException):
    """Exception raised when user input fails validation. Raised before any I/O."""
    status = Status.ValidationFailed
    log_level = logging.WARNING


class AuthenticationException(BaseStatusException):
    """Exception raised on bad credentials or a missing, invalid or expired token."""
    status = Status.NotAuthenticated
    log_level = logging.WARNING


class NotLoggedInException(BaseStatusException):
    """Exception raised when an operation needs an owner but nobody is logged in."""
    status = Status.NotLoggedIn
    log_level = logging.WARNING


class ConflictException(BaseStatusException):
    """Exception raised when registering a student id that already exists."""
    status = Status.StudentIdTaken
    log_level = logging.WARNING


class NotFoundException(BaseStatusException):
    """Exception raised when an expense does not exist or is not owned by the caller."""
    status = Status.NotFound
    log_level = logging.WARNING


class ServiceUnavailableException(BaseStatusException):
    """Exception raised when the remote expense service cannot be reached."""
    status = Status.ServiceUnavailable
    log_level = logging.WARNING
    broadcast = False


class CacheInvalidException(BaseStatusException):
    """Exception raised when the local data cache is invalid or corrupted."""
    status = Status.CacheInvalid
