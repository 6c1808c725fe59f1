"""The seam a presentation layer drives.

:class:`Client` wires the client settings, the stored session, the remote API
client, the local cache and the sync coordinator together, and turns failures
into the notices a user should see.
"""
import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional

from PySide6 import QtCore

from .core import receipt
from .core.auth import AuthManager, is_token_valid
from .core.database import DatabaseAPI
from .core.models import Expense
from .core.service import ApiService
from .core.sync import SyncAPI
from .data import data
from .settings import lib
from .signals import signals
from .status import status

SYNC_FAILED_NOTICE = 'Sync failed, using offline data.'


class Client(QtCore.QObject):
    """Client-side application state.

    Args:
        api: Remote API client. Built from the ``api`` settings section when omitted.
        database: Local cache. Uses the settings path when omitted.
        session_path: Where the session is stored. Uses the settings path when omitted.
        parent: Optional Qt parent.
    """

    def __init__(self, api: Optional[ApiService] = None, database: Optional[DatabaseAPI] = None,
                 session_path: Optional[str] = None, parent: Optional[QtCore.QObject] = None) -> None:
        super().__init__(parent)
        sync_config = lib.settings.get_section('sync')

        self.api = api or ApiService.from_settings()
        self.database = database or DatabaseAPI(parent=self)
        self.auth = AuthManager(self.api, session_path=session_path)
        self.sync = SyncAPI(
            self.database,
            self.api,
            online=sync_config['start_online'],
            threshold=sync_config['threshold'],
            parent=self,
        )
        self._connect_signals()

    def _connect_signals(self) -> None:
        signals.configSectionChanged.connect(self.on_config_section_changed)

    @QtCore.Slot(str)
    def on_config_section_changed(self, section: str) -> None:
        if section == 'sync':
            threshold = lib.settings.get_section('sync')['threshold']
            self.sync.latch.threshold = Decimal(str(threshold))
            logging.debug(f'Spending threshold changed to {threshold}.')

    @property
    def student_id(self) -> Optional[str]:
        return self.sync.owner_id

    @property
    def expenses(self) -> List[Expense]:
        return self.sync.expenses

    @property
    def total(self):
        return self.sync.total

    def _start_session(self, user: Dict[str, Any], reconcile: bool = True) -> List[Expense]:
        self.sync.set_token(self.auth.token)
        return self.sync.initialize(user['studentId'], reconcile=reconcile)

    def login(self, student_id: str, password: str) -> List[Expense]:
        """Log in and load the student's expenses.

        Raises:
            status.ValidationException: If the credentials are malformed.
            status.AuthenticationException: If the credentials are wrong.
            status.ServiceUnavailableException: If the server cannot be reached.
        """
        return self._start_session(self.auth.login(student_id, password))

    def register(self, student_id: str, password: str) -> List[Expense]:
        """Create an account and start with an empty working set.

        Raises:
            status.ValidationException: If the credentials are malformed.
            status.ConflictException: If the student id is already registered.
            status.ServiceUnavailableException: If the server cannot be reached.
        """
        return self._start_session(self.auth.register(student_id, password))

    def restore(self) -> bool:
        """Resume the stored session without contacting the server for credentials.

        An expired session is discarded and `authenticationRequested` is emitted.

        Returns:
            bool: True if a session was resumed.
        """
        session = self.auth.load()
        if not session:
            return False
        if not is_token_valid(session['token']):
            logging.info('Stored session has expired.')
            self.auth.sign_out()
            signals.authenticationRequested.emit()
            return False

        sync_on_startup = lib.settings.get_section('sync')['sync_on_startup']
        self._start_session(session['user'], reconcile=sync_on_startup)
        return True

    def logout(self) -> None:
        """Sign out and forget the working set. The cache stays on disk."""
        self.auth.sign_out()
        self.sync.clear()

    def set_online(self, online: bool) -> None:
        """Set connectivity. Coming back online triggers a sync when logged in."""
        was_online = self.sync.online
        self.sync.set_online(online)
        if online and not was_online and self.student_id:
            self.request_sync()

    def request_sync(self) -> bool:
        """Reconcile at the user's request.

        Returns:
            bool: True on success. On failure a notice is emitted, or
            `authenticationRequested` when the user must log in again.
        """
        try:
            self.sync.reconcile()
        except (status.AuthenticationException, status.NotLoggedInException):
            signals.authenticationRequested.emit()
            return False
        except status.BaseStatusException as ex:
            logging.warning(f'{SYNC_FAILED_NOTICE} {ex}')
            signals.notice.emit(SYNC_FAILED_NOTICE)
            return False
        signals.notice.emit('Sync complete.')
        return True

    def add_expense(self, fields: Dict[str, Any]) -> Expense:
        return self.sync.add(fields)

    def update_expense(self, local_id: int, fields: Dict[str, Any]) -> Expense:
        return self.sync.update(local_id, fields)

    def delete_expense(self, local_id: int) -> None:
        self.sync.delete(local_id)

    def prefill_from_receipt(self, text: str) -> Dict[str, Any]:
        """Return form values extracted from recognized receipt text.

        Only fields found in the text are returned. Amounts are strings so they
        can be placed straight into a form field.
        """
        parsed = receipt.parse_receipt_text(text)
        values = {k: v for k, v in parsed.items() if v is not None}
        if 'amount' in values:
            values['amount'] = f'{values["amount"]:.2f}'
        return values

    def overview(self, date_range: Optional[str] = None, formatted: bool = False) -> Dict[str, Any]:
        """Summarize the working set, optionally formatted for the configured locale."""
        summary = data.overview(data.to_frame(self.sync.expenses), date_range=date_range)
        if formatted:
            return data.format_overview(summary)
        return summary
