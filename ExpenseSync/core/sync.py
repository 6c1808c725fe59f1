"""Sync coordinator for local-first expense edits.

Every mutation is written to the local cache first, so the working set updates
without waiting on the network. When the coordinator is online and holds a
valid token it then pushes the change to the server; a failed push leaves the
row pending and changes nothing for the caller.

:meth:`SyncAPI.reconcile` pushes every pending row in key order and then
replaces the owner's cached rows with the server's full set. Rows are matched
to remote rows by remote id or idempotency key, so their local keys survive
repeated reconciles.

Connectivity and the access token are explicit coordinator state, changed
through :meth:`SyncAPI.set_online` and :meth:`SyncAPI.set_token`.
"""
import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional, Union

from PySide6 import QtCore

from . import models
from .auth import is_token_valid
from .database import DatabaseAPI
from .models import Expense, SyncState
from .service import ApiService, start_asynchronous, TOTAL_TIMEOUT
from ..status import status

DEFAULT_THRESHOLD = Decimal('500')
ZERO = Decimal('0.00')


class ThresholdLatch:
    """One-shot warning that re-arms once the total drops back.

    The warning fires the first time the total goes above the threshold. It
    cannot fire again until the total is at or below the threshold.

    Args:
        threshold: The boundary, compared with a strict greater-than.
    """

    def __init__(self, threshold: Union[Decimal, int, float, str] = DEFAULT_THRESHOLD) -> None:
        self.threshold = Decimal(str(threshold))
        self.fired = False

    def update(self, total: Decimal) -> bool:
        """Feed a new total.

        Returns:
            bool: True if this total fired the warning.
        """
        from ..signals import signals

        if total > self.threshold:
            if self.fired:
                return False
            self.fired = True
            logging.warning(f'Total spending {total} is above {self.threshold}.')
            signals.thresholdExceeded.emit(total)
            return True

        if self.fired:
            self.fired = False
            logging.info(f'Total spending {total} is back at or below {self.threshold}.')
            signals.thresholdCleared.emit(total)
        return False

    def reset(self) -> None:
        self.fired = False


def _fields_to_row(fields: Dict[str, Any]) -> Dict[str, Any]:
    """Convert validated expense fields to cache columns."""
    return {
        'amount': float(fields['amount']),
        'category': fields['category'].value,
        'description': fields['description'],
        'date': fields['date'].strftime(models.DATE_FORMAT),
    }


class SyncAPI(QtCore.QObject):
    """Keep the owner's local cache usable offline and converge it with the server.

    Args:
        database: The local cache.
        api: The remote API client.
        online: Whether remote calls should be attempted.
        token: The access token to send with remote calls.
        threshold: Total above which the spending warning fires.
        parent: Optional Qt parent.
    """

    def __init__(self, database: DatabaseAPI, api: ApiService, online: bool = False,
                 token: Optional[str] = None, threshold: Union[Decimal, int, float] = DEFAULT_THRESHOLD,
                 parent: Optional[QtCore.QObject] = None) -> None:
        super().__init__(parent)
        self.db = database
        self.api = api
        self.latch = ThresholdLatch(threshold)

        self._online = bool(online)
        self._token = token
        self._owner_id: Optional[str] = None
        self._expenses: List[Expense] = []
        self._total: Decimal = ZERO

    @property
    def online(self) -> bool:
        return self._online

    @property
    def owner_id(self) -> Optional[str]:
        return self._owner_id

    @property
    def expenses(self) -> List[Expense]:
        """The owner's working set, pending deletes excluded."""
        return list(self._expenses)

    @property
    def total(self) -> Decimal:
        return self._total

    @property
    def last_sync(self):
        """Time of the owner's last successful reconcile, or None."""
        if not self._owner_id:
            return None
        return self.db.get_stamp(self._owner_id)

    @property
    def has_valid_token(self) -> bool:
        return is_token_valid(self._token)

    def set_online(self, online: bool) -> None:
        online = bool(online)
        if online == self._online:
            return
        self._online = online
        logging.info(f'Sync coordinator is now {"online" if online else "offline"}.')

        from ..signals import signals
        signals.onlineChanged.emit(online)

    def set_token(self, token: Optional[str]) -> None:
        self._token = token

    def _require_owner(self) -> str:
        if not self._owner_id:
            raise status.NotLoggedInException
        return self._owner_id

    def _refresh(self) -> None:
        """Reload the working set from the cache, recompute the total and feed the latch."""
        from ..signals import signals

        if self._owner_id:
            self._expenses = [Expense.from_row(r) for r in self.db.query(self._owner_id)]
        else:
            self._expenses = []
        self._total = sum((e.amount for e in self._expenses), ZERO)

        signals.expensesChanged.emit(self.expenses)
        signals.totalChanged.emit(self._total)
        self.latch.update(self._total)

    def _get_live_row(self, owner_id: str, local_id: int) -> Dict[str, Any]:
        row = self.db.get_row(owner_id, local_id)
        if row is None or row['sync_state'] == SyncState.PendingDelete:
            raise status.NotFoundException(f'No expense with id {local_id}.')
        return row

    def _push_row(self, token: str, row: Dict[str, Any]) -> None:
        """Send one pending row to the server and record the outcome in the cache.

        Raises:
            status.BaseStatusException: Whatever the remote call raised. The row is left as it was.
        """
        expense = Expense.from_row(row)
        owner_id = expense.owner_id

        if expense.sync_state == SyncState.PendingCreate:
            remote = self.api.create_expense(token, expense.to_payload())
            target = self.db.find_by_client_key(owner_id, remote.get('clientKey') or expense.client_key)
            if target is None:
                logging.warning(f'Local row for client key {expense.client_key} vanished during push.')
                return
            local = Expense.from_row(target)
            stored = Expense.from_payload(remote, owner_id)
            # A repeated client key returns the row as first created, which may predate local edits
            stale = (
                (stored.amount, stored.category, stored.date, stored.description) !=
                (local.amount, local.category, local.date, local.description)
            )
            self.db.update_fields(owner_id, target['local_id'], {
                'remote_id': stored.remote_id,
                'sync_state': (SyncState.PendingUpdate if stale else SyncState.Synced).value,
            })
            logging.debug(f'Created remote expense {stored.remote_id} for local row {target["local_id"]}.')
            if stale:
                self.api.update_expense(token, stored.remote_id, local.to_payload())
                self.db.update_fields(owner_id, target['local_id'], {'sync_state': SyncState.Synced.value})
                logging.debug(f'Brought remote expense {stored.remote_id} up to date with local edits.')

        elif expense.sync_state == SyncState.PendingUpdate:
            self.api.update_expense(token, expense.remote_id, expense.to_payload())
            self.db.update_fields(owner_id, expense.local_id, {'sync_state': SyncState.Synced.value})
            logging.debug(f'Updated remote expense {expense.remote_id}.')

        elif expense.sync_state == SyncState.PendingDelete:
            self.api.delete_expense(token, expense.remote_id)
            self.db.remove(owner_id, expense.local_id)
            logging.debug(f'Deleted remote expense {expense.remote_id}.')

    def _try_push(self, owner_id: str, local_id: int) -> bool:
        """Push one row if online. Remote failures are logged and leave the row pending.

        Returns:
            bool: True if the server confirmed the change.
        """
        if not self._online or not self.has_valid_token:
            logging.debug(f'Offline, local row {local_id} stays pending.')
            return False
        row = self.db.get_row(owner_id, local_id)
        if row is None or row['sync_state'] == SyncState.Synced:
            return False
        try:
            self._push_row(self._token, row)
        except status.AuthenticationException:
            from ..signals import signals
            signals.authenticationRequested.emit()
            return False
        except status.BaseStatusException as ex:
            logging.info(f'Push of local row {local_id} failed, working offline: {ex}')
            return False
        return True

    def _push_pending(self, owner_id: str, token: str) -> None:
        """Push every pending row in key order.

        Rows the server rejects as invalid or unknown are dropped from the cache.
        Authentication and connectivity errors stop the push and propagate.
        """
        for row in self.db.query(owner_id, include_deleted=True):
            if row['sync_state'] == SyncState.Synced:
                continue
            try:
                self._push_row(token, row)
            except status.NotFoundException:
                logging.warning(f'Remote expense {row["remote_id"]} no longer exists, dropping local row.')
                self.db.remove(owner_id, row['local_id'])
            except status.ValidationException:
                logging.warning(f'Server rejected local row {row["local_id"]}, dropping it.')
                self.db.remove(owner_id, row['local_id'])

    def _merge_remote(self, owner_id: str, remote_expenses: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """Build the owner's new cache rows from the server set.

        Remote rows reuse the local key of the cached row they match. Rows still
        pending locally are kept and win over their remote counterpart.
        """
        existing = self.db.query(owner_id, include_deleted=True)
        pending = [r for r in existing if r['sync_state'] != SyncState.Synced]
        pending_remote_ids = {r['remote_id'] for r in pending if r['remote_id'] is not None}
        pending_local_ids = {r['local_id'] for r in pending}

        by_remote_id = {r['remote_id']: r['local_id'] for r in existing if r['remote_id'] is not None}
        by_client_key = {r['client_key']: r['local_id'] for r in existing}

        rows = list(pending)
        for payload in remote_expenses:
            expense = Expense.from_payload(payload, owner_id)
            if expense.remote_id in pending_remote_ids:
                continue
            local_id = by_remote_id.get(expense.remote_id) or by_client_key.get(expense.client_key)
            if local_id in pending_local_ids:
                continue
            expense.local_id = local_id
            rows.append(expense.to_row())
        return rows

    def initialize(self, owner_id: str, reconcile: bool = True) -> List[Expense]:
        """Load the owner's cached rows and try to reconcile.

        Reconcile is attempted only when `reconcile` is set and the coordinator
        is online with a valid token. If it fails the cached rows stand as the
        working set.

        Returns:
            List[Expense]: The working set.
        """
        self._owner_id = owner_id
        self._refresh()
        logging.info(f'Loaded {len(self._expenses)} cached expenses for {owner_id}, total {self._total}.')

        if reconcile and self._online and self.has_valid_token:
            try:
                self.reconcile(owner_id)
            except status.BaseStatusException as ex:
                logging.info(f'Reconcile on start-up failed, using cached data: {ex}')
        return self.expenses

    def reconcile(self, owner_id: Optional[str] = None) -> List[Expense]:
        """Push pending rows, then replace the owner's cache with the server's set.

        The token is verified first. If verification fails nothing is pushed and
        the cache is untouched.

        Returns:
            List[Expense]: The new working set.

        Raises:
            status.NotLoggedInException: If no owner is known.
            status.AuthenticationException: If the token is missing, expired or rejected.
            status.ServiceUnavailableException: If the server cannot be reached.
        """
        from ..signals import signals

        owner_id = owner_id or self._require_owner()
        if not self.has_valid_token:
            raise status.AuthenticationException('Access token is missing or expired.')

        signals.syncStarted.emit()
        try:
            token = self._token
            user = self.api.verify_token(token)
            if user.get('studentId') != owner_id:
                raise status.AuthenticationException(f'Token does not belong to {owner_id}.')

            self._push_pending(owner_id, token)

            data = self.api.sync(token)
            rows = self._merge_remote(owner_id, data['expenses'])
            self.db.bulk_replace(owner_id, rows)
            self.db.stamp(owner_id)
        except status.BaseStatusException as ex:
            signals.syncFinished.emit(False, str(ex))
            raise

        self._owner_id = owner_id
        self._refresh()
        logging.info(
            f'Reconciled {len(self._expenses)} expenses for {owner_id} '
            f'(server total {data["total"]}, server time {data["lastSync"]}).'
        )
        signals.syncFinished.emit(True, '')
        return self.expenses

    @QtCore.Slot()
    def reconcile_async(self) -> bool:
        """Run reconcile on a worker thread and wait for it without blocking the event loop.

        Returns:
            bool: True if the reconcile succeeded. Failures are reported through `syncFinished`.
        """
        logging.debug('Starting asynchronous reconcile')
        try:
            start_asynchronous(self.reconcile, self._require_owner(), total_timeout=TOTAL_TIMEOUT)
        except status.BaseStatusException as ex:
            logging.info(f'Asynchronous reconcile failed: {ex}')
            return False
        return True

    def add(self, data: Dict[str, Any]) -> Expense:
        """Validate and store a new expense, then try to create it remotely.

        Raises:
            status.NotLoggedInException: If no owner is known.
            status.ValidationException: If the expense is invalid. Nothing is written.
        """
        owner_id = self._require_owner()
        expense = Expense.create(data, owner_id=owner_id)
        local_id = self.db.insert(expense.to_row())
        logging.info(f'Added local expense {local_id}: {expense.amount} {expense.category}.')

        self._try_push(owner_id, local_id)
        self._refresh()
        return Expense.from_row(self.db.get_row(owner_id, local_id))

    def update(self, local_id: int, data: Dict[str, Any]) -> Expense:
        """Validate and store changes to an expense, then try to update it remotely.

        Raises:
            status.NotLoggedInException: If no owner is known.
            status.NotFoundException: If the owner has no such expense.
            status.ValidationException: If the changes are invalid. Nothing is written.
        """
        owner_id = self._require_owner()
        row = self._get_live_row(owner_id, local_id)
        partial = _fields_to_row(models.validate_expense(data))
        # A row the server has never seen stays a create
        partial['sync_state'] = (
            SyncState.PendingCreate.value if row['remote_id'] is None else SyncState.PendingUpdate.value
        )
        self.db.update_fields(owner_id, local_id, partial)
        logging.info(f'Updated local expense {local_id}.')

        self._try_push(owner_id, local_id)
        self._refresh()
        return Expense.from_row(self.db.get_row(owner_id, local_id))

    def delete(self, local_id: int) -> None:
        """Delete an expense locally, then try to delete it remotely.

        A row the server has never seen is removed at once. Other rows stay as a
        hidden tombstone until the remote delete is confirmed.

        Raises:
            status.NotLoggedInException: If no owner is known.
            status.NotFoundException: If the owner has no such expense.
        """
        owner_id = self._require_owner()
        row = self._get_live_row(owner_id, local_id)
        if row['remote_id'] is None:
            self.db.remove(owner_id, local_id)
        else:
            self.db.update_fields(owner_id, local_id, {'sync_state': SyncState.PendingDelete.value})
            self._try_push(owner_id, local_id)
        logging.info(f'Deleted local expense {local_id}.')
        self._refresh()

    def get(self, local_id: int) -> Expense:
        """Return one expense of the working set.

        Raises:
            status.NotFoundException: If the owner has no such expense.
        """
        return Expense.from_row(self._get_live_row(self._require_owner(), local_id))

    def clear(self) -> None:
        """Forget the owner, the token and the working set."""
        self._owner_id = None
        self._token = None
        self.latch.reset()
        self._refresh()
