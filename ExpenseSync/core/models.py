"""Expense data model and input validation.

The same validation rules are applied by the client before any I/O and by the
server before it touches the database.
"""
import dataclasses
import datetime
import enum
import re
import uuid
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Dict, Optional

from ..status import status

STUDENT_ID_PATTERN = re.compile(r'^\d{7}$')
MIN_PASSWORD_LENGTH = 6

MAX_AMOUNT = Decimal('999999')
CENTS = Decimal('0.01')

DEFAULT_DESCRIPTION = 'No description'
DATE_FORMAT = '%Y-%m-%d'


class Category(enum.StrEnum):
    """The fixed set of expense categories."""
    Tuition = 'Tuition'
    MealPlan = 'Meal Plan'
    Rent = 'Rent'
    Groceries = 'Groceries'
    Transportation = 'Transportation'
    Entertainment = 'Entertainment'
    Other = 'Other'


class SyncState(enum.StrEnum):
    """Where a locally cached row stands relative to the remote store."""
    Synced = 'synced'
    PendingCreate = 'pending_create'
    PendingUpdate = 'pending_update'
    PendingDelete = 'pending_delete'


def new_client_key() -> str:
    """Return a fresh idempotency key for a locally created expense."""
    return uuid.uuid4().hex


def validate_student_id(student_id: Any) -> str:
    """Return the student id if it is exactly seven digits.

    Raises:
        status.ValidationException: If the id is missing or malformed.
    """
    if not isinstance(student_id, str) or not STUDENT_ID_PATTERN.match(student_id):
        raise status.ValidationException('Invalid student ID. Please enter a valid 7-digit student ID.')
    return student_id


def validate_password(password: Any) -> str:
    """Return the password if it is at least six characters long.

    Raises:
        status.ValidationException: If the password is missing or too short.
    """
    if not isinstance(password, str) or len(password) < MIN_PASSWORD_LENGTH:
        raise status.ValidationException(
            f'Password must be at least {MIN_PASSWORD_LENGTH} characters long.'
        )
    return password


def parse_amount(value: Any) -> Decimal:
    """Convert a raw amount to a positive Decimal rounded to cents.

    Raises:
        status.ValidationException: If the amount is missing, not numeric,
            not positive, or larger than MAX_AMOUNT.
    """
    if value is None or value == '' or isinstance(value, bool):
        raise status.ValidationException('Missing required field: amount.')
    try:
        amount = Decimal(str(value).strip())
    except InvalidOperation:
        raise status.ValidationException(f'Invalid amount: "{value}".')
    if not amount.is_finite():
        raise status.ValidationException(f'Invalid amount: "{value}".')

    amount = amount.quantize(CENTS, rounding=ROUND_HALF_UP)
    if amount <= 0:
        raise status.ValidationException('Please enter a valid amount greater than 0.')
    if amount > MAX_AMOUNT:
        raise status.ValidationException('Amount seems too large. Please check your input.')
    return amount


def parse_category(value: Any) -> Category:
    """Convert a raw category name to a Category.

    Raises:
        status.ValidationException: If the category is missing or unknown.
    """
    if not value:
        raise status.ValidationException('Missing required field: category.')
    try:
        return Category(value)
    except ValueError:
        allowed = ', '.join(c.value for c in Category)
        raise status.ValidationException(f'Unknown category "{value}". Must be one of: {allowed}.')


def parse_date(value: Any, today: Optional[datetime.date] = None) -> datetime.date:
    """Convert a raw ISO date to a date that is not in the future.

    Raises:
        status.ValidationException: If the date is missing, malformed or in the future.
    """
    if isinstance(value, datetime.datetime):
        value = value.date()
    if not isinstance(value, datetime.date):
        if not value:
            raise status.ValidationException('Missing required field: date.')
        try:
            value = datetime.datetime.strptime(str(value), DATE_FORMAT).date()
        except ValueError:
            raise status.ValidationException(f'Invalid date "{value}". Expected YYYY-MM-DD.')

    today = today or datetime.date.today()
    if value > today:
        raise status.ValidationException('Expense date cannot be in the future.')
    return value


def parse_description(value: Any) -> str:
    """Return the trimmed description, or the placeholder when blank."""
    text = str(value).strip() if value is not None else ''
    return text or DEFAULT_DESCRIPTION


def validate_expense(data: Dict[str, Any], today: Optional[datetime.date] = None) -> Dict[str, Any]:
    """Validate a raw expense payload.

    Args:
        data: Mapping with `amount`, `category`, `date` and an optional `description`.
        today: Reference date for the not-in-the-future rule. Defaults to today.

    Returns:
        Dict[str, Any]: Normalized `amount` (Decimal), `category` (Category),
        `description` (str) and `date` (datetime.date).

    Raises:
        status.ValidationException: On the first invalid field.
    """
    if not isinstance(data, dict):
        raise status.ValidationException('Expense payload must be an object.')
    return {
        'amount': parse_amount(data.get('amount')),
        'category': parse_category(data.get('category')),
        'description': parse_description(data.get('description')),
        'date': parse_date(data.get('date'), today=today),
    }


@dataclasses.dataclass
class Expense:
    """A single expense as seen by the client.

    `local_id` is the key in the local cache. `remote_id` is assigned by the
    server and is the authoritative identifier once known.
    """
    amount: Decimal
    category: Category
    date: datetime.date
    description: str = DEFAULT_DESCRIPTION
    owner_id: str = ''
    local_id: Optional[int] = None
    remote_id: Optional[int] = None
    client_key: str = dataclasses.field(default_factory=new_client_key)
    sync_state: SyncState = SyncState.PendingCreate

    @property
    def id(self) -> Optional[int]:
        return self.remote_id if self.remote_id is not None else self.local_id

    @property
    def is_synced(self) -> bool:
        return self.sync_state == SyncState.Synced

    @classmethod
    def create(cls, data: Dict[str, Any], owner_id: str = '', today: Optional[datetime.date] = None) -> 'Expense':
        """Validate a raw payload and build a new, not yet pushed expense."""
        return cls(owner_id=owner_id, **validate_expense(data, today=today))

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> 'Expense':
        """Build an expense from a local cache row."""
        return cls(
            amount=Decimal(str(row['amount'])).quantize(CENTS, rounding=ROUND_HALF_UP),
            category=Category(row['category']),
            date=datetime.datetime.strptime(row['date'], DATE_FORMAT).date(),
            description=row['description'],
            owner_id=row['owner_id'],
            local_id=row.get('local_id'),
            remote_id=row.get('remote_id'),
            client_key=row['client_key'],
            sync_state=SyncState(row['sync_state']),
        )

    @classmethod
    def from_payload(cls, payload: Dict[str, Any], owner_id: str) -> 'Expense':
        """Build a synced expense from a server payload.

        Server rows are trusted as-is apart from type conversion; a row dated
        later than the local clock must not be rejected here.
        """
        return cls(
            amount=Decimal(str(payload['amount'])).quantize(CENTS, rounding=ROUND_HALF_UP),
            category=Category(payload['category']),
            date=datetime.datetime.strptime(payload['date'], DATE_FORMAT).date(),
            description=parse_description(payload.get('description')),
            owner_id=owner_id,
            remote_id=int(payload['id']),
            client_key=payload.get('clientKey') or new_client_key(),
            sync_state=SyncState.Synced,
        )

    def to_row(self) -> Dict[str, Any]:
        """Return the local cache representation."""
        row = {
            'owner_id': self.owner_id,
            'remote_id': self.remote_id,
            'client_key': self.client_key,
            'amount': float(self.amount),
            'category': self.category.value,
            'description': self.description,
            'date': self.date.strftime(DATE_FORMAT),
            'sync_state': self.sync_state.value,
        }
        if self.local_id is not None:
            row['local_id'] = self.local_id
        return row

    def to_payload(self) -> Dict[str, Any]:
        """Return the JSON body sent to the remote API."""
        return {
            'amount': float(self.amount),
            'category': self.category.value,
            'description': self.description,
            'date': self.date.strftime(DATE_FORMAT),
            'clientKey': self.client_key,
        }
