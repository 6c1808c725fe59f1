"""SQLAlchemy models of the authoritative store."""
import datetime
import uuid

from flask_sqlalchemy import SQLAlchemy
from werkzeug.security import check_password_hash, generate_password_hash

db = SQLAlchemy()


def utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def _isoformat(value):
    return value.isoformat() if value else None


class User(db.Model):
    __tablename__ = 'users'

    id = db.Column(db.Integer, primary_key=True)
    student_id = db.Column(db.String(7), unique=True, nullable=False, index=True)
    password_hash = db.Column(db.String(255), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    last_sync = db.Column(db.DateTime(timezone=True))

    expenses = db.relationship('Expense', backref='user', lazy=True)

    def set_password(self, password: str) -> None:
        self.password_hash = generate_password_hash(password)

    def check_password(self, password: str) -> bool:
        return check_password_hash(self.password_hash, password)

    def touch_last_sync(self) -> None:
        self.last_sync = utcnow()

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'studentId': self.student_id,
            'createdAt': _isoformat(self.created_at),
            'lastSync': _isoformat(self.last_sync),
        }


class Expense(db.Model):
    """An expense owned by one user.

    `client_key` is the idempotency key sent by the client that created the
    expense. It is unique per user, so a repeated create returns the existing row.
    """
    __tablename__ = 'expenses'
    __table_args__ = (
        db.UniqueConstraint('user_id', 'client_key', name='uq_expenses_user_client_key'),
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    amount = db.Column(db.Float, nullable=False)
    category = db.Column(db.String(50), nullable=False)
    description = db.Column(db.String(255), nullable=False)
    date = db.Column(db.Date, nullable=False)
    client_key = db.Column(db.String(64), nullable=False, default=lambda: uuid.uuid4().hex)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    def apply(self, fields: dict) -> None:
        """Copy validated expense fields onto the row."""
        self.amount = float(fields['amount'])
        self.category = fields['category'].value
        self.description = fields['description']
        self.date = fields['date']

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'userId': self.user_id,
            'amount': round(self.amount, 2),
            'category': self.category,
            'description': self.description,
            'date': self.date.isoformat(),
            'clientKey': self.client_key,
            'createdAt': _isoformat(self.created_at),
            'updatedAt': _isoformat(self.updated_at),
        }
