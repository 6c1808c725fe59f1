"""Expense endpoints. Every query is scoped to the authenticated user."""
import logging
import uuid

from flask import Blueprint, jsonify, request
from flask_jwt_extended import get_jwt_identity, jwt_required
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from .models import Expense, User, db, utcnow
from ..core import models
from ..status import status

bp = Blueprint('expenses', __name__)

MAX_CLIENT_KEY_LENGTH = 64


def current_user() -> User:
    """Return the user the request's token belongs to.

    Raises:
        status.AuthenticationException: If the user no longer exists.
    """
    user = db.session.get(User, int(get_jwt_identity()))
    if user is None:
        raise status.AuthenticationException('Invalid token.')
    return user


def owned_expense(user: User, expense_id: int) -> Expense:
    """Return one of the user's expenses. Foreign and unknown ids look the same.

    Raises:
        status.NotFoundException: If the user owns no such expense.
    """
    expense = Expense.query.filter_by(id=expense_id, user_id=user.id).first()
    if expense is None:
        raise status.NotFoundException('Expense not found')
    return expense


def user_expenses(user: User):
    return Expense.query.filter_by(user_id=user.id).order_by(Expense.date.desc(), Expense.id.desc()).all()


def user_total(user: User) -> float:
    total = db.session.query(func.coalesce(func.sum(Expense.amount), 0.0)).filter(
        Expense.user_id == user.id
    ).scalar()
    return round(float(total), 2)


def _client_key(data: dict) -> str:
    key = data.get('clientKey')
    if key is None:
        return uuid.uuid4().hex
    if not isinstance(key, str) or not key or len(key) > MAX_CLIENT_KEY_LENGTH:
        raise status.ValidationException(f'clientKey must be a string of 1 to {MAX_CLIENT_KEY_LENGTH} characters.')
    return key


@bp.get('')
@jwt_required()
def list_expenses():
    user = current_user()
    return jsonify({'success': True, 'expenses': [e.to_dict() for e in user_expenses(user)]})


@bp.get('/total')
@jwt_required()
def total():
    return jsonify({'success': True, 'total': user_total(current_user())})


@bp.post('')
@jwt_required()
def create_expense():
    user = current_user()
    data = request.get_json(silent=True) or {}
    fields = models.validate_expense(data)
    client_key = _client_key(data)

    existing = Expense.query.filter_by(user_id=user.id, client_key=client_key).first()
    if existing is not None:
        logging.info(f'Expense with client key {client_key} already exists as {existing.id}.')
        return jsonify({'success': True, 'expense': existing.to_dict()}), 200

    expense = Expense(user_id=user.id, client_key=client_key)
    expense.apply(fields)
    db.session.add(expense)
    try:
        db.session.commit()
    except IntegrityError:
        # Another request with the same key won the insert
        db.session.rollback()
        existing = Expense.query.filter_by(user_id=user.id, client_key=client_key).first()
        if existing is None:
            raise
        return jsonify({'success': True, 'expense': existing.to_dict()}), 200

    logging.info(f'Created expense {expense.id} for student {user.student_id}.')
    return jsonify({'success': True, 'expense': expense.to_dict()}), 201


@bp.put('/<int:expense_id>')
@jwt_required()
def update_expense(expense_id: int):
    user = current_user()
    expense = owned_expense(user, expense_id)
    fields = models.validate_expense(request.get_json(silent=True) or {})

    expense.apply(fields)
    expense.updated_at = utcnow()
    db.session.commit()
    return jsonify({'success': True, 'expense': expense.to_dict()})


@bp.delete('/<int:expense_id>')
@jwt_required()
def delete_expense(expense_id: int):
    user = current_user()
    expense = owned_expense(user, expense_id)
    db.session.delete(expense)
    db.session.commit()
    logging.info(f'Deleted expense {expense_id} for student {user.student_id}.')
    return jsonify({'success': True, 'message': 'Expense deleted successfully'})


@bp.get('/sync')
@jwt_required()
def sync():
    user = current_user()
    user.touch_last_sync()
    db.session.commit()
    return jsonify({
        'success': True,
        'data': {
            'expenses': [e.to_dict() for e in user_expenses(user)],
            'total': user_total(user),
            'lastSync': user.last_sync.isoformat(),
        },
    })
