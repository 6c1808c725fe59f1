"""Registration, login and token verification endpoints."""
import logging

from flask import Blueprint, jsonify, request
from flask_jwt_extended import create_access_token, get_jwt, jwt_required

from .models import User, db
from ..core import models
from ..status import status

bp = Blueprint('auth', __name__)


def issue_token(user: User) -> str:
    """Return a signed token for the user, carrying their student id as a claim."""
    return create_access_token(identity=str(user.id), additional_claims={'studentId': user.student_id})


def _credentials():
    data = request.get_json(silent=True) or {}
    student_id = data.get('studentId')
    password = data.get('password')
    models.validate_student_id(student_id)
    models.validate_password(password)
    return student_id, password


@bp.post('/register')
def register():
    student_id, password = _credentials()

    if User.query.filter_by(student_id=student_id).first():
        raise status.ConflictException('Student ID already registered. Please login instead.')

    user = User(student_id=student_id)
    user.set_password(password)
    user.touch_last_sync()
    db.session.add(user)
    db.session.commit()
    logging.info(f'Registered student {student_id}.')

    return jsonify({'success': True, 'user': user.to_dict(), 'token': issue_token(user)}), 201


@bp.post('/login')
def login():
    student_id, password = _credentials()

    user = User.query.filter_by(student_id=student_id).first()
    if user is None or not user.check_password(password):
        raise status.AuthenticationException('Invalid student ID or password.')

    user.touch_last_sync()
    db.session.commit()
    logging.info(f'Student {student_id} logged in.')

    return jsonify({'success': True, 'user': user.to_dict(), 'token': issue_token(user)})


@bp.get('/verify')
@jwt_required()
def verify():
    claims = get_jwt()
    user = User.query.filter_by(student_id=claims.get('studentId')).first()
    if user is None or str(user.id) != claims.get('sub'):
        raise status.AuthenticationException('Invalid token.')
    return jsonify({'success': True, 'user': user.to_dict()})
