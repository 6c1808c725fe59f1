"""Unittest base classes and fakes for a clean, offline test environment."""
import logging
import os
import shutil
import time
import unittest
from contextlib import contextmanager
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, List, Optional
from urllib.parse import urlsplit

import jwt
import requests
from PySide6 import QtCore

from ExpenseSync.core import models
from ExpenseSync.settings import lib
from ExpenseSync.status import status

STUDENT_ID = '1234567'
OTHER_STUDENT_ID = '7654321'
PASSWORD = 'secret1'

TEST_SECRET = 'expensesync-test-secret-that-is-long-enough'
SERVER_CONFIG: Dict[str, Any] = {
    'TESTING': True,
    'SQLALCHEMY_DATABASE_URI': 'sqlite://',
    'JWT_SECRET_KEY': TEST_SECRET,
}
BASE_URL = 'http://expensesync.test'


@contextmanager
def record_signal(signal):
    """Collect the arguments of every emission of `signal` while the block runs."""
    received: List[Any] = []

    def _slot(*args: Any) -> None:
        received.append(args[0] if len(args) == 1 else args)

    signal.connect(_slot)
    try:
        yield received
    finally:
        signal.disconnect(_slot)


def make_token(student_id: str = STUDENT_ID, expires_in: int = 3600) -> str:
    """Return a signed token like the server issues, expiring `expires_in` seconds from now."""
    claims = {'sub': '1', 'studentId': student_id, 'exp': int(time.time()) + expires_in}
    return jwt.encode(claims, TEST_SECRET, algorithm='HS256')


class FakeApi:
    """In-memory stand-in for :class:`ExpenseSync.core.service.ApiService`.

    Behaves like the server for one student: assigns ids, honours client keys
    and raises the same status exceptions. Set `online` to False to simulate a
    network failure and `reject_token` to make token verification fail.
    """

    def __init__(self, student_id: str = STUDENT_ID) -> None:
        self.student_id = student_id
        self.online = True
        self.reject_token = False
        self.rows: Dict[int, Dict[str, Any]] = {}
        self.next_id = 1
        self.calls: List[str] = []

    def _call(self, name: str) -> None:
        self.calls.append(name)
        if not self.online:
            raise status.ServiceUnavailableException(f'{name} failed: server unreachable')

    def add_remote(self, amount: float, category: str = 'Other', date: str = '2024-01-05',
                   description: str = 'Added elsewhere') -> Dict[str, Any]:
        """Store an expense as if another device had created it."""
        row = {
            'id': self.next_id,
            'amount': amount,
            'category': category,
            'description': description,
            'date': date,
            'clientKey': models.new_client_key(),
        }
        self.rows[row['id']] = row
        self.next_id += 1
        return dict(row)

    def verify_token(self, token: str) -> Dict[str, Any]:
        self._call('verify_token')
        if self.reject_token:
            raise status.AuthenticationException('Invalid token')
        return {'id': 1, 'studentId': self.student_id}

    def create_expense(self, token: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        self._call('create_expense')
        models.validate_expense(payload)
        for row in self.rows.values():
            if row['clientKey'] == payload['clientKey']:
                return dict(row)
        row = dict(payload, id=self.next_id)
        self.rows[row['id']] = row
        self.next_id += 1
        return dict(row)

    def update_expense(self, token: str, remote_id: int, payload: Dict[str, Any]) -> Dict[str, Any]:
        self._call('update_expense')
        if remote_id not in self.rows:
            raise status.NotFoundException('Expense not found')
        self.rows[remote_id].update({k: payload[k] for k in ('amount', 'category', 'description', 'date')})
        return dict(self.rows[remote_id])

    def delete_expense(self, token: str, remote_id: int) -> None:
        self._call('delete_expense')
        if self.rows.pop(remote_id, None) is None:
            raise status.NotFoundException('Expense not found')

    def sync(self, token: str) -> Dict[str, Any]:
        self._call('sync')
        expenses = [dict(r) for r in self.rows.values()]
        return {
            'expenses': expenses,
            'total': sum((Decimal(str(r['amount'])) for r in expenses), Decimal('0.00')),
            'lastSync': '2024-01-05T12:00:00+00:00',
        }


class FlaskResponse:
    """The parts of :class:`requests.Response` that ApiService reads."""

    def __init__(self, response) -> None:
        self._response = response
        self.status_code: int = response.status_code
        self.reason: str = response.status
        self.ok: bool = response.status_code < 400

    def json(self) -> Any:
        data = self._response.get_json(silent=True)
        if data is None:
            raise ValueError('Response has no JSON body.')
        return data

    def close(self) -> None:
        self._response.close()


class FlaskSession:
    """Routes ApiService requests into a Flask test client instead of the network.

    Set `online` to False to make every request fail with a connection error.
    """

    def __init__(self, app) -> None:
        self.client = app.test_client()
        self.online = True
        self.calls: List[tuple] = []

    def request(self, method: str, url: str, headers: Optional[Dict[str, str]] = None,
                json: Optional[Dict[str, Any]] = None, timeout: Optional[float] = None) -> FlaskResponse:
        path = urlsplit(url).path
        self.calls.append((method, path))
        if not self.online:
            raise requests.ConnectionError(f'Cannot reach {url}')
        return FlaskResponse(self.client.open(path, method=method, headers=headers, json=json))

    def close(self) -> None:
        pass


class BaseTestCase(unittest.TestCase):
    """Base test case that sets up and tears down a clean config directory."""

    config_paths: lib.ConfigPaths

    def setUp(self) -> None:
        """Set up a clean config directory and reinitialize the settings."""
        # Ensure headless Qt
        if 'QT_QPA_PLATFORM' not in os.environ:
            os.environ['QT_QPA_PLATFORM'] = 'offscreen'
            logging.debug('QT_QPA_PLATFORM set to offscreen for headless testing.')

        # Ensure a Qt application is available for event loops and threads
        if not QtCore.QCoreApplication.instance():
            QtCore.QCoreApplication([])  # type: ignore
            logging.debug('QtCore.QCoreApplication initialized for tests.')

        self.config_paths = lib.ConfigPaths()
        config_dir: Path = self.config_paths.config_dir
        if config_dir.exists():
            shutil.rmtree(config_dir)
            logging.debug(f'Removed test config directory {config_dir}')

        lib.settings = lib.SettingsAPI()
        logging.debug('SettingsAPI reinitialized.')

    def tearDown(self) -> None:
        config_dir: Path = self.config_paths.config_dir
        if config_dir.exists():
            shutil.rmtree(config_dir, ignore_errors=True)


class ServerTestCase(BaseTestCase):
    """Base test case running a fresh server with an in-memory database."""

    def setUp(self) -> None:
        super().setUp()
        from ExpenseSync.server.app import create_app

        self.app = create_app(SERVER_CONFIG)
        self.http = self.app.test_client()

    def tearDown(self) -> None:
        from ExpenseSync.server.models import db

        with self.app.app_context():
            db.session.remove()
            db.drop_all()
        super().tearDown()

    def register(self, student_id: str = STUDENT_ID, password: str = PASSWORD) -> str:
        """Register a student and return the issued token."""
        response = self.http.post('/auth/register', json={'studentId': student_id, 'password': password})
        self.assertEqual(response.status_code, 201, response.get_json())
        return response.get_json()['token']

    @staticmethod
    def bearer(token: str) -> Dict[str, str]:
        return {'Authorization': f'Bearer {token}'}
