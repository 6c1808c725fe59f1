"""
Tests for ExpenseSync.core.service: the remote API client talking to a real
server app through its test client, and the asynchronous helpers.
"""
import unittest
from decimal import Decimal
from unittest import mock

from ExpenseSync.core import service
from ExpenseSync.core.auth import AuthExpiredError
from ExpenseSync.settings import lib
from ExpenseSync.status import status
from tests.base import (
    BASE_URL,
    BaseTestCase,
    FlaskSession,
    OTHER_STUDENT_ID,
    PASSWORD,
    STUDENT_ID,
    ServerTestCase,
)


def expense(**overrides):
    data = {'amount': 45.0, 'category': 'Groceries', 'description': 'Weekly shop', 'date': '2024-01-05'}
    data.update(overrides)
    return data


class ApiServiceTests(ServerTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.session = FlaskSession(self.app)
        self.api = service.ApiService(BASE_URL + '/', session=self.session)

    def login(self, student_id=STUDENT_ID):
        return self.api.register(student_id, PASSWORD)['token']

    def test_register_and_login(self):
        registered = self.api.register(STUDENT_ID, PASSWORD)
        self.assertEqual(registered['user']['studentId'], STUDENT_ID)

        logged_in = self.api.login(STUDENT_ID, PASSWORD)
        self.assertTrue(logged_in['token'])
        self.assertEqual(self.api.verify_token(logged_in['token'])['studentId'], STUDENT_ID)

    def test_base_url_trailing_slash_is_dropped(self):
        self.api.health()
        self.assertEqual(self.session.calls[-1], ('GET', '/health'))

    def test_status_codes_map_to_exceptions(self):
        token = self.login()
        with self.assertRaises(status.ConflictException):
            self.api.register(STUDENT_ID, PASSWORD)
        with self.assertRaises(status.AuthenticationException):
            self.api.login(STUDENT_ID, 'wrong-password')
        with self.assertRaises(status.AuthenticationException):
            self.api.verify_token('not-a-token')
        with self.assertRaises(status.ValidationException):
            self.api.create_expense(token, expense(amount=0))
        with self.assertRaises(status.NotFoundException):
            self.api.delete_expense(token, 404)

    def test_server_error_message_is_kept(self):
        self.login()
        with self.assertRaises(status.AuthenticationException) as cm:
            self.api.login(STUDENT_ID, 'wrong-password')
        self.assertEqual(cm.exception.detail, 'Invalid student ID or password.')

    def test_expense_round_trip(self):
        token = self.login()
        created = self.api.create_expense(token, expense(clientKey='k1'))
        self.assertEqual(created['clientKey'], 'k1')

        repeated = self.api.create_expense(token, expense(clientKey='k1'))
        self.assertEqual(repeated['id'], created['id'])

        updated = self.api.update_expense(token, created['id'], expense(amount=50.25))
        self.assertEqual(updated['amount'], 50.25)
        self.assertEqual(self.api.get_total(token), Decimal('50.25'))
        self.assertEqual([e['id'] for e in self.api.get_expenses(token)], [created['id']])

        data = self.api.sync(token)
        self.assertEqual(data['total'], Decimal('50.25'))
        self.assertEqual(len(data['expenses']), 1)
        self.assertTrue(data['lastSync'])

        self.api.delete_expense(token, created['id'])
        self.assertEqual(self.api.get_expenses(token), [])

    def test_expenses_of_another_student_are_not_found(self):
        token = self.login()
        created = self.api.create_expense(token, expense())
        other = self.login(OTHER_STUDENT_ID)
        with self.assertRaises(status.NotFoundException):
            self.api.update_expense(other, created['id'], expense())
        with self.assertRaises(status.NotFoundException):
            self.api.delete_expense(other, created['id'])

    def test_unreachable_server(self):
        self.session.online = False
        with self.assertRaises(status.ServiceUnavailableException):
            self.api.login(STUDENT_ID, PASSWORD)
        self.assertFalse(self.api.health())

    def test_health(self):
        self.assertTrue(self.api.health())


class ApiServiceResponseTests(BaseTestCase):
    def test_non_json_error_is_service_unavailable(self):
        response = mock.Mock(status_code=500, ok=False, reason='Internal Server Error')
        response.json.side_effect = ValueError('No JSON')
        session = mock.Mock()
        session.request.return_value = response

        api = service.ApiService(BASE_URL, session=session)
        with self.assertRaises(status.ServiceUnavailableException):
            api.get_expenses('token')

        session.request.assert_called_once_with(
            'GET',
            f'{BASE_URL}/expenses',
            headers={'Content-Type': 'application/json', 'Authorization': 'Bearer token'},
            json=None,
            timeout=service.DEFAULT_TIMEOUT,
        )

    def test_from_settings(self):
        api_config = lib.settings.get_section('api')
        api = service.ApiService.from_settings()
        self.assertEqual(api.base_url, api_config['base_url'].rstrip('/'))
        self.assertEqual(api.timeout, api_config['timeout'])
        retry = api.session.get_adapter(api.base_url).max_retries
        self.assertEqual(retry.total, api_config['retries'])
        api.close()

    def test_transport_retries_gateway_errors_only(self):
        session = service._build_session(3)
        retry = session.get_adapter('https://example.com').max_retries
        self.assertEqual(retry.total, 3)
        self.assertEqual(tuple(retry.status_forcelist), service.RETRY_STATUS_CODES)
        self.assertNotIn('POST', retry.allowed_methods)


class AsynchronousTests(BaseTestCase):
    def test_returns_the_result(self):
        self.assertEqual(service.start_asynchronous(lambda a, b: a + b, 2, 3), 5)

    def test_finished_work_is_never_reported_as_a_timeout(self):
        for i in range(25):
            self.assertEqual(service.start_asynchronous(lambda x: x, i, total_timeout=5), i)

    def test_status_errors_are_raised_again(self):
        def fail():
            raise status.NotFoundException('gone')

        with self.assertRaises(status.NotFoundException):
            service.start_asynchronous(fail)

    def test_expired_session_becomes_an_authentication_error(self):
        def fail():
            raise AuthExpiredError('Session expired')

        with self.assertRaises(status.AuthenticationException):
            service.start_asynchronous(fail)

    def test_other_errors_are_wrapped(self):
        def fail():
            raise RuntimeError('boom')

        with self.assertRaises(status.UnknownException):
            service.start_asynchronous(fail, max_attempts=2, wait_seconds=0)

    def test_retries_until_success(self):
        attempts = []

        def flaky():
            attempts.append(1)
            if len(attempts) < 2:
                raise RuntimeError('try again')
            return 'ok'

        self.assertEqual(service.start_asynchronous(flaky, max_attempts=3, wait_seconds=0), 'ok')
        self.assertEqual(len(attempts), 2)


if __name__ == '__main__':
    unittest.main()
