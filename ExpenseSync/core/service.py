"""Remote expense API client with asynchronous helpers.

Wraps the HTTP endpoints of the ExpenseSync server in a :class:`requests.Session`
and maps HTTP failures onto the status exceptions. Connection errors and
gateway failures are retried at the transport level through urllib3; callers
never retry.
"""

import logging
import time
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional

import requests
from PySide6 import QtCore
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from .auth import AuthExpiredError
from ..settings import lib
from ..status import status

TOTAL_TIMEOUT: int = 60
DEFAULT_TIMEOUT: float = 10.0
DEFAULT_RETRIES: int = 2
RETRY_STATUS_CODES = (502, 503, 504)


class AsyncWorker(QtCore.QThread):
    """
    Generic worker thread with retry logic for blocking functions.

    Signals:
        resultReady (object): Emitted with the function's result on success.
        errorOccurred (object): Emitted with the exception on failure.
    """
    resultReady = QtCore.Signal(object)
    errorOccurred = QtCore.Signal(object)

    def __init__(self, func: Callable[..., Any], *args: Any, **kwargs: Any) -> None:
        super().__init__()
        self.func = func
        self.args = args

        self.max_attempts = kwargs.pop('max_attempts', 1)
        self.wait_seconds = kwargs.pop('wait_seconds', 2.0)
        self.kwargs = kwargs

    def run(self) -> None:
        attempts = 0
        last_exception = None
        while attempts < self.max_attempts:
            attempts += 1
            try:
                result = self.func(*self.args, **self.kwargs)
                self.resultReady.emit(result)
                return
            except (AuthExpiredError, status.AuthenticationException) as ex:
                from ..signals import signals
                signals.authenticationRequested.emit()
                self.errorOccurred.emit(ex)
                return
            except (
                    status.ValidationException,
                    status.NotLoggedInException,
                    status.NotFoundException,
                    status.ConflictException,
            ) as ex:
                self.errorOccurred.emit(ex)
                return
            except Exception as ex:
                last_exception = ex
                if attempts < self.max_attempts:
                    time.sleep(self.wait_seconds)
        # All attempts exhausted
        self.errorOccurred.emit(last_exception)


def start_asynchronous(func: Callable[..., Any], *args: Any, total_timeout: int = TOTAL_TIMEOUT,
                       **kwargs: Any) -> Any:
    """
    Run a blocking function on an AsyncWorker and wait for it in a local event loop.

    The Qt event loop keeps running while waiting, so queued signals are still delivered.

    Args:
        func: The blocking function to run.
        *args, **kwargs: Arguments passed to func.
        total_timeout (int): Seconds to wait before giving up.

    Returns:
        The result of the function on success.

    Raises:
        status.BaseStatusException: The error raised by func, if it was a status exception.
        status.ServiceUnavailableException: If the operation timed out.
        status.UnknownException: For any other error.
    """
    worker: AsyncWorker = AsyncWorker(func, *args, **kwargs)

    result: Dict[str, Any] = {'data': None, 'error': None, 'timed_out': False}
    loop: QtCore.QEventLoop = QtCore.QEventLoop()

    worker.resultReady.connect(lambda d: result.update({'data': d}))
    worker.errorOccurred.connect(lambda err: result.update({'error': err}))
    # Queued to this thread, so a worker that finishes before exec() still ends the loop
    worker.finished.connect(loop.quit)

    timer: QtCore.QTimer = QtCore.QTimer()
    timer.setSingleShot(True)
    timer.setInterval(total_timeout * 1000)
    timer.timeout.connect(lambda: (result.update({'timed_out': True}), loop.quit()))

    worker.start()
    timer.start()
    loop.exec()
    timer.stop()

    if result['timed_out'] and not worker.isFinished():
        worker.terminate()
        worker.wait()
        raise status.ServiceUnavailableException('Operation timed out.')
    worker.wait()

    if result['error']:
        err = result['error']
        if isinstance(err, status.BaseStatusException):
            raise err
        if isinstance(err, AuthExpiredError):
            raise status.AuthenticationException(str(err))
        raise status.UnknownException(str(err))
    return result['data']


def _build_session(retries: int) -> requests.Session:
    """Return a session that retries connection errors and gateway failures."""
    retry = Retry(
        total=retries,
        connect=retries,
        read=0,
        status=retries,
        backoff_factor=0.3,
        status_forcelist=RETRY_STATUS_CODES,
        allowed_methods=frozenset({'GET', 'PUT', 'DELETE'}),
        raise_on_status=False,
    )
    adapter = HTTPAdapter(max_retries=retry)
    session = requests.Session()
    session.mount('http://', adapter)
    session.mount('https://', adapter)
    return session


class ApiService:
    """Client for the remote expense API.

    Args:
        base_url: Root URL of the server, for example ``http://localhost:3001``.
        timeout: Seconds to wait for each request.
        retries: Transport-level retries for connection errors and 502/503/504.
        session: Optional session to use instead of building one.
    """

    def __init__(self, base_url: str, timeout: float = DEFAULT_TIMEOUT, retries: int = DEFAULT_RETRIES,
                 session: Optional[requests.Session] = None) -> None:
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.session = session if session is not None else _build_session(retries)

    @classmethod
    def from_settings(cls) -> 'ApiService':
        """Build a client from the ``api`` section of client.json."""
        config = lib.settings.get_section('api')
        return cls(config['base_url'], timeout=config['timeout'], retries=config['retries'])

    def request(self, method: str, path: str, token: Optional[str] = None,
                json: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Send a request and return the decoded JSON body.

        Raises:
            status.ValidationException: On 400.
            status.AuthenticationException: On 401.
            status.NotFoundException: On 404.
            status.ConflictException: On 409.
            status.ServiceUnavailableException: On network errors and any other failure.
        """
        headers = {'Content-Type': 'application/json'}
        if token:
            headers['Authorization'] = f'Bearer {token}'
        url = f'{self.base_url}{path}'

        logging.debug(f'{method} {url}')
        try:
            response = self.session.request(method, url, headers=headers, json=json, timeout=self.timeout)
        except requests.RequestException as ex:
            raise status.ServiceUnavailableException(f'{method} {path} failed: {ex}') from ex

        try:
            body = response.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {'data': body}

        if response.ok:
            return body

        error = body.get('error') or response.reason or f'HTTP {response.status_code}'
        code = response.status_code
        if code == 400:
            raise status.ValidationException(error)
        if code == 401:
            raise status.AuthenticationException(error)
        if code == 404:
            raise status.NotFoundException(error)
        if code == 409:
            raise status.ConflictException(error)
        raise status.ServiceUnavailableException(f'HTTP {code}: {error}')

    def health(self) -> bool:
        """Return True when the server answers its health check."""
        try:
            return self.request('GET', '/health').get('status') == 'ok'
        except status.BaseStatusException:
            return False

    def login(self, student_id: str, password: str) -> Dict[str, Any]:
        """Return ``{'token': ..., 'user': {...}}`` for valid credentials."""
        body = self.request('POST', '/auth/login', json={'studentId': student_id, 'password': password})
        return {'token': body['token'], 'user': body['user']}

    def register(self, student_id: str, password: str) -> Dict[str, Any]:
        """Create an account and return ``{'token': ..., 'user': {...}}``."""
        body = self.request('POST', '/auth/register', json={'studentId': student_id, 'password': password})
        return {'token': body['token'], 'user': body['user']}

    def verify_token(self, token: str) -> Dict[str, Any]:
        """Return the user the token belongs to.

        Raises:
            status.AuthenticationException: If the server rejects the token.
        """
        return self.request('GET', '/auth/verify', token=token)['user']

    def get_expenses(self, token: str) -> List[Dict[str, Any]]:
        return self.request('GET', '/expenses', token=token)['expenses']

    def get_total(self, token: str) -> Decimal:
        return Decimal(str(self.request('GET', '/expenses/total', token=token)['total']))

    def create_expense(self, token: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Create an expense. Repeating a ``clientKey`` returns the existing expense."""
        return self.request('POST', '/expenses', token=token, json=payload)['expense']

    def update_expense(self, token: str, remote_id: int, payload: Dict[str, Any]) -> Dict[str, Any]:
        return self.request('PUT', f'/expenses/{remote_id}', token=token, json=payload)['expense']

    def delete_expense(self, token: str, remote_id: int) -> None:
        self.request('DELETE', f'/expenses/{remote_id}', token=token)

    def sync(self, token: str) -> Dict[str, Any]:
        """Fetch the caller's full expense set.

        Returns:
            Dict[str, Any]: ``expenses`` (list), ``total`` (Decimal) and ``lastSync`` (ISO string).
        """
        data = self.request('GET', '/expenses/sync', token=token)['data']
        return {
            'expenses': data['expenses'],
            'total': Decimal(str(data['total'])),
            'lastSync': data['lastSync'],
        }

    def close(self) -> None:
        self.session.close()
