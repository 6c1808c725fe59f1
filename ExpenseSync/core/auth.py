"""
Login, registration and session storage.

The session is the token issued by the server and the user it belongs to,
kept in ``auth/session.json`` under the app data directory. Token expiry is
checked locally by reading the token's ``exp`` claim; the signature can only
be checked by the server.
"""

import json
import logging
import pathlib
import threading
import time
from typing import Any, Dict, Optional, Union

import jwt

from . import models
from ..status import status


class AuthExpiredError(Exception):
    """Raised when there is no session or its token has expired and the user must log in again."""
    pass


def token_expires_at(token: str) -> Optional[float]:
    """Return the expiry of a token as a UNIX timestamp, or None if it carries none or cannot be read."""
    try:
        claims = jwt.decode(token, options={'verify_signature': False, 'verify_exp': False})
    except jwt.PyJWTError as ex:
        logging.warning(f'Could not read token claims: {ex}')
        return None
    exp = claims.get('exp')
    return float(exp) if isinstance(exp, (int, float)) else None


def is_token_valid(token: Optional[str], now: Optional[float] = None) -> bool:
    """Return True when a token is present and its ``exp`` claim lies in the future."""
    if not token:
        return False
    expires_at = token_expires_at(token)
    if expires_at is None:
        return False
    return expires_at > (now if now is not None else time.time())


class AuthManager:
    """Manages the stored session with thread-safe access.

    Args:
        api: The remote API client used for login and registration.
        session_path: Where to store the session. Defaults to the path in the client settings.
    """

    def __init__(self, api: Any, session_path: Optional[Union[str, pathlib.Path]] = None) -> None:
        self.api = api
        if session_path is None:
            from ..settings import lib
            session_path = lib.settings.session_path
        self.session_path = pathlib.Path(session_path)

        self._lock = threading.Lock()
        self._session: Optional[Dict[str, Any]] = None

    def load(self) -> Optional[Dict[str, Any]]:
        """Read the stored session from disk.

        A corrupt session file is deleted.

        Returns:
            Optional[Dict[str, Any]]: ``{'token': ..., 'user': {...}}`` or None.
        """
        with self._lock:
            if self._session is not None:
                return self._session
            if not self.session_path.exists():
                return None
            try:
                with self.session_path.open('r', encoding='utf-8') as f:
                    data = json.load(f)
                if not isinstance(data, dict) or not data.get('token') or not isinstance(data.get('user'), dict):
                    raise ValueError('Session file is missing the token or user.')
            except (ValueError, OSError) as ex:
                logging.error(f'Failed to load session, removing {self.session_path}: {ex}')
                self.session_path.unlink(missing_ok=True)
                return None
            self._session = data
            return self._session

    def save(self, session: Dict[str, Any]) -> None:
        """Persist a session to disk and keep it in memory."""
        with self._lock:
            self.session_path.parent.mkdir(parents=True, exist_ok=True)
            with self.session_path.open('w', encoding='utf-8') as f:
                json.dump(session, f, indent=4)
            self._session = session
        logging.debug(f'Session saved to {self.session_path}.')

    @property
    def token(self) -> Optional[str]:
        session = self.load()
        return session['token'] if session else None

    @property
    def user(self) -> Optional[Dict[str, Any]]:
        session = self.load()
        return session['user'] if session else None

    @property
    def student_id(self) -> Optional[str]:
        user = self.user
        return user.get('studentId') if user else None

    def get_valid_token(self) -> str:
        """Return the stored token without contacting the server.

        Raises:
            AuthExpiredError: If there is no session or the token has expired.
        """
        token = self.token
        if not token:
            raise AuthExpiredError('No session found; login required.')
        if not is_token_valid(token):
            raise AuthExpiredError('Session expired; login required.')
        return token

    def _authenticate(self, action: str, student_id: str, password: str) -> Dict[str, Any]:
        models.validate_student_id(student_id)
        models.validate_password(password)

        result = getattr(self.api, action)(student_id, password)
        self.save({'token': result['token'], 'user': result['user']})
        logging.info(f'Student {student_id} authenticated ({action}).')

        from ..signals import signals
        signals.loggedIn.emit(student_id)
        return result['user']

    def login(self, student_id: str, password: str) -> Dict[str, Any]:
        """Validate the credentials, log in and store the session.

        Returns:
            Dict[str, Any]: The user returned by the server.

        Raises:
            status.ValidationException: If the credentials are malformed. Nothing is sent.
            status.AuthenticationException: If the server rejects the credentials.
            status.ServiceUnavailableException: If the server cannot be reached.
        """
        return self._authenticate('login', student_id, password)

    def register(self, student_id: str, password: str) -> Dict[str, Any]:
        """Validate the credentials, create the account and store the session.

        Raises:
            status.ValidationException: If the credentials are malformed. Nothing is sent.
            status.ConflictException: If the student id is already registered.
            status.ServiceUnavailableException: If the server cannot be reached.
        """
        return self._authenticate('register', student_id, password)

    def sign_out(self) -> None:
        """
        Delete the stored session.
        """
        with self._lock:
            self._session = None
            if self.session_path.exists():
                logging.debug(f'Deleting {self.session_path}...')
                self.session_path.unlink()
                logging.debug('Successfully signed out.')
            else:
                logging.debug('No session file found. No action taken.')

        from ..signals import signals
        signals.loggedOut.emit()

    def require_owner(self) -> str:
        """Return the logged-in student id.

        Raises:
            status.NotLoggedInException: If nobody is logged in.
        """
        student_id = self.student_id
        if not student_id:
            raise status.NotLoggedInException
        return student_id
