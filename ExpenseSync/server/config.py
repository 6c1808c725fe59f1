"""Server settings read from the environment.

Values are loaded from a ``.env`` file when present; see
``config/server.env.template`` for the recognised keys.
"""
import datetime
import os
from typing import List

from dotenv import load_dotenv

load_dotenv()


def _split_origins(value: str) -> List[str]:
    return [o.strip() for o in value.split(',') if o.strip()]


class Config:
    SQLALCHEMY_DATABASE_URI = os.getenv('DATABASE_URL', 'sqlite:///expensesync.db')
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    JWT_SECRET_KEY = os.getenv('JWT_SECRET_KEY', 'dev-secret-key-change-me-in-production')
    JWT_ACCESS_TOKEN_EXPIRES = datetime.timedelta(days=7)

    CORS_ORIGINS = _split_origins(os.getenv('CORS_ORIGINS', 'http://localhost:5173'))

    HOST = os.getenv('HOST', '127.0.0.1')
    PORT = int(os.getenv('PORT', '3001'))
