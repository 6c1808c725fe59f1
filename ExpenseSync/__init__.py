"""
ExpenseSync: offline-first student expense tracker with a local cache and a Flask sync server.

This package provides:

- :mod:`ExpenseSync.core` – Expense model, remote API client, session storage, local SQLite cache and the sync coordinator.
- :mod:`ExpenseSync.server` – The Flask application that owns users and expenses.
- :mod:`ExpenseSync.data` – pandas summaries of the working set (per category, per month, date ranges).
- :mod:`ExpenseSync.settings` – Client configuration with schema validation, and Babel formatting.
- :mod:`ExpenseSync.log` – Root logger setup and the in-memory log tank.
- :mod:`ExpenseSync.client` – The seam a presentation layer drives.

Use :func:`ExpenseSync.exec_` to run the sync server.
"""

import sys

# Fail on Python < 3.11
if not (sys.version_info.major == 3 and sys.version_info.minor >= 11):
    raise RuntimeError('ExpenseSync requires Python 3.11 or higher.')

__version__ = '0.1.0'
__license__ = 'GPL-3.0'
__description__ = 'ExpenseSync: offline-first student expense tracker with a local cache and a sync server.'

from .log import log

log.setup_logging()


def exec_() -> None:
    """Start the ExpenseSync server using the settings found in the environment."""
    from .server import app
    app.exec_()


if __name__ == '__main__':
    exec_()
