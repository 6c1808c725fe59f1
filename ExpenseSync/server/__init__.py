"""
ExpenseSync server package: the authoritative store of users and expenses.

This package provides:

- :mod:`ExpenseSync.server.config` – Settings read from the environment and ``.env``.
- :mod:`ExpenseSync.server.models` – SQLAlchemy models for users and expenses.
- :mod:`ExpenseSync.server.auth` – Registration, login and token verification endpoints.
- :mod:`ExpenseSync.server.expenses` – Expense endpoints scoped to the caller.
- :mod:`ExpenseSync.server.app` – The application factory.
"""
