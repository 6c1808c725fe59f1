"""
Core package for ExpenseSync providing the client-side functionality.

This package includes:

- :mod:`ExpenseSync.core.models` – The expense data model and input validation shared with the server.
- :mod:`ExpenseSync.core.service` – HTTP client for the remote expense API, and the worker thread helpers.
- :mod:`ExpenseSync.core.auth` – Login, registration and on-disk session storage.
- :mod:`ExpenseSync.core.database` – Local SQLite cache of every owner's expenses.
- :mod:`ExpenseSync.core.sync` – Local-first writes, reconciliation with the remote store and the threshold latch.
- :mod:`ExpenseSync.core.receipt` – Extraction of expense fields from recognized receipt text.
"""
