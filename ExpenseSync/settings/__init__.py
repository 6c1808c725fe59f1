"""
Settings package: client configuration and localization.

This package provides:

- :mod:`ExpenseSync.settings.lib` – Application paths, client.json loading and schema validation.
- :mod:`ExpenseSync.settings.locale` – Babel-based formatting of amounts and dates.
"""
