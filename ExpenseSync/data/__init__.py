"""
ExpenseSync data package: summaries of the working set.

This package provides:

- :mod:`ExpenseSync.data.data` – pandas summaries (:func:`ExpenseSync.data.data.category_totals`, :func:`ExpenseSync.data.data.monthly_totals`, :func:`ExpenseSync.data.data.overview`) and date-range filters.
"""
