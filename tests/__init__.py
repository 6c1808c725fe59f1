"""Test suite for ExpenseSync.

Qt's test mode is enabled before any ExpenseSync module is imported, so the
settings, session and cache files are written to a throwaway location instead of
the user's app data directory.
"""
from PySide6 import QtCore

QtCore.QStandardPaths.setTestModeEnabled(True)
