"""Application-wide Qt signals for ExpenseSync.

The presentation layer connects to these to react to configuration changes,
sync lifecycle events, threshold warnings and errors without importing the
components that emit them.
"""
from PySide6 import QtCore


class Signals(QtCore.QObject):
    """Centralized Qt signals for application config, data, and sync events."""
    authenticationRequested = QtCore.Signal()
    loggedIn = QtCore.Signal(str)  # Student id
    loggedOut = QtCore.Signal()

    configSectionChanged = QtCore.Signal(str)

    onlineChanged = QtCore.Signal(bool)

    expensesChanged = QtCore.Signal(list)  # List[Expense]
    totalChanged = QtCore.Signal(object)  # Decimal

    syncStarted = QtCore.Signal()
    syncFinished = QtCore.Signal(bool, str)  # Success, message

    thresholdExceeded = QtCore.Signal(object)  # Decimal total
    thresholdCleared = QtCore.Signal(object)  # Decimal total

    error = QtCore.Signal(str)
    notice = QtCore.Signal(str)


signals = Signals()
