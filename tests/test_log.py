"""
Integration tests for ExpenseSync.log
(covers TankHandler, the Qt bridge and the setup helpers).

Run:
    python -m unittest tests.test_log
"""
import logging
import logging.handlers
import time
from typing import List

from PySide6.QtCore import QtMsgType

from ExpenseSync.log.log import (
    TankHandler,
    get_tank,
    qt_message_handler,
    set_logging_level,
    setup_logging,
)
from tests.base import BaseTestCase


class LogModuleTests(BaseTestCase):
    """
    Each test starts with a fresh root logger configured by
    setup_logging(enable_stream_handler=False).
    """

    def setUp(self) -> None:
        super().setUp()

        # enable logging
        logging.disable(logging.NOTSET)

        setup_logging(enable_stream_handler=False,
                      enable_qt_handler=False,
                      log_level=logging.DEBUG)

        self.root_logger = logging.getLogger()
        self.tank: TankHandler = next(
            h for h in self.root_logger.handlers if isinstance(h, TankHandler)
        )

    def tearDown(self) -> None:
        setup_logging(enable_stream_handler=False, enable_qt_handler=False)
        super().tearDown()

    def test_tank_bulk_append_speed(self):
        """
        Appending thousands of records should be quick and all must be stored.
        """
        self.tank.clear_logs()
        N = 5_000
        t0 = time.perf_counter()
        for i in range(N):
            logging.debug("bulk-%05d", i)
        elapsed = time.perf_counter() - t0

        self.assertLessEqual(
            elapsed, 2.0,
            f"logging {N} messages took {elapsed:.2f}s, expected <=2 s",
        )
        self.assertEqual(len(self.tank.tank), N)

    def test_tank_keeps_only_the_newest_records(self):
        tank = TankHandler(capacity=3)
        for i in range(5):
            tank.emit(logging.makeLogRecord({'msg': f'record {i}', 'levelno': logging.INFO}))
        self.assertEqual(len(tank.tank), 3)
        self.assertIn('record 4', tank.get_logs()[-1])
        self.assertIn('record 2', tank.get_logs()[0])

    def test_get_tank_returns_the_installed_handler(self):
        self.assertIs(get_tank(), self.tank)

    def test_set_logging_level_accepts_valid_levels(self):
        set_logging_level(logging.ERROR)
        self.assertEqual(self.root_logger.level, logging.ERROR)

    def test_set_logging_level_rejects_non_int(self):
        with self.assertRaises(ValueError):
            set_logging_level("INFO")  # type: ignore[arg-type]

    def test_set_logging_level_rejects_unknown(self):
        with self.assertRaises(ValueError):
            set_logging_level(1234)

    def test_tank_handler_stores_and_filters(self):
        self.tank.clear_logs()
        logging.debug("dbg message")
        logging.error("err message")
        self.assertEqual(len(self.tank.tank), 2)
        errs: List[str] = self.tank.get_logs(logging.ERROR)
        self.assertEqual(len(errs), 1)
        self.assertIn("err message", errs[0])
        self.tank.clear_logs()
        self.assertEqual(len(self.tank.tank), 0)

    def test_status_exceptions_are_logged(self):
        from ExpenseSync.status import status

        self.tank.clear_logs()
        status.ValidationException('Amount missing')
        warnings = self.tank.get_logs(logging.WARNING)
        self.assertEqual(len(warnings), 1)
        self.assertIn('Amount missing', warnings[0])

    def test_qt_message_handler_maps_to_logging(self):
        qt_message_handler(QtMsgType.QtInfoMsg, None, "Qt info")
        qt_message_handler(QtMsgType.QtWarningMsg, None, "Qt warn")
        msgs = self.tank.get_logs()
        self.assertTrue(any("Qt info" in m for m in msgs))
        self.assertTrue(any("Qt warn" in m for m in msgs))

    def test_qt_message_handler_fatal_exits(self):
        with self.assertRaises(SystemExit):
            qt_message_handler(QtMsgType.QtFatalMsg, None, "fatal")

    def test_setup_logging_installs_tank_handler_only(self):
        self.assertEqual(
            [type(h) for h in self.root_logger.handlers],
            [TankHandler],
        )

    def test_setup_logging_with_log_file(self):
        log_file = self.config_paths.log_dir / 'test.log'
        setup_logging(enable_stream_handler=False, enable_qt_handler=False, log_file=log_file)
        file_handler = next(
            h for h in logging.getLogger().handlers
            if isinstance(h, logging.handlers.RotatingFileHandler)
        )
        try:
            logging.info('written to file')
            file_handler.flush()
            self.assertIn('written to file', log_file.read_text(encoding='utf-8'))
        finally:
            file_handler.close()
