"""
Tests for ExpenseSync.core.receipt.
"""
import unittest
from decimal import Decimal

from ExpenseSync.core import receipt

RECEIPT = """
  Campus Bookstore
  123 College Ave
  01/15/2024 14:02
  Notebook          $4.50
  TOTAL             $12.75
"""


class ReceiptParsingTests(unittest.TestCase):
    def test_full_receipt(self):
        result = receipt.parse_receipt_text(RECEIPT)
        self.assertEqual(result['description'], 'Campus Bookstore')
        self.assertEqual(result['date'], '2024-01-15')
        # The first dollar amount wins
        self.assertEqual(result['amount'], Decimal('4.50'))

    def test_total_without_dollar_sign(self):
        self.assertEqual(receipt.parse_amount('Paid by card\nTotal: 10.25'), Decimal('10.25'))
        self.assertEqual(receipt.parse_amount('total 7'), Decimal('7.00'))

    def test_iso_date_wins_over_us_date(self):
        self.assertEqual(receipt.parse_date('02/03/2024 and 2024-01-31'), '2024-01-31')

    def test_us_date_is_zero_padded(self):
        self.assertEqual(receipt.parse_date('Date 3/7/2024'), '2024-03-07')

    def test_impossible_dates_are_ignored(self):
        self.assertIsNone(receipt.parse_date('2024-02-30'))
        self.assertIsNone(receipt.parse_date('13/01/2024'))

    def test_empty_text(self):
        self.assertEqual(
            receipt.parse_receipt_text(''),
            {'amount': None, 'date': None, 'description': None},
        )
        self.assertEqual(
            receipt.parse_receipt_text(None),
            {'amount': None, 'date': None, 'description': None},
        )

    def test_text_without_amount(self):
        result = receipt.parse_receipt_text('Thanks for shopping!')
        self.assertIsNone(result['amount'])
        self.assertEqual(result['description'], 'Thanks for shopping!')


if __name__ == '__main__':
    unittest.main()
