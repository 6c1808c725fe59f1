"""
Unit tests for ExpenseSync.core.models: input validation and the conversions
between the expense dataclass, cache rows and server payloads.
"""
import datetime
import unittest
from decimal import Decimal

from ExpenseSync.core import models
from ExpenseSync.core.models import Category, Expense, SyncState
from ExpenseSync.status import status

TODAY = datetime.date(2024, 1, 10)


def valid_payload(**overrides):
    data = {'amount': '45.00', 'category': 'Groceries', 'description': 'Weekly shop', 'date': '2024-01-05'}
    data.update(overrides)
    return data


class CredentialValidationTests(unittest.TestCase):
    def test_student_id_must_be_seven_digits(self):
        self.assertEqual(models.validate_student_id('1234567'), '1234567')
        for bad in ('123456', '12345678', '12345a7', '', None, 1234567):
            with self.subTest(student_id=bad):
                with self.assertRaises(status.ValidationException):
                    models.validate_student_id(bad)

    def test_password_minimum_length(self):
        self.assertEqual(models.validate_password('abcdef'), 'abcdef')
        with self.assertRaises(status.ValidationException):
            models.validate_password('abcde')
        with self.assertRaises(status.ValidationException):
            models.validate_password(None)


class ExpenseValidationTests(unittest.TestCase):
    def test_valid_payload_is_normalized(self):
        fields = models.validate_expense(valid_payload(), today=TODAY)
        self.assertEqual(fields['amount'], Decimal('45.00'))
        self.assertIs(fields['category'], Category.Groceries)
        self.assertEqual(fields['description'], 'Weekly shop')
        self.assertEqual(fields['date'], datetime.date(2024, 1, 5))

    def test_amount_is_rounded_to_cents(self):
        self.assertEqual(models.parse_amount('12.345'), Decimal('12.35'))
        self.assertEqual(models.parse_amount(3), Decimal('3.00'))

    def test_amount_must_be_positive_and_bounded(self):
        for bad in ('0', '-5', '0.001', 'abc', '', None, 'NaN', 'Infinity', '1000000', True):
            with self.subTest(amount=bad):
                with self.assertRaises(status.ValidationException):
                    models.parse_amount(bad)
        self.assertEqual(models.parse_amount('999999'), Decimal('999999.00'))

    def test_category_must_be_known(self):
        self.assertIs(models.parse_category('Meal Plan'), Category.MealPlan)
        with self.assertRaises(status.ValidationException):
            models.parse_category('Snacks')
        with self.assertRaises(status.ValidationException):
            models.parse_category('')

    def test_date_cannot_be_in_the_future(self):
        self.assertEqual(models.parse_date('2024-01-10', today=TODAY), TODAY)
        with self.assertRaises(status.ValidationException):
            models.parse_date('2024-01-11', today=TODAY)

    def test_date_must_be_iso(self):
        for bad in ('01/05/2024', '2024-13-01', '', None):
            with self.subTest(date=bad):
                with self.assertRaises(status.ValidationException):
                    models.parse_date(bad, today=TODAY)

    def test_blank_description_gets_placeholder(self):
        for blank in ('', '   ', None):
            self.assertEqual(models.parse_description(blank), models.DEFAULT_DESCRIPTION)
        self.assertEqual(models.parse_description('  Bus pass '), 'Bus pass')

    def test_payload_must_be_a_mapping(self):
        with self.assertRaises(status.ValidationException):
            models.validate_expense(['45.00'], today=TODAY)


class ExpenseConversionTests(unittest.TestCase):
    def test_created_expense_is_pending_with_a_client_key(self):
        expense = Expense.create(valid_payload(), owner_id='1234567', today=TODAY)
        self.assertEqual(expense.sync_state, SyncState.PendingCreate)
        self.assertFalse(expense.is_synced)
        self.assertIsNone(expense.id)
        self.assertEqual(len(expense.client_key), 32)

    def test_client_keys_are_unique(self):
        a = Expense.create(valid_payload(), today=TODAY)
        b = Expense.create(valid_payload(), today=TODAY)
        self.assertNotEqual(a.client_key, b.client_key)

    def test_row_conversion_keeps_every_field(self):
        expense = Expense.create(valid_payload(), owner_id='1234567', today=TODAY)
        row = expense.to_row()
        self.assertNotIn('local_id', row)
        row['local_id'] = 3

        restored = Expense.from_row(row)
        self.assertEqual(restored.local_id, 3)
        self.assertEqual(restored.amount, Decimal('45.00'))
        self.assertEqual(restored.category, Category.Groceries)
        self.assertEqual(restored.client_key, expense.client_key)
        self.assertEqual(restored.id, 3)

    def test_from_payload_is_synced_and_uses_remote_id(self):
        payload = {
            'id': 17,
            'amount': 10.1,
            'category': 'Rent',
            'description': '',
            'date': '2024-01-02',
            'clientKey': 'abc',
        }
        expense = Expense.from_payload(payload, owner_id='1234567')
        self.assertTrue(expense.is_synced)
        self.assertEqual(expense.remote_id, 17)
        self.assertEqual(expense.id, 17)
        self.assertEqual(expense.amount, Decimal('10.10'))
        self.assertEqual(expense.description, models.DEFAULT_DESCRIPTION)
        self.assertEqual(expense.client_key, 'abc')

    def test_from_payload_accepts_dates_ahead_of_the_local_clock(self):
        future = (datetime.date.today() + datetime.timedelta(days=3)).isoformat()
        payload = {'id': 1, 'amount': 5, 'category': 'Other', 'date': future}
        expense = Expense.from_payload(payload, owner_id='1234567')
        self.assertEqual(expense.date.isoformat(), future)

    def test_payload_carries_the_client_key(self):
        expense = Expense.create(valid_payload(description=''), today=TODAY)
        payload = expense.to_payload()
        self.assertEqual(payload['clientKey'], expense.client_key)
        self.assertEqual(payload['amount'], 45.0)
        self.assertEqual(payload['category'], 'Groceries')
        self.assertEqual(payload['description'], models.DEFAULT_DESCRIPTION)
        self.assertEqual(payload['date'], '2024-01-05')


if __name__ == '__main__':
    unittest.main()
