"""
Module for formatting decimal, currency and date values using Babel.

"""
import datetime
import logging
from decimal import Decimal
from typing import Union

from babel import Locale, numbers
from babel.core import UnknownLocaleError
from babel.dates import format_date

Number = Union[Decimal, float, int]

CURRENCY_MAP: dict[str, str] = {
    'US': 'USD',
    'GB': 'GBP',
    'DE': 'EUR',
    'FR': 'EUR',
    'IT': 'EUR',
    'ES': 'EUR',
    'NL': 'EUR',
    'JP': 'JPY',
    'CA': 'CAD',
    'AU': 'AUD',
    'IN': 'INR',
    'MX': 'MXN',
}

DEFAULT_LOCALE = 'en_US'


def get_currency_from_locale(locale: str) -> str:
    """
    Retrieve the default currency code based on the locale's territory.

    Args:
        locale (str): Locale string, e.g. 'fr_FR'.

    Returns:
        str: Currency code such as 'EUR'. Defaults to 'USD' if the territory is unknown.
    """
    parts = locale.split('_')
    if len(parts) < 2:
        return 'USD'
    return CURRENCY_MAP.get(parts[1], 'USD')


def _parse_locale(locale: str) -> Locale:
    try:
        return Locale.parse(locale)
    except (ValueError, TypeError, UnknownLocaleError) as ex:
        logging.warning(f'Invalid locale "{locale}", falling back to {DEFAULT_LOCALE}: {ex}')
        return Locale.parse(DEFAULT_LOCALE)


def format_decimal_value(value: Number, locale: str) -> str:
    """
    Format a number as a decimal string according to the locale conventions.

    Args:
        value: The numeric value to be formatted.
        locale (str): Locale string, e.g. 'en_US'.

    Returns:
        str: The formatted decimal string.
    """
    return numbers.format_decimal(value, format='#,##0.00', locale=_parse_locale(locale))


def format_currency_value(value: Number, locale: str) -> str:
    """
    Format a number as a currency string based on the locale's default currency.

    Args:
        value: The numeric value to be formatted.
        locale (str): Locale string, e.g. 'en_US'.

    Returns:
        str: The formatted currency string, e.g. '$1,234.50'.
    """
    currency_code = get_currency_from_locale(locale)
    return numbers.format_currency(value, currency=currency_code, locale=_parse_locale(locale))


def format_date_value(value: datetime.date, locale: str) -> str:
    """
    Format a date with the locale's medium date pattern.

    Args:
        value: The date to format.
        locale (str): Locale string, e.g. 'en_US'.

    Returns:
        str: The formatted date, e.g. 'Jan 5, 2024'.
    """
    return format_date(value, format='medium', locale=_parse_locale(locale))
