"""Extract expense fields from text recognized on a receipt.

Recognition itself happens elsewhere; this module only reads the text it
produced. Every field is optional, and a missing field is left for the user to fill in.
"""
import datetime
import logging
import re
from decimal import Decimal
from typing import Dict, Optional

DOLLAR_PATTERN = re.compile(r'\$\s*([0-9]+(?:\.[0-9]{2})?)')
TOTAL_PATTERN = re.compile(r'total[^0-9]*([0-9]+(?:\.[0-9]{2})?)', re.IGNORECASE)

ISO_DATE_PATTERN = re.compile(r'\b(\d{4}-\d{2}-\d{2})\b')
US_DATE_PATTERN = re.compile(r'\b(\d{1,2})/(\d{1,2})/(\d{4})\b')


def parse_amount(text: str) -> Optional[Decimal]:
    """Return the first dollar amount, or else the amount following the word "total"."""
    match = DOLLAR_PATTERN.search(text) or TOTAL_PATTERN.search(text)
    if not match:
        return None
    return Decimal(match.group(1)).quantize(Decimal('0.01'))


def parse_date(text: str) -> Optional[str]:
    """Return the first ISO date, or else the first MM/DD/YYYY date, as ``YYYY-MM-DD``.

    Matches that are not real calendar dates are ignored.
    """
    match = ISO_DATE_PATTERN.search(text)
    if match:
        candidate = match.group(1)
    else:
        match = US_DATE_PATTERN.search(text)
        if not match:
            return None
        month, day, year = match.groups()
        candidate = f'{year}-{month.zfill(2)}-{day.zfill(2)}'

    try:
        datetime.date.fromisoformat(candidate)
    except ValueError:
        logging.debug(f'Ignoring receipt date "{candidate}": not a calendar date.')
        return None
    return candidate


def parse_description(text: str) -> Optional[str]:
    """Return the first non-empty line, usually the vendor name."""
    for line in text.splitlines():
        line = line.strip()
        if line:
            return line
    return None


def parse_receipt_text(text: str) -> Dict[str, Optional[object]]:
    """Extract the amount, date and description from receipt text.

    Args:
        text: The recognized text, lines separated by newlines.

    Returns:
        dict: ``amount`` (Decimal or None), ``date`` (``YYYY-MM-DD`` or None)
        and ``description`` (str or None).
    """
    text = text or ''
    result = {
        'amount': parse_amount(text),
        'date': parse_date(text),
        'description': parse_description(text),
    }
    logging.debug(f'Parsed receipt text: {result}')
    return result
