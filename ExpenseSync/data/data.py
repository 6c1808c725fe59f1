"""Data analytics API for expense summaries.

This module turns the sync coordinator's working set into a pandas DataFrame
and derives the summaries a dashboard shows: totals per category and per month,
date-range filtering, searching and sorting, and an overview of the owner's spending.
"""
import datetime
import enum
import logging
from decimal import Decimal
from typing import Any, Dict, Iterable, Optional

import pandas as pd

from ..core.models import Category, Expense
from ..settings import lib
from ..settings import locale

DATA_COLUMNS = ['local_id', 'id', 'date', 'amount', 'category', 'description', 'sync_state']


class DateRange(enum.StrEnum):
    CurrentMonth = 'current-month'
    LastWeek = 'last-week'
    LastMonth = 'last-month'
    AllTime = 'all-time'


class SortKey(enum.StrEnum):
    Date = 'date'
    Amount = 'amount'
    Category = 'category'


def _to_decimal(value: float) -> Decimal:
    return Decimal(str(round(float(value), 2))).quantize(Decimal('0.01'))


def to_frame(expenses: Iterable[Expense]) -> pd.DataFrame:
    """Build a DataFrame from expenses.

    Args:
        expenses: Expenses of the working set.

    Returns:
        pd.DataFrame: One row per expense with the columns in DATA_COLUMNS,
        `date` as datetime64 and `amount` as float.
    """
    records = [
        {
            'local_id': e.local_id,
            'id': e.id,
            'date': e.date,
            'amount': float(e.amount),
            'category': e.category.value,
            'description': e.description,
            'sync_state': e.sync_state.value,
        }
        for e in expenses
    ]
    df = pd.DataFrame(records, columns=DATA_COLUMNS)
    df['date'] = pd.to_datetime(df['date'])
    df['amount'] = pd.to_numeric(df['amount']).astype(float)
    return df


def filter_by_range(df: pd.DataFrame, date_range: str,
                    today: Optional[datetime.date] = None) -> pd.DataFrame:
    """Filter a DataFrame to a date range.

    ``current-month`` is the calendar month of `today`, ``last-week`` the seven
    days before `today`, ``last-month`` the previous calendar month and
    ``all-time`` keeps every row.

    Raises:
        ValueError: If `date_range` is not a known range.
    """
    date_range = DateRange(date_range)
    if date_range == DateRange.AllTime or df.empty:
        return df

    today = pd.Timestamp(today or datetime.date.today())
    if date_range == DateRange.CurrentMonth:
        mask = df['date'].dt.to_period('M') == today.to_period('M')
    elif date_range == DateRange.LastWeek:
        mask = df['date'] >= today - pd.Timedelta(days=7)
    else:
        mask = df['date'].dt.to_period('M') == today.to_period('M') - 1
    return df[mask]


def filter_expenses(df: pd.DataFrame, search: str = '', category: Optional[str] = None,
                    date_range: str = DateRange.AllTime, sort_by: str = SortKey.Date,
                    ascending: bool = False, today: Optional[datetime.date] = None) -> pd.DataFrame:
    """Search, filter and sort expenses the way the expense list shows them.

    Args:
        df: DataFrame built by :func:`to_frame`.
        search: Case-insensitive text matched against description, category and amount.
        category: Only keep this category.
        date_range: One of :class:`DateRange`.
        sort_by: One of :class:`SortKey`.
        ascending: Sort order.
        today: Reference date for the range. Defaults to today.

    Returns:
        pd.DataFrame: The matching rows.
    """
    df = filter_by_range(df, date_range, today=today)
    if category:
        df = df[df['category'] == category]
    if search and not df.empty:
        needle = search.lower()
        mask = (
            df['description'].str.lower().str.contains(needle, regex=False)
            | df['category'].str.lower().str.contains(needle, regex=False)
            | df['amount'].map(lambda v: f'{v:.2f}').str.contains(needle, regex=False)
        )
        df = df[mask]
    return df.sort_values(by=SortKey(sort_by).value, ascending=ascending, kind='stable')


def category_totals(df: pd.DataFrame, hide_empty: bool = False) -> pd.DataFrame:
    """Sum the amounts per category.

    Args:
        df: DataFrame built by :func:`to_frame`.
        hide_empty: Drop categories without expenses.

    Returns:
        pd.DataFrame: Indexed by category in their fixed order, with the columns
        `total`, `count` and `percentage` (share of the overall total, 0-100).
    """
    categories = [c.value for c in Category]
    grouped = df.groupby('category')['amount'].agg(['sum', 'count'])
    out = pd.DataFrame(index=pd.Index(categories, name='category'))
    out['total'] = grouped['sum'].reindex(categories).fillna(0.0).round(2)
    out['count'] = grouped['count'].reindex(categories).fillna(0).astype(int)

    overall = out['total'].sum()
    out['percentage'] = (out['total'] / overall * 100.0).round(2) if overall else 0.0

    if hide_empty:
        out = out[out['count'] > 0]
    return out


def monthly_totals(df: pd.DataFrame) -> pd.DataFrame:
    """Sum the amounts per calendar month.

    Returns:
        pd.DataFrame: Indexed by ``YYYY-MM`` in ascending order with the columns `total` and `count`.
    """
    if df.empty:
        return pd.DataFrame(columns=['total', 'count'], index=pd.Index([], name='month'))
    months = df['date'].dt.to_period('M').astype(str).rename('month')
    out = df.groupby(months)['amount'].agg(total='sum', count='count')
    out['total'] = out['total'].round(2)
    return out.sort_index()


def overview(df: pd.DataFrame, date_range: Optional[str] = None,
             today: Optional[datetime.date] = None) -> Dict[str, Any]:
    """Summarize the owner's spending.

    Args:
        df: DataFrame built by :func:`to_frame`.
        date_range: Range used for `range_total`. Defaults to the configured range.
        today: Reference date. Defaults to today.

    Returns:
        dict: `total`, `count`, `average`, `current_month_total`, `range_total`
        and `top_category_total` as Decimal; `top_category` as str or None;
        `date_range` as str.
    """
    if date_range is None:
        date_range = lib.settings['date_range']

    count = int(len(df))
    total = float(df['amount'].sum()) if count else 0.0
    totals = category_totals(df, hide_empty=True)
    if totals.empty:
        top_category, top_total = None, 0.0
    else:
        top_category = str(totals['total'].idxmax())
        top_total = float(totals['total'].max())

    current_month = filter_by_range(df, DateRange.CurrentMonth, today=today)
    in_range = filter_by_range(df, date_range, today=today)

    result = {
        'total': _to_decimal(total),
        'count': count,
        'average': _to_decimal(total / count if count else 0.0),
        'top_category': top_category,
        'top_category_total': _to_decimal(top_total),
        'current_month_total': _to_decimal(current_month['amount'].sum() if not current_month.empty else 0.0),
        'date_range': str(date_range),
        'range_total': _to_decimal(in_range['amount'].sum() if not in_range.empty else 0.0),
    }
    logging.debug(f'Overview: {result}')
    return result


def format_overview(summary: Dict[str, Any], loc: Optional[str] = None) -> Dict[str, str]:
    """Format the amounts of an overview for display with the configured locale."""
    loc = loc or lib.settings['locale']
    out = {}
    for key, value in summary.items():
        if isinstance(value, Decimal):
            out[key] = locale.format_currency_value(value, loc)
        else:
            out[key] = '' if value is None else str(value)
    return out
