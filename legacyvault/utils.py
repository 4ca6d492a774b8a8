"""
Utility functions for formatting and hashing.
"""

import hashlib
from datetime import datetime
from typing import Any, List, Optional

CURRENCY_SYMBOLS = {
    'USD': '$',
    'AUD': 'A$',
    'CAD': 'C$',
    'EUR': '€',
    'GBP': '£',
    'JPY': '¥',
    'INR': '₹',
}


def format_date(date_value: Any) -> str:
    """
    Format a date value into a standard string.

    Args:
        date_value: Date string or datetime object

    Returns:
        Formatted date string (DD Month YYYY)
    """
    if date_value is None:
        return ''

    if isinstance(date_value, datetime):
        return date_value.strftime('%d %B %Y')

    # Try parsing ISO format
    if isinstance(date_value, str):
        try:
            dt = datetime.fromisoformat(date_value.replace('Z', '+00:00'))
            return dt.strftime('%d %B %Y')
        except ValueError:
            pass

    return str(date_value)


def format_currency(amount: Any, currency: Optional[str] = 'USD') -> str:
    """
    Format a numeric amount as currency.

    Args:
        amount: Numeric amount (int, float or Decimal)
        currency: ISO currency code; unknown codes are written after the amount

    Returns:
        Formatted currency string
    """
    if amount is None:
        return ''

    try:
        num = float(amount)
    except (ValueError, TypeError):
        return str(amount)

    text = f'{int(num):,}' if num == int(num) else f'{num:,.2f}'
    code = (currency or 'USD').upper()
    symbol = CURRENCY_SYMBOLS.get(code)
    if symbol:
        return f'{symbol}{text}'
    return f'{text} {code}'


def format_percentage(value: Any) -> str:
    """
    Format a numeric value as percentage.

    Args:
        value: Numeric percentage (e.g., 50 for 50%)

    Returns:
        Formatted percentage string
    """
    if value is None:
        return ''

    try:
        num = float(value)
        if num == int(num):
            return f'{int(num)}%'
        return f'{num:.2f}%'
    except (ValueError, TypeError):
        return str(value)


def join_names(names: List[str]) -> str:
    """Join names as 'A', 'A and B' or 'A, B and C'."""
    names = [n for n in names if n]
    if not names:
        return ''
    if len(names) == 1:
        return names[0]
    return ', '.join(names[:-1]) + ' and ' + names[-1]


def pluralize(count: int, singular: str, plural: Optional[str] = None) -> str:
    """'1 asset', '3 assets'."""
    word = singular if count == 1 else (plural or f'{singular}s')
    return f'{count} {word}'


def calculate_sha256(data: bytes) -> str:
    """
    Calculate SHA256 hash of data.

    Args:
        data: Bytes to hash

    Returns:
        Hexadecimal hash string
    """
    return hashlib.sha256(data).hexdigest()
