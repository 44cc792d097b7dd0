"""
Shared text utilities for the Compliance Screening Core

Normalisation helpers used by the classifier, the reconciler and the
watchlist lookups, plus the log-sanitising routine every module applies
to user-provided text before it reaches a log line.
"""

import math
import re
import unicodedata
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

_CONTROL_CHARS = re.compile(r'[\r\n\x00-\x1f\x7f-\x9f]')
_WHITESPACE = re.compile(r'\s+')
_NUMERIC_NOISE = re.compile(r'[,\s$€£¥]')
_NUMBER = re.compile(r'^[+-]?(\d+(\.\d*)?|\.\d+)([eE][+-]?\d+)?$')
_ELIDED_PUNCTUATION = re.compile(r"[.'\u2019]")
_PUNCTUATION = re.compile(r'[^\w\s]')


def sanitize_for_logging(text: Any) -> str:
    """Sanitize user input for safe logging, preventing log injection

    Removes newlines, carriage returns, and other control characters
    that could be used to inject fake log entries.

    Args:
        text: User input text

    Returns:
        Sanitized text safe for logging
    """
    if text is None or text == '':
        return ''
    sanitized = _CONTROL_CHARS.sub(' ', str(text))
    sanitized = _WHITESPACE.sub(' ', sanitized).strip()
    return sanitized[:500] if len(sanitized) > 500 else sanitized


def contains_control_characters(text: str) -> bool:
    """True if text holds any Unicode control/format character"""
    return any(unicodedata.category(char).startswith('C') for char in text)


def normalize_text(value: Any) -> str:
    """Case-fold and collapse whitespace for comparisons"""
    if value is None:
        return ''
    text = unicodedata.normalize('NFKC', str(value))
    return _WHITESPACE.sub(' ', text).strip().casefold()


def normalize_name(name: str) -> str:
    """Normalize an entity name for fuzzy matching

    Strips accents and case-folds. Periods and apostrophes are removed
    outright ('S.A.' -> 'sa', "O'Neil" -> 'oneil'); any other punctuation
    separates words. 'Société Générale, S.A.' and 'societe generale sa'
    therefore compare equal.
    """
    if not name:
        return ''
    decomposed = unicodedata.normalize('NFD', name)
    stripped = ''.join(c for c in decomposed if unicodedata.category(c) != 'Mn')
    stripped = _ELIDED_PUNCTUATION.sub('', stripped)
    stripped = _PUNCTUATION.sub(' ', stripped)
    return _WHITESPACE.sub(' ', stripped).strip().casefold()


def parse_number(value: Any) -> Optional[float]:
    """Parse a UI-entered numeric value

    Accepts ints, floats and strings such as '1,234.50' or '$ 40000'.
    Returns None when the value cannot be read as a finite number.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, Decimal):
        number = float(value)
    else:
        text = _NUMERIC_NOISE.sub('', str(value))
        if not _NUMBER.match(text):
            return None
        try:
            number = float(Decimal(text))
        except (InvalidOperation, ValueError):
            return None
    if math.isnan(number) or math.isinf(number):
        return None
    return number


def normalize_value(value: Any) -> str:
    """Canonical comparison key for an extracted field value

    Numbers compare by magnitude ('40,000.00' == 40000); everything else
    compares case- and whitespace-insensitively.
    """
    number = parse_number(value)
    if number is not None:
        return repr(float(number))
    return normalize_text(value)
