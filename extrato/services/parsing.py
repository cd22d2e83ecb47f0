# extrato/services/parsing.py
# Role: Locale-aware scalar parsers shared by the statement dialect parsers.

import math
import re
from datetime import date
from typing import Optional

# Dialect -> fixed-width day/month/year pattern
_DATE_PATTERNS = {
    "mercadopago": re.compile(r"^(\d{2})-(\d{2})-(\d{4})$"),
    "nubank": re.compile(r"^(\d{2})/(\d{2})/(\d{4})$"),
    "bradesco": re.compile(r"^(\d{2})/(\d{2})/(\d{4})$"),
}


def _finite_or_none(s: str) -> Optional[float]:
    if not s:
        return None
    try:
        v = float(s)
    except ValueError:
        return None
    if not math.isfinite(v):
        return None
    return v


def parse_money_br(value) -> Optional[float]:
    """
    Converts Brazilian formatted amounts like '1.234,56' or '-50,00'
    into a float.

    Every '.' is a thousands separator; the first ',' is the decimal mark.
    Returns None when the value is missing or cannot be parsed.
    """
    if value is None:
        return None

    s = str(value).strip()

    # Replace Unicode minus with normal minus
    s = s.replace("−", "-")

    s = s.replace(".", "").replace(",", ".", 1)

    return _finite_or_none(s)


def parse_plain_float(value) -> Optional[float]:
    """Dot-decimal amount ('-12.5'), as exported by Nubank."""
    if value is None:
        return None
    return _finite_or_none(str(value).strip().replace("−", "-"))


def parse_date_to_iso(value, dialect: str) -> Optional[str]:
    """
    'DD-MM-YYYY' (mercadopago) or 'DD/MM/YYYY' (nubank, bradesco) -> 'YYYY-MM-DD'.

    None when the text does not match the dialect's pattern or names an
    impossible calendar day (31/02/2024).
    """
    if not value:
        return None

    pattern = _DATE_PATTERNS.get(dialect)
    if pattern is None:
        raise ValueError(f"unknown dialect: {dialect}")

    m = pattern.match(str(value).strip())
    if not m:
        return None

    day, month, year = (int(g) for g in m.groups())
    try:
        return date(year, month, day).isoformat()
    except ValueError:
        return None

