import hashlib

import pytest

from extrato.services.import_helpers import compute_hash, format_amount_for_hash, slugify
from extrato.services.parsing import (
    parse_date_to_iso,
    parse_money_br,
    parse_plain_float,
)


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("1.234,56", 1234.56),
        ("-50,00", -50.0),
        ("1.234.567,89", 1234567.89),
        ("−12,30", -12.3),
        ("  7,5 ", 7.5),
        ("0,00", 0.0),
    ],
)
def test_parse_money_br(raw, expected):
    assert parse_money_br(raw) == pytest.approx(expected)


@pytest.mark.parametrize("raw", [None, "", "   ", "abc", "nan", "inf"])
def test_parse_money_br_rejects_missing_and_non_finite(raw):
    assert parse_money_br(raw) is None


def test_parse_plain_float_uses_dot_decimal():
    assert parse_plain_float("-45.90") == pytest.approx(-45.9)
    assert parse_plain_float("") is None


def test_parse_date_to_iso_per_dialect():
    assert parse_date_to_iso("31-01-2024", "mercadopago") == "2024-01-31"
    assert parse_date_to_iso("05/03/2024", "nubank") == "2024-03-05"
    assert parse_date_to_iso("05/03/2024", "bradesco") == "2024-03-05"

    # wrong separator for the dialect
    assert parse_date_to_iso("05/03/2024", "mercadopago") is None
    assert parse_date_to_iso("2024-03-05", "nubank") is None


def test_parse_date_to_iso_rejects_impossible_days():
    assert parse_date_to_iso("31/02/2024", "nubank") is None
    assert parse_date_to_iso("29/02/2024", "nubank") == "2024-02-29"
    assert parse_date_to_iso("29/02/2023", "nubank") is None



def test_hash_amount_rendering():
    """Integral amounts hash without a decimal part, others in shortest form."""
    assert format_amount_for_hash(-50.0) == "-50"
    assert format_amount_for_hash(-50.5) == "-50.5"
    assert format_amount_for_hash(1234.56) == "1234.56"
    assert format_amount_for_hash(None) == "null"


def test_compute_hash_is_sha256_of_date_amount_description():
    expected = hashlib.sha256("2024-03-01|-50|PIX ENVIADO".encode("utf-8")).hexdigest()
    assert compute_hash("2024-03-01", -50.0, "PIX ENVIADO") == expected


def test_compute_hash_accepts_date_objects():
    from datetime import date

    assert compute_hash(date(2024, 3, 1), 10.5, "X") == compute_hash("2024-03-01", 10.5, "X")


def test_slugify():
    assert slugify("Alimentação / Mercado") == "alimentacao-mercado"
    assert slugify("  Cartão de Crédito ") == "cartao-de-credito"
    assert slugify("Investimentos-Rendimentos") == "investimentos-rendimentos"
