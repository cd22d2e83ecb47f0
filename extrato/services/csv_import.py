# extrato/services/csv_import.py
# Role: Statement CSV import. Decodes the uploaded bytes, detects which bank
#       exported the file and parses it into ParsedTransaction records.

"""
Supported dialects:

- mercadopago: ';'-separated, metadata lines before a RELEASE_DATE header,
  dates DD-MM-YYYY, amounts in BR locale.
- nubank: ','-separated, one header line, dates DD/MM/YYYY, dot-decimal amounts;
  the description may itself contain commas.
- bradesco: ';'-separated, possibly several sections, each with its own header
  and closed by a ';;Total;' line, separate credit and debit columns.

Rows that cannot be read (too few columns, bad date) are skipped and counted.
"""

import logging
import re
from typing import Callable, Dict, List

from extrato.errors import (
    EmptyStatementError,
    MissingHeaderError,
    UnrecognizedFormatError,
)
from extrato.services.parsing import parse_date_to_iso, parse_money_br, parse_plain_float
from extrato.services.records import ParseResult, RawLine, raw_line_to_parsed

logger = logging.getLogger(__name__)

# ---- Format detection ----

# Checked in this order; first literal found wins
FORMAT_SIGNATURES = (
    ("mercadopago", "RELEASE_DATE;TRANSACTION_TYPE"),
    ("nubank", "Data,Valor,Identificador,Descrição"),
    ("bradesco", "Data;Histórico;Docto.;Crédito (R$);Débito (R$);Saldo (R$)"),
)

# Seeded bank code for each dialect (see extrato/services/seed.py)
DIALECT_BANK_CODES = {
    "mercadopago": "MELI",
    "nubank": "NU",
    "bradesco": "BBDC4",
}

DIALECT_NAMES = {
    "mercadopago": "Mercado Pago",
    "nubank": "Nubank",
    "bradesco": "Bradesco",
}

STATEMENT_ENCODINGS = ("utf-8-sig", "cp1252", "latin-1")

MERCADOPAGO_HEADER_RE = re.compile(
    r"^RELEASE_DATE;TRANSACTION_TYPE;REFERENCE_ID;TRANSACTION_NET_AMOUNT;PARTIAL_BALANCE",
    re.IGNORECASE,
)
BRADESCO_HEADER_RE = re.compile(
    r"^Data;Histórico;Docto\.;Crédito \(R\$\);Débito \(R\$\);Saldo \(R\$\)",
    re.IGNORECASE,
)
BRADESCO_TOTAL_PREFIX = ";;Total;"
BRADESCO_METADATA_PREFIXES = (
    "Extrato de:",
    "Filtro de resultados",
    "Os dados acima",
    "Últimos Lancamentos",
)
_LEADING_DATE_RE = re.compile(r"^\d{2}/\d{2}/\d{4}")
_EXACT_DATE_RE = re.compile(r"^\d{2}/\d{2}/\d{4}$")


def decode_statement(content: bytes) -> str:
    """
    Decode uploaded statement bytes.

    Bank exports come as UTF-8 (with or without BOM) or Windows-1252;
    latin-1 is the last resort since it never fails.
    """
    for encoding in STATEMENT_ENCODINGS:
        try:
            return content.decode(encoding)
        except UnicodeDecodeError:
            continue
    # unreachable: latin-1 maps every byte
    return content.decode("latin-1", errors="replace")


def normalize_newlines(text: str) -> List[str]:
    return text.replace("\r\n", "\n").replace("\r", "\n").split("\n")


def detect_format(text: str) -> str:
    for dialect, signature in FORMAT_SIGNATURES:
        if signature in text:
            return dialect
    raise UnrecognizedFormatError()


def _direction(amount) -> str:
    return "income" if (amount or 0) >= 0 else "spend"


# ---- Dialect parsers ----

def parse_mercadopago(text: str) -> ParseResult:
    """
    Parse a Mercado Pago account statement.

    RELEASE_DATE;TRANSACTION_TYPE;REFERENCE_ID;TRANSACTION_NET_AMOUNT;PARTIAL_BALANCE
    """
    lines = normalize_newlines(text)
    header_idx = next(
        (i for i, line in enumerate(lines) if MERCADOPAGO_HEADER_RE.match(line)),
        None,
    )
    if header_idx is None:
        raise MissingHeaderError(
            "Cabeçalho de transações não encontrado (linha com RELEASE_DATE ...)."
        )

    result = ParseResult(dialect="mercadopago")

    for line_no in range(header_idx + 1, len(lines)):
        line = lines[line_no]
        if not line.strip():
            continue

        raw = RawLine(line_no=line_no + 1, cells=line.split(";"))
        if len(raw.cells) < 5:
            result.skipped += 1
            continue

        release_date, tx_type, reference_id, net_amount, balance = raw.cells[:5]

        date_iso = parse_date_to_iso(release_date, "mercadopago")
        if date_iso is None:
            result.skipped += 1
            continue

        amount = parse_money_br(net_amount)
        result.transactions.append(
            raw_line_to_parsed(
                raw,
                "mercadopago",
                date_iso=date_iso,
                description=tx_type.strip(),
                amount=amount,
                direction=_direction(amount),
                reference_id=reference_id.strip(),
                balance=parse_money_br(balance),
            )
        )

    return result


def parse_nubank(text: str) -> ParseResult:
    """
    Parse a Nubank account export: Data,Valor,Identificador,Descrição
    """
    numbered = [
        (i + 1, line) for i, line in enumerate(normalize_newlines(text)) if line.strip()
    ]

    result = ParseResult(dialect="nubank")

    # first non-empty line is the header
    for line_no, line in numbered[1:]:
        parts = line.split(",")
        raw = RawLine(line_no=line_no, cells=parts)
        if len(parts) < 4:
            result.skipped += 1
            continue

        date_iso = parse_date_to_iso(parts[0], "nubank")
        if date_iso is None:
            result.skipped += 1
            continue

        amount = parse_plain_float(parts[1])
        result.transactions.append(
            raw_line_to_parsed(
                raw,
                "nubank",
                date_iso=date_iso,
                description=",".join(parts[3:]).strip(),
                amount=amount,
                direction=_direction(amount),
                reference_id=parts[2].strip(),
            )
        )

    return result


def parse_bradesco(text: str) -> ParseResult:
    """
    Parse a Bradesco extract: one or more sections of
    Data;Histórico;Docto.;Crédito (R$);Débito (R$);Saldo (R$)
    each closed by a ';;Total;' line.
    """
    lines = normalize_newlines(text)
    header_indices = [i for i, line in enumerate(lines) if BRADESCO_HEADER_RE.match(line)]
    if not header_indices:
        raise MissingHeaderError(
            "Cabeçalho de transações não encontrado (linha com Data;Histórico;Docto...)."
        )

    result = ParseResult(dialect="bradesco")

    for header_idx in header_indices:
        for line_no in range(header_idx + 1, len(lines)):
            trimmed = lines[line_no].strip()

            if BRADESCO_HEADER_RE.match(trimmed) or trimmed.startswith(BRADESCO_TOTAL_PREFIX):
                break

            if (
                not trimmed
                or trimmed.startswith(BRADESCO_METADATA_PREFIXES)
                or not _LEADING_DATE_RE.match(trimmed)
            ):
                continue

            raw = RawLine(line_no=line_no + 1, cells=trimmed.split(";"))
            if len(raw.cells) < 6:
                result.skipped += 1
                continue

            data, historico, docto, credito, debito, saldo = raw.cells[:6]
            if not _EXACT_DATE_RE.match(data.strip()):
                result.skipped += 1
                continue

            date_iso = parse_date_to_iso(data, "bradesco")
            if date_iso is None:
                result.skipped += 1
                continue

            credit = parse_money_br(credito)
            debit = parse_money_br(debito)

            if credit:
                amount, direction = credit, "income"
            elif debit:
                amount, direction = -abs(debit), "spend"
            else:
                # balance-only line
                continue

            result.transactions.append(
                raw_line_to_parsed(
                    raw,
                    "bradesco",
                    date_iso=date_iso,
                    description=historico.strip(),
                    amount=amount,
                    direction=direction,
                    reference_id=docto.strip(),
                    balance=parse_money_br(saldo),
                )
            )

    return result


PARSERS: Dict[str, Callable[[str], ParseResult]] = {
    "mercadopago": parse_mercadopago,
    "nubank": parse_nubank,
    "bradesco": parse_bradesco,
}


def parse_statement(text: str) -> ParseResult:
    """
    Detect the dialect of `text` and parse it.

    Raises UnrecognizedFormatError / MissingHeaderError for unusable files and
    EmptyStatementError when no transaction could be read.
    """
    dialect = detect_format(text)
    result = PARSERS[dialect](text)

    logger.info(
        "Parsed %s statement: %d transactions, %d skipped rows",
        DIALECT_NAMES[dialect],
        len(result.transactions),
        result.skipped,
    )

    if not result.transactions:
        raise EmptyStatementError()
    return result
