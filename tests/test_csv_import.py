import pytest

from extrato.errors import EmptyStatementError, MissingHeaderError, UnrecognizedFormatError
from extrato.services.csv_import import decode_statement, detect_format, parse_statement

MERCADOPAGO_CSV = """INITIAL_BALANCE;CREDITS;DEBITS;FINAL_BALANCE
1.000,00;500,00;-200,00;1.300,00

RELEASE_DATE;TRANSACTION_TYPE;REFERENCE_ID;TRANSACTION_NET_AMOUNT;PARTIAL_BALANCE
01-03-2024;Pix recebido Joao;123;500,00;1.500,00
02-03-2024;Pagamento com QR Pix Padaria;124;-1.200,00;300,00
32-03-2024;linha com data ruim;125;-1,00;299,00
"""

NUBANK_CSV = """Data,Valor,Identificador,Descrição
01/03/2024,-45.90,abc-1,Compra no débito - Padaria, Pão e Cia
02/03/2024,1500.00,abc-2,Transferência recebida pelo Pix - ACME
"""

BRADESCO_CSV = """Extrato de: Agência: 1234 | Conta: 56789-0
Data;Histórico;Docto.;Crédito (R$);Débito (R$);Saldo (R$)
01/03/2024;SALDO ANTERIOR;;;;1.000,00
01/03/2024;PIX RECEBIDO;111;500,00;;1.500,00
02/03/2024;TARIFA BANCARIA;112;;12,50;1.487,50
03/03/2024;COMPRA DEBITO PADARIA;113;;30,00;1.457,50
;;Total;500,00;42,50;
Últimos Lancamentos
Data;Histórico;Docto.;Crédito (R$);Débito (R$);Saldo (R$)
04/03/2024;PIX ENVIADO;114;;100,00;1.357,50
05/03/2024;RENDIMENTO;115;1,23;;1.358,73
;;Total;1,23;100,00;
Os dados acima têm como base as informações disponíveis no momento
"""


def test_detect_format():
    assert detect_format(MERCADOPAGO_CSV) == "mercadopago"
    assert detect_format(NUBANK_CSV) == "nubank"
    assert detect_format(BRADESCO_CSV) == "bradesco"


def test_unknown_format_is_rejected():
    with pytest.raises(UnrecognizedFormatError) as exc:
        parse_statement("date,amount,description\n2024-03-01,10,x\n")
    assert "Mercado Pago, Nubank, Bradesco" in exc.value.message


def test_parse_mercadopago():
    result = parse_statement(MERCADOPAGO_CSV)

    assert result.dialect == "mercadopago"
    assert len(result.transactions) == 2
    assert result.skipped == 1

    first, second = result.transactions
    assert first.date == "2024-03-01"
    assert first.amount == pytest.approx(500.0)
    assert first.direction == "income"
    assert first.reference_id == "123"
    assert second.amount == pytest.approx(-1200.0)
    assert second.direction == "spend"
    assert second.balance == pytest.approx(300.0)


def test_parse_nubank_keeps_commas_in_description():
    result = parse_statement(NUBANK_CSV)

    assert result.dialect == "nubank"
    assert [t.description for t in result.transactions] == [
        "Compra no débito - Padaria, Pão e Cia",
        "Transferência recebida pelo Pix - ACME",
    ]
    assert result.transactions[0].amount == pytest.approx(-45.9)
    assert result.transactions[0].direction == "spend"
    assert result.transactions[1].direction == "income"


def test_parse_bradesco_reads_every_section():
    """Two sections (3 + 2 movements) around a Total line; balance-only lines are ignored."""
    result = parse_statement(BRADESCO_CSV)

    assert result.dialect == "bradesco"
    assert [t.description for t in result.transactions] == [
        "PIX RECEBIDO",
        "TARIFA BANCARIA",
        "COMPRA DEBITO PADARIA",
        "PIX ENVIADO",
        "RENDIMENTO",
    ]
    assert result.skipped == 0

    tarifa = result.transactions[1]
    assert tarifa.amount == pytest.approx(-12.5)
    assert tarifa.direction == "spend"
    assert result.transactions[4].amount == pytest.approx(1.23)


def test_windows_line_endings():
    result = parse_statement(NUBANK_CSV.replace("\n", "\r\n"))
    assert len(result.transactions) == 2


def test_header_only_statement_is_empty():
    with pytest.raises(EmptyStatementError):
        parse_statement("Data,Valor,Identificador,Descrição\n")


def test_mercadopago_without_column_header():
    with pytest.raises(MissingHeaderError):
        parse_statement("RELEASE_DATE;TRANSACTION_TYPE\n")


def test_decode_statement_falls_back_to_cp1252():
    content = NUBANK_CSV.encode("cp1252")
    text = decode_statement(content)
    assert detect_format(text) == "nubank"
    assert "Pão" in text


def test_decode_statement_strips_bom():
    text = decode_statement(NUBANK_CSV.encode("utf-8-sig"))
    assert text.startswith("Data,")


@pytest.mark.parametrize("text", [MERCADOPAGO_CSV, NUBANK_CSV, BRADESCO_CSV])
def test_each_export_matches_exactly_one_signature(text):
    from extrato.services.csv_import import FORMAT_SIGNATURES

    matches = [dialect for dialect, signature in FORMAT_SIGNATURES if signature in text]
    assert len(matches) == 1
