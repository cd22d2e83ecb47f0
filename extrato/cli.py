# extrato/cli.py
"""
Command line entry points.

    python -m extrato.cli init-db
    python -m extrato.cli classify extrato.csv -o extrato_classificado.xlsx [--ingest]
    python -m extrato.cli serve --port 8080
"""

import argparse
import logging
import os
import sys

import pandas as pd

from extrato.context import build_context
from extrato.errors import ExtratoError
from extrato.services.auto_categorize import build_classifier
from extrato.services.csv_import import decode_statement, parse_statement
from extrato.services.dashboard import classified_frame, local_summary
from extrato.services.ingest import (
    classified_to_rows,
    default_bank_for_dialect,
    ingest_batch,
    statement_period,
)
from extrato.services.seed import seed_reference_data
from extrato.settings import Settings, configure_logging

logger = logging.getLogger("extrato.cli")

# Column names of the "Transações" sheet
EXPORT_COLUMNS = {
    "date": "data",
    "description": "descricao_original",
    "amount": "valor",
    "type": "tipo",
    "counterparty_normalized": "counterparty_normalized",
    "payment_method": "meio_pagamento",
    "category_id": "category_id",
    "subcategory_id": "subcategory_id",
    "category_label": "categoria_label",
    "subcategory_label": "subcategoria_label",
    "movement_kind": "movement_kind",
    "is_internal_transfer": "is_internal_transfer",
    "is_card_bill_payment": "is_card_bill_payment",
    "is_investment": "is_investment",
    "is_refund": "is_refund",
    "is_fee": "is_fee",
    "confidence": "confianca",
}


def write_workbook(frame: pd.DataFrame, overview: dict, breakdown: pd.DataFrame, path: str) -> None:
    transactions = frame[list(EXPORT_COLUMNS)].rename(columns=EXPORT_COLUMNS)
    for col in ("is_internal_transfer", "is_card_bill_payment", "is_investment", "is_refund", "is_fee"):
        transactions[col] = transactions[col].astype(int)

    with pd.ExcelWriter(path, engine="openpyxl") as writer:
        transactions.to_excel(writer, sheet_name="Transações", index=False)
        breakdown.to_excel(writer, sheet_name="Resumo por categoria", index=False)
        pd.DataFrame([overview]).to_excel(writer, sheet_name="Visão geral", index=False)


def init_db_cmd(args, settings: Settings) -> int:
    ctx = build_context(settings, create_tables=True)
    with ctx.SessionLocal() as db:
        created = seed_reference_data(db)
    print(f"Banco pronto em {settings.database_url} ({created})")
    return 0


def classify_cmd(args, settings: Settings) -> int:
    if not settings.openai_api_key:
        print("Faltou OPENAI_API_KEY no .env", file=sys.stderr)
        return 1

    with open(args.csv, "rb") as fh:
        content = fh.read()

    ctx = build_context(settings)
    with ctx.SessionLocal() as db:
        seed_reference_data(db)

        parsed = parse_statement(decode_statement(content))
        bank_id = args.bank_id or default_bank_for_dialect(db, parsed.dialect)
        print(f"Formato: {parsed.dialect} | {len(parsed.transactions)} transações | {parsed.skipped} linhas ignoradas")

        classifier = build_classifier(ctx, db, bank_id)
        classified = classifier.classify(parsed.transactions, bank_id=bank_id)

        frame = classified_frame(classified)
        overview, breakdown = local_summary(frame, settings.investment_income_slug)
        write_workbook(frame, overview, breakdown, args.output)
        print(f"Arquivo gerado: {args.output}")

        if args.ingest:
            rows, dropped = classified_to_rows(db, classified)
            if not rows:
                print("Nada para gravar no banco.", file=sys.stderr)
                return 1
            period_start, period_end = statement_period(rows)
            result = ingest_batch(
                db,
                user_id=args.user_id,
                period_start=period_start,
                period_end=period_end,
                source_file=os.path.basename(args.csv),
                transactions=rows,
                bank_id=bank_id,
            )
            print(
                f"Gravado no statement {result.statement_id}: "
                f"{result.inserted} inseridas, {result.duplicates} duplicadas, {dropped} sem valor"
            )
    return 0


def serve_cmd(args, settings: Settings) -> int:
    import uvicorn

    uvicorn.run("main:app", host=args.host, port=args.port, reload=args.reload)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="extrato", description="Classificador de extratos bancários")
    sub = parser.add_subparsers(dest="command", required=True)

    p_init = sub.add_parser("init-db", help="Cria as tabelas e os dados de referência")
    p_init.set_defaults(func=init_db_cmd)

    p_classify = sub.add_parser("classify", help="Classifica um CSV e gera uma planilha")
    p_classify.add_argument("csv", help="Caminho do CSV exportado pelo banco")
    p_classify.add_argument("-o", "--output", default="extrato_classificado.xlsx")
    p_classify.add_argument("--bank-id", type=int, default=None)
    p_classify.add_argument("--ingest", action="store_true", help="Também grava as transações no banco")
    p_classify.add_argument("--user-id", type=int, default=1)
    p_classify.set_defaults(func=classify_cmd)

    p_serve = sub.add_parser("serve", help="Sobe a API")
    p_serve.add_argument("--host", default="127.0.0.1")
    p_serve.add_argument("--port", type=int, default=8080)
    p_serve.add_argument("--reload", action="store_true")
    p_serve.set_defaults(func=serve_cmd)

    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    settings = Settings.from_env()
    configure_logging(settings.log_level)

    try:
        return args.func(args, settings)
    except ExtratoError as e:
        logger.error("%s: %s", e.code, e.message)
        return 2


if __name__ == "__main__":
    sys.exit(main())
