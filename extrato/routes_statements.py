# routes_statements.py
"""
Statement ingestion: JSON batches of already classified transactions, and
raw CSV uploads that go through parse -> classify -> ingest.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, UploadFile
from sqlalchemy import func
from sqlalchemy.orm import Session

from models import Statement, Transaction
from extrato.context import AppContext
from extrato.deps import get_ctx, get_db
from extrato.errors import NotFoundError, StatementFormatError
from extrato.schemas import IngestRequest, IngestResponse, StatementOut, UploadResponse
from extrato.services.auto_categorize import build_classifier
from extrato.services.ingest import ingest_batch, ingest_statement_file

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/statements", tags=["statements"])


@router.post("/ingest", response_model=IngestResponse, response_model_by_alias=True)
def ingest(payload: IngestRequest, db: Session = Depends(get_db)):
    result = ingest_batch(
        db,
        user_id=payload.user_id,
        period_start=payload.period_start,
        period_end=payload.period_end,
        source_file=payload.source_file,
        transactions=payload.transacoes,
        bank_id=payload.bank_id,
    )
    return IngestResponse(
        statement_id=result.statement_id,
        inserted=result.inserted,
        duplicates=result.duplicates,
    )


@router.post("/upload", response_model=UploadResponse, response_model_by_alias=True)
def upload(
    file: UploadFile = File(...),
    user_id: int = Form(1, alias="userId"),
    bank_id: Optional[int] = Form(None, alias="bankId"),
    ctx: AppContext = Depends(get_ctx),
    db: Session = Depends(get_db),
):
    filename = file.filename or ""
    if not filename.lower().endswith(".csv"):
        raise StatementFormatError("Envie um arquivo .csv")

    content = file.file.read(ctx.settings.max_upload_bytes + 1)
    if len(content) > ctx.settings.max_upload_bytes:
        raise StatementFormatError(
            f"Arquivo maior que o limite de {ctx.settings.max_upload_bytes} bytes"
        )

    logger.info("Upload %s (%d bytes) for user %s", filename, len(content), user_id)

    result = ingest_statement_file(
        db,
        classifier_factory=lambda resolved_bank_id: build_classifier(ctx, db, resolved_bank_id),
        content=content,
        source_file=filename,
        user_id=user_id,
        bank_id=bank_id,
    )
    return UploadResponse(
        statement_id=result.statement_id,
        inserted=result.inserted,
        duplicates=result.duplicates,
        total_classified=result.total_classified,
        skipped=result.skipped,
        dialect=result.dialect,
    )


@router.get("/{statement_id}", response_model=StatementOut, response_model_by_alias=True)
def get_statement(statement_id: int, db: Session = Depends(get_db)):
    statement = db.get(Statement, statement_id)
    if statement is None:
        raise NotFoundError("Statement não encontrado")

    count = (
        db.query(func.count(Transaction.id))
        .filter(Transaction.statement_id == statement_id)
        .scalar()
        or 0
    )
    return StatementOut(
        id=statement.id,
        user_id=statement.user_id,
        period_start=statement.period_start,
        period_end=statement.period_end,
        source_file=statement.source_file,
        bank_id=statement.bank_id,
        transaction_count=int(count),
    )
