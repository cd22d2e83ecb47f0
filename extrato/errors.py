# extrato/errors.py
# Role: Domain exceptions and the FastAPI handlers that turn them into JSON responses.

"""
Error taxonomy.

Services raise these; the API layer renders them as
{"error": <code>, "message": <human readable, pt-BR>} with the matching status.
"""

import logging
from typing import Any, List, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class ExtratoError(Exception):
    status_code = 500
    code = "InternalServerError"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


# ---- Statement format (fatal to the whole upload) ----

class StatementFormatError(ExtratoError):
    status_code = 400
    code = "StatementFormatError"


class UnrecognizedFormatError(StatementFormatError):
    code = "UnrecognizedFormat"

    def __init__(self, message: str = (
        "Formato de CSV não reconhecido. "
        "Formatos suportados: Mercado Pago, Nubank, Bradesco"
    )):
        super().__init__(message)


class MissingHeaderError(StatementFormatError):
    code = "MissingHeader"


class EmptyStatementError(StatementFormatError):
    code = "EmptyStatement"

    def __init__(self, message: str = "Nenhuma transação encontrada no CSV."):
        super().__init__(message)


# ---- LLM classification ----

class ClassificationError(ExtratoError):
    """
    A batch could not be classified.

    `completed` keeps what earlier batches produced so callers can report
    partial progress; nothing from a failed run is persisted.
    """

    status_code = 502
    code = "ClassificationError"

    def __init__(
        self,
        message: str,
        batch_index: Optional[int] = None,
        completed: Optional[List[Any]] = None,
    ):
        super().__init__(message)
        self.batch_index = batch_index
        self.completed = list(completed or [])


class ClassifierUnavailableError(ExtratoError):
    status_code = 503
    code = "ClassifierUnavailable"

    def __init__(self, message: str = "OPENAI_API_KEY não configurada"):
        super().__init__(message)


# ---- Auth ----

class UnauthorizedError(ExtratoError):
    status_code = 401
    code = "Unauthorized"

    def __init__(self, message: str = "x-api-key ausente ou inválida"):
        super().__init__(message)


# ---- Persistence / CRUD ----

class ReferenceIntegrityError(ExtratoError):
    status_code = 422
    code = "ReferenceIntegrityError"


class NotFoundError(ExtratoError):
    status_code = 404
    code = "NotFound"


class ConflictError(ExtratoError):
    status_code = 409
    code = "Conflict"


def _error_body(exc: ExtratoError) -> dict:
    body = {"error": exc.code, "message": exc.message}
    if isinstance(exc, ClassificationError) and exc.batch_index is not None:
        body["batchIndex"] = exc.batch_index
        body["classifiedBeforeFailure"] = len(exc.completed)
    return body


async def extrato_error_handler(request: Request, exc: ExtratoError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    else:
        logger.info("%s %s rejected: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=_error_body(exc))


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ExtratoError, extrato_error_handler)
