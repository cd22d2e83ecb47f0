# extrato/services/auto_categorize.py
"""
LLM batch classification of parsed statement transactions.

Design goals:
- Strict: the model must answer with the json_schema below; every item is
  validated again on our side and any violation fails the run
- Ordered: batches are sent one at a time and results keep input order
- Bounded: per-request timeout and retries live on the OpenAI client,
  an overall deadline is checked between batches

Public API:
    BatchClassifier(client, model, rules, system_prompt, ...).classify(parsed, bank_id)
        -> list[ClassifiedTransaction]
    build_classifier(ctx, db) -> BatchClassifier
"""

from __future__ import annotations

import json
import logging
import os
import re
import time
from typing import Any, Dict, List, Literal, Optional, Sequence, TypeVar, Union

from jinja2 import Environment, FileSystemLoader, StrictUndefined
from openai import OpenAIError
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from sqlalchemy.orm import Session

from extrato.errors import ClassificationError, ClassifierUnavailableError
from extrato.services.parsing import parse_money_br
from extrato.services.records import ClassifiedTransaction, ParsedTransaction
from extrato.services import reference

logger = logging.getLogger(__name__)

PROMPTS_DIR = os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "prompts")
RULES_PATH = os.path.join(PROMPTS_DIR, "rules.json")
SCHEMA_NAME = "classificacao_extrato"

_JSON_FENCE_RE = re.compile(r"^\s*```(?:json)?\s*|\s*```\s*$", re.IGNORECASE)
_TRAILING_OBJECT_RE = re.compile(r"\{[\s\S]*\}$")

T = TypeVar("T")


# ---- Output contract ----

_ITEM_PROPERTIES: Dict[str, Any] = {
    "date": {"type": ["string", "null"]},
    "description": {"type": "string"},
    "amount": {"type": ["number", "null"]},
    "type": {"type": "string", "enum": ["income", "spend"]},
    "counterparty_normalized": {"type": "string"},
    "payment_method": {"type": "string"},
    "payment_method_id": {"type": ["integer", "null"]},
    "bank_id": {"type": ["integer", "null"]},
    "category_id": {"type": ["integer", "null"]},
    "subcategory_id": {"type": ["integer", "null"]},
    "category_label": {"type": "string"},
    "subcategory_label": {"type": ["string", "null"]},
    "movement_kind": {"type": "string", "enum": ["spend", "income", "transfer", "invest", "fee"]},
    "is_internal_transfer": {"type": "integer"},
    "is_card_bill_payment": {"type": "integer"},
    "is_investment": {"type": "integer"},
    "is_refund": {"type": "integer"},
    "confidence": {"type": "number"},
}

RESPONSE_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "transacoes": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": _ITEM_PROPERTIES,
                "required": list(_ITEM_PROPERTIES),
                "additionalProperties": False,
            },
        }
    },
    "required": ["transacoes"],
    "additionalProperties": False,
}


class ClassifiedItem(BaseModel):
    """Same contract as RESPONSE_SCHEMA items: every field required, nothing extra."""

    model_config = ConfigDict(extra="forbid")

    date: Optional[str]
    description: str
    amount: Optional[Union[float, str]]
    type: Literal["income", "spend"]
    counterparty_normalized: str
    payment_method: str
    payment_method_id: Optional[int]
    bank_id: Optional[int]
    category_id: Optional[int]
    subcategory_id: Optional[int]
    category_label: str
    subcategory_label: Optional[str]
    movement_kind: Literal["spend", "income", "transfer", "invest", "fee"]
    is_internal_transfer: int = Field(ge=0, le=1)
    is_card_bill_payment: int = Field(ge=0, le=1)
    is_investment: int = Field(ge=0, le=1)
    is_refund: int = Field(ge=0, le=1)
    confidence: float = Field(ge=0.0, le=1.0)


# ---- Helpers ----

def chunk(items: Sequence[T], size: int) -> List[List[T]]:
    if size < 1:
        raise ValueError("batch size must be >= 1")
    return [list(items[i:i + size]) for i in range(0, len(items), size)]


def _strip_json_fences(s: str) -> str:
    # Removes leading/trailing ```json fences if the model includes them.
    return _JSON_FENCE_RE.sub("", s).strip()


def _safe_json_loads(s: str) -> Optional[Dict[str, Any]]:
    try:
        data = json.loads(s)
    except ValueError:
        return None
    return data if isinstance(data, dict) else None


def parse_model_output(text: str, batch_index: int = 0) -> Dict[str, Any]:
    """
    Parse the model's answer.

    Direct json.loads first. If that fails, strip Markdown fences and take the
    trailing {...} object; that path means the model ignored the response
    format, so it is logged.
    """
    text = (text or "").strip()
    if not text:
        raise ClassificationError("Resposta vazia do modelo.", batch_index=batch_index)

    data = _safe_json_loads(text)
    if data is not None:
        return data

    cleaned = _strip_json_fences(text)
    m = _TRAILING_OBJECT_RE.search(cleaned)
    data = _safe_json_loads(m.group(0)) if m else None
    if data is None:
        raise ClassificationError(
            "Falha ao parsear JSON de saída do modelo.", batch_index=batch_index
        )

    logger.warning(
        "Batch %d: model answer was not plain JSON, recovered it by extraction (%d chars)",
        batch_index, len(text),
    )
    return data


def load_rules(path: str = RULES_PATH) -> Dict[str, Any]:
    with open(path, "r", encoding="utf-8") as fh:
        return json.load(fh)


def build_rules_document(db: Session, static_rules: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Static policy plus the live taxonomy (ids the model is allowed to use)."""
    rules = dict(static_rules if static_rules is not None else load_rules())
    rules["categorias"] = reference.category_hierarchy(db)
    rules["meios_de_pagamento"] = reference.list_payment_methods(db)
    rules["bancos"] = reference.list_banks(db)
    return rules


_jinja_env = Environment(
    loader=FileSystemLoader(PROMPTS_DIR),
    undefined=StrictUndefined,
    trim_blocks=True,
    lstrip_blocks=True,
    keep_trailing_newline=True,
)


def render_system_prompt(rules: Dict[str, Any], batch_size: int, bank: Optional[Dict[str, Any]] = None) -> str:
    template = _jinja_env.get_template("system_prompt.j2")
    return template.render(
        categories=rules.get("categorias", []),
        payment_methods=rules.get("meios_de_pagamento", []),
        bank=bank,
        batch_size=batch_size,
    )


# ---- Classifier ----

class BatchClassifier:
    def __init__(
        self,
        client: Any,
        model: str,
        rules: Dict[str, Any],
        system_prompt: str,
        batch_size: int = 80,
        deadline_seconds: Optional[float] = None,
    ):
        self.client = client
        self.model = model
        self.rules = rules
        self.system_prompt = system_prompt
        self.batch_size = batch_size
        self.deadline_seconds = deadline_seconds

    def _build_input(self, batch: List[ParsedTransaction]) -> List[Dict[str, str]]:
        user = {
            "regras": self.rules,
            "instrucao": (
                "Classifique o seguinte lote de transações conforme as regras do prompt "
                f"de sistema. Retorne no schema solicitado. Lote com {len(batch)} itens."
            ),
            "transacoes": [tx.to_prompt_item() for tx in batch],
        }
        return [
            {"role": "developer", "content": self.system_prompt},
            {"role": "user", "content": json.dumps(user, ensure_ascii=False)},
        ]

    def classify_batch(self, batch: List[ParsedTransaction], batch_index: int = 0) -> List[ClassifiedItem]:
        try:
            resp = self.client.responses.create(
                model=self.model,
                input=self._build_input(batch),
                text={
                    "format": {
                        "type": "json_schema",
                        "name": SCHEMA_NAME,
                        "schema": RESPONSE_SCHEMA,
                        "strict": True,
                    }
                },
            )
        except OpenAIError as e:
            raise ClassificationError(
                f"Falha na chamada ao modelo: {e}", batch_index=batch_index
            ) from e

        data = parse_model_output(getattr(resp, "output_text", "") or "", batch_index)

        raw_items = data.get("transacoes")
        if not isinstance(raw_items, list):
            raise ClassificationError(
                "Resposta do modelo sem a lista 'transacoes'.", batch_index=batch_index
            )

        try:
            items = [ClassifiedItem.model_validate(item) for item in raw_items]
        except ValidationError as e:
            raise ClassificationError(
                f"Resposta do modelo fora do schema: {e.error_count()} erro(s)",
                batch_index=batch_index,
            ) from e

        if len(items) != len(batch):
            raise ClassificationError(
                f"Modelo devolveu {len(items)} itens para um lote de {len(batch)}.",
                batch_index=batch_index,
            )
        return items

    def classify(self, parsed: Sequence[ParsedTransaction], bank_id: Optional[int] = None) -> List[ClassifiedTransaction]:
        batches = chunk(parsed, self.batch_size)
        results: List[ClassifiedTransaction] = []
        started = time.monotonic()

        for i, batch in enumerate(batches):
            if i > 0 and self.deadline_seconds is not None:
                elapsed = time.monotonic() - started
                if elapsed > self.deadline_seconds:
                    raise ClassificationError(
                        f"Tempo limite de classificação excedido após {i} de {len(batches)} lotes.",
                        batch_index=i,
                        completed=results,
                    )

            logger.info("Classifying batch %d/%d (%d items)", i + 1, len(batches), len(batch))
            try:
                items = self.classify_batch(batch, batch_index=i)
            except ClassificationError as e:
                e.batch_index = i
                e.completed = list(results)
                raise

            for source, item in zip(batch, items):
                results.append(self._post_process(source, item, bank_id))

        return results

    @staticmethod
    def _post_process(source: ParsedTransaction, item: ClassifiedItem, bank_id: Optional[int]) -> ClassifiedTransaction:
        # Date always comes from the parser (canonical ISO day)
        amount = item.amount
        if isinstance(amount, str):
            amount = parse_money_br(amount)

        return ClassifiedTransaction(
            date=source.date,
            description=item.description,
            amount=amount,
            type=item.type,
            counterparty_normalized=item.counterparty_normalized,
            payment_method=item.payment_method,
            payment_method_id=item.payment_method_id,
            bank_id=bank_id,
            category_id=item.category_id,
            subcategory_id=item.subcategory_id,
            category_label=item.category_label,
            subcategory_label=item.subcategory_label,
            movement_kind=item.movement_kind,
            is_internal_transfer=item.is_internal_transfer,
            is_card_bill_payment=item.is_card_bill_payment,
            is_investment=item.is_investment,
            is_refund=item.is_refund,
            confidence=item.confidence,
        )


def build_classifier(ctx, db: Session, bank_id: Optional[int] = None) -> BatchClassifier:
    """Classifier wired with the context's LLM client and the current taxonomy."""
    if ctx.llm_client is None:
        raise ClassifierUnavailableError()

    rules = build_rules_document(db)
    bank = next((b for b in rules["bancos"] if b["id"] == bank_id), None)
    settings = ctx.settings

    return BatchClassifier(
        client=ctx.llm_client,
        model=settings.openai_model,
        rules=rules,
        system_prompt=render_system_prompt(rules, settings.classifier_batch_size, bank=bank),
        batch_size=settings.classifier_batch_size,
        deadline_seconds=settings.classifier_deadline_seconds,
    )
