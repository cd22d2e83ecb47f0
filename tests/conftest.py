import json

import pytest
from fastapi.testclient import TestClient

from extrato.context import build_context
from extrato.main import create_app
from extrato.services.seed import seed_reference_data
from extrato.settings import Settings

API_KEY = "test-key"

# description keyword -> (category, subcategory, movement_kind)
FAKE_RULES = [
    ("IFOOD", "Alimentação", "Delivery", "spend"),
    ("PADARIA", "Alimentação", "Padaria", "spend"),
    ("SALARIO", "Renda", "Salário", "income"),
    ("TARIFA", "Tarifas e encargos", "Tarifas bancárias", "fee"),
    ("FATURA", "Cartão de Crédito", "Pagamento de fatura", "transfer"),
    ("ENTRE CONTAS", "Transferências", "Transferência interna", "transfer"),
    ("APLICACAO", "Investimentos", "Aporte", "invest"),
]


class FakeResponse:
    def __init__(self, output_text):
        self.output_text = output_text


class FakeLLM:
    """
    Stands in for openai.OpenAI: `.responses.create(**kwargs)` classifies the
    batch found in the user message by keyword.

    `replies` is a queue of raw answers used before falling back to the
    keyword classifier; a None entry means "classify normally".
    """

    def __init__(self):
        self.calls = []
        self.replies = []
        self.error = None

    @property
    def responses(self):
        return self

    def create(self, **kwargs):
        self.calls.append(kwargs)
        if self.error is not None:
            raise self.error

        if self.replies:
            reply = self.replies.pop(0)
            if reply is not None:
                return FakeResponse(reply)

        batch = json.loads(kwargs["input"][1]["content"])["transacoes"]
        return FakeResponse(json.dumps({"transacoes": [classify_item(i) for i in batch]}, ensure_ascii=False))


def classify_item(item):
    description = item["description"]
    upper = description.upper()
    amount = item["amount"]

    category, subcategory, kind = "Outros", "Não classificado", "spend" if amount < 0 else "income"
    for keyword, cat, sub, mk in FAKE_RULES:
        if keyword in upper:
            category, subcategory, kind = cat, sub, mk
            break

    return {
        "date": item["date"],
        "description": description,
        "amount": amount,
        "type": "income" if amount >= 0 else "spend",
        "counterparty_normalized": description.title(),
        "payment_method": "PIX",
        "payment_method_id": None,
        "bank_id": None,
        "category_id": None,
        "subcategory_id": None,
        "category_label": category,
        "subcategory_label": subcategory,
        "movement_kind": kind,
        "is_internal_transfer": 0,
        "is_card_bill_payment": 0,
        "is_investment": 0,
        "is_refund": 0,
        "confidence": 0.9,
    }


@pytest.fixture
def fake_llm():
    return FakeLLM()


@pytest.fixture
def settings():
    return Settings(database_url="sqlite://", api_key=API_KEY, classifier_batch_size=80)


@pytest.fixture
def ctx(settings, fake_llm):
    ctx = build_context(settings, llm_client=fake_llm)
    with ctx.SessionLocal() as db:
        seed_reference_data(db)
    yield ctx
    ctx.engine.dispose()


@pytest.fixture
def db(ctx):
    session = ctx.SessionLocal()
    yield session
    session.close()


@pytest.fixture
def client(ctx):
    app = create_app(ctx)
    with TestClient(app, headers={"x-api-key": API_KEY}) as c:
        yield c
