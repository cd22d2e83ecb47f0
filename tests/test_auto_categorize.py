import json

import pytest
from openai import OpenAIError

from conftest import classify_item
from extrato.context import build_context
from extrato.errors import ClassificationError, ClassifierUnavailableError
from extrato.services.auto_categorize import (
    RESPONSE_SCHEMA,
    BatchClassifier,
    build_classifier,
    build_rules_document,
    chunk,
    load_rules,
    parse_model_output,
    render_system_prompt,
)
from extrato.services.records import ParsedTransaction
from extrato.settings import Settings


def _parsed(n):
    return [
        ParsedTransaction(
            date=f"2024-03-{i + 1:02d}",
            description=f"COMPRA {i}",
            amount=-(10.0 + i),
            direction="spend",
            dialect="nubank",
        )
        for i in range(n)
    ]


def _classifier(fake_llm, batch_size=2, deadline_seconds=None):
    return BatchClassifier(
        client=fake_llm,
        model="test-model",
        rules={},
        system_prompt="prompt",
        batch_size=batch_size,
        deadline_seconds=deadline_seconds,
    )


def test_chunk():
    assert chunk([1, 2, 3, 4, 5], 2) == [[1, 2], [3, 4], [5]]
    assert chunk([], 3) == []
    with pytest.raises(ValueError):
        chunk([1], 0)


def test_classify_keeps_order_across_batches(fake_llm):
    parsed = _parsed(5)
    result = _classifier(fake_llm).classify(parsed, bank_id=6)

    assert len(fake_llm.calls) == 3
    assert [r.description for r in result] == [p.description for p in parsed]
    assert all(r.bank_id == 6 for r in result)


def test_request_uses_strict_json_schema(fake_llm):
    _classifier(fake_llm).classify(_parsed(1))

    call = fake_llm.calls[0]
    assert call["model"] == "test-model"
    assert call["text"]["format"]["strict"] is True
    assert call["text"]["format"]["schema"] is RESPONSE_SCHEMA
    assert call["input"][0] == {"role": "developer", "content": "prompt"}

    user = json.loads(call["input"][1]["content"])
    assert user["transacoes"][0] == {
        "date": "2024-03-01",
        "description": "COMPRA 0",
        "amount": -10.0,
        "type": "spend",
        "reference_id": "",
    }


def test_missing_date_falls_back_to_source(fake_llm):
    item = classify_item(_parsed(1)[0].to_prompt_item())
    item["date"] = None
    item["amount"] = "-10,00"
    fake_llm.replies = [json.dumps({"transacoes": [item]})]

    [result] = _classifier(fake_llm).classify(_parsed(1))
    assert result.date == "2024-03-01"
    assert result.amount == pytest.approx(-10.0)


def test_model_date_is_replaced_by_parsed_date(fake_llm):
    item = classify_item(_parsed(1)[0].to_prompt_item())
    item["date"] = "01/03/2024"
    fake_llm.replies = [json.dumps({"transacoes": [item]})]

    [result] = _classifier(fake_llm).classify(_parsed(1))
    assert result.date == "2024-03-01"


def test_parse_model_output_plain_and_fenced():
    assert parse_model_output('{"transacoes": []}') == {"transacoes": []}
    assert parse_model_output('```json\n{"transacoes": []}\n```') == {"transacoes": []}
    assert parse_model_output('Segue o resultado: {"transacoes": []}') == {"transacoes": []}


@pytest.mark.parametrize("text", ["", "   ", "sem json aqui", "```json\n[1, 2]\n```"])
def test_parse_model_output_failures(text):
    with pytest.raises(ClassificationError):
        parse_model_output(text, batch_index=3)


def test_count_mismatch_fails_the_batch(fake_llm):
    one = classify_item(_parsed(1)[0].to_prompt_item())
    fake_llm.replies = [json.dumps({"transacoes": [one]})]

    with pytest.raises(ClassificationError) as exc:
        _classifier(fake_llm).classify(_parsed(2))
    assert exc.value.batch_index == 0
    assert exc.value.completed == []


def test_failure_in_later_batch_reports_progress(fake_llm):
    fake_llm.replies = [None, "{}"]

    with pytest.raises(ClassificationError) as exc:
        _classifier(fake_llm, batch_size=2).classify(_parsed(4))
    assert exc.value.batch_index == 1
    assert len(exc.value.completed) == 2


def test_extra_fields_are_rejected(fake_llm):
    item = classify_item(_parsed(1)[0].to_prompt_item())
    item["unexpected"] = 1
    fake_llm.replies = [json.dumps({"transacoes": [item]})]

    with pytest.raises(ClassificationError):
        _classifier(fake_llm).classify(_parsed(1))


def test_out_of_range_flag_is_rejected(fake_llm):
    item = classify_item(_parsed(1)[0].to_prompt_item())
    item["is_refund"] = 2
    fake_llm.replies = [json.dumps({"transacoes": [item]})]

    with pytest.raises(ClassificationError):
        _classifier(fake_llm).classify(_parsed(1))


def test_client_errors_become_classification_errors(fake_llm):
    fake_llm.error = OpenAIError("timeout")

    with pytest.raises(ClassificationError) as exc:
        _classifier(fake_llm).classify(_parsed(1))
    assert "timeout" in exc.value.message


def test_deadline_is_checked_between_batches(fake_llm):
    with pytest.raises(ClassificationError) as exc:
        _classifier(fake_llm, batch_size=2, deadline_seconds=-1).classify(_parsed(3))

    # the first batch always runs
    assert len(fake_llm.calls) == 1
    assert exc.value.batch_index == 1
    assert len(exc.value.completed) == 2


def test_rules_document_and_prompt(db):
    rules = build_rules_document(db, static_rules=load_rules())

    assert "flags" in rules
    assert any(c["name"] == "Alimentação" for c in rules["categorias"])
    assert any(pm["code"] == "PIX" for pm in rules["meios_de_pagamento"])

    prompt = render_system_prompt(rules, batch_size=80, bank={"id": 6, "name": "Nubank"})
    assert "Alimentação" in prompt
    assert "Nubank (id 6)" in prompt
    assert "80 itens" in prompt


def test_build_classifier_without_llm_client():
    ctx = build_context(Settings(database_url="sqlite://"))
    with ctx.SessionLocal() as db:
        with pytest.raises(ClassifierUnavailableError):
            build_classifier(ctx, db)
