import json

import pytest
from fastapi.testclient import TestClient

from extrato.context import build_context
from extrato.main import create_app
from extrato.settings import Settings

NUBANK_CSV = """Data,Valor,Identificador,Descrição
01/03/2024,-45.90,abc-1,COMPRA IFOOD
02/03/2024,1500.00,abc-2,SALARIO ACME LTDA
03/03/2024,-200.00,abc-3,TRANSFERENCIA ENTRE CONTAS
"""


def _ingest_body(**overrides):
    body = {
        "userId": 1,
        "periodStart": "2024-03-01",
        "periodEnd": "2024-03-31",
        "sourceFile": "marco.json",
        "transacoes": [
            {"date": "2024-03-01", "description": "SALARIO", "amount": 5000,
             "type": "income", "category_label": "Renda", "subcategory_label": "Salário"},
            {"date": "2024-03-02", "description": "IFOOD", "amount": -80.5,
             "type": "spend", "category_label": "Alimentação", "subcategory_label": "Delivery"},
        ],
    }
    body.update(overrides)
    return body


def _upload(client, content=NUBANK_CSV.encode("utf-8"), filename="nubank.csv", **data):
    return client.post(
        "/statements/upload",
        files={"file": (filename, content, "text/csv")},
        data=data,
    )


# ---- Auth ----

def test_health_needs_no_key(client):
    r = client.get("/health", headers={"x-api-key": ""})
    assert r.status_code == 200
    assert r.json() == {"ok": True}


@pytest.mark.parametrize("key", ["", "wrong"])
def test_protected_routes_need_the_key(client, key):
    r = client.get("/dash/overview", headers={"x-api-key": key})
    assert r.status_code == 401
    assert r.json()["error"] == "Unauthorized"


def test_auth_disabled_without_api_key(fake_llm):
    ctx = build_context(Settings(database_url="sqlite://"), llm_client=fake_llm)
    with TestClient(create_app(ctx)) as c:
        assert c.get("/banks").status_code == 200


# ---- JSON ingest ----

def test_ingest_then_reingest(client):
    first = client.post("/statements/ingest", json=_ingest_body())
    assert first.status_code == 200
    assert first.json()["inserted"] == 2
    assert first.json()["duplicates"] == 0

    second = client.post("/statements/ingest", json=_ingest_body())
    assert second.json()["inserted"] == 0
    assert second.json()["duplicates"] == 2

    statement = client.get(f"/statements/{first.json()['statementId']}").json()
    assert statement["transactionCount"] == 2
    assert statement["sourceFile"] == "marco.json"


def test_ingest_unknown_bank(client):
    r = client.post("/statements/ingest", json=_ingest_body(bankId=999))
    assert r.status_code == 422
    assert r.json()["error"] == "ReferenceIntegrityError"


def test_ingest_validation(client):
    assert client.post("/statements/ingest", json=_ingest_body(transacoes=[])).status_code == 422
    assert client.post("/statements/ingest", json=_ingest_body(userId=0)).status_code == 422


def test_unknown_statement(client):
    r = client.get("/statements/12345")
    assert r.status_code == 404
    assert r.json()["error"] == "NotFound"


# ---- CSV upload ----

def test_upload_csv(client, fake_llm):
    r = _upload(client, userId="1")
    assert r.status_code == 200
    body = r.json()
    assert body["dialect"] == "nubank"
    assert body["inserted"] == 3
    assert body["totalClassified"] == 3
    assert body["skipped"] == 0
    assert len(fake_llm.calls) == 1

    # the internal transfer is hidden unless asked for
    listed = client.get("/transactions").json()
    assert listed["total"] == 2
    assert {t["bankId"] for t in listed["items"]} == {6}

    everything = client.get("/transactions", params={"includeTransfers": "true"}).json()
    assert everything["total"] == 3

    again = _upload(client).json()
    assert (again["inserted"], again["duplicates"]) == (0, 3)


def test_upload_rejects_non_csv(client):
    r = _upload(client, filename="extrato.pdf")
    assert r.status_code == 400
    assert r.json()["error"] == "StatementFormatError"


def test_upload_unknown_format(client, fake_llm):
    r = _upload(client, content=b"foo;bar\n1;2\n")
    assert r.status_code == 400
    assert r.json()["error"] == "UnrecognizedFormat"
    assert fake_llm.calls == []


def test_upload_too_large(ctx, client):
    ctx.settings.max_upload_bytes = 10
    r = _upload(client)
    assert r.status_code == 400


def test_upload_classification_failure(client, fake_llm):
    fake_llm.replies = ["nada de json"]
    r = _upload(client)
    assert r.status_code == 502
    body = r.json()
    assert body["error"] == "ClassificationError"
    assert body["batchIndex"] == 0
    assert body["classifiedBeforeFailure"] == 0
    assert client.get("/transactions").json()["total"] == 0


def test_upload_without_llm_client():
    ctx = build_context(Settings(database_url="sqlite://"))
    with TestClient(create_app(ctx)) as c:
        r = _upload(c)
    assert r.status_code == 503
    assert r.json()["error"] == "ClassifierUnavailable"


# ---- Transactions ----

def test_transactions_crud(client):
    created = client.post("/transactions", json={
        "date": "2024-03-05", "description": "Almoço", "amount": -35.5,
        "type": "spend", "category_label": "Alimentação", "payment_method": "PIX",
    })
    assert created.status_code == 201
    tx = created.json()
    assert tx["category"] == "Alimentação"
    assert tx["paymentMethod"] == "PIX"
    assert len(tx["hash"]) == 64

    dup = client.post("/transactions", json={
        "date": "2024-03-05", "description": "Almoço", "amount": -35.5, "type": "spend",
    })
    assert dup.status_code == 409

    updated = client.put(f"/transactions/{tx['id']}", json={"amount": -40, "notes": "com sobremesa"})
    assert updated.status_code == 200
    assert updated.json()["amount"] == -40
    assert updated.json()["notes"] == "com sobremesa"

    bad = client.put(f"/transactions/{tx['id']}", json={"payment_method_id": 9999})
    assert bad.status_code == 422

    # flags cannot be cleared
    kept = client.put(f"/transactions/{tx['id']}", json={"is_fee": None, "is_refund": None})
    assert kept.status_code == 200
    assert kept.json()["isFee"] is False

    assert client.delete(f"/transactions/{tx['id']}").status_code == 204
    assert client.get(f"/transactions/{tx['id']}").status_code == 404


def test_transactions_list_paging_and_sort(client):
    client.post("/statements/ingest", json=_ingest_body())

    page = client.get("/transactions", params={"pageSize": 1, "sort": "amount"}).json()
    assert page["total"] == 2
    assert page["pageSize"] == 1
    assert [t["description"] for t in page["items"]] == ["IFOOD"]

    spend_only = client.get("/transactions", params={"type": "spend"}).json()
    assert [t["type"] for t in spend_only["items"]] == ["spend"]


# ---- Dashboard ----

def test_dashboard_endpoints(client):
    client.post("/statements/ingest", json=_ingest_body())

    overview = client.get("/dash/overview").json()
    assert overview["totalIncome"] == 5000
    assert overview["totalSpend"] == 80.5

    by_category = client.get("/dash/by-category").json()["items"]
    assert by_category[0]["subcategory"] == "Delivery"

    series = client.get("/dash/series", params={"groupBy": "month"}).json()
    assert series["spend"] == [{"x": "2024-03", "y": 80.5}]

    top = client.get("/dash/top-subcategories").json()["items"]
    assert top[0]["total"] == 80.5

    filtered = client.get("/dash/overview", params={"from": "2024-03-02"}).json()
    assert filtered["totalIncome"] == 0


def test_series_rejects_unknown_grouping(client):
    assert client.get("/dash/series", params={"groupBy": "year"}).status_code == 422


# ---- Reference data ----

def test_reference_lists(client):
    banks = client.get("/banks").json()["items"]
    assert {"id": 6, "code": "NU", "name": "Nubank"} in banks

    methods = client.get("/payment-methods").json()["items"]
    pix = next(m for m in methods if m["code"] == "PIX")
    assert "QR PIX" in pix["aliases"]
    assert client.get(f"/payment-methods/{pix['id']}").json()["label"] == "PIX"

    hierarchy = client.get("/categories/hierarchy").json()["items"]
    food = next(c for c in hierarchy if c["name"] == "Alimentação")
    assert {"Mercado", "Delivery"} <= {c["name"] for c in food["children"]}


def test_category_crud(client):
    pets = client.post("/categories", json={"name": " Pets "})
    assert pets.status_code == 201
    assert pets.json()["slug"] == "pets"
    pets_id = pets.json()["id"]

    assert client.post("/categories", json={"name": "Pets"}).status_code == 409

    food = client.post("/categories", json={"name": "Ração", "parentId": pets_id})
    assert food.status_code == 201
    assert food.json()["slug"] == "pets-racao"
    assert food.json()["parentId"] == pets_id

    # two levels only
    nested = client.post("/categories", json={"name": "Premium", "parentId": food.json()["id"]})
    assert nested.status_code == 422

    renamed = client.put(f"/categories/{pets_id}", json={"name": "Animais"})
    assert renamed.json()["name"] == "Animais"
    assert renamed.json()["slug"] == "pets"

    assert client.delete(f"/categories/{pets_id}").status_code == 409
    assert client.delete(f"/categories/{food.json()['id']}").status_code == 204
    assert client.delete(f"/categories/{pets_id}").status_code == 204
    assert client.get(f"/categories/{pets_id}").status_code == 404


def test_category_in_use_cannot_be_deleted(client):
    client.post("/statements/ingest", json=_ingest_body())
    categories = client.get("/categories").json()["items"]
    delivery = next(c for c in categories if c["slug"] == "alimentacao-delivery")

    r = client.delete(f"/categories/{delivery['id']}")
    assert r.status_code == 409
    assert json.loads(r.text)["error"] == "Conflict"


def test_update_rejects_subcategory_of_another_category(client):
    categories = {c["slug"]: c["id"] for c in client.get("/categories").json()["items"]}
    tx = client.post("/transactions", json={
        "date": "2024-03-05", "description": "UBER", "amount": -20, "type": "spend",
    }).json()

    mismatched = client.put(f"/transactions/{tx['id']}", json={
        "category_id": categories["alimentacao"],
        "subcategory_id": categories["transporte-aplicativos"],
    })
    assert mismatched.status_code == 422
    assert mismatched.json()["error"] == "ReferenceIntegrityError"

    root_as_sub = client.put(f"/transactions/{tx['id']}", json={
        "category_id": categories["transporte"],
        "subcategory_id": categories["transporte"],
    })
    assert root_as_sub.status_code == 422

    ok = client.put(f"/transactions/{tx['id']}", json={
        "category_id": categories["transporte"],
        "subcategory_id": categories["transporte-aplicativos"],
    })
    assert ok.status_code == 200
    assert ok.json()["subcategory"] == "Aplicativos"
