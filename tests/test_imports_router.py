import json
import logging
import sys
from decimal import Decimal

from conftest import ORG

ORDERS_CSV = (
    "Email,Name,Total,Lineitem name,Lineitem quantity\n"
    "alice@x.com,#1001,30.00,Mug,2\n"
    "alice@x.com,#1001,30.00,Spoon,1\n"
    "bob@y.com,#1002,12.50,Plate,1\n"
).encode()

APPROVED_MAPPING = {
    "Email": "email",
    "Name": "order_number",
    "Total": "total_price",
    "Lineitem name": "lineitem_name",
    "Lineitem quantity": "lineitem_quantity",
}


def _upload(content=ORDERS_CSV, filename="orders_export.csv"):
    return {"file": (filename, content, "text/csv")}


async def test_health_endpoints(client):
    assert (await client.get("/healthz")).json() == {"ok": True}
    response = await client.get("/")
    assert response.json()["service"] == "commerce-import"
    assert "X-Request-Id" in response.headers

    echoed = await client.get("/healthz", headers={"X-Request-Id": "rid-42"})
    assert echoed.headers["X-Request-Id"] == "rid-42"


def test_log_lines_are_json_with_traceback():
    from main import JsonFormatter

    try:
        raise ValueError("bad chunk")
    except ValueError:
        record = logging.LogRecord("services.batch_writer", logging.ERROR, __file__, 1, "chunk %d failed", (3,), sys.exc_info())

    line = json.loads(JsonFormatter().format(record))
    assert line["severity"] == "ERROR"
    assert line["message"] == "chunk 3 failed"
    assert "ValueError: bad chunk" in line["exc_info"]


async def test_preview_proposes_mapping(client, store):
    response = await client.post("/api/imports/preview", files=_upload(), data={"orgId": ORG})
    assert response.status_code == 200
    body = response.json()

    assert body["detected_target"] == "ecom_orders"
    assert body["sourceName"] == "orders_export.csv"
    targets = {m["csv_column"]: m["target_field"] for m in body["mapping"]}
    assert targets["Name"] == "order_number"
    assert targets["Lineitem quantity"] == "lineitem_quantity"
    assert body["stats"]["unique_orders"] == 2
    assert len(body["preview_rows"]) == 3
    assert await store.list_import_runs(ORG) == []


async def test_import_runs_in_background_and_is_listed(client, store):
    response = await client.post(
        "/api/imports",
        files=_upload(),
        data={"target": "ecom_orders", "mapping": json.dumps(APPROVED_MAPPING), "orgId": ORG, "userId": "u-1"},
    )
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "pending"
    assert body["totalRows"] == 3
    assert body["orgId"] == ORG
    import_id = body["importId"]

    run = (await client.get(f"/api/imports/{import_id}", params={"orgId": ORG})).json()
    assert run["status"] == "completed"
    assert run["importedRows"] == 3
    assert run["errorRows"] == 0
    assert run["mappedFields"][0]["required"] is True
    assert run["completedAt"] is not None

    history = (await client.get("/api/imports", params={"orgId": ORG})).json()
    assert [r["id"] for r in history] == [import_id]

    progress = (await client.get(f"/api/imports/{import_id}/progress")).json()
    assert progress["status"] == "completed"
    assert progress["percent"] == 100

    (order,) = await store.get_orders(ORG, order_number="#1001")
    assert order.total_price == Decimal("30.00")
    assert [i["quantity"] for i in order.line_items] == [2, 1]


async def test_import_rejects_missing_required_mapping(client, store):
    response = await client.post(
        "/api/imports",
        files=_upload(),
        data={"target": "ecom_orders", "mapping": json.dumps({"Name": "order_number"}), "orgId": ORG},
    )
    assert response.status_code == 400
    assert response.json()["error"]["missing"] == ["email"]
    assert await store.list_import_runs(ORG) == []


async def test_import_rejects_unknown_target_and_bad_mapping_json(client):
    response = await client.post(
        "/api/imports",
        files=_upload(),
        data={"target": "ecom_refunds", "mapping": json.dumps(APPROVED_MAPPING)},
    )
    assert response.status_code == 400

    response = await client.post(
        "/api/imports", files=_upload(), data={"target": "ecom_orders", "mapping": "{not json"}
    )
    assert response.status_code == 400


async def test_upload_checks(client):
    response = await client.post("/api/imports/preview", files=_upload(filename="orders.xlsx"))
    assert response.status_code == 400
    assert "allowed" in response.json()["error"]

    response = await client.post("/api/imports/preview", files=_upload(content=b""))
    assert response.status_code == 400
    assert response.json()["error"] == "Empty file"


async def test_unknown_import_is_404(client):
    assert (await client.get("/api/imports/nope")).status_code == 404
    assert (await client.get("/api/imports/nope/progress")).status_code == 404


async def test_runs_are_scoped_to_their_org(client):
    response = await client.post(
        "/api/imports",
        files=_upload(),
        data={"target": "ecom_orders", "mapping": json.dumps(APPROVED_MAPPING), "orgId": ORG},
    )
    import_id = response.json()["importId"]

    assert (await client.get(f"/api/imports/{import_id}", params={"orgId": "other-org"})).status_code == 404
    assert (await client.get("/api/imports", params={"orgId": "other-org"})).json() == []
