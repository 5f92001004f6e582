"""
End-to-end tests for ResourceBinder routes.

Each test serves an InMemoryModel-backed binder on /items and drives
it through FastAPI's TestClient.
"""
import json
import logging
from unittest.mock import patch

import pytest
from bson import ObjectId
from fastapi.testclient import TestClient

from restbind import (
    InvalidContentError,
    OperationOptions,
    ResourceBinder,
    ResourceOptions,
    ServeOptions,
    create_resource,
)
from restbind.pagination import max_page, parse_link_header
from restbind.store import InMemoryEntity

MISSING_ID = "507f1f77bcf86cd799439011"


def names(response):
    return [item["name"] for item in response.json()]


class TestConstruction:
    def test_model_is_required(self):
        with pytest.raises(ValueError, match="Model argument is required"):
            ResourceBinder(None)

    def test_options_from_mapping(self, items_model):
        binder = create_resource(items_model, {"page_size": 5})

        assert binder.options.page_size == 5
        assert binder.name == "items"

    def test_unknown_option_rejected(self, items_model):
        with pytest.raises(TypeError):
            ResourceBinder(items_model, {"pagesize": 5})


class TestQuery:
    """GET /items"""

    def test_lists_all(self, make_client, items_model, sample_items):
        items_model.seed(sample_items)
        client = make_client()

        response = client.get("/items", params={"sort": "name"})

        assert response.status_code == 200
        assert names(response) == ["apple", "bread", "cherry"]
        assert all(ObjectId.is_valid(item["_id"]) for item in response.json())

    def test_first_page_of_101(self, make_client, items_model):
        items_model.seed({"name": f"item-{i:03d}"} for i in range(101))
        client = make_client()

        response = client.get("/items", params={"sort": "name"})

        assert len(response.json()) == 100
        links = parse_link_header(response.headers["link"])
        assert set(links) == {"first", "next"}
        assert links["first"] == "/items?sort=name&p=0"
        assert links["next"] == "/items?sort=name&p=1"

    def test_second_page_of_101(self, make_client, items_model):
        items_model.seed({"name": f"item-{i:03d}"} for i in range(101))
        client = make_client()

        response = client.get("/items", params={"p": "1", "sort": "name"})

        assert names(response) == ["item-100"]
        links = parse_link_header(response.headers["link"])
        assert set(links) == {"first", "prev"}
        assert links["prev"] == "/items?p=0&sort=name"

    def test_invalid_page_is_page_zero(self, make_client, items_model, sample_items):
        items_model.seed(sample_items)
        client = make_client()

        response = client.get("/items", params={"p": "-3"})

        assert len(response.json()) == 3
        assert set(parse_link_header(response.headers["link"])) == {"first"}

    def test_page_size_and_base_url(self, make_client, items_model, sample_items):
        items_model.seed(sample_items)
        binder = ResourceBinder(
            items_model, ResourceOptions(page_size=2, base_url="https://api.test")
        )
        client = make_client(binder)

        response = client.get("/items")

        assert len(response.json()) == 2
        links = parse_link_header(response.headers["link"])
        assert links["next"] == "https://api.test/items?p=1"

    def test_filter_by_q(self, make_client, items_model, sample_items):
        items_model.seed(sample_items)
        client = make_client()

        response = client.get(
            "/items",
            params={"q": json.dumps({"tags": "fruit", "price": {"$gt": 2}})},
        )

        assert names(response) == ["cherry"]

    @pytest.mark.parametrize("q", ["{not json", "[1]", json.dumps({"$where": "1"})])
    def test_malformed_q_never_reaches_store(self, make_client, items_model, q):
        client = make_client()

        with patch.object(items_model, "find", wraps=items_model.find) as find:
            response = client.get("/items", params={"q": q})

        assert response.status_code == 400
        assert "message" in response.json()
        assert "errors" in response.json()
        find.assert_not_called()

    def test_invalid_sort_is_400(self, make_client):
        client = make_client()

        response = client.get("/items", params={"sort": "$natural"})

        assert response.status_code == 400

    def test_select(self, make_client, items_model, sample_items):
        items_model.seed(sample_items)
        client = make_client()

        response = client.get("/items", params={"select": "-price -tags -owner"})

        assert all(set(item) == {"_id", "name"} for item in response.json())

    def test_server_filter_cannot_be_widened(self, make_client, items_model):
        items_model.seed([
            {"name": "mine", "owner": "ann"},
            {"name": "theirs", "owner": "bob"},
        ])
        binder = ResourceBinder(
            items_model,
            {"filter": lambda request, response: {"owner": request.headers.get("x-user")}},
        )
        client = make_client(binder)

        own = client.get("/items", headers={"x-user": "ann"})
        widened = client.get(
            "/items",
            headers={"x-user": "ann"},
            params={"q": json.dumps({"owner": "bob"})},
        )

        assert names(own) == ["mine"]
        assert widened.json() == []

    def test_list_projection_and_event(self, make_client, items_model, sample_items):
        items_model.seed(sample_items)
        seen = []
        binder = ResourceBinder(
            items_model,
            {"list_projection": lambda request, item: {"label": item["name"].upper()}},
        )
        binder.on("query", seen.append)
        client = make_client(binder)

        response = client.get("/items", params={"sort": "name"})

        assert response.json() == [{"label": "APPLE"}, {"label": "BREAD"}, {"label": "CHERRY"}]
        assert seen == [response.json()]

    def test_huge_page_is_capped(self, make_client, items_model, sample_items):
        items_model.seed(sample_items)
        client = make_client()

        response = client.get("/items", params={"p": "1e300"})

        assert response.status_code == 200
        assert response.json() == []
        links = parse_link_header(response.headers["link"])
        assert links["prev"] == f"/items?p={max_page(100) - 1}"

    def test_failing_projection_aborts_list(self, make_client, items_model, sample_items):
        items_model.seed(sample_items)
        seen = []

        def project(request, item):
            if item["name"] == "bread":
                raise InvalidContentError("Cannot project bread")
            return {"label": item["name"]}

        binder = ResourceBinder(items_model, {"list_projection": project})
        binder.on("query", seen.append)
        client = make_client(binder)

        response = client.get("/items")

        assert response.status_code == 400
        assert response.json()["message"] == "Cannot project bread"
        assert seen == []


class TestDetail:
    """GET /items/{id}"""

    def test_found(self, make_client, items_model, sample_items):
        ids = items_model.seed(sample_items)
        client = make_client()

        response = client.get(f"/items/{ids[1]}", params={"select": "name"})

        assert response.status_code == 200
        assert response.json() == {"_id": str(ids[1]), "name": "bread"}

    def test_missing_is_404(self, make_client):
        client = make_client()

        response = client.get(f"/items/{MISSING_ID}")

        assert response.status_code == 404
        assert response.json() == {"code": "ResourceNotFound", "message": MISSING_ID}

    def test_non_object_id_is_404(self, make_client):
        client = make_client()

        assert client.get("/items/not-an-id").status_code == 404

    def test_filtered_out_is_404(self, make_client, items_model):
        ids = items_model.seed([{"name": "theirs", "owner": "bob"}])
        binder = ResourceBinder(
            items_model,
            {"filter": lambda request, response: {"owner": "ann"}},
        )
        client = make_client(binder)

        assert client.get(f"/items/{ids[0]}").status_code == 404

    def test_populate(self, make_client, items_model, owners_model):
        owner_id = owners_model.seed([{"name": "ann", "email": "ann@test"}])[0]
        ids = items_model.seed([{"name": "apple", "owner": owner_id}])
        binder = ResourceBinder(
            items_model,
            {"populates": {"owner": {"select": "name", "model": owners_model}}},
        )
        client = make_client(binder)

        response = client.get(f"/items/{ids[0]}")

        assert response.json()["owner"] == {"_id": str(owner_id), "name": "ann"}

    def test_detail_projection(self, make_client, items_model, sample_items):
        ids = items_model.seed(sample_items)
        binder = ResourceBinder(
            items_model,
            {"detail_projection": lambda request, item: {"label": item["name"].upper()}},
        )
        client = make_client(binder)

        response = client.get(f"/items/{ids[2]}")

        assert response.json() == {"label": "CHERRY"}


class TestInsert:
    """POST /items"""

    def test_insert_sets_location(self, make_client, items_model):
        inserted = []
        binder = ResourceBinder(items_model)
        binder.on("insert", lambda item: inserted.append(item.to_dict()))
        client = make_client(binder)

        response = client.post("/items", json={"name": "a"})

        assert response.status_code == 200
        body = response.json()
        assert body["name"] == "a"
        assert response.headers["location"] == f"/items/{body['_id']}"
        assert len(items_model) == 1
        assert str(inserted[0]["_id"]) == body["_id"]

    def test_validation_error_is_400(self, make_client, items_model):
        client = make_client()

        response = client.post("/items", json={"price": -1})

        assert response.status_code == 400
        body = response.json()
        assert body["message"] == "Validation failed"
        assert {tuple(e["loc"]) for e in body["errors"]} == {("name",), ("price",)}
        assert len(items_model) == 0

    def test_non_object_body_is_400(self, make_client):
        client = make_client()

        response = client.post(
            "/items", content=b"[1, 2]", headers={"content-type": "application/json"}
        )

        assert response.status_code == 400

    def test_before_save_hooks_run_in_order(self, app, items_model):
        calls = []

        def binder_hook(request, entity):
            calls.append(("binder", len(items_model)))
            entity.set({"tags": ["hooked"]})

        async def operation_hook(request, entity):
            calls.append(("operation", len(items_model)))

        binder = ResourceBinder(items_model, {"before_save": binder_hook})
        app.add_api_route(
            "/items",
            binder.insert(OperationOptions(before_save=operation_hook, status_code=201)),
            methods=["POST"],
        )
        client = TestClient(app)

        response = client.post("/items", json={"name": "a"})

        assert response.status_code == 201
        assert calls == [("binder", 0), ("operation", 0)]
        assert response.json()["tags"] == ["hooked"]

    def test_before_save_error_prevents_save(self, make_client, items_model):
        def reject(request, entity):
            raise InvalidContentError("Rejected by hook")

        client = make_client(ResourceBinder(items_model, {"before_save": reject}))

        response = client.post("/items", json={"name": "a"})

        assert response.status_code == 400
        assert response.json()["message"] == "Rejected by hook"
        assert len(items_model) == 0

    def test_store_errors_pass_through(self, make_client, items_model):
        client = make_client(raise_server_exceptions=False)

        with patch.object(InMemoryEntity, "_insert", side_effect=ConnectionError("store down")):
            response = client.post("/items", json={"name": "a"})

        assert response.status_code == 500
        assert response.json()["code"] == "InternalError"

    def test_insert_projection(self, make_client, items_model):
        async def project(request, item):
            return {"id": str(item.id), "method": request.method}

        client = make_client(ResourceBinder(items_model, {"insert_projection": project}))

        response = client.post("/items", json={"name": "a"})

        body = response.json()
        assert body["method"] == "POST"
        assert response.headers["location"] == f"/items/{body['id']}"


class TestUpdate:
    """PATCH /items/{id}"""

    def test_update(self, make_client, items_model, sample_items):
        ids = items_model.seed(sample_items)
        updates = []
        binder = ResourceBinder(items_model)
        binder.on("update", lambda item: updates.append(item["price"]))
        client = make_client(binder)

        response = client.patch(f"/items/{ids[0]}", json={"price": 4, "_id": MISSING_ID})

        assert response.status_code == 200
        assert response.json()["price"] == 4
        assert response.json()["_id"] == str(ids[0])
        assert response.headers["location"] == f"/items/{ids[0]}"
        assert updates == [4]

    def test_missing_is_404(self, make_client):
        client = make_client()

        response = client.patch(f"/items/{MISSING_ID}", json={"price": 4})

        assert response.status_code == 404
        assert response.json()["message"] == MISSING_ID

    def test_empty_body_is_400(self, make_client, items_model, sample_items):
        ids = items_model.seed(sample_items)
        client = make_client()

        response = client.patch(f"/items/{ids[0]}")

        assert response.status_code == 400
        assert response.json()["message"] == "No update data sent"

    def test_validation_error_is_400(self, make_client, items_model, sample_items):
        ids = items_model.seed(sample_items)
        client = make_client()

        response = client.patch(f"/items/{ids[0]}", json={"price": "lots"})

        assert response.status_code == 400
        assert response.json()["message"] == "Validation failed"

    def test_update_projection(self, make_client, items_model, sample_items):
        ids = items_model.seed(sample_items)
        binder = ResourceBinder(
            items_model,
            {"update_projection": lambda request, item: {"price": item["price"]}},
        )
        client = make_client(binder)

        response = client.patch(f"/items/{ids[0]}", json={"price": 7})

        assert response.json() == {"price": 7}

    def test_before_save_hooks_run(self, make_client, items_model, sample_items):
        ids = items_model.seed(sample_items)
        seen = []

        def hook(request, entity):
            seen.append(entity["price"])
            entity.set({"tags": ["hooked"]})

        client = make_client(ResourceBinder(items_model, {"before_save": hook}))

        response = client.patch(f"/items/{ids[0]}", json={"price": 4})

        assert seen == [4]
        assert response.json()["tags"] == ["hooked"]
        assert items_model.documents[str(ids[0])]["tags"] == ["hooked"]

    def test_before_save_error_prevents_save(self, make_client, items_model, sample_items):
        ids = items_model.seed(sample_items)

        def reject(request, entity):
            raise InvalidContentError("Rejected by hook")

        client = make_client(ResourceBinder(items_model, {"before_save": reject}))

        response = client.patch(f"/items/{ids[0]}", json={"price": 4})

        assert response.status_code == 400
        assert response.json()["message"] == "Rejected by hook"
        assert items_model.documents[str(ids[0])]["price"] == 1.5

    def test_filtered_out_is_404(self, make_client, items_model):
        ids = items_model.seed([{"name": "theirs", "owner": "bob"}])
        binder = ResourceBinder(
            items_model,
            {"filter": lambda request, response: {"owner": "ann"}},
        )
        client = make_client(binder)

        response = client.patch(f"/items/{ids[0]}", json={"name": "mine"})

        assert response.status_code == 404
        assert items_model.documents[str(ids[0])]["name"] == "theirs"

    def test_store_errors_pass_through(self, make_client, items_model, sample_items):
        ids = items_model.seed(sample_items)
        client = make_client(raise_server_exceptions=False)

        with patch.object(InMemoryEntity, "_replace", side_effect=ConnectionError("store down")):
            response = client.patch(f"/items/{ids[0]}", json={"price": 4})

        assert response.status_code == 500
        assert response.json()["code"] == "InternalError"
        assert items_model.documents[str(ids[0])]["price"] == 1.5


class TestRemove:
    """DELETE /items/{id}"""

    def test_remove_emits_after_response(self, make_client, items_model, sample_items):
        ids = items_model.seed(sample_items)
        removed = []
        binder = ResourceBinder(items_model)
        binder.on("remove", lambda item: removed.append((item["name"], len(items_model))))
        client = make_client(binder)

        response = client.delete(f"/items/{ids[0]}")

        assert response.status_code == 200
        assert response.json()["name"] == "apple"
        assert removed == [("apple", 2)]

    def test_remove_listener_error_is_logged(self, make_client, items_model, sample_items, caplog):
        ids = items_model.seed(sample_items)
        binder = ResourceBinder(items_model)

        def fail(item):
            raise RuntimeError("listener broke")

        binder.on("remove", fail)
        client = make_client(binder)

        with caplog.at_level(logging.ERROR, logger="restbind.events"):
            response = client.delete(f"/items/{ids[0]}")

        assert response.status_code == 200
        assert len(items_model) == 2
        assert "listener broke" in caplog.text

    def test_missing_is_404(self, make_client):
        client = make_client()

        response = client.delete(f"/items/{MISSING_ID}")

        assert response.status_code == 404
        assert response.json() == {"code": "ResourceNotFound", "message": MISSING_ID}

    def test_filtered_out_is_404(self, make_client, items_model):
        ids = items_model.seed([{"name": "theirs", "owner": "bob"}])
        binder = ResourceBinder(
            items_model,
            {"filter": lambda request, response: {"owner": "ann"}},
        )
        client = make_client(binder)

        response = client.delete(f"/items/{ids[0]}")

        assert response.status_code == 404
        assert len(items_model) == 1

    def test_store_errors_pass_through(self, make_client, items_model, sample_items):
        ids = items_model.seed(sample_items)
        removed = []
        binder = ResourceBinder(items_model)
        binder.on("remove", removed.append)
        client = make_client(binder, raise_server_exceptions=False)

        with patch.object(InMemoryEntity, "_delete", side_effect=ConnectionError("store down")):
            response = client.delete(f"/items/{ids[0]}")

        assert response.status_code == 500
        assert response.json()["code"] == "InternalError"
        assert len(items_model) == 3
        assert removed == []


class TestServe:
    """Route registration and middleware."""

    def test_serve_freezes_events(self, make_client, items_model):
        binder = ResourceBinder(items_model)
        make_client(binder)

        assert binder.events.frozen
        with pytest.raises(RuntimeError):
            binder.on("insert", lambda item: None)

    def test_before_middleware_shares_headers(self, make_client, items_model):
        order = []

        def trace(request, response):
            order.append("trace")
            response.headers["X-Trace"] = "1"

        async def audit(request, response):
            order.append("audit")

        client = make_client(serve_options=ServeOptions(before=[trace, audit]))

        response = client.get("/items")

        assert order == ["trace", "audit"]
        assert response.headers["x-trace"] == "1"
        assert "link" in response.headers

    def test_before_middleware_can_abort(self, make_client, items_model):
        def deny(request, response):
            raise InvalidContentError("Denied", http_status=403)

        client = make_client(serve_options={"before": [deny]})

        response = client.post("/items", json={"name": "a"})

        assert response.status_code == 403
        assert len(items_model) == 0

    def test_after_middleware_warns_and_never_runs(self, make_client, caplog):
        calls = []

        with caplog.at_level(logging.WARNING, logger="restbind.resource"):
            client = make_client(
                serve_options={"after": [lambda request, response: calls.append(1)]}
            )

        client.get("/items")

        assert "'after' middleware" in caplog.text
        assert calls == []

    def test_before_middleware_keeps_repeated_headers(self, make_client):
        def cookies(request, response):
            response.set_cookie("a", "1")
            response.set_cookie("b", "2")

        client = make_client(serve_options={"before": [cookies]})

        response = client.get("/items")

        set_cookies = response.headers.get_list("set-cookie")
        assert len(set_cookies) == 2
        assert set_cookies[0].startswith("a=1")
        assert set_cookies[1].startswith("b=2")
