from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from storefront import crud, models
from storefront.main import app


# ---------- Categories ----------

def test_list_categories_requires_authentication(client):
    assert client.get("/categories").status_code == 401


def test_list_categories(client, user_headers, category):
    response = client.get("/categories", headers=user_headers)

    assert response.status_code == 200
    data = response.json()["data"]
    assert [c["name"] for c in data] == ["Hosting"]


def test_unexpected_error_is_a_server_error_envelope(monkeypatch, user_headers):
    def broken(db):
        raise RuntimeError("boom")

    monkeypatch.setattr(crud, "get_categories", broken)
    client = TestClient(app, raise_server_exceptions=False)

    response = client.get("/categories", headers=user_headers)

    assert response.status_code == 500
    assert response.json() == {"success": False, "message": "Server error"}


def test_admin_can_create_category(client, admin_headers):
    response = client.post("/categories", headers=admin_headers, json={
        "name": "Domains",
        "description": "Domain registration",
    })

    assert response.status_code == 201
    body = response.json()
    assert body["message"] == "Category created successfully"
    assert body["data"]["name"] == "Domains"


def test_category_validation(client, admin_headers):
    response = client.post("/categories", headers=admin_headers, json={"name": "D"})

    assert response.status_code == 422
    assert "name" in response.json()["errors"]


def test_admin_can_update_and_delete_category(client, admin_headers, category):
    response = client.put(f"/categories/{category.id}", headers=admin_headers, json={"name": "Cloud"})
    assert response.status_code == 200
    assert response.json()["data"]["name"] == "Cloud"
    assert response.json()["data"]["description"] == "Hosting services"

    response = client.delete(f"/categories/{category.id}", headers=admin_headers)
    assert response.status_code == 200
    assert client.get("/categories", headers=admin_headers).json()["data"] == []


def test_missing_category_is_not_found(client, admin_headers):
    assert client.put("/categories/999", headers=admin_headers, json={"name": "Cloud"}).status_code == 404
    response = client.delete("/categories/999", headers=admin_headers)
    assert response.status_code == 404
    assert response.json()["message"] == "Category not found"


@pytest.mark.parametrize("method, path", [
    ("post", "/categories"),
    ("put", "/categories/{id}"),
    ("delete", "/categories/{id}"),
])
def test_category_mutations_are_admin_only(client, user_headers, category, method, path):
    kwargs = {"headers": user_headers}
    if method != "delete":
        kwargs["json"] = {"name": "Valid Name", "description": "valid"}

    response = getattr(client, method)(path.format(id=category.id), **kwargs)

    assert response.status_code == 403
    assert response.json() == {"success": False, "message": "Admin access required"}


# ---------- Products ----------

def test_admin_can_create_product(client, admin_headers, category):
    response = client.post("/products", headers=admin_headers, json={
        "name": "VPS Server",
        "description": "Virtual private server",
        "price": "149.99",
        "stock_quantity": 30,
        "category_id": category.id,
    })

    assert response.status_code == 201
    data = response.json()["data"]
    assert Decimal(data["price"]) == Decimal("149.99")
    assert data["stock_quantity"] == 30
    assert data["category"]["id"] == category.id


def test_create_product_with_unknown_category(client, admin_headers):
    response = client.post("/products", headers=admin_headers, json={
        "name": "VPS Server",
        "price": "149.99",
        "stock_quantity": 30,
        "category_id": 999,
    })

    assert response.status_code == 422
    assert "category_id" in response.json()["errors"]


def test_create_product_rejects_negative_price_and_stock(client, admin_headers, category):
    response = client.post("/products", headers=admin_headers, json={
        "name": "VPS Server",
        "price": "-1",
        "stock_quantity": -5,
        "category_id": category.id,
    })

    assert response.status_code == 422
    errors = response.json()["errors"]
    assert "price" in errors
    assert "stock_quantity" in errors


@pytest.mark.parametrize("method, path", [
    ("post", "/products"),
    ("put", "/products/{id}"),
    ("delete", "/products/{id}"),
])
def test_product_mutations_are_admin_only(client, user_headers, product_a, category, method, path):
    kwargs = {"headers": user_headers}
    if method != "delete":
        kwargs["json"] = {
            "name": "Valid Product",
            "price": "10.00",
            "stock_quantity": 5,
            "category_id": category.id,
        }

    response = getattr(client, method)(path.format(id=product_a.id), **kwargs)

    assert response.status_code == 403


def test_show_product(client, user_headers, product_a):
    response = client.get(f"/products/{product_a.id}", headers=user_headers)

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["name"] == "Product A"
    assert data["category"]["name"] == "Hosting"


def test_show_missing_product(client, user_headers):
    response = client.get("/products/999", headers=user_headers)

    assert response.status_code == 404
    assert response.json() == {"success": False, "message": "Product not found"}


def test_partial_product_update(client, admin_headers, product_a):
    response = client.put(f"/products/{product_a.id}", headers=admin_headers, json={"price": "120.50"})

    assert response.status_code == 200
    data = response.json()["data"]
    assert Decimal(data["price"]) == Decimal("120.50")
    assert data["name"] == "Product A"
    assert data["stock_quantity"] == 50


def test_update_missing_product(client, admin_headers):
    assert client.put("/products/999", headers=admin_headers, json={"price": "1.00"}).status_code == 404


def test_delete_product(client, db, admin_headers, product_a):
    response = client.delete(f"/products/{product_a.id}", headers=admin_headers)

    assert response.status_code == 200
    assert db.query(models.Product).filter_by(id=product_a.id).count() == 0


def test_ordered_product_cannot_be_deleted(client, db, admin_headers, user, product_a):
    order = models.Order(user_id=user.id, total_amount=Decimal("100.00"))
    db.add(order)
    db.flush()
    db.add(models.OrderItem(order_id=order.id, product_id=product_a.id, quantity=1, price=Decimal("100.00")))
    db.commit()

    response = client.delete(f"/products/{product_a.id}", headers=admin_headers)

    assert response.status_code == 422
    assert db.query(models.Product).filter_by(id=product_a.id).count() == 1


# ---------- Listing ----------

@pytest.fixture
def catalog(db, make_product, category):
    other = models.Category(name="Software")
    db.add(other)
    db.commit()
    return {
        "cheap": make_product(name="Domain Transfer", price="9.99"),
        "mid": make_product(name="Cloud Hosting", price="199.99"),
        "high": make_product(name="Dedicated Server", price="299.99"),
        "software": make_product(name="CRM Software", price="199.99", category_id=other.id),
    }


def _names(response):
    return [p["name"] for p in response.json()["data"]["products"]]


def test_list_products_default_order_and_pagination(client, user_headers, catalog):
    response = client.get("/products", headers=user_headers)

    assert response.status_code == 200
    assert _names(response) == ["Domain Transfer", "Cloud Hosting", "Dedicated Server", "CRM Software"]
    assert response.json()["data"]["pagination"] == {
        "current_page": 1,
        "last_page": 1,
        "per_page": 20,
        "total": 4,
    }


def test_filter_by_category(client, user_headers, catalog, category):
    response = client.get("/products", headers=user_headers, params={"category_id": category.id})

    assert _names(response) == ["Domain Transfer", "Cloud Hosting", "Dedicated Server"]


def test_price_bounds_are_inclusive(client, user_headers, catalog):
    response = client.get("/products", headers=user_headers, params={"min_price": "199.99", "max_price": "199.99"})

    assert _names(response) == ["Cloud Hosting", "CRM Software"]


def test_filters_are_combined(client, user_headers, catalog, category):
    response = client.get("/products", headers=user_headers, params={
        "category_id": category.id,
        "min_price": "100",
        "search": "Server",
    })

    assert _names(response) == ["Dedicated Server"]


def test_search_matches_name_substring(client, user_headers, catalog):
    response = client.get("/products", headers=user_headers, params={"search": "Host"})

    assert _names(response) == ["Cloud Hosting"]


def test_search_wildcards_are_literal(client, user_headers, catalog, make_product):
    make_product(name="100% Uptime Plan")

    response = client.get("/products", headers=user_headers, params={"search": "%"})

    assert _names(response) == ["100% Uptime Plan"]


def test_pagination_pages(client, user_headers, make_product):
    for i in range(25):
        make_product(name=f"Product {i:02d}")

    response = client.get("/products", headers=user_headers, params={"limit": 10, "page": 3})

    assert _names(response) == [f"Product {i:02d}" for i in range(20, 25)]
    assert response.json()["data"]["pagination"] == {
        "current_page": 3,
        "last_page": 3,
        "per_page": 10,
        "total": 25,
    }


def test_pagination_parameters_are_validated(client, user_headers):
    response = client.get("/products", headers=user_headers, params={"page": 0})

    assert response.status_code == 422
    assert "page" in response.json()["errors"]
