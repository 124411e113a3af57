import os
import tempfile

# Point the application at a throwaway SQLite file before it is imported
_DB_DIR = tempfile.mkdtemp(prefix="storefront-tests-")
os.environ["DATABASE_URL"] = "sqlite:///" + os.path.join(_DB_DIR, "storefront.db")
os.environ["API_PREFIX"] = ""

from decimal import Decimal  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from storefront import models, security  # noqa: E402
from storefront.database import Base, SessionLocal, engine  # noqa: E402
from storefront.main import app  # noqa: E402


@pytest.fixture(autouse=True)
def reset_database():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client():
    return TestClient(app)


@pytest.fixture
def make_user(db):
    def _make(email="user@example.com", role=models.ROLE_USER, name="Test User", password="password123"):
        user = models.User(
            name=name,
            email=email,
            password_hash=security.hash_password(password),
            role=role,
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        return user
    return _make


@pytest.fixture
def auth_headers(db):
    def _headers(user):
        return {"Authorization": f"Bearer {security.issue_token(db, user)}"}
    return _headers


@pytest.fixture
def user(make_user):
    return make_user()


@pytest.fixture
def admin(make_user):
    return make_user(email="admin@example.com", role=models.ROLE_ADMIN, name="Admin")


@pytest.fixture
def user_headers(auth_headers, user):
    return auth_headers(user)


@pytest.fixture
def admin_headers(auth_headers, admin):
    return auth_headers(admin)


@pytest.fixture
def category(db):
    category = models.Category(name="Hosting", description="Hosting services")
    db.add(category)
    db.commit()
    db.refresh(category)
    return category


@pytest.fixture
def make_product(db, category):
    def _make(name="Product", price="10.00", stock_quantity=10, category_id=None):
        product = models.Product(
            name=name,
            description=f"{name} description",
            price=Decimal(price),
            stock_quantity=stock_quantity,
            category_id=category_id or category.id,
        )
        db.add(product)
        db.commit()
        db.refresh(product)
        return product
    return _make


@pytest.fixture
def product_a(make_product):
    return make_product(name="Product A", price="100.00", stock_quantity=50)


@pytest.fixture
def product_b(make_product):
    return make_product(name="Product B", price="75.00", stock_quantity=30)


@pytest.fixture
def fill_cart(db):
    """Put (product, quantity) pairs straight into the user's cart."""
    def _fill(user, *lines):
        cart = db.query(models.Cart).filter_by(user_id=user.id).first()
        if cart is None:
            cart = models.Cart(user_id=user.id)
            db.add(cart)
            db.flush()
        for product, quantity in lines:
            db.add(models.CartItem(cart_id=cart.id, product_id=product.id, quantity=quantity))
        db.commit()
        return cart
    return _fill
