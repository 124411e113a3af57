"""
Storefront API with OpenTelemetry and Prometheus instrumentation
"""

import logging
import time
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
from sqlalchemy.orm import Session
from starlette.exceptions import HTTPException as StarletteHTTPException

from storefront import cart as cart_store
from storefront import config, crud, models, orders, schemas, seed
from storefront.database import Base, SessionLocal, engine, get_db
from storefront.errors import InternalError, StorefrontError
from storefront.security import get_bearer_token, get_current_user, issue_token, require_admin, revoke_token

logger = logging.getLogger(__name__)

app = FastAPI(
    title="Storefront API",
    description="Catalog, cart and order placement for a small storefront",
    version="1.0.0"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Prometheus metrics
http_requests_total = Counter('http_requests_total', 'Total HTTP requests', ['method', 'endpoint', 'status'])
http_request_duration_seconds = Histogram('http_request_duration_seconds', 'HTTP request duration', ['method', 'endpoint'])
orders_total = Counter('orders_total', 'Total orders', ['status'])
revenue_total = Counter('revenue_total', 'Total revenue of placed orders')


def envelope(data=None, message: Optional[str] = None) -> dict:
    body = {"success": True}
    if message is not None:
        body["message"] = message
    if data is not None:
        body["data"] = data
    return body


def error_response(status_code: int, message: str, errors: Optional[dict] = None) -> JSONResponse:
    body = {"success": False, "message": message}
    if errors:
        body["errors"] = errors
    return JSONResponse(status_code=status_code, content=body)


# ============================================================================
# ERROR HANDLERS
# ============================================================================

@app.exception_handler(StorefrontError)
async def storefront_error_handler(request: Request, exc: StorefrontError):
    return error_response(exc.status_code, exc.message, exc.errors)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = {}
    for error in exc.errors():
        location = [str(part) for part in error["loc"] if part not in ("body", "query", "path", "header")]
        field = ".".join(location) or "body"
        errors.setdefault(field, []).append(error["msg"])
    return error_response(422, "Validation error", errors)


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return error_response(exc.status_code, str(exc.detail))


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return error_response(500, "Server error")


@app.middleware("http")
async def record_request_metrics(request: Request, call_next):
    start_time = time.time()
    response = await call_next(request)
    # route template (e.g. /orders/{order_id}) keeps label cardinality bounded
    route = request.scope.get("route")
    endpoint = getattr(route, "path", "unmatched")
    http_requests_total.labels(method=request.method, endpoint=endpoint, status=str(response.status_code)).inc()
    http_request_duration_seconds.labels(method=request.method, endpoint=endpoint).observe(time.time() - start_time)
    return response


@app.get("/health")
async def health_check():
    return {"status": "healthy", "service": "storefront"}


@app.get("/metrics")
async def metrics():
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)


api = APIRouter(prefix=config.API_PREFIX)

# ============================================================================
# AUTH
# ============================================================================

@api.post("/register", status_code=201)
def register(payload: schemas.UserRegister, db: Session = Depends(get_db)):
    user = crud.create_user(db, payload)
    token = issue_token(db, user)
    data = schemas.UserWithToken(user=schemas.User.model_validate(user), token=token)
    return envelope(data, "User registered successfully")


@api.post("/login")
def login(payload: schemas.UserLogin, db: Session = Depends(get_db)):
    user = crud.authenticate(db, payload.email, payload.password)
    token = issue_token(db, user)
    data = schemas.UserWithToken(user=schemas.User.model_validate(user), token=token)
    return envelope(data, "Login successful")


@api.get("/profile")
def profile(user: models.User = Depends(get_current_user)):
    return envelope({"user": schemas.User.model_validate(user)})


@api.put("/profile")
def update_profile(
    payload: schemas.ProfileUpdate,
    user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    user = crud.update_profile(db, user, payload)
    return envelope({"user": schemas.User.model_validate(user)}, "Profile updated successfully")


@api.post("/logout")
def logout(
    token: str = Depends(get_bearer_token),
    user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    revoke_token(db, token)
    return envelope(message="Logged out successfully")


# ============================================================================
# CATEGORIES
# ============================================================================

@api.get("/categories")
def list_categories(user: models.User = Depends(get_current_user), db: Session = Depends(get_db)):
    return envelope([schemas.Category.model_validate(c) for c in crud.get_categories(db)])


@api.post("/categories", status_code=201)
def create_category(
    payload: schemas.CategoryCreate,
    admin: models.User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    category = crud.create_category(db, payload)
    return envelope(schemas.Category.model_validate(category), "Category created successfully")


@api.put("/categories/{category_id}")
def update_category(
    category_id: int,
    payload: schemas.CategoryUpdate,
    admin: models.User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    category = crud.update_category(db, category_id, payload)
    return envelope(schemas.Category.model_validate(category), "Category updated successfully")


@api.delete("/categories/{category_id}")
def delete_category(category_id: int, admin: models.User = Depends(require_admin), db: Session = Depends(get_db)):
    crud.delete_category(db, category_id)
    return envelope(message="Category deleted successfully")


# ============================================================================
# PRODUCTS
# ============================================================================

@api.get("/products")
def list_products(
    page: int = Query(1, ge=1),
    limit: int = Query(config.DEFAULT_PAGE_SIZE, ge=1, le=config.MAX_PAGE_SIZE),
    category_id: Optional[int] = None,
    min_price: Optional[Decimal] = Query(None, ge=0),
    max_price: Optional[Decimal] = Query(None, ge=0),
    search: Optional[str] = None,
    user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    filters = schemas.ProductFilters(
        category_id=category_id,
        min_price=min_price,
        max_price=max_price,
        search=search,
    )
    products, pagination = crud.list_products(db, filters, page=page, limit=limit)
    data = schemas.ProductPage(
        products=[schemas.Product.model_validate(p) for p in products],
        pagination=pagination,
    )
    return envelope(data)


@api.get("/products/{product_id}")
def get_product(product_id: int, user: models.User = Depends(get_current_user), db: Session = Depends(get_db)):
    return envelope(schemas.Product.model_validate(crud.get_product(db, product_id)))


@api.post("/products", status_code=201)
def create_product(
    payload: schemas.ProductCreate,
    admin: models.User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    product = crud.create_product(db, payload)
    return envelope(schemas.Product.model_validate(product), "Product created successfully")


@api.put("/products/{product_id}")
def update_product(
    product_id: int,
    payload: schemas.ProductUpdate,
    admin: models.User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    product = crud.update_product(db, product_id, payload)
    return envelope(schemas.Product.model_validate(product), "Product updated successfully")


@api.delete("/products/{product_id}")
def delete_product(product_id: int, admin: models.User = Depends(require_admin), db: Session = Depends(get_db)):
    crud.delete_product(db, product_id)
    return envelope(message="Product deleted successfully")


# ============================================================================
# CART
# ============================================================================

@api.get("/cart")
def view_cart(user: models.User = Depends(get_current_user), db: Session = Depends(get_db)):
    cart = cart_store.get_or_create_cart(db, user.id)
    db.commit()
    items = cart_store.list_items(db, cart)
    data = schemas.CartView(
        cart=schemas.Cart.model_validate(cart),
        items=[schemas.CartItem.model_validate(item) for item in items],
        total=cart_store.sum_items(items),
    )
    return envelope(data)


@api.post("/cart/add")
def add_to_cart(
    payload: schemas.CartItemIn,
    user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    cart = cart_store.get_or_create_cart(db, user.id)
    cart_store.add_item(db, cart, payload.product_id, payload.quantity)
    return envelope(message="Product added to cart successfully")


@api.put("/cart/update")
def update_cart(
    payload: schemas.CartItemIn,
    user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    cart = cart_store.get_cart(db, user.id)
    cart_store.update_item(db, cart, payload.product_id, payload.quantity)
    return envelope(message="Cart updated successfully")


@api.delete("/cart/remove/{product_id}")
def remove_from_cart(product_id: int, user: models.User = Depends(get_current_user), db: Session = Depends(get_db)):
    cart = cart_store.get_cart(db, user.id)
    cart_store.remove_item(db, cart, product_id)
    return envelope(message="Product removed from cart successfully")


@api.delete("/cart/clear")
def clear_cart(user: models.User = Depends(get_current_user), db: Session = Depends(get_db)):
    cart_store.clear(db, cart_store.get_cart(db, user.id))
    return envelope(message="Cart cleared successfully")


# ============================================================================
# ORDERS
# ============================================================================

@api.post("/orders", status_code=201)
def place_order(user: models.User = Depends(get_current_user), db: Session = Depends(get_db)):
    try:
        order = orders.place_order(db, user.id)
    except InternalError:
        orders_total.labels(status='error').inc()
        raise
    except StorefrontError:
        orders_total.labels(status='rejected').inc()
        raise

    orders_total.labels(status='success').inc()
    revenue_total.inc(float(order.total_amount))

    placed = schemas.Order.model_validate(order)
    data = schemas.PlacedOrder(order=placed, order_items=placed.order_items)
    return envelope(data, "Order created successfully")


@api.get("/orders")
def list_orders(user: models.User = Depends(get_current_user), db: Session = Depends(get_db)):
    return envelope([schemas.Order.model_validate(o) for o in orders.list_user_orders(db, user.id)])


@api.get("/orders/{order_id}")
def get_order(order_id: int, user: models.User = Depends(get_current_user), db: Session = Depends(get_db)):
    return envelope(schemas.Order.model_validate(orders.get_user_order(db, user.id, order_id)))


app.include_router(api)

FastAPIInstrumentor.instrument_app(app)


@app.on_event("startup")
async def startup_event():
    logging.basicConfig(level=config.LOG_LEVEL)
    Base.metadata.create_all(bind=engine)
    if config.SEED_ON_STARTUP:
        db = SessionLocal()
        try:
            seed.seed_catalog(db)
            seed.seed_admin(db)
        finally:
            db.close()
    logger.info("Storefront API started")
    logger.info("OpenTelemetry instrumentation active")
    logger.info("Prometheus metrics at /metrics")
