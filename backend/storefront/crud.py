"""
CRUD Operations
===============

Business logic layer for users and the catalog (categories and products).

The cart and the order workflow live in their own modules (cart.py,
orders.py) because they carry the multi-row consistency rules.

Pattern:
def operation_name(db: Session, parameters) -> ReturnType:
    # Database operations
    # Raise a StorefrontError on business-rule violations
    return result
"""

import logging
import math
from typing import List, Optional, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from storefront import config, models, schemas, security
from storefront.errors import NotFound, Unauthorized, ValidationFailed

logger = logging.getLogger(__name__)

EMAIL_TAKEN = "The email has already been taken."

# ============================================================================
# USER OPERATIONS
# ============================================================================


def get_user_by_email(db: Session, email: str) -> Optional[models.User]:
    """
    SQL generated:
        SELECT * FROM users WHERE email = ? LIMIT 1
    """
    return db.query(models.User).filter(models.User.email == email).first()


def _email_taken(db: Session, email: str, exclude_user_id: Optional[int] = None) -> bool:
    query = db.query(models.User.id).filter(models.User.email == email)
    if exclude_user_id is not None:
        query = query.filter(models.User.id != exclude_user_id)
    return query.first() is not None


def _commit_user(db: Session, user: models.User) -> None:
    # users.email is unique; a registration racing past the lookup lands here
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ValidationFailed.for_field("email", EMAIL_TAKEN)
    db.refresh(user)


def create_user(db: Session, payload: schemas.UserRegister) -> models.User:
    """
    Register a new account with role "user".

    Args:
        db: Database session
        payload: UserRegister schema (name, email, password)

    Returns:
        Created User with id and timestamps

    Raises:
        ValidationFailed: email already registered, including by a request
            that committed between the lookup and the insert

    SQL generated:
        SELECT id FROM users WHERE email = ? LIMIT 1
        INSERT INTO users (name, email, password_hash, role) VALUES (?, ?, ?, 'user')
    """
    if _email_taken(db, payload.email):
        raise ValidationFailed.for_field("email", EMAIL_TAKEN)

    user = models.User(
        name=payload.name,
        email=payload.email,
        password_hash=security.hash_password(payload.password),
        role=models.ROLE_USER,
    )
    db.add(user)
    _commit_user(db, user)

    logger.info("Registered user %s", user.id)
    return user


def authenticate(db: Session, email: str, password: str) -> models.User:
    """
    Check credentials.

    Unknown email and wrong password are reported the same way so the
    response does not reveal which accounts exist.
    """
    user = get_user_by_email(db, email)
    if user is None or not security.verify_password(password, user.password_hash):
        raise Unauthorized("Invalid credentials")
    return user


def update_profile(db: Session, user: models.User, payload: schemas.ProfileUpdate) -> models.User:
    """Change name and/or email; an email owned by another account is a 422."""
    update_data = payload.model_dump(exclude_unset=True, exclude_none=True)

    email = update_data.get("email")
    if email is not None and email != user.email and _email_taken(db, email, exclude_user_id=user.id):
        raise ValidationFailed.for_field("email", EMAIL_TAKEN)

    for field, value in update_data.items():
        setattr(user, field, value)

    _commit_user(db, user)
    return user


# ============================================================================
# CATEGORY OPERATIONS
# ============================================================================


def get_categories(db: Session) -> List[models.Category]:
    """
    Retrieve every category.

    Args:
        db: Database session

    Returns:
        List of Category objects, oldest first

    SQL generated:
        SELECT * FROM categories ORDER BY id
    """
    return db.query(models.Category).order_by(models.Category.id).all()


def get_category(db: Session, category_id: int) -> models.Category:
    category = db.query(models.Category).filter(models.Category.id == category_id).first()
    if category is None:
        raise NotFound("Category not found")
    return category


def create_category(db: Session, payload: schemas.CategoryCreate) -> models.Category:
    """
    Create a new category.

    Args:
        db: Database session
        payload: CategoryCreate schema (name, optional description)

    Returns:
        Created Category object (with id, timestamps)

    Process:
        1. Convert Pydantic schema -> SQLAlchemy model
        2. Commit
        3. Refresh to get DB-generated fields

    SQL generated:
        INSERT INTO categories (name, description) VALUES (?, ?)
    """
    category = models.Category(**payload.model_dump())
    db.add(category)
    db.commit()
    db.refresh(category)

    logger.info("Created category %s", category.id)
    return category


def update_category(db: Session, category_id: int, payload: schemas.CategoryUpdate) -> models.Category:
    category = get_category(db, category_id)

    for field, value in payload.model_dump(exclude_unset=True).items():
        if value is None and field != "description":
            continue
        setattr(category, field, value)

    db.commit()
    db.refresh(category)
    return category


def delete_category(db: Session, category_id: int) -> None:
    """
    Delete a category together with its products.

    Refused when any of those products appears in an order, since order
    history must keep pointing at real products.

    SQL generated:
        SELECT count(*) FROM order_items
        JOIN products ON order_items.product_id = products.id
        WHERE products.category_id = ?
        DELETE FROM products WHERE category_id = ?
        DELETE FROM categories WHERE id = ?
    """
    category = get_category(db, category_id)
    ordered = (
        db.query(models.OrderItem)
        .join(models.Product, models.OrderItem.product_id == models.Product.id)
        .filter(models.Product.category_id == category.id)
        .count()
    )
    if ordered:
        raise ValidationFailed("Category has products that were ordered and cannot be deleted")

    db.delete(category)
    db.commit()
    logger.info("Deleted category %s", category_id)


# ============================================================================
# PRODUCT OPERATIONS
# ============================================================================


def _require_category(db: Session, category_id: int) -> None:
    if db.query(models.Category.id).filter(models.Category.id == category_id).first() is None:
        raise ValidationFailed.for_field("category_id", "The selected category id is invalid.")


def get_product(db: Session, product_id: int) -> models.Product:
    """
    Retrieve a single product by ID (with its category).

    Args:
        db: Database session
        product_id: ID of product to retrieve

    Raises:
        NotFound: no product with that id

    SQL generated:
        SELECT * FROM products WHERE id = product_id LIMIT 1
    """
    product = (
        db.query(models.Product)
        .options(selectinload(models.Product.category))
        .filter(models.Product.id == product_id)
        .first()
    )
    if product is None:
        raise NotFound("Product not found")
    return product


def list_products(
    db: Session,
    filters: schemas.ProductFilters,
    page: int = 1,
    limit: int = config.DEFAULT_PAGE_SIZE,
) -> Tuple[List[models.Product], schemas.Pagination]:
    """
    Filtered, paginated product listing.

    Filters are optional and combined with AND:
        category_id  exact match
        min_price    price >= min_price
        max_price    price <= max_price
        search       name contains the term (collation of the database decides
                     case sensitivity; % and _ in the term match literally)

    Results are ordered by id, i.e. creation order.

    Pagination example (limit=10):
        page=1 -> products 1-10, page=2 -> products 11-20

    Returns:
        (products on this page, pagination metadata)

    SQL generated:
        SELECT count(*) FROM products WHERE <filters>
        SELECT * FROM products WHERE <filters> ORDER BY id LIMIT limit OFFSET (page - 1) * limit
    """
    query = db.query(models.Product)
    if filters.category_id is not None:
        query = query.filter(models.Product.category_id == filters.category_id)
    if filters.min_price is not None:
        query = query.filter(models.Product.price >= filters.min_price)
    if filters.max_price is not None:
        query = query.filter(models.Product.price <= filters.max_price)
    if filters.search:
        query = query.filter(models.Product.name.contains(filters.search, autoescape=True))

    total = query.count()

    products = (
        query.options(selectinload(models.Product.category))
        .order_by(models.Product.id)
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )

    pagination = schemas.Pagination(
        current_page=page,
        last_page=max(1, math.ceil(total / limit)),
        per_page=limit,
        total=total,
    )
    return products, pagination


def create_product(db: Session, payload: schemas.ProductCreate) -> models.Product:
    """
    Create a new product.

    Process:
        1. Check the category exists (422 on the category_id field otherwise)
        2. Convert Pydantic schema -> SQLAlchemy model
        3. Commit, then reload with the category attached
    """
    _require_category(db, payload.category_id)

    product = models.Product(**payload.model_dump())
    db.add(product)
    db.commit()

    logger.info("Created product %s", product.id)
    return get_product(db, product.id)


def update_product(db: Session, product_id: int, payload: schemas.ProductUpdate) -> models.Product:
    """
    Update an existing product (partial update).

    Only fields explicitly sent by the client are changed:
        {"price": "899.00"} -> only price updated

    A price change does not touch existing orders; their items keep the
    price they were placed at.
    """
    product = get_product(db, product_id)

    update_data = payload.model_dump(exclude_unset=True)
    if update_data.get("category_id") is not None:
        _require_category(db, update_data["category_id"])

    for field, value in update_data.items():
        if value is None and field != "description":
            continue
        setattr(product, field, value)

    db.commit()
    return get_product(db, product_id)


def delete_product(db: Session, product_id: int) -> None:
    """
    Delete a product by ID. Cart items holding it go with it.

    Raises:
        NotFound: no such product
        ValidationFailed: the product appears in an order
    """
    product = get_product(db, product_id)
    ordered = db.query(models.OrderItem).filter(models.OrderItem.product_id == product.id).count()
    if ordered:
        raise ValidationFailed("Product has been ordered and cannot be deleted")

    db.delete(product)
    db.commit()
    logger.info("Deleted product %s", product_id)
