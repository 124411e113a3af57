"""
Cart Store
==========

One cart per user, created on first access, holding at most one item per
product.

Concurrency:
- get_or_create_cart is a single INSERT ... ON CONFLICT DO NOTHING on the
  unique carts.user_id, so two simultaneous first requests end up with the
  same cart instead of two.
- add_item is a single INSERT ... ON CONFLICT DO UPDATE on the unique
  (cart_id, product_id) pair, adding to the existing quantity. Two
  simultaneous adds of the same product therefore accumulate into one row.
- Every write to a cart's items first takes lock_cart, the same lock order
  placement holds while it turns the items into an order. A cart change
  either lands before the order reads the items or waits until it commits.

Stock is only checked here (advisory, against the current snapshot); it is
never reserved or decremented until an order is placed.
"""

import logging
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import delete, func, update
from sqlalchemy.orm import Session, joinedload

from storefront import models
from storefront.database import upsert_into
from storefront.errors import InsufficientStock, NotFound, ValidationFailed

logger = logging.getLogger(__name__)


def get_cart(db: Session, user_id: int) -> Optional[models.Cart]:
    return db.query(models.Cart).filter(models.Cart.user_id == user_id).first()


def get_or_create_cart(db: Session, user_id: int) -> models.Cart:
    """
    Return the user's cart, creating an empty one if absent.

    The insert joins the caller's transaction; it becomes visible to others
    when the caller commits.

    SQL generated:
        INSERT INTO carts (user_id) VALUES (?) ON CONFLICT (user_id) DO NOTHING
        SELECT * FROM carts WHERE user_id = ?
    """
    cart = get_cart(db, user_id)
    if cart is not None:
        return cart

    db.execute(
        upsert_into(db, models.Cart)
        .values(user_id=user_id)
        .on_conflict_do_nothing(index_elements=["user_id"])
    )
    return get_cart(db, user_id)


def lock_cart(db: Session, cart_id: int) -> None:
    """
    Take the cart's write lock for the rest of the current transaction.

    Writing the cart row holds its row lock on PostgreSQL and the database
    write lock on SQLite, until commit or rollback.

    SQL generated:
        UPDATE carts SET updated_at = now() WHERE id = ?
    """
    db.execute(
        update(models.Cart)
        .where(models.Cart.id == cart_id)
        .values(updated_at=func.now())
        .execution_options(synchronize_session=False)
    )


def list_items(db: Session, cart: Optional[models.Cart]) -> List[models.CartItem]:
    """Cart items with their products (and categories) loaded."""
    if cart is None:
        return []
    return (
        db.query(models.CartItem)
        .options(joinedload(models.CartItem.product).selectinload(models.Product.category))
        .filter(models.CartItem.cart_id == cart.id)
        .order_by(models.CartItem.id)
        .populate_existing()
        .all()
    )


def get_item(db: Session, cart: models.Cart, product_id: int) -> Optional[models.CartItem]:
    return (
        db.query(models.CartItem)
        .filter(models.CartItem.cart_id == cart.id, models.CartItem.product_id == product_id)
        .populate_existing()
        .first()
    )


def _validate_quantity(quantity: int) -> None:
    if quantity < 1:
        raise ValidationFailed.for_field("quantity", "The quantity must be at least 1.")


def add_item(db: Session, cart: models.Cart, product_id: int, quantity: int) -> models.CartItem:
    """
    Add ``quantity`` units of a product to the cart.

    If the product is already in the cart its quantity is increased by
    ``quantity`` (add 3 then add 2 -> 5); otherwise a new item is created.

    Args:
        db: Database session
        cart: The caller's cart (see get_or_create_cart)
        product_id: Product to add
        quantity: Units to add, at least 1

    Returns:
        The cart item after the change

    Raises:
        ValidationFailed: quantity < 1
        NotFound: product does not exist
        InsufficientStock: current stock is below the requested quantity

    SQL generated:
        UPDATE carts SET updated_at = now() WHERE id = ?
        INSERT INTO cart_items (cart_id, product_id, quantity) VALUES (?, ?, ?)
        ON CONFLICT (cart_id, product_id)
        DO UPDATE SET quantity = cart_items.quantity + ?
    """
    _validate_quantity(quantity)

    product = db.query(models.Product).filter(models.Product.id == product_id).first()
    if product is None:
        raise NotFound("Product not found")
    if product.stock_quantity < quantity:
        raise InsufficientStock()

    lock_cart(db, cart.id)
    stmt = upsert_into(db, models.CartItem).values(
        cart_id=cart.id,
        product_id=product_id,
        quantity=quantity,
    )
    db.execute(stmt.on_conflict_do_update(
        index_elements=["cart_id", "product_id"],
        set_={
            "quantity": models.CartItem.__table__.c.quantity + quantity,
            "updated_at": func.now(),
        },
    ))
    db.commit()

    logger.debug("Added %s x product %s to cart %s", quantity, product_id, cart.id)
    return get_item(db, cart, product_id)


def update_item(db: Session, cart: Optional[models.Cart], product_id: int, quantity: int) -> models.CartItem:
    """
    Set the quantity of a product already in the cart (replaces, not adds).

    Raises:
        ValidationFailed: quantity < 1
        NotFound: no cart, or the product is not in it
        InsufficientStock: current stock is below the new quantity
    """
    _validate_quantity(quantity)

    if cart is None:
        raise NotFound("Cart not found")
    lock_cart(db, cart.id)
    item = get_item(db, cart, product_id)
    if item is None:
        db.rollback()
        raise NotFound("Product not found in cart")
    if item.product.stock_quantity < quantity:
        db.rollback()
        raise InsufficientStock()

    item.quantity = quantity
    db.commit()
    return get_item(db, cart, product_id)


def remove_item(db: Session, cart: Optional[models.Cart], product_id: int) -> None:
    """
    Remove one product from the cart.

    Args:
        db: Database session
        cart: The caller's cart, or None when they never had one
        product_id: Product whose item is removed

    Raises:
        NotFound: no cart ("Cart not found"), or the product is not in it
            ("Product not found in cart")

    SQL generated:
        UPDATE carts SET updated_at = now() WHERE id = ?
        DELETE FROM cart_items WHERE cart_id = ? AND product_id = ?
    """
    if cart is None:
        raise NotFound("Cart not found")
    lock_cart(db, cart.id)
    result = db.execute(
        delete(models.CartItem)
        .where(models.CartItem.cart_id == cart.id, models.CartItem.product_id == product_id)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        db.rollback()
        raise NotFound("Product not found in cart")
    db.commit()


def clear(db: Session, cart: Optional[models.Cart]) -> None:
    """Remove every item. A missing or already empty cart is not an error."""
    if cart is None:
        return
    lock_cart(db, cart.id)
    db.execute(
        delete(models.CartItem)
        .where(models.CartItem.cart_id == cart.id)
        .execution_options(synchronize_session=False)
    )
    db.commit()


def sum_items(items: List[models.CartItem]) -> Decimal:
    return sum((item.quantity * item.product.price for item in items), Decimal("0.00"))


def compute_total(db: Session, cart: Optional[models.Cart]) -> Decimal:
    """Sum of quantity x current product price; reflects live prices, not snapshots."""
    return sum_items(list_items(db, cart))
