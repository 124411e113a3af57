"""
Order Workflow
==============

Turns a user's cart into an order:

    1. load cart + items            -> EmptyCart if there is nothing to order
    2. check stock for every item   -> InsufficientStock before any write
    3. one unit of work:
         lock the cart (cart.lock_cart) and re-read its items under it
         lock the products (SELECT ... FOR UPDATE, ordered by id)
         re-check stock against the locked rows
         INSERT order, INSERT order_items (price snapshot)
         UPDATE products SET stock_quantity = stock_quantity - qty
             WHERE id = ? AND stock_quantity >= qty
         DELETE the ordered cart_items, by id
       COMMIT, or ROLLBACK everything on any failure

The order is built from the items read under the cart lock, not from the
step 1 snapshot. A cart change committed in between is therefore part of
the order, and a change that arrives later waits for the commit and then
applies to the emptied cart.

Concurrent orders for the same product:
    PostgreSQL: the second transaction waits on the row lock, then re-checks
    against the decremented stock.
    SQLite (no row locks): the guarded UPDATE matches no row once stock ran
    out, which raises InsufficientStock and rolls the transaction back.

Prices are read at placement time; the order keeps them even if the catalog
changes later.
"""

import logging
from decimal import Decimal
from typing import Dict, Iterable, List

from opentelemetry import trace
from sqlalchemy import delete, update
from sqlalchemy.orm import Session, selectinload

from storefront import cart as cart_store
from storefront import models
from storefront.database import unit_of_work
from storefront.errors import EmptyCart, InsufficientStock, InternalError, NotFound, StorefrontError

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


def _order_query(db: Session):
    return db.query(models.Order).options(
        selectinload(models.Order.order_items)
        .joinedload(models.OrderItem.product)
        .selectinload(models.Product.category)
    )


def list_user_orders(db: Session, user_id: int) -> List[models.Order]:
    return (
        _order_query(db)
        .filter(models.Order.user_id == user_id)
        .order_by(models.Order.id)
        .all()
    )


def get_user_order(db: Session, user_id: int, order_id: int) -> models.Order:
    """
    One of the user's orders.

    An order that exists but belongs to someone else is reported exactly
    like a missing one.
    """
    order = (
        _order_query(db)
        .filter(models.Order.id == order_id, models.Order.user_id == user_id)
        .populate_existing()
        .first()
    )
    if order is None:
        raise NotFound("Order not found")
    return order


def _check_stock(items: Iterable[models.CartItem]) -> None:
    for item in items:
        if item.product.stock_quantity < item.quantity:
            raise InsufficientStock.for_product(item.product.name)


def _lock_cart_items(db: Session, cart_id: int) -> List[models.CartItem]:
    """
    The cart's current items, read after taking the cart lock.

    SQL generated:
        UPDATE carts SET updated_at = now() WHERE id = ?
        SELECT * FROM cart_items WHERE cart_id = ? ORDER BY id FOR UPDATE
    """
    cart_store.lock_cart(db, cart_id)
    return (
        db.query(models.CartItem)
        .filter(models.CartItem.cart_id == cart_id)
        .order_by(models.CartItem.id)
        .with_for_update()
        .populate_existing()
        .all()
    )


def _lock_products(db: Session, product_ids: List[int]) -> Dict[int, models.Product]:
    # Fixed lock order so two orders sharing products cannot deadlock
    rows = (
        db.query(models.Product)
        .filter(models.Product.id.in_(product_ids))
        .order_by(models.Product.id)
        .with_for_update()
        .populate_existing()
        .all()
    )
    return {product.id: product for product in rows}


def _decrement_stock(db: Session, product: models.Product, quantity: int) -> None:
    result = db.execute(
        update(models.Product)
        .where(models.Product.id == product.id, models.Product.stock_quantity >= quantity)
        .values(stock_quantity=models.Product.stock_quantity - quantity)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise InsufficientStock.for_product(product.name)


def _remove_ordered_items(db: Session, item_ids: List[int]) -> None:
    db.execute(
        delete(models.CartItem)
        .where(models.CartItem.id.in_(item_ids))
        .execution_options(synchronize_session=False)
    )


def place_order(db: Session, user_id: int) -> models.Order:
    """
    Place an order for everything in the user's cart.

    Args:
        db: Database session
        user_id: Already authenticated owner of the cart

    Returns:
        The new Order with its order_items and their products loaded

    Raises:
        EmptyCart: no cart, or a cart without items
        InsufficientStock: some product has fewer units than requested
            (checked before writing and again under the row locks)
        InternalError: any other failure inside the transaction; nothing
            was changed
    """
    with tracer.start_as_current_span("place_order") as span:
        span.set_attribute("order.user_id", user_id)

        cart = cart_store.get_cart(db, user_id)
        items = cart_store.list_items(db, cart)
        if not items:
            span.add_event("empty_cart")
            raise EmptyCart()
        span.set_attribute("order.item_count", len(items))

        with tracer.start_as_current_span("validate_stock"):
            try:
                _check_stock(items)
            except InsufficientStock as exc:
                span.add_event("insufficient_stock", {"reason": exc.message})
                raise

        try:
            with unit_of_work(db):
                items = _lock_cart_items(db, cart.id)
                if not items:
                    raise EmptyCart()
                locked = _lock_products(db, [item.product_id for item in items])
                _check_stock(items)

                total = sum(
                    (item.quantity * locked[item.product_id].price for item in items),
                    Decimal("0.00"),
                )

                with tracer.start_as_current_span("save_order"):
                    order = models.Order(
                        user_id=user_id,
                        total_amount=total,
                        status=models.ORDER_STATUS_PENDING,
                    )
                    db.add(order)
                    db.flush()  # assigns order.id without committing

                    for item in items:
                        db.add(models.OrderItem(
                            order_id=order.id,
                            product_id=item.product_id,
                            quantity=item.quantity,
                            price=locked[item.product_id].price,
                        ))
                    db.flush()

                with tracer.start_as_current_span("update_inventory"):
                    for item in items:
                        _decrement_stock(db, locked[item.product_id], item.quantity)

                _remove_ordered_items(db, [item.id for item in items])
                order_id = order.id
        except StorefrontError as exc:
            span.add_event("order_rejected", {"reason": exc.message})
            logger.info("Order for user %s rejected: %s", user_id, exc.message)
            raise
        except Exception as exc:
            span.record_exception(exc)
            span.set_attribute("error", True)
            logger.exception("Order for user %s failed and was rolled back", user_id)
            raise InternalError() from exc

        span.set_attribute("order.id", order_id)
        span.set_attribute("order.total_amount", float(total))
        logger.info("Order %s placed by user %s, total %s", order_id, user_id, total)

        return get_user_order(db, user_id, order_id)
