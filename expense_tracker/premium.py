"""Premium purchase flow: gateway order creation and payment callbacks."""

import logging
from typing import Optional

from sqlalchemy.orm import Session

from . import crud, models
from .config import Settings
from .errors import InvalidStateError, NotFoundError, PermissionDeniedError

logger = logging.getLogger(__name__)


def start_purchase(db: Session, user: models.User, gateway, settings: Settings) -> dict:
    order = gateway.create_order(
        settings.premium_amount,
        settings.premium_currency,
        notes={"user_id": str(user.id), "type": "premium_subscription"},
    )
    crud.create_order(db, user.id, order["id"], order["amount"], order["currency"])
    logger.info("Premium order %s created for user %s", order["id"], user.id)
    return {"order": order, "key_id": gateway.key_id}


def _owned_order(db: Session, user: models.User, order_id: str) -> models.Order:
    order = crud.get_order(db, order_id)
    if not order:
        raise NotFoundError("Order not found")
    if order.user_id != user.id:
        raise PermissionDeniedError("Unauthorized to update this order")
    return order


def complete_purchase(db: Session, user: models.User, order_id: str, payment_id: str, gateway) -> models.Order:
    """Mark the order paid and the user premium once the gateway confirms it.

    Replaying the callback for an order that already succeeded changes
    nothing. ``total_amount`` is never touched here.
    """
    order = _owned_order(db, user, order_id)
    if order.status == "pending":
        gateway.confirm_payment(order.order_id, order.amount, order.currency)
    if crud.transition_order(db, order_id, "success", payment_id=payment_id):
        crud.set_premium(db, user.id)
        db.commit()
        logger.info("Payment %s completed order %s for user %s", payment_id, order_id, user.id)
    else:
        db.rollback()
        db.refresh(order)
        if order.status != "success":
            raise InvalidStateError(f"Order is already {order.status}")
        logger.info("Duplicate success callback for order %s ignored", order_id)
    db.refresh(order)
    return order


def fail_purchase(db: Session, user: models.User, order_id: str) -> models.Order:
    order = _owned_order(db, user, order_id)
    if crud.transition_order(db, order_id, "failed"):
        db.commit()
        logger.warning("Payment failed for order %s of user %s", order_id, user.id)
    else:
        db.rollback()
        db.refresh(order)
        if order.status == "success":
            raise InvalidStateError("Order already succeeded")
    db.refresh(order)
    return order


def require_premium(user: models.User, feature: Optional[str] = None) -> None:
    if not user.is_premium:
        raise PermissionDeniedError(f"Premium subscription required{' to access ' + feature if feature else ''}")
