"""
Order lifecycle

Creation with sequential order numbers, status and tracking updates with a
history trail, and the per-IP daily limit for anonymous checkouts. Updates
return before/after snapshots so the caller can run the update reactions.
"""
import hashlib
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Optional, Tuple

from bson import ObjectId
from bson.errors import InvalidId
from pymongo import ReturnDocument
from pymongo.errors import PyMongoError

from config import MAX_ORDERS_PER_DAY
from logger import get_logger

logger = get_logger("orders")

DEMO_ORDER_NUMBER = "DEMO"
COUNTER_ID = "order_counter"


class OrderStatus(str, Enum):
    CANCELLED = "cancelled"
    PENDING = "pending"
    ACTIVE = "active"
    PRINTING = "printing"
    PRINTED = "printed"
    SHIPPED = "shipped"
    COMPLETED = "completed"


class OrderNotFound(Exception):
    pass


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _object_id(order_id: str) -> ObjectId:
    try:
        return ObjectId(order_id)
    except (InvalidId, TypeError):
        raise OrderNotFound(order_id)


def hash_ip(ip: Optional[str]) -> Optional[str]:
    if not ip:
        return None
    return hashlib.sha256(ip.encode("utf-8")).hexdigest()


def check_ip_rate_limit(db, ip_hash: Optional[str]) -> dict:
    """How many orders this IP hash placed in the last 24h. Fails open."""
    if not ip_hash:
        return {"allowed": True, "orders_today": 0, "limit": MAX_ORDERS_PER_DAY}
    try:
        since = _now() - timedelta(hours=24)
        orders_today = db["order"].count_documents({"ip_hash": ip_hash, "created_at": {"$gte": since}})
    except PyMongoError as e:
        logger.error(f"Error checking rate limit: {e}")
        return {"allowed": True, "orders_today": 0, "limit": MAX_ORDERS_PER_DAY}
    return {"allowed": orders_today < MAX_ORDERS_PER_DAY, "orders_today": orders_today, "limit": MAX_ORDERS_PER_DAY}


def create_order(db, data: dict, ip_hash: Optional[str] = None) -> dict:
    """Store a new pending order and return the stored document (with `_id`)."""
    is_demo = bool(data.get("is_demo"))
    if is_demo:
        order_number = DEMO_ORDER_NUMBER
    else:
        counter = db["metadata"].find_one({"_id": COUNTER_ID})
        order_number = counter["value"] if counter else 1

    now = _now()
    order = {
        **data,
        "order_number": order_number,
        "ip_hash": ip_hash,
        "status": OrderStatus.PENDING.value,
        "is_paid": False,
        "payment_method": None,
        "history": [{"field": "order_created", "value": "Order created", "timestamp": now}],
        "created_at": now,
        "updated_at": now,
    }
    order["_id"] = db["order"].insert_one(order).inserted_id

    if not is_demo:
        for item in data.get("items") or []:
            product_id = item.get("id")
            if not product_id:
                continue
            try:
                db["product"].update_one({"_id": ObjectId(product_id)}, {"$inc": {"units_sold": item.get("quantity") or 1}})
            except (InvalidId, PyMongoError) as e:
                logger.error(f"Error updating units_sold for product {product_id}: {e}")
        db["metadata"].update_one({"_id": COUNTER_ID}, {"$set": {"value": order_number + 1}}, upsert=True)

    logger.info(f"Order {order_number} created")
    return order


def _update(db, order_id: str, build_update) -> Tuple[dict, dict]:
    _id = _object_id(order_id)
    before = db["order"].find_one({"_id": _id})
    if not before:
        raise OrderNotFound(order_id)
    after = db["order"].find_one_and_update(
        {"_id": _id}, build_update(before), return_document=ReturnDocument.AFTER
    )
    return before, after


def _status_history(old_status: Optional[str], new_status: str) -> dict:
    return {"field": "status", "old_value": old_status, "new_value": new_status, "timestamp": _now()}


def update_order_status(db, order_id: str, status: OrderStatus) -> Tuple[dict, dict]:
    status = OrderStatus(status)

    def build(before: dict) -> dict:
        return {
            "$set": {"status": status.value, "updated_at": _now()},
            "$push": {"history": _status_history(before.get("status"), status.value)},
        }

    return _update(db, order_id, build)


def update_tracking(db, order_id: str, tracking_code: str, shipping_provider: str = "posten") -> Tuple[dict, dict]:
    """Store tracking details; an order not yet shipped moves to shipped."""

    def build(before: dict) -> dict:
        update = {
            "$set": {
                "tracking_code": tracking_code,
                "shipping_provider": shipping_provider,
                "updated_at": _now(),
            }
        }
        if before.get("status") != OrderStatus.SHIPPED.value:
            update["$set"]["status"] = OrderStatus.SHIPPED.value
            update["$push"] = {"history": _status_history(before.get("status"), OrderStatus.SHIPPED.value)}
        return update

    return _update(db, order_id, build)
