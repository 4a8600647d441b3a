"""
Transactional email reactions

- send_contact_email: request/response, raises ContactError for the caller.
- on_order_created / on_order_updated: event reactions, best effort. Failures
  are logged and swallowed so the triggering write is never failed or retried.
"""
import asyncio
import re
from typing import Optional

import database
from emails import (
    contact_admin_message,
    contact_reply_message,
    order_admin_message,
    order_customer_message,
    order_shipped_message,
)
from logger import get_logger
from mailer import Mailer, create_mailer, send_all

logger = get_logger("notifications")

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
CONTACT_FIELDS = ("name", "email", "subject", "message")
SHIPPED = "shipped"


class ContactError(Exception):
    """Error surfaced to the contact form caller. `code` is invalid-argument or internal."""

    def __init__(self, code: str, message: str):
        super().__init__(message)
        self.code = code
        self.message = message


async def send_contact_email(data: dict, mailer: Optional[Mailer] = None) -> dict:
    data = data or {}
    if any(not isinstance(data.get(f), str) or not data.get(f).strip() for f in CONTACT_FIELDS):
        raise ContactError("invalid-argument", "Missing required fields")
    if not EMAIL_RE.fullmatch(data["email"]):
        raise ContactError("invalid-argument", "Invalid email format")

    mailer = mailer or create_mailer()
    try:
        await send_all(mailer, [contact_admin_message(data), contact_reply_message(data)])
    except Exception as e:
        logger.error(f"Error sending email: {e}")
        raise ContactError("internal", "Failed to send email") from e
    return {"success": True, "message": "Email sent successfully"}


async def on_order_created(order_id: str, order: Optional[dict], mailer: Optional[Mailer] = None) -> int:
    """Notify the shop and, when possible, the customer about a new order. Returns messages sent."""
    if not order:
        logger.error("Order data missing for email trigger")
        return 0

    customer = order.get("customer") or {}
    order_number = order.get("order_number") or order_id

    messages = [order_admin_message(order, order_number)]
    if customer.get("email"):
        messages.append(order_customer_message(order, order_number))
    else:
        logger.warning(f"Order {order_number} has no customer email. Customer email skipped.")

    mailer = mailer or create_mailer()
    try:
        await send_all(mailer, messages)
    except Exception:
        logger.exception("Error sending order confirmation emails")
        return 0
    return len(messages)


async def on_order_updated(
    order_id: str,
    before: Optional[dict],
    after: Optional[dict],
    orders=None,
    mailer: Optional[Mailer] = None,
) -> bool:
    """
    Send the shipped email when an update moves the order into "shipped".

    The shipped_email_sent flag is written only after a successful send, so
    a later update can retry a failed one.
    """
    if not before or not after:
        return False
    if before.get("status") == SHIPPED or after.get("status") != SHIPPED:
        return False
    if after.get("shipped_email_sent"):
        return False

    customer = after.get("customer") or {}
    if not customer.get("email"):
        logger.warning(f"Order {order_id} shipped, but no customer email found.")
        return False

    order_number = after.get("order_number") or order_id
    mailer = mailer or create_mailer()
    orders = orders if orders is not None else database.db["order"]
    try:
        await mailer.send(order_shipped_message(after, order_number))
        await asyncio.to_thread(
            orders.update_one,
            {"_id": after.get("_id", order_id)},
            {"$set": {"shipped_email_sent": True}, "$currentDate": {"shipped_email_sent_at": True}},
        )
    except Exception:
        logger.exception("Error sending shipped email")
        return False
    logger.info(f"Shipped email sent for order {order_number}")
    return True
