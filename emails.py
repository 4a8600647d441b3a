"""
Transactional email rendering

Formatting helpers shared by the contact, order-created and order-shipped
emails, plus one composer per outgoing message. Bodies are rendered from the
Jinja2 templates in templates/emails with autoescaping on.
"""
import math
import os
from enum import Enum
from typing import Optional
from urllib.parse import quote

from jinja2 import Environment, FileSystemLoader, select_autoescape
from markupsafe import Markup, escape

from config import ADMIN_EMAIL, CURRENCY_SUFFIX, MAIL_FROM_NAME, SIGNATURE_NAME
from mailer import BUSINESS_SENDER, MailMessage, format_sender

TEMPLATES_DIR = os.path.join(os.path.dirname(os.path.abspath(__file__)), "templates", "emails")

env = Environment(
    loader=FileSystemLoader(TEMPLATES_DIR),
    autoescape=select_autoescape(["html"]),
    trim_blocks=True,
    lstrip_blocks=True,
)


class TrackingProvider(str, Enum):
    POSTEN = "posten"
    POSTNORD = "postnord"
    HELTHJEM = "helthjem"


DEFAULT_PROVIDER = TrackingProvider.POSTEN

TRACKING_URLS = {
    TrackingProvider.POSTEN: "https://sporing.posten.no/sporing/{code}",
    TrackingProvider.POSTNORD: "https://www.postnord.no/pakkesporing/?shipmentId={code}",
    TrackingProvider.HELTHJEM: "https://helthjem.no/sporing/{code}",
}


# ----- Formatting helpers -----

def _to_number(value) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return None if math.isnan(number) else number


def format_currency(value) -> str:
    number = _to_number(value)
    if number is None:
        return "-"
    return f"{number:.2f} {CURRENCY_SUFFIX}"


def nl2br(text) -> Markup:
    return Markup("<br>").join(escape(str(text or "")).split("\n"))


def customer_name(customer: Optional[dict]) -> str:
    customer = customer or {}
    return f"{customer.get('first_name') or ''} {customer.get('last_name') or ''}".strip()


def format_address(customer: Optional[dict]) -> Markup:
    """Name, street and postal code + city lines; blank lines are dropped."""
    if not customer:
        return Markup("")
    lines = [
        customer_name(customer),
        str(customer.get("address") or ""),
        f"{customer.get('postal_code') or ''} {customer.get('city') or ''}".strip(),
    ]
    return Markup("<br>").join(escape(line) for line in lines if line)


def build_items_table(items) -> Markup:
    if not isinstance(items, list) or not items:
        return Markup("<p>No items</p>")

    rows = []
    for item in items:
        qty = _to_number(item.get("quantity")) or 0
        price = _to_number(item.get("price")) or 0
        rows.append({
            "title": item.get("title") or "Item",
            "quantity": int(qty) if float(qty).is_integer() else qty,
            "price": format_currency(price),
            "total": format_currency(qty * price),
        })
    return Markup(env.get_template("items_table.html").render(rows=rows))


def get_tracking_url(tracking_code: Optional[str], provider: Optional[str] = None) -> Optional[str]:
    if not tracking_code:
        return None
    try:
        normalized = TrackingProvider((provider or DEFAULT_PROVIDER.value).lower())
    except ValueError:
        normalized = DEFAULT_PROVIDER
    code = quote(str(tracking_code), safe="-_.!~*'()")
    return TRACKING_URLS[normalized].format(code=code)


def build_tracking_block(order: Optional[dict]) -> Markup:
    if not order or not order.get("tracking_code"):
        return Markup("")
    provider = order.get("shipping_provider") or DEFAULT_PROVIDER.value
    return Markup(env.get_template("tracking_block.html").render(
        provider_name=provider[:1].upper() + provider[1:],
        tracking_code=order["tracking_code"],
        tracking_url=get_tracking_url(order["tracking_code"], provider),
    ))


def build_totals_block(order: dict) -> Markup:
    savings = _to_number(order.get("savings")) or 0
    return Markup(env.get_template("totals_block.html").render(
        subtotal=format_currency(order.get("subtotal")),
        shipping=format_currency(order.get("shipping")),
        savings=format_currency(savings) if savings > 0 else None,
        total=format_currency(order.get("total")),
    ))


def _order_context(order: dict, order_number) -> dict:
    customer = order.get("customer") or {}
    return {
        "order_number": order_number,
        "customer": customer,
        "customer_name": customer_name(customer),
        "address": format_address(customer),
        "items_table": build_items_table(order.get("items")),
        "totals": build_totals_block(order),
        "comment": nl2br(customer.get("comment")) if customer.get("comment") else None,
        "signature": SIGNATURE_NAME,
        "shop_name": MAIL_FROM_NAME,
    }


# ----- Composers -----

def contact_admin_message(data: dict) -> MailMessage:
    html = env.get_template("contact_admin.html").render(
        name=data["name"],
        email=data["email"],
        subject=data["subject"],
        message=nl2br(data["message"]),
    )
    return MailMessage(
        sender=format_sender(data["name"], data["email"]),
        to=ADMIN_EMAIL,
        reply_to=data["email"],
        subject=f"Contact Form: {data['subject']} - {data['name']}",
        html=html,
    )


def contact_reply_message(data: dict) -> MailMessage:
    html = env.get_template("contact_reply.html").render(
        name=data["name"],
        subject=data["subject"],
        message=nl2br(data["message"]),
        signature=SIGNATURE_NAME,
        shop_name=MAIL_FROM_NAME,
        shop_email=ADMIN_EMAIL,
    )
    return MailMessage(
        sender=BUSINESS_SENDER,
        to=data["email"],
        subject=f"We received your message - {MAIL_FROM_NAME}",
        html=html,
    )


def order_admin_message(order: dict, order_number) -> MailMessage:
    html = env.get_template("order_admin.html").render(**_order_context(order, order_number))
    return MailMessage(
        sender=BUSINESS_SENDER,
        to=ADMIN_EMAIL,
        subject=f"New Order #{order_number}",
        html=html,
    )


def order_customer_message(order: dict, order_number) -> MailMessage:
    html = env.get_template("order_customer.html").render(**_order_context(order, order_number))
    return MailMessage(
        sender=BUSINESS_SENDER,
        to=order["customer"]["email"],
        subject=f"Your order #{order_number} has been received",
        html=html,
    )


def order_shipped_message(order: dict, order_number) -> MailMessage:
    html = env.get_template("order_shipped.html").render(
        tracking=build_tracking_block(order),
        **_order_context(order, order_number),
    )
    return MailMessage(
        sender=BUSINESS_SENDER,
        to=order["customer"]["email"],
        subject=f"Your order #{order_number} has shipped",
        html=html,
    )
