import emails
from config import ADMIN_EMAIL
from emails import (
    build_items_table,
    build_tracking_block,
    contact_admin_message,
    contact_reply_message,
    format_address,
    format_currency,
    get_tracking_url,
    order_admin_message,
    order_customer_message,
    order_shipped_message,
)


def test_format_currency():
    assert format_currency(6) == "6.00 kr"
    assert format_currency("12.5") == "12.50 kr"
    assert format_currency(None) == "-"
    assert format_currency(float("nan")) == "-"
    assert format_currency("abc") == "-"


def test_format_address_drops_blank_lines():
    customer = {"first_name": "Ola", "last_name": "", "address": "", "postal_code": "0155", "city": "Oslo"}
    assert format_address(customer) == "Ola<br>0155 Oslo"
    assert format_address(None) == ""


def test_format_address_escapes_html():
    assert format_address({"first_name": "<b>Ola</b>"}) == "&lt;b&gt;Ola&lt;/b&gt;"


def test_items_table_line_total():
    html = build_items_table([{"title": "Widget", "quantity": 2, "price": 3}])
    assert "Widget" in html
    assert "3.00 kr" in html
    assert "6.00 kr" in html


def test_items_table_defaults():
    html = build_items_table([{}])
    assert ">Item<" in html
    assert "0.00 kr" in html


def test_items_table_empty():
    assert build_items_table([]) == "<p>No items</p>"
    assert build_items_table(None) == "<p>No items</p>"


def test_tracking_urls():
    assert get_tracking_url("AB 12/3", "posten") == "https://sporing.posten.no/sporing/AB%2012%2F3"
    assert get_tracking_url("X1", "PostNord") == "https://www.postnord.no/pakkesporing/?shipmentId=X1"
    assert get_tracking_url("X1", "helthjem") == "https://helthjem.no/sporing/X1"
    assert get_tracking_url("X1", "dhl") == "https://sporing.posten.no/sporing/X1"
    assert get_tracking_url("X1", None) == "https://sporing.posten.no/sporing/X1"
    assert get_tracking_url("", "posten") is None


def test_tracking_block(order):
    assert build_tracking_block(order) == ""
    block = build_tracking_block({**order, "tracking_code": "X1", "shipping_provider": "helthjem"})
    assert "Helthjem" in block
    assert "https://helthjem.no/sporing/X1" in block
    assert "Track Your Package" in block


def test_contact_messages():
    data = {"name": "Kari", "email": "kari@example.com", "subject": "Hi", "message": "line 1\nline <2>"}
    admin = contact_admin_message(data)
    assert admin.sender == '"Kari" <kari@example.com>'
    assert admin.to == ADMIN_EMAIL
    assert admin.reply_to == "kari@example.com"
    assert admin.subject == "Contact Form: Hi - Kari"
    assert "line 1<br>line &lt;2&gt;" in admin.html

    reply = contact_reply_message(data)
    assert reply.sender == emails.BUSINESS_SENDER
    assert reply.to == "kari@example.com"
    assert reply.reply_to is None
    assert "Hi Kari," in reply.html


def test_order_admin_message(order):
    message = order_admin_message({**order, "customer": {**order["customer"], "comment": "Gift\nwrap"}}, 42)
    assert message.subject == "New Order #42"
    assert message.to == ADMIN_EMAIL
    assert "Ola Nordmann" in message.html
    assert "Storgata 1" in message.html
    assert "6.00 kr" in message.html
    assert "56.00 kr" in message.html
    assert "Savings" not in message.html
    assert "Gift<br>wrap" in message.html


def test_order_admin_message_without_customer():
    message = order_admin_message({"items": []}, "abc")
    assert "N/A" in message.html
    assert "No items" in message.html


def test_order_customer_message_shows_savings(order):
    message = order_customer_message({**order, "savings": 10}, 42)
    assert message.to == "ola@example.com"
    assert message.subject == "Your order #42 has been received"
    assert "Thanks for your order, Ola Nordmann!" in message.html
    assert "-10.00 kr" in message.html


def test_order_shipped_message(order):
    shipped = {**order, "status": "shipped", "tracking_code": "TR1", "shipping_provider": "postnord"}
    message = order_shipped_message(shipped, 42)
    assert message.subject == "Your order #42 has shipped"
    assert "shipmentId=TR1" in message.html
    assert "Postnord" in message.html


def test_payload_shape(order):
    payload = contact_admin_message(
        {"name": "Kari", "email": "kari@example.com", "subject": "Hi", "message": "Hello"}
    ).to_payload()
    assert payload["to"] == [ADMIN_EMAIL]
    assert payload["reply_to"] == "kari@example.com"
    assert set(payload) == {"from", "to", "subject", "html", "reply_to"}
    assert "reply_to" not in order_customer_message(order, 1).to_payload()
