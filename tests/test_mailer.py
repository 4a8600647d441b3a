import threading
import time

import pytest
import resend

from mailer import Mailer, MailerError, MailMessage, create_mailer, send_all

MESSAGE = MailMessage(
    sender='"Kari" <kari@example.com>',
    to="shop@example.com",
    subject="Hello",
    html="<p>Hi</p>",
    reply_to="kari@example.com",
)


@pytest.fixture
def sent(monkeypatch):
    calls = []

    def fake_send(payload):
        calls.append((resend.api_key, payload))
        return {"id": f"re_{len(calls)}"}

    monkeypatch.setattr(resend, "api_key", None)
    monkeypatch.setattr(resend.Emails, "send", fake_send)
    return calls


def test_payload_shape():
    assert MESSAGE.to_payload() == {
        "from": '"Kari" <kari@example.com>',
        "to": ["shop@example.com"],
        "subject": "Hello",
        "html": "<p>Hi</p>",
        "reply_to": "kari@example.com",
    }
    plain = MailMessage(sender="a@b.no", to="c@d.no", subject="s", html="h")
    assert "reply_to" not in plain.to_payload()


@pytest.mark.asyncio
async def test_send_passes_payload_and_key(sent):
    message_id = await Mailer(" re_key ").send(MESSAGE)
    assert message_id == "re_1"
    assert sent == [("re_key", MESSAGE.to_payload())]


@pytest.mark.asyncio
@pytest.mark.parametrize("key", ["", "   ", None])
async def test_missing_key_is_rejected(sent, key):
    with pytest.raises(MailerError):
        await Mailer(key).send(MESSAGE)
    assert sent == []


@pytest.mark.asyncio
async def test_provider_exception_is_wrapped(monkeypatch):
    def boom(payload):
        raise RuntimeError("domain not verified")

    monkeypatch.setattr(resend.Emails, "send", boom)
    with pytest.raises(MailerError, match="domain not verified"):
        await Mailer("re_key").send(MESSAGE)


@pytest.mark.asyncio
@pytest.mark.parametrize("response", [{}, {"id": ""}, None, "ok"])
async def test_response_without_id_is_an_error(monkeypatch, response):
    monkeypatch.setattr(resend.Emails, "send", lambda payload: response)
    with pytest.raises(MailerError):
        await Mailer("re_key").send(MESSAGE)


@pytest.mark.asyncio
async def test_overlapping_sends_keep_the_api_key(monkeypatch):
    monkeypatch.setattr(resend, "api_key", None)
    both_started = threading.Barrier(2, timeout=5)
    keys = {}

    def slow_send(payload):
        both_started.wait()
        if payload["subject"] == "second":
            time.sleep(0.1)
        keys[payload["subject"]] = resend.api_key
        return {"id": payload["subject"]}

    monkeypatch.setattr(resend.Emails, "send", slow_send)
    first = MailMessage(sender="a@b.no", to="c@d.no", subject="first", html="h")
    second = MailMessage(sender="a@b.no", to="c@d.no", subject="second", html="h")

    assert await send_all(Mailer("re_key"), [first, second]) == ["first", "second"]
    assert keys == {"first": "re_key", "second": "re_key"}


@pytest.mark.asyncio
async def test_send_all_raises_first_failure(monkeypatch):
    def flaky(payload):
        if payload["subject"] == "bad":
            raise RuntimeError("rejected")
        return {"id": "ok"}

    monkeypatch.setattr(resend.Emails, "send", flaky)
    bad = MailMessage(sender="a@b.no", to="c@d.no", subject="bad", html="h")
    with pytest.raises(MailerError, match="rejected"):
        await send_all(Mailer("re_key"), [MESSAGE, bad])


def test_create_mailer_reads_config(monkeypatch):
    monkeypatch.setattr("mailer.RESEND_API_KEY", "re_from_env")
    assert create_mailer().api_key == "re_from_env"
