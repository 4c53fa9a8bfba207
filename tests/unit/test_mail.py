import smtplib

import pytest

from loadhunter.core.config import Settings
from loadhunter.services import mail as mail_module
from loadhunter.services.mail import SmtpMailSender


def smtp_settings(**overrides):
    values = dict(
        database_url="sqlite+aiosqlite://",
        smtp_host="smtp.fleet.example",
        smtp_username="bids@fleet.example",
        smtp_password="secret",
    )
    values.update(overrides)
    return Settings(**values)


class FakeSMTP:
    delivered = []
    refuse = False

    def __init__(self, host, port):
        self.host = host
        self.port = port

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def starttls(self):
        pass

    def login(self, username, password):
        pass

    def send_message(self, message):
        if FakeSMTP.refuse:
            raise smtplib.SMTPRecipientsRefused({message["To"]: (550, b"no such user")})
        FakeSMTP.delivered.append(message)


@pytest.fixture
def fake_smtp(monkeypatch):
    FakeSMTP.delivered = []
    FakeSMTP.refuse = False
    monkeypatch.setattr(mail_module.smtplib, "SMTP", FakeSMTP)
    return FakeSMTP


def test_bid_message_replies_to_the_dispatcher():
    sender = SmtpMailSender(smtp_settings(bid_from_email="loads@fleet.example"))

    message = sender.build_message(
        "ops@broker.example", "dispatch@fleet.example", "Bid: Atlanta, GA to Memphis, TN", "Hello", reply_to="dana@fleet.example"
    )

    assert message["From"] == "loads@fleet.example"
    assert message["Cc"] == "dispatch@fleet.example"
    assert message["Reply-To"] == "dana@fleet.example"
    assert message["Message-ID"].endswith("@fleet.example>")


def test_no_reply_to_when_dispatcher_is_the_sender():
    message = SmtpMailSender(smtp_settings()).build_message(
        "ops@broker.example", None, "Bid", "Hello", reply_to="bids@fleet.example"
    )

    assert message["Reply-To"] is None
    assert message["Cc"] is None


@pytest.mark.asyncio
async def test_send_returns_message_id(fake_smtp):
    result = await SmtpMailSender(smtp_settings()).send("ops@broker.example", None, "Bid", "Hello")

    assert result.success
    assert result.message_id == fake_smtp.delivered[0]["Message-ID"]


@pytest.mark.asyncio
async def test_refused_recipient_is_a_failed_result(fake_smtp):
    fake_smtp.refuse = True

    result = await SmtpMailSender(smtp_settings()).send("nobody@broker.example", None, "Bid", "Hello")

    assert not result.success
    assert result.detail.startswith("SMTP failure")


@pytest.mark.asyncio
async def test_unconfigured_smtp_fails_without_connecting(fake_smtp):
    result = await SmtpMailSender(smtp_settings(smtp_host=None)).send("ops@broker.example", None, "Bid", "Hello")

    assert not result.success
    assert fake_smtp.delivered == []
