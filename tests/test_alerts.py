import asyncio
import smtplib
from types import SimpleNamespace
from urllib.parse import parse_qs, urlparse

from nihontowatch.alerts.email import EmailAlerter
from nihontowatch.alerts.notifier import Notification, NullNotifier, build_notifier
from nihontowatch.alerts.templates import (
    back_in_stock_email,
    format_price,
    price_drop_email,
    saved_search_email,
    search_results_url,
)
from nihontowatch.alerts.unsubscribe import (
    TOKEN_MAX_AGE_MS,
    generate_unsubscribe_token,
    get_unsubscribe_url,
    verify_unsubscribe_token,
)
from nihontowatch.alerts.webhook import WebhookAlerter
from nihontowatch.storage.models import Dealer, Listing

SECRET = "test-secret"


def make_listing(**fields):
    values = {
        "id": 42,
        "url": "https://dealer.test/katana-42",
        "title": "Katana by Sukehiro",
        "item_type": "katana",
        "cert_type": "Juyo",
        "price_value": 1_800_000,
        "price_currency": "JPY",
    }
    values.update(fields)
    listing = Listing(**values)
    listing.dealer = Dealer(name="Aoi Art")
    return listing


def test_token_round_trip():
    token = generate_unsubscribe_token(SECRET, "user-1", "a@b.test", "saved_search", "search-9")

    result = verify_unsubscribe_token(token, SECRET)

    assert result.valid
    assert result.payload.user_id == "user-1"
    assert result.payload.email == "a@b.test"
    assert result.payload.type == "saved_search"
    assert result.payload.saved_search_id == "search-9"


def test_token_rejections():
    token = generate_unsubscribe_token(SECRET, "user-1", "a@b.test", "all", now_ms=1_000)

    assert verify_unsubscribe_token(token, "").error == "Token verification unavailable"
    assert verify_unsubscribe_token("garbage", SECRET).error == "Invalid token format"
    assert verify_unsubscribe_token(token, "other-secret").error == "Invalid token signature"
    expired = verify_unsubscribe_token(token, SECRET, now_ms=1_000 + TOKEN_MAX_AGE_MS + 1)
    assert expired.error == "Token expired"
    assert verify_unsubscribe_token(token, SECRET, now_ms=1_000 + TOKEN_MAX_AGE_MS).valid


def test_tampered_payload_fails_signature():
    token = generate_unsubscribe_token(SECRET, "user-1", "a@b.test", "all")
    other = generate_unsubscribe_token(SECRET, "user-2", "c@d.test", "all")

    forged = other.split(".")[0] + "." + token.split(".")[1]

    assert verify_unsubscribe_token(forged, SECRET).error == "Invalid token signature"


def test_unsubscribe_url_carries_encoded_token():
    url = get_unsubscribe_url("https://nihontowatch.com/", SECRET, "user-1", "a@b.test", "all")

    parsed = urlparse(url)
    assert parsed.path == "/api/unsubscribe"
    token = parse_qs(parsed.query)["token"][0]
    assert verify_unsubscribe_token(token, SECRET).valid


def test_format_price():
    assert format_price(None, "JPY") == "Ask"
    assert format_price(1_800_000, None) == "¥1,800,000"
    assert format_price(2500, "USD") == "$2,500"
    assert format_price(100, "CHF") == "CHF 100"


def test_price_drop_email():
    notification = price_drop_email(
        "a@b.test",
        make_listing(),
        2_000_000,
        1_800_000,
        -10,
        "https://nihontowatch.com",
        "https://nihontowatch.com/api/unsubscribe?token=x",
    )

    assert notification.subject == "Price drop: Katana by Sukehiro (-10%)"
    assert "¥2,000,000" in notification.html and "¥1,800,000" in notification.html
    assert "Aoi Art" in notification.html
    assert "Unsubscribe: https://nihontowatch.com/api/unsubscribe?token=x" in notification.text
    assert notification.url == "https://nihontowatch.com/api/unsubscribe?token=x"


def test_back_in_stock_email_without_unsubscribe():
    notification = back_in_stock_email("a@b.test", make_listing(), "https://nihontowatch.com")

    assert notification.subject == "Back in stock: Katana by Sukehiro"
    assert "Unsubscribe" not in notification.html
    assert notification.url is None


def test_saved_search_digest_truncates_listings():
    listings = [make_listing(id=i, title=f"Tsuba {i}") for i in range(12)]

    notification = saved_search_email(
        "a@b.test",
        "Goto tsuba",
        listings,
        "daily",
        "Tosogu (fittings) · Tsuba",
        "https://nihontowatch.com/?type=tsuba",
        "https://nihontowatch.com",
        "https://u/search",
        "https://u/all",
    )

    assert notification.subject == "12 new matches for Goto tsuba"
    assert "Your daily digest" in notification.html
    assert "Tsuba 9" in notification.html
    assert "Tsuba 10" not in notification.html
    assert "View 2 more" in notification.html
    assert "Unsubscribe from all: https://u/all" in notification.text


def test_search_results_url():
    assert search_results_url("https://s", "/?type=tsuba", [1, 2]) == "https://s/?type=tsuba&listings=1,2"
    assert search_results_url("https://s", "/", [5]) == "https://s/?listings=5"
    assert search_results_url("https://s", "/", []) == "https://s/"


def test_build_notifier_prefers_email_then_webhook():
    settings = SimpleNamespace(
        smtp_host="smtp.test",
        smtp_port=2525,
        smtp_user="bot",
        smtp_password="pw",
        email_from="alerts@nihontowatch.com",
        webhook_url="",
    )

    email = build_notifier({}, settings)
    assert isinstance(email, EmailAlerter)
    assert email.smtp_port == 2525
    assert email.from_address == "alerts@nihontowatch.com"

    webhook = build_notifier({"webhook": {"enabled": True, "url": "https://hooks.test/x"}})
    assert isinstance(webhook, WebhookAlerter)

    assert isinstance(build_notifier({}), NullNotifier)


def test_null_notifier_reports_failure():
    result = asyncio.run(NullNotifier().send(Notification("a@b.test", "s", "<p>h</p>", "t")))

    assert not result.success
    assert result.error == "no channel configured"


class FakeSMTP:
    sent = []

    def __init__(self, host, port):
        self.host = host
        self.port = port

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def starttls(self):
        pass

    def login(self, user, password):
        if password != "pw":
            raise smtplib.SMTPAuthenticationError(535, b"bad credentials")

    def send_message(self, msg):
        FakeSMTP.sent.append(msg)


def test_email_alerter_sends_multipart_with_list_unsubscribe(monkeypatch):
    monkeypatch.setattr(smtplib, "SMTP", FakeSMTP)
    FakeSMTP.sent = []
    alerter = EmailAlerter("smtp.test", 587, "bot", "pw", "alerts@nihontowatch.com")

    result = asyncio.run(
        alerter.send(Notification("a@b.test", "Subject", "<p>h</p>", "t", url="https://u/1"))
    )

    assert result.success
    msg = FakeSMTP.sent[0]
    assert msg["To"] == "a@b.test"
    assert msg["List-Unsubscribe"] == "<https://u/1>"


def test_email_alerter_reports_smtp_errors(monkeypatch):
    monkeypatch.setattr(smtplib, "SMTP", FakeSMTP)
    alerter = EmailAlerter("smtp.test", 587, "bot", "wrong", "alerts@nihontowatch.com")

    result = asyncio.run(alerter.send(Notification("a@b.test", "Subject", "<p>h</p>", "t")))

    assert not result.success
    assert "bad credentials" in result.error


def test_webhook_embed():
    alerter = WebhookAlerter("https://hooks.test/x")

    embed = alerter._create_embed(Notification("a@b.test", "Subject", "<p>h</p>", "body", url="https://u/1"))

    assert embed["title"] == "Subject"
    assert embed["description"] == "body"
    assert embed["url"] == "https://u/1"
