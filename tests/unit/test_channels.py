"""Tests for OutboundChannels (SendGrid email, Twilio SMS) over httpx.MockTransport."""

import json

import httpx
import pytest

from config.settings import Settings
from src.am_notification.channels import (
    SENDGRID_SEND_URL,
    AuthAdminContactDirectory,
    Contact,
    NullContactDirectory,
    OutboundChannels,
    build_contact_directory,
    build_invoice_html,
)
from src.container import build_container


def _settings(**kwargs) -> Settings:
    fields = {
        "SENDGRID_API_KEY": None,
        "SENDGRID_FROM_EMAIL": None,
        "TWILIO_ACCOUNT_SID": None,
        "TWILIO_AUTH_TOKEN": None,
        "TWILIO_FROM": None,
        "USER_DIRECTORY_URL": None,
        "USER_DIRECTORY_KEY": None,
    }
    fields.update(kwargs)
    return Settings(**fields)


CONFIGURED = dict(
    SENDGRID_API_KEY="sg-key",
    SENDGRID_FROM_EMAIL="sales@example.com",
    TWILIO_ACCOUNT_SID="AC123",
    TWILIO_AUTH_TOKEN="tok",
    TWILIO_FROM="+15550000000",
)


class Recorder:
    def __init__(self, status: int = 202) -> None:
        self.status = status
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return httpx.Response(self.status)


class Directory:
    def __init__(self, contacts: dict[str, Contact]) -> None:
        self._contacts = contacts

    async def lookup(self, user_id: str) -> Contact | None:
        return self._contacts.get(user_id)

    async def close(self) -> None:
        return None


def _channels(recorder: Recorder, directory=None, **settings) -> OutboundChannels:
    client = httpx.AsyncClient(transport=httpx.MockTransport(recorder))
    return OutboundChannels(_settings(**settings), directory=directory, client=client)


class TestUnconfigured:
    @pytest.mark.asyncio
    async def test_nothing_sent(self) -> None:
        recorder = Recorder()
        channels = _channels(recorder)
        assert not channels.email_configured
        assert not channels.sms_configured
        assert await channels.send_email("a@example.com", "s", "t") is False
        assert await channels.send_sms("+1555", "hi") is False
        await channels.send_sale_receipts("A-1", "Lamp", "u1", "u2", 10500)
        assert recorder.requests == []


class TestEmail:
    @pytest.mark.asyncio
    async def test_sendgrid_request_shape(self) -> None:
        recorder = Recorder()
        channels = _channels(recorder, **CONFIGURED)
        assert await channels.send_email("buyer@example.com", "You won", "text", "<p>x</p>")
        request = recorder.requests[0]
        assert str(request.url) == SENDGRID_SEND_URL
        assert request.headers["Authorization"] == "Bearer sg-key"
        body = json.loads(request.content)
        assert body["personalizations"] == [{"to": [{"email": "buyer@example.com"}]}]
        assert body["from"] == {"email": "sales@example.com"}
        assert [c["type"] for c in body["content"]] == ["text/plain", "text/html"]

    @pytest.mark.asyncio
    async def test_failure_is_swallowed(self) -> None:
        channels = _channels(Recorder(status=500), **CONFIGURED)
        assert await channels.send_email("buyer@example.com", "s", "t") is False


class TestSms:
    @pytest.mark.asyncio
    async def test_twilio_request_shape(self) -> None:
        recorder = Recorder(status=201)
        channels = _channels(recorder, **CONFIGURED)
        assert await channels.send_sms("+15551234567", "You won")
        request = recorder.requests[0]
        assert request.url.path == "/2010-04-01/Accounts/AC123/Messages.json"
        assert request.headers["Authorization"].startswith("Basic ")
        form = dict(httpx.QueryParams(request.content.decode()))
        assert form == {"To": "+15551234567", "From": "+15550000000", "Body": "You won"}

    @pytest.mark.asyncio
    async def test_transport_error_is_swallowed(self) -> None:
        def _down(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        client = httpx.AsyncClient(transport=httpx.MockTransport(_down))
        channels = OutboundChannels(_settings(**CONFIGURED), client=client)
        assert await channels.send_sms("+1555", "hi") is False


class TestSaleReceipts:
    @pytest.mark.asyncio
    async def test_both_parties_by_every_known_channel(self) -> None:
        recorder = Recorder()
        directory = Directory({
            "u_buyer": Contact(email="buyer@example.com", phone="+15551111111"),
            "u_seller": Contact(email="seller@example.com"),
        })
        channels = _channels(recorder, directory, **CONFIGURED)
        await channels.send_sale_receipts("A-1", "Lamp", "u_buyer", "u_seller", 10500)

        hosts = [r.url.host for r in recorder.requests]
        assert hosts.count("api.sendgrid.com") == 2
        assert hosts.count("api.twilio.com") == 1
        subjects = [
            json.loads(r.content)["subject"]
            for r in recorder.requests if r.url.host == "api.sendgrid.com"
        ]
        assert subjects == ["You won: Lamp", "Sold: Lamp"]

    @pytest.mark.asyncio
    async def test_counter_wording(self) -> None:
        recorder = Recorder()
        directory = Directory({"u_buyer": Contact(email="buyer@example.com")})
        channels = _channels(recorder, directory, **CONFIGURED)
        await channels.send_sale_receipts(
            "A-1", "Lamp", "u_buyer", "u_seller", 15000, via_counter=True
        )
        body = json.loads(recorder.requests[0].content)
        assert body["subject"] == "Offer accepted: Lamp"
        assert "$150.00" in body["content"][0]["value"]

    @pytest.mark.asyncio
    async def test_unknown_contacts_send_nothing(self) -> None:
        recorder = Recorder()
        channels = _channels(recorder, **CONFIGURED)
        await channels.send_sale_receipts("A-1", "Lamp", "u1", "u2", 10500)
        assert recorder.requests == []


class TestAuthAdminDirectory:
    def _directory(self, handler) -> AuthAdminContactDirectory:
        client = httpx.AsyncClient(
            base_url="https://auth.test/auth/v1", transport=httpx.MockTransport(handler)
        )
        return AuthAdminContactDirectory("https://auth.test/auth/v1", client=client)

    @pytest.mark.asyncio
    async def test_reads_email_and_metadata_phone(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={
                "id": "u_buyer", "email": "buyer@example.com", "phone": "",
                "user_metadata": {"phone": "+15551111111"},
            })

        contact = await self._directory(handler).lookup("u_buyer")
        assert contact == Contact(email="buyer@example.com", phone="+15551111111")
        assert seen[0].url.path == "/auth/v1/admin/users/u_buyer"

    @pytest.mark.asyncio
    async def test_unknown_or_failing_user_is_none(self) -> None:
        missing = self._directory(lambda r: httpx.Response(404, json={"msg": "User not found"}))
        assert await missing.lookup("u_x") is None
        broken = self._directory(lambda r: httpx.Response(500))
        assert await broken.lookup("u_x") is None

    @pytest.mark.asyncio
    async def test_service_key_headers(self) -> None:
        directory = build_contact_directory(
            _settings(USER_DIRECTORY_URL="https://auth.test/auth/v1", REST_STORE_KEY="svc")
        )
        assert isinstance(directory, AuthAdminContactDirectory)
        assert directory._client.headers["Authorization"] == "Bearer svc"
        await directory.close()

    def test_unset_url_knows_nobody(self) -> None:
        assert isinstance(build_contact_directory(_settings()), NullContactDirectory)

    @pytest.mark.asyncio
    async def test_container_wires_directory_into_receipts(self) -> None:
        config = _settings(
            STORE_BACKEND="memory", REDIS_URL=None,
            USER_DIRECTORY_URL="https://auth.test/auth/v1", **CONFIGURED,
        )
        container = build_container(config)
        assert container.channels.directory_configured
        await container.close()

    @pytest.mark.asyncio
    async def test_receipts_reach_directory_contacts(self) -> None:
        def auth(request: httpx.Request) -> httpx.Response:
            user_id = request.url.path.rsplit("/", 1)[-1]
            return httpx.Response(200, json={"id": user_id, "email": f"{user_id}@example.com"})

        recorder = Recorder()
        channels = _channels(recorder, self._directory(auth), **CONFIGURED)
        await channels.send_sale_receipts("A-1", "Lamp", "u_buyer", "u_seller", 10500)
        recipients = [
            json.loads(r.content)["personalizations"][0]["to"][0]["email"]
            for r in recorder.requests
        ]
        assert recipients == ["u_buyer@example.com", "u_seller@example.com"]


class TestInvoice:
    def test_escapes_user_text(self) -> None:
        body = build_invoice_html("<b>Lamp</b>", 10500, "buyer", "seller", "A-1")
        assert "&lt;b&gt;Lamp&lt;/b&gt;" in body
        assert "$105.00" in body
