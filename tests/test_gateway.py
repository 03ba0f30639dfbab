"""Tests for the Midtrans client against a local stand-in server."""

import base64

import pytest
from aiohttp import test_utils, web
from pydantic import SecretStr

from paidroles.payments.gateway import MidtransClient


class _FakeMidtrans:
    """Local server recording requests; responses scripted per test."""

    def __init__(self):
        self.requests = []
        self.snap_responses = []
        self.status_responses = []

    def app(self) -> web.Application:
        app = web.Application()
        app.router.add_post("/snap/v1/transactions", self.create)
        app.router.add_get("/v2/{order_id}/status", self.status)
        return app

    async def create(self, request: web.Request) -> web.Response:
        self.requests.append(
            ("create", request.headers.get("Authorization"), await request.json())
        )
        status, body = self.snap_responses.pop(0)
        return web.json_response(body, status=status)

    async def status(self, request: web.Request) -> web.Response:
        self.requests.append(("status", request.match_info["order_id"], None))
        status, body = self.status_responses.pop(0)
        return web.json_response(body, status=status)


@pytest.fixture
def fake_midtrans():
    return _FakeMidtrans()


async def _start(fake, config):
    server = test_utils.TestServer(fake.app())
    await server.start_server()
    client = MidtransClient(
        config,
        snap_url=str(server.make_url("/snap/v1")),
        core_api_url=str(server.make_url("/v2")),
        backoff_seconds=0,
    )
    return server, client


class TestCreateTransaction:
    @pytest.mark.asyncio
    async def test_returns_redirect_url(self, fake_midtrans, config):
        fake_midtrans.snap_responses.append(
            (201, {"token": "tok-1", "redirect_url": "https://pay.example/tok-1"})
        )
        server, client = await _start(fake_midtrans, config)
        try:
            result = await client.create_transaction(
                "SUB-abc-1", 15000000, "member@example.com", "Gold", member_id="mem1"
            )
        finally:
            await server.close()

        assert result.success
        assert result.data == {"redirect_url": "https://pay.example/tok-1", "token": "tok-1"}

        [(_, auth, body)] = fake_midtrans.requests
        expected = base64.b64encode(f"{config.midtrans_server_key.get_secret_value()}:".encode())
        assert auth == f"Basic {expected.decode()}"
        assert body["transaction_details"] == {"order_id": "SUB-abc-1", "gross_amount": 15000000}
        assert body["customer_details"] == {"email": "member@example.com"}
        assert body["custom_field1"] == "mem1"

    @pytest.mark.asyncio
    async def test_client_error_not_retried(self, fake_midtrans, config):
        fake_midtrans.snap_responses.append((400, {"error_messages": ["bad amount"]}))
        server, client = await _start(fake_midtrans, config)
        try:
            result = await client.create_transaction("SUB-abc-1", 0, None, "Gold")
        finally:
            await server.close()

        assert not result.success
        assert result.status == 400
        assert "bad amount" in result.error
        assert len(fake_midtrans.requests) == 1

    @pytest.mark.asyncio
    async def test_server_error_retried(self, fake_midtrans, config):
        fake_midtrans.snap_responses.extend(
            [
                (503, {"status_message": "unavailable"}),
                (201, {"token": "tok-2", "redirect_url": "https://pay.example/tok-2"}),
            ]
        )
        server, client = await _start(fake_midtrans, config)
        try:
            result = await client.create_transaction("SUB-abc-1", 100, None, "Gold")
        finally:
            await server.close()

        assert result.success
        assert len(fake_midtrans.requests) == 2

    @pytest.mark.asyncio
    async def test_missing_redirect_url(self, fake_midtrans, config):
        fake_midtrans.snap_responses.append((201, {"token": "tok-3"}))
        server, client = await _start(fake_midtrans, config)
        try:
            result = await client.create_transaction("SUB-abc-1", 100, None, "Gold")
        finally:
            await server.close()

        assert not result.success
        assert "redirect_url" in result.error

    @pytest.mark.asyncio
    async def test_requires_server_key(self, config):
        config = config.model_copy(update={"midtrans_server_key": SecretStr("")})
        client = MidtransClient(config)

        result = await client.create_transaction("SUB-abc-1", 100, None, "Gold")

        assert not result.success
        assert "not configured" in result.error


class TestTransactionStatus:
    @pytest.mark.asyncio
    async def test_status_document(self, fake_midtrans, config):
        fake_midtrans.status_responses.append(
            (200, {"transaction_status": "settlement", "order_id": "SUB-abc-1"})
        )
        server, client = await _start(fake_midtrans, config)
        try:
            result = await client.get_transaction_status("SUB-abc-1")
        finally:
            await server.close()

        assert result.success
        assert result.data["transaction_status"] == "settlement"
        assert fake_midtrans.requests == [("status", "SUB-abc-1", None)]

    @pytest.mark.asyncio
    async def test_missing_status_field(self, fake_midtrans, config):
        fake_midtrans.status_responses.append((200, {"status_message": "ok"}))
        server, client = await _start(fake_midtrans, config)
        try:
            result = await client.get_transaction_status("SUB-abc-1")
        finally:
            await server.close()

        assert not result.success

    @pytest.mark.asyncio
    async def test_unreachable_gateway(self, config):
        client = MidtransClient(
            config,
            snap_url="http://127.0.0.1:9/snap/v1",
            core_api_url="http://127.0.0.1:9/v2",
            backoff_seconds=0,
        )

        result = await client.get_transaction_status("SUB-abc-1")

        assert not result.success
        assert result.status is None
        assert result.error.startswith("Gateway request failed")


def test_environment_selects_urls(config):
    sandbox = MidtransClient(config)
    production = MidtransClient(config.model_copy(update={"midtrans_environment": "production"}))

    assert "sandbox" in sandbox.snap_url
    assert production.core_api_url == "https://api.midtrans.com/v2"
