"""Tests for order id generation and parsing."""

from datetime import datetime, timezone

import pytest

from paidroles.payments.orders import generate_order_id, parse_order_id


class TestOrderIds:
    """SUB-<subscriptionId>-<epoch millis> convention."""

    def test_generate_format(self):
        assert generate_order_id("abc123", now_ms=1700000000000) == "SUB-abc123-1700000000000"

    def test_generate_uses_current_time(self):
        before = int(datetime.now(timezone.utc).timestamp() * 1000)
        order_id = generate_order_id("abc123")
        ts = int(order_id.rsplit("-", 1)[1])
        assert ts >= before

    def test_parse_strips_timestamp(self):
        assert parse_order_id("SUB-abc123-1700000000000") == "abc123"

    def test_parse_without_timestamp(self):
        assert parse_order_id("SUB-abc123") == "abc123"

    def test_parse_keeps_hyphenated_ids(self):
        assert parse_order_id("SUB-abc-def-1700000000000") == "abc-def"

    def test_round_trip(self):
        assert parse_order_id(generate_order_id("k3j4h5g6f7d8s9a0q1w2e3r4t")) == (
            "k3j4h5g6f7d8s9a0q1w2e3r4t"
        )

    @pytest.mark.parametrize("order_id", ["", None, "ORDER-abc123-1", "SUB-", "SUB--1", "abc"])
    def test_parse_rejects_foreign_ids(self, order_id):
        assert parse_order_id(order_id) is None

    def test_custom_prefix(self):
        assert parse_order_id("RENEW-abc-1", prefix="RENEW") == "abc"
        assert parse_order_id("SUB-abc-1", prefix="RENEW") is None
