"""Tests for the gateway status mapper."""

import pytest

from paidroles.db.models import TransactionStatus
from paidroles.payments.status import STATUS_MAP, map_external_status


class TestStatusMapper:
    """Gateway vocabulary -> internal transaction status."""

    @pytest.mark.parametrize(
        "gateway_status,expected",
        [
            ("settlement", TransactionStatus.SUCCESS),
            ("capture", TransactionStatus.SUCCESS),
            ("pending", TransactionStatus.PENDING),
            ("authorize", TransactionStatus.PENDING),
            ("deny", TransactionStatus.FAILED),
            ("cancel", TransactionStatus.FAILED),
            ("expire", TransactionStatus.FAILED),
            ("failure", TransactionStatus.FAILED),
            ("refund", TransactionStatus.REFUNDED),
            ("partial_refund", TransactionStatus.REFUNDED),
        ],
    )
    def test_known_statuses(self, gateway_status, expected):
        mapping = map_external_status(gateway_status)
        assert mapping.is_valid
        assert mapping.internal_status is expected

    def test_table_covers_all_documented_statuses(self):
        assert len(STATUS_MAP) == 10

    @pytest.mark.parametrize("gateway_status", ["chargeback_pending", "", None, "SETTLED"])
    def test_unknown_status_invalid(self, gateway_status):
        mapping = map_external_status(gateway_status)
        assert not mapping.is_valid
        assert mapping.internal_status is None

    def test_case_and_whitespace_insensitive(self):
        assert map_external_status(" Settlement ").internal_status is TransactionStatus.SUCCESS
