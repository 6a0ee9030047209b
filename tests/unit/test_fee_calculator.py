# tests/unit/test_fee_calculator.py
"""Unit tests for the escrow fee breakdown."""
import pytest

from src.em_common.errors import InvalidAmountError
from src.em_transaction.domain.fee import GATEWAY_FEE, calculate_fees


class TestCalculateFees:
    def test_default_three_percent(self) -> None:
        fees = calculate_fees(100_000)
        assert fees.platform_fee_bps == 300
        assert fees.platform_fee_amount == 3000
        assert fees.disbursement_fee == 2500
        assert fees.total_buyer_paid == 100_000
        assert fees.seller_received == 94_500

    def test_reconcile_identity(self) -> None:
        for price in (1, 49, 50, 99_999, 150_000, 7_654_321):
            fees = calculate_fees(price)
            assert (
                fees.seller_received + fees.platform_fee_amount + fees.disbursement_fee
                == fees.item_price
            )

    def test_round_half_up(self) -> None:
        # 50 * 3% = 1.5 -> 2
        assert calculate_fees(50, disbursement_fee=0).platform_fee_amount == 2
        # 49 * 3% = 1.47 -> 1
        assert calculate_fees(49, disbursement_fee=0).platform_fee_amount == 1

    def test_custom_rates(self) -> None:
        fees = calculate_fees(200_000, fee_bps=500, disbursement_fee=0)
        assert fees.platform_fee_amount == 10_000
        assert fees.seller_received == 190_000

    def test_gateway_fee_is_zero(self) -> None:
        fees = calculate_fees(10_000)
        assert fees.gateway_fee == GATEWAY_FEE == 0
        assert fees.total_buyer_paid == fees.item_price

    def test_zero_price_rejected(self) -> None:
        with pytest.raises(InvalidAmountError) as exc_info:
            calculate_fees(0)
        assert exc_info.value.code == 3001

    def test_negative_price_rejected(self) -> None:
        with pytest.raises(InvalidAmountError):
            calculate_fees(-100)

    def test_breakdown_is_frozen(self) -> None:
        fees = calculate_fees(100_000)
        with pytest.raises(AttributeError):
            fees.item_price = 1  # type: ignore[misc]
