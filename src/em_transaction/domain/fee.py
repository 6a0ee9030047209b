"""Fee calculation: listing price to the escrow fee breakdown.

platform_fee    = round_half_up(item_price x fee_bps / 10000)   (3% by default)
disbursement    = fixed payout fee charged to the seller
gateway_fee     = 0 (the provider charges on the invoice side for now)
total_buyer_paid = item_price + gateway_fee
seller_received  = item_price - platform_fee - disbursement

Identity: seller_received + platform_fee + disbursement == item_price.
"""
from dataclasses import dataclass

from config.settings import settings
from src.em_common.errors import InvalidAmountError
from src.em_common.money import percent_of_bps

GATEWAY_FEE: int = 0


@dataclass(frozen=True)
class FeeBreakdown:
    item_price: int
    platform_fee_bps: int
    platform_fee_amount: int
    disbursement_fee: int
    gateway_fee: int
    total_buyer_paid: int
    seller_received: int


def calculate_fees(
    item_price: int,
    fee_bps: int | None = None,
    disbursement_fee: int | None = None,
) -> FeeBreakdown:
    if item_price <= 0:
        raise InvalidAmountError(item_price)
    bps = settings.PLATFORM_FEE_BPS if fee_bps is None else fee_bps
    payout_fee = settings.DISBURSEMENT_FEE if disbursement_fee is None else disbursement_fee

    platform_fee = percent_of_bps(item_price, bps)
    return FeeBreakdown(
        item_price=item_price,
        platform_fee_bps=bps,
        platform_fee_amount=platform_fee,
        disbursement_fee=payout_fee,
        gateway_fee=GATEWAY_FEE,
        total_buyer_paid=item_price + GATEWAY_FEE,
        seller_received=item_price - platform_fee - payout_fee,
    )
