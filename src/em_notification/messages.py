"""Notification templates for escrow lifecycle events."""

from src.em_common.enums import NotificationType
from src.em_common.money import format_idr
from src.em_notification.domain.sink import NotificationSink


async def notify_transaction_pending(
    sink: NotificationSink, seller_id: str, transaction_id: str
) -> None:
    await sink.notify(
        seller_id,
        NotificationType.TRANSACTION_PENDING.value,
        "New Order Received",
        "A buyer purchased your listing. Waiting for payment.",
        transaction_id,
    )


async def notify_payment_confirmed(
    sink: NotificationSink, buyer_id: str, seller_id: str, transaction_id: str
) -> None:
    await sink.notify(
        buyer_id,
        NotificationType.PAYMENT_CONFIRMED.value,
        "Payment Confirmed",
        "Your payment has been received. Seller will process your order soon.",
        transaction_id,
    )
    await sink.notify(
        seller_id,
        NotificationType.PAYMENT_CONFIRMED.value,
        "Payment Received",
        "Payment received from buyer. You can now proceed with the order.",
        transaction_id,
    )


async def notify_transaction_completed(
    sink: NotificationSink, seller_id: str, transaction_id: str
) -> None:
    await sink.notify(
        seller_id,
        NotificationType.TRANSACTION_COMPLETED.value,
        "Order Completed",
        "Buyer confirmed order received. Transaction complete.",
        transaction_id,
    )


async def notify_dispute_opened(sink: NotificationSink, seller_id: str, dispute_id: str) -> None:
    await sink.notify(
        seller_id,
        NotificationType.DISPUTE_OPENED.value,
        "Dispute Opened",
        "The buyer opened a dispute. Please review and respond.",
        dispute_id,
    )


async def notify_dispute_resolved(
    sink: NotificationSink, user_ids: list[str], dispute_id: str, resolution: str
) -> None:
    for user_id in user_ids:
        await sink.notify(
            user_id,
            NotificationType.DISPUTE_RESOLVED.value,
            "Dispute Resolved",
            f"The dispute has been resolved: {resolution}.",
            dispute_id,
        )


async def notify_disbursement_completed(
    sink: NotificationSink, seller_id: str, amount: int, transaction_id: str
) -> None:
    await sink.notify(
        seller_id,
        NotificationType.DISBURSEMENT_COMPLETED.value,
        "Disbursement Completed",
        f"{format_idr(amount)} has been transferred to your bank account.",
        transaction_id,
    )


async def notify_disbursement_failed(
    sink: NotificationSink, seller_id: str, amount: int, reason: str, transaction_id: str
) -> None:
    await sink.notify(
        seller_id,
        NotificationType.DISBURSEMENT_FAILED.value,
        "Disbursement Failed",
        f"Disbursement of {format_idr(amount)} failed: {reason}",
        transaction_id,
    )
