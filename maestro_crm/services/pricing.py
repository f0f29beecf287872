from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Dict, Iterable, Optional

from maestro_crm.schemas.quote import QuoteItem, QuoteTotals
from maestro_crm.schemas.service_request import Payment, PaymentStatus

logger = logging.getLogger(__name__)


def compute_quote_totals(
    items: Iterable[QuoteItem],
    vat_percentage: float,
    discount_amount: float = 0.0,
) -> QuoteTotals:
    """Recompute subtotal, VAT and total for a set of quote lines.

    A discount larger than subtotal plus VAT produces a negative total. It is
    returned as is and only logged.
    """

    subtotal = sum(float(item.quantity or 0) * float(item.price or 0) for item in items)
    vat_amount = subtotal * float(vat_percentage) / 100
    total_amount = subtotal + vat_amount - float(discount_amount or 0)
    if total_amount < 0:
        logger.warning(
            "Quote total is negative (%.2f): discount %.2f exceeds subtotal plus VAT",
            total_amount,
            discount_amount,
        )
    return QuoteTotals(
        subtotal=subtotal,
        vat_amount=vat_amount,
        total_amount=total_amount,
    )


def remaining_balance(
    total_amount: float,
    advance_payment: float,
    payments: Iterable[Payment],
) -> float:
    paid = sum(float(payment.amount) for payment in payments)
    return max(0.0, float(total_amount or 0) - float(advance_payment or 0) - paid)


def payment_status(balance: float, has_payments: bool) -> PaymentStatus:
    if balance <= 0:
        return PaymentStatus.PAID
    if has_payments:
        return PaymentStatus.PARTIALLY_PAID
    return PaymentStatus.PENDING


def closing_fields(
    total_amount: float,
    completed_at: datetime,
    warranty_days: int,
) -> Dict[str, object]:
    """Commercial fields written when a service request is completed."""

    balance = remaining_balance(total_amount, 0, [])
    return {
        "totalAmount": total_amount,
        "advancePayment": 0,
        "remainingBalance": balance,
        "paymentStatus": payment_status(balance, has_payments=False).value,
        "warrantyDays": warranty_days,
        "warrantyExpiresAt": completed_at + timedelta(days=warranty_days),
        "payments": [],
    }


def format_money(value: Optional[float]) -> str:
    return f"${float(value or 0):.2f}"
