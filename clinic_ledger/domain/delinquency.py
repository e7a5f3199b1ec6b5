"""Delinquency evaluation - derives overdue state from plan cadence and completed payments"""

from datetime import datetime
from typing import Optional

from clinic_ledger.domain.models import PaymentFrequency, PlanStatus, PlanType
from clinic_ledger.utils.date_utils import days_since

# Fixed approximation: a "month" is 30 days, not calendar-aware
CADENCE_DAYS = {
    PaymentFrequency.WEEKLY: 7,
    PaymentFrequency.BIWEEKLY: 14,
    PaymentFrequency.MONTHLY: 30,
}

EVALUATED_STATUSES = (PlanStatus.ACTIVATED, PlanStatus.OVERDUE)


def cadence_days(frequency: Optional[PaymentFrequency]) -> Optional[int]:
    """Days between installments, or None for custom/missing frequency"""
    if frequency is None:
        return None
    return CADENCE_DAYS.get(PaymentFrequency(frequency))


def expected_installments(start_date: datetime, frequency: Optional[PaymentFrequency], now: datetime) -> int:
    """Number of installments that should have been paid by now"""
    cadence = cadence_days(frequency)
    if cadence is None:
        return 0
    return days_since(start_date, now) // cadence


def expected_amount(
    start_date: datetime,
    amount_per_installment: Optional[int],
    frequency: Optional[PaymentFrequency],
    now: datetime,
) -> int:
    """
    Cumulative amount (minor units) due by now.

    Example:
        start T, monthly, 100_00 per installment, now T+65d
        -> 65 // 30 = 2 installments -> 200_00
    """
    if not amount_per_installment:
        return 0
    return expected_installments(start_date, frequency, now) * amount_per_installment


def is_evaluable(plan_type: PlanType, status: PlanStatus, amount_per_installment: Optional[int],
                 frequency: Optional[PaymentFrequency]) -> bool:
    """Only fixed plans with a deterministic cadence that are in force can be overdue"""
    return (
        PlanType(plan_type) == PlanType.FIXED
        and PlanStatus(status) in EVALUATED_STATUSES
        and bool(amount_per_installment)
        and cadence_days(frequency) is not None
    )


def is_overdue(
    plan_type: PlanType,
    status: PlanStatus,
    start_date: datetime,
    amount_per_installment: Optional[int],
    frequency: Optional[PaymentFrequency],
    total_paid: int,
    now: datetime,
) -> bool:
    """Plan is overdue iff the cumulative expected amount exceeds what has actually been paid"""
    if not is_evaluable(plan_type, status, amount_per_installment, frequency):
        return False
    return expected_amount(start_date, amount_per_installment, frequency, now) > total_paid
