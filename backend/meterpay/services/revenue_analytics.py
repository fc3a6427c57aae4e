"""Read-only revenue reporting over client payments and subscriptions.

Amounts are minor currency units. Every figure degrades to zero on an empty
data set; rates are never NaN.
"""

from collections import Counter
from datetime import datetime
from uuid import UUID

from sqlalchemy.orm import Session

from meterpay.core.exceptions import NotFoundError
from meterpay.models.client_payment import ClientPayment, ClientPaymentStatus, ClientPaymentType
from meterpay.models.connected_account import AccountStatus
from meterpay.repositories.client_payment_repository import ClientPaymentRepository
from meterpay.repositories.connected_account_repository import ConnectedAccountRepository
from meterpay.schemas.analytics import AccountRevenue, PaymentAnalytics, PlatformRevenue
from meterpay.schemas.subscription import SubscriptionStats
from meterpay.services.subscription_service import SubscriptionService


def success_rate(successful: int, total: int) -> float:
    """Percentage of successful payments, 0.0 when there are none."""
    if total <= 0:
        return 0.0
    return round(successful / total * 100, 2)


def summarize_payments(payments: list[ClientPayment]) -> PaymentAnalytics:
    by_status = Counter(str(p.status) for p in payments)
    fully_refunded = ClientPaymentStatus.REFUNDED.value
    # Captured money: succeeded payments plus those refunded afterwards.
    captured = [
        p
        for p in payments
        if p.status in (ClientPaymentStatus.SUCCEEDED.value, fully_refunded)
    ]
    refunded = [p for p in payments if p.refunded or p.status == fully_refunded]

    total_revenue = sum(int(p.amount) for p in captured)
    total_fees = sum(int(p.application_fee_amount or 0) for p in captured)
    refunded_amount = sum(
        int(p.refund_amount if p.refund_amount is not None else p.amount)
        for p in captured
        if p.refunded or p.status == fully_refunded or p.refund_amount
    )
    successful = by_status.get(ClientPaymentStatus.SUCCEEDED.value, 0)

    return PaymentAnalytics(
        total_payments=len(payments),
        by_status=dict(by_status),
        successful_payments=successful,
        failed_payments=by_status.get(ClientPaymentStatus.FAILED.value, 0),
        refunded_payments=len(refunded),
        subscription_payments=sum(
            1 for p in payments if p.payment_type == ClientPaymentType.SUBSCRIPTION.value
        ),
        one_time_payments=sum(
            1 for p in payments if p.payment_type == ClientPaymentType.ONE_TIME.value
        ),
        success_rate=success_rate(successful, len(payments)),
        total_revenue=total_revenue,
        total_fees=total_fees,
        refunded_amount=refunded_amount,
        net_revenue=total_revenue - refunded_amount,
        average_payment=round(total_revenue / len(captured), 2) if captured else 0.0,
    )


def revenue_totals(succeeded: list[ClientPayment]) -> dict[str, int | float]:
    total_revenue = sum(int(p.amount) for p in succeeded)
    total_fees = sum(int(p.application_fee_amount or 0) for p in succeeded)
    net_revenue = sum(int(p.net_amount) for p in succeeded)
    return {
        "total_payments": len(succeeded),
        "total_revenue": total_revenue,
        "total_fees": total_fees,
        "net_revenue": net_revenue,
        "average_payment": round(total_revenue / len(succeeded), 2) if succeeded else 0.0,
    }


class RevenueAnalyticsService:
    def __init__(self, db: Session):
        self.db = db
        self.payments = ClientPaymentRepository(db)
        self.accounts = ConnectedAccountRepository(db)
        self.subscriptions = SubscriptionService(db)

    def get_account_revenue(
        self,
        account_id: UUID,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> AccountRevenue:
        """Revenue from succeeded payments on one account, optionally windowed."""
        if self.accounts.get_by_id(account_id) is None:
            raise NotFoundError("connected account not found")
        succeeded = self.payments.list_for_analytics(
            account_id, start, end, ClientPaymentStatus.SUCCEEDED
        )
        return AccountRevenue(**revenue_totals(succeeded), start=start, end=end)

    def get_account_analytics(self, account_id: UUID) -> PaymentAnalytics:
        if self.accounts.get_by_id(account_id) is None:
            raise NotFoundError("connected account not found")
        return summarize_payments(self.payments.list_for_analytics(account_id))

    def get_platform_analytics(self) -> PaymentAnalytics:
        analytics = summarize_payments(self.payments.list_for_analytics())
        analytics.total_accounts = self.accounts.count()
        analytics.active_accounts = self.accounts.count(AccountStatus.ACTIVE.value)
        return analytics

    def get_platform_revenue(
        self,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> PlatformRevenue:
        """Succeeded-payment revenue across every account over an optional window.

        ``total_fees`` is what the platform earned; ``net_revenue`` is what
        was paid out to connected accounts.
        """
        succeeded = self.payments.list_for_analytics(
            start=start, end=end, status=ClientPaymentStatus.SUCCEEDED
        )
        return PlatformRevenue(**revenue_totals(succeeded), start=start, end=end)

    def get_subscription_stats(self, plan_id: str | None = None) -> SubscriptionStats:
        return self.subscriptions.get_subscription_stats(plan_id)
