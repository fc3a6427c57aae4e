from datetime import datetime

from pydantic import BaseModel


class AccountRevenue(BaseModel):
    total_payments: int = 0
    total_revenue: int = 0
    total_fees: int = 0
    net_revenue: int = 0
    average_payment: float = 0.0
    start: datetime | None = None
    end: datetime | None = None


class PaymentAnalytics(BaseModel):
    """Revenue figures in minor currency units."""

    total_payments: int = 0
    by_status: dict[str, int] = {}
    successful_payments: int = 0
    failed_payments: int = 0
    refunded_payments: int = 0
    subscription_payments: int = 0
    one_time_payments: int = 0
    success_rate: float = 0.0
    total_revenue: int = 0
    total_fees: int = 0
    refunded_amount: int = 0
    net_revenue: int = 0
    average_payment: float = 0.0
    active_accounts: int | None = None
    total_accounts: int | None = None


class PlatformRevenue(AccountRevenue):
    """Revenue across every connected account; fees are the platform's earnings."""
