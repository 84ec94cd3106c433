"""Admin commission / worker payment split.

The platform keeps a fixed share of the service charge; the distance
surcharge is never commissioned and only flows into the customer total.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Iterable, Mapping

from django.conf import settings

WHOLE_UNIT = Decimal('1')


@dataclass(frozen=True)
class CommissionSplit:
    admin_commission: Decimal
    worker_payment: Decimal
    total_amount: Decimal


@dataclass(frozen=True)
class MultipleServicesSplit:
    total_service_amount: Decimal
    total_admin_commission: Decimal
    total_worker_payment: Decimal
    total_amount: Decimal
    services_breakdown: list[dict[str, Any]] = field(default_factory=list)


def commission_rate() -> Decimal:
    return Decimal(str(settings.ADMIN_COMMISSION_PERCENT))


def split_commission(service_amount, distance_charge=0) -> CommissionSplit:
    service_amount = Decimal(str(service_amount))
    distance_charge = Decimal(str(distance_charge))
    admin_commission = (service_amount * commission_rate()).quantize(WHOLE_UNIT, rounding=ROUND_HALF_UP)
    return CommissionSplit(
        admin_commission=admin_commission,
        worker_payment=service_amount - admin_commission,
        total_amount=service_amount + distance_charge,
    )


def split_multiple(services: Iterable[Mapping[str, Any]], distance_charge=0) -> MultipleServicesSplit:
    """Split every service line on its own, then aggregate.

    Each line is ``amount * quantity`` with no distance charge; the distance
    charge is added once to the aggregate total.
    """
    total_service = Decimal('0')
    total_commission = Decimal('0')
    total_payment = Decimal('0')
    breakdown = []
    for service in services:
        line_amount = Decimal(str(service['amount'])) * int(service.get('quantity') or 1)
        split = split_commission(line_amount)
        total_service += line_amount
        total_commission += split.admin_commission
        total_payment += split.worker_payment
        breakdown.append(
            {
                **service,
                'service_amount': line_amount,
                'admin_commission': split.admin_commission,
                'worker_payment': split.worker_payment,
            }
        )
    return MultipleServicesSplit(
        total_service_amount=total_service,
        total_admin_commission=total_commission,
        total_worker_payment=total_payment,
        total_amount=total_service + Decimal(str(distance_charge)),
        services_breakdown=breakdown,
    )
