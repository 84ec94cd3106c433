"""Worker earnings ledger.

Stats are rebuilt from the worker's bookings on every call, never incremented.
"""
from __future__ import annotations

import logging
from collections import OrderedDict
from decimal import Decimal

from django.db import transaction
from django.utils import timezone

from .models import Booking, WorkerEarning, WorkerProfile

logger = logging.getLogger(__name__)


@transaction.atomic
def recompute_worker_stats(worker_id) -> WorkerProfile:
    worker = WorkerProfile.objects.select_for_update().get(pk=worker_id)
    bookings = Booking.objects.filter(worker=worker)
    completed = bookings.filter(status=Booking.STATUS_COMPLETED).order_by('completed_at')

    buckets: OrderedDict = OrderedDict()
    for booking in completed:
        day = timezone.localdate(booking.completed_at) if booking.completed_at else timezone.localdate()
        buckets[day] = buckets.get(day, Decimal('0.00')) + booking.worker_payment

    for day, amount in buckets.items():
        WorkerEarning.objects.update_or_create(worker=worker, date=day, defaults={'amount': amount})
    WorkerEarning.objects.filter(worker=worker).exclude(date__in=list(buckets)).delete()

    worker.total_bookings = bookings.count()
    worker.completed_bookings = completed.count()
    worker.total_earnings = sum(buckets.values(), Decimal('0.00'))
    worker.save(update_fields=['total_bookings', 'completed_bookings', 'total_earnings', 'updated_at'])
    logger.info(
        'Worker %s stats: %s/%s completed, earnings %s',
        worker.pk, worker.completed_bookings, worker.total_bookings, worker.total_earnings,
    )
    return worker
