"""Worker candidate selection."""
from __future__ import annotations

from typing import Iterable

from .models import WorkerProfile


def is_eligible(worker: WorkerProfile, service_type: str) -> bool:
    return worker.is_verified and worker.is_available and worker.offers(service_type)


def find_candidates(service_type: str, exclude: Iterable[str] = ()) -> list[WorkerProfile]:
    """Verified, available workers offering ``service_type``, in signup order.

    Service names are compared case-insensitively. The first element is the
    next worker offered a job after a rejection. ``exclude`` holds worker ids
    that must not be returned.
    """
    excluded = {str(worker_id) for worker_id in exclude}
    workers = WorkerProfile.objects.filter(is_verified=True, is_available=True).select_related('user')
    return [w for w in workers if w.offers(service_type) and str(w.pk) not in excluded]
