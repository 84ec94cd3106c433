"""Job lifecycle: the candidate pool behind each booking.

A job starts with every eligible worker as a candidate. Rejections shrink the
pool and hand the job to the next worker in line; the first candidate to
accept wins. Each write is a compare-and-swap on ``(version, status)``.
"""
from __future__ import annotations

import logging
from typing import Callable, Iterable, Optional

from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import transaction

from . import ledger
from .commission import split_commission
from .context import get_context
from .exceptions import AuthorizationError, ConflictError, NotFoundError
from .matching import find_candidates
from .models import Booking, Job, WorkerProfile
from .notifications import NotificationDispatcher

logger = logging.getLogger(__name__)


class JobService:
    MAX_ATTEMPTS = 3

    def __init__(self, context=None):
        self.context = context or get_context()
        self.notifier = NotificationDispatcher(self.context)

    # Queries

    def get(self, job_id) -> Job:
        try:
            return Job.objects.select_related('booking', 'customer__user').get(pk=job_id)
        except (Job.DoesNotExist, DjangoValidationError) as exc:
            raise NotFoundError('Job not found') from exc

    def pending_for(self, worker: WorkerProfile) -> list[Job]:
        jobs = Job.objects.filter(status=Job.STATUS_PENDING)
        return [job for job in jobs if job.is_candidate(worker)]

    # Creation

    def create_for_booking(self, booking: Booking, candidates: Iterable[WorkerProfile]) -> Job:
        return Job.objects.create(
            service=booking.service_type,
            customer=booking.customer,
            booking=booking,
            candidate_workers=[str(worker.pk) for worker in candidates],
            status=Job.STATUS_PENDING,
            requested_at=self.context.now(),
            details={
                'address': booking.address,
                'booking_date': booking.booking_date.isoformat(),
                'booking_time': booking.booking_time.strftime('%H:%M'),
                'amount': str(booking.amount),
                'distance_charge': str(booking.distance_charge),
                'total_amount': str(booking.total_amount),
                'admin_commission': str(booking.admin_commission),
                'worker_payment': str(booking.worker_payment),
            },
        )

    # Worker actions

    def _apply(self, job: Job, check: Callable[[Job], Iterable[str]], changes: Callable[[Job], dict]) -> Job:
        """Re-check and retry while other writers keep bumping the version."""
        for _ in range(self.MAX_ATTEMPTS):
            expected = check(job)
            if job.compare_and_set(expected, **changes(job)):
                return job
        raise ConflictError('Job changed while you were updating it, refresh and retry')

    def accept(self, job_id, worker: WorkerProfile) -> Job:
        job = self.get(job_id)
        now = self.context.now()

        def check(current: Job):
            if not current.is_candidate(worker):
                raise AuthorizationError('You are not a candidate for this job')
            if current.status != Job.STATUS_PENDING:
                raise ConflictError('Job is no longer available')
            return [Job.STATUS_PENDING]

        booking = job.booking
        with transaction.atomic():
            self._apply(job, check, lambda current: {
                'assigned_worker': worker,
                'status': Job.STATUS_ACCEPTED,
                'accepted_at': now,
            })
            if not booking.compare_and_set(
                [Booking.STATUS_PENDING],
                where={'worker__isnull': True},
                worker=worker,
                status=Booking.STATUS_WORKER_ASSIGNED,
                assigned_at=now,
            ):
                logger.info('Job %s lost booking %s, already %s', job.pk, booking.pk, booking.status)
                raise ConflictError('Job is no longer available')
        booking.refresh_parent_status()

        self.notifier.notify_worker(
            worker, 'job_accepted', f'You have accepted the job for service: {job.service}', job=job, booking=booking
        )
        self.notifier.notify_customer(
            booking.customer, 'worker_assigned', f'A worker has been assigned to your {booking.service_title} booking',
            job=job, booking=booking,
        )
        self.notifier.notify_admins('job_accepted', 'Job accepted by worker', job=job, booking=booking)
        return job

    def reject(self, job_id, worker: WorkerProfile) -> Job:
        job = self.get(job_id)
        worker_id = str(worker.pk)

        def check(current: Job):
            if not current.is_candidate(worker):
                raise AuthorizationError('You are not a candidate for this job')
            if current.status != Job.STATUS_PENDING:
                raise ConflictError('Job already processed')
            return [Job.STATUS_PENDING]

        def changes(current: Job):
            update = current.without_worker(worker_id)
            update['status'] = Job.STATUS_PENDING if update['candidate_workers'] else Job.STATUS_REJECTED
            return update

        self._apply(job, check, changes)

        if job.status == Job.STATUS_REJECTED:
            self.notifier.notify_admins(
                'job_rejected', 'Job rejected by all workers', job=job, booking=job.booking
            )
        else:
            next_worker = WorkerProfile.objects.select_related('user').filter(pk=job.candidate_workers[0]).first()
            if next_worker is not None:
                self.notifier.notify_worker(
                    next_worker, 'job_assigned', f'You have a new job request for service: {job.service}',
                    job=job, booking=job.booking,
                )
        self.notifier.notify_worker(
            worker, 'job_rejected', f'You have rejected the job for service: {job.service}', job=job
        )
        return job

    def _require_assignee(self, job: Job, worker: WorkerProfile) -> None:
        if job.assigned_worker_id != worker.pk:
            raise AuthorizationError('This job is not assigned to you')

    def start(self, job_id, worker: WorkerProfile) -> Job:
        job = self.get(job_id)
        now = self.context.now()

        def check(current: Job):
            self._require_assignee(current, worker)
            if current.status != Job.STATUS_ACCEPTED:
                raise ConflictError('Job not in accepted state')
            return [Job.STATUS_ACCEPTED]

        self._apply(job, check, lambda current: {'status': Job.STATUS_IN_PROGRESS, 'started_at': now})
        job.booking.compare_and_set(
            [Booking.STATUS_WORKER_ASSIGNED, Booking.STATUS_ACCEPTED],
            where={'worker': worker},
            status=Booking.STATUS_IN_PROGRESS,
            started_at=now,
        )
        self._announce(job, worker, 'job_started', 'started')
        return job

    def complete(self, job_id, worker: WorkerProfile, otp) -> Job:
        """Complete the job and its booking with the customer's completion code."""
        job = self.get(job_id)
        now = self.context.now()
        booking = job.booking
        payment = split_commission(booking.amount).worker_payment

        def check(current: Job):
            self._require_assignee(current, worker)
            if current.status not in (Job.STATUS_ACCEPTED, Job.STATUS_IN_PROGRESS):
                raise ConflictError('Job not in accepted state')
            return [Job.STATUS_ACCEPTED, Job.STATUS_IN_PROGRESS]

        check(job)
        with transaction.atomic():
            booking.complete_with_code(worker, otp, now)
            self._apply(job, check, lambda current: {
                'status': Job.STATUS_COMPLETED,
                'completed_at': now,
                'worker_payment': payment,
            })
        booking.refresh_parent_status()
        ledger.recompute_worker_stats(worker.pk)
        self._announce(job, worker, 'job_completed', 'completed')
        return job

    def cancel(self, job_id, worker: WorkerProfile) -> Job:
        job = self.get(job_id)
        now = self.context.now()

        def check(current: Job):
            self._require_assignee(current, worker)
            if current.status not in (Job.STATUS_ACCEPTED, Job.STATUS_IN_PROGRESS):
                raise ConflictError('Job cannot be cancelled in current state')
            return [Job.STATUS_ACCEPTED, Job.STATUS_IN_PROGRESS]

        self._apply(job, check, lambda current: {'status': Job.STATUS_CANCELLED, 'cancelled_at': now})
        self._announce(job, worker, 'job_cancelled', 'cancelled')
        self.notifier.notify_customer(
            job.customer, 'job_cancelled',
            f'Your worker cancelled the {job.service} job, our team will follow up',
            job=job, booking=job.booking,
        )
        return job

    def _announce(self, job: Job, worker: WorkerProfile, type: str, verb: str) -> None:
        self.notifier.notify_worker(
            worker, type, f'You have {verb} the job for service: {job.service}', job=job, booking=job.booking
        )
        self.notifier.notify_admins(type, f'Job {verb} by worker', job=job, booking=job.booking)

    # Administrative

    def refresh_candidates(self, job_id) -> Job:
        """Re-scan eligible workers for a job still waiting for one."""
        job = self.get(job_id)
        added: list[WorkerProfile] = []

        def check(current: Job):
            if current.status != Job.STATUS_PENDING:
                raise ConflictError('Only pending jobs can be re-matched')
            return [Job.STATUS_PENDING]

        def changes(current: Job):
            added[:] = [
                worker for worker in find_candidates(current.service, exclude=current.rejected_by)
                if not current.is_candidate(worker)
            ]
            return {'candidate_workers': current.candidate_workers + [str(w.pk) for w in added]}

        self._apply(job, check, changes)
        self.notifier.notify_workers(
            added, 'job_assigned', f'New job request for service: {job.service}', job=job, booking=job.booking
        )
        return job

    # Follow-up writes driven by booking transitions

    def job_for(self, booking: Booking) -> Optional[Job]:
        return Job.objects.filter(booking=booking).first()

    def mirror_assignment(self, booking: Booking, worker: WorkerProfile) -> bool:
        """Hand the booking's job to ``worker``.

        Returns False when the job already belongs to another worker.
        """
        job = self.job_for(booking)
        if job is None:
            return True
        now = self.context.now()

        def build(current: Job):
            if current.status != Job.STATUS_PENDING:
                return None
            return [Job.STATUS_PENDING], {
                'assigned_worker': worker,
                'status': Job.STATUS_ACCEPTED,
                'accepted_at': now,
            }

        job.mirror(build)
        return job.assigned_worker_id in (None, worker.pk)

    def mirror_unassignment(self, booking: Booking, worker: WorkerProfile) -> None:
        job = self.job_for(booking)
        if job is None:
            return

        def build(current: Job):
            if current.status != Job.STATUS_ACCEPTED or current.assigned_worker_id != worker.pk:
                return None
            update = current.without_worker(str(worker.pk))
            update.update(
                assigned_worker=None,
                accepted_at=None,
                status=Job.STATUS_PENDING if update['candidate_workers'] else Job.STATUS_REJECTED,
            )
            return [Job.STATUS_ACCEPTED], update

        if job.mirror(build) and job.status == Job.STATUS_REJECTED:
            self.notifier.notify_admins('job_rejected', 'Job rejected by all workers', job=job, booking=booking)

    def mirror_status(self, booking: Booking, target: str) -> None:
        job = self.job_for(booking)
        if job is None:
            return
        now = self.context.now()
        sources = {
            Job.STATUS_IN_PROGRESS: [Job.STATUS_ACCEPTED],
            Job.STATUS_COMPLETED: [Job.STATUS_ACCEPTED, Job.STATUS_IN_PROGRESS],
            Job.STATUS_CANCELLED: [Job.STATUS_PENDING, Job.STATUS_ACCEPTED, Job.STATUS_IN_PROGRESS],
        }
        stamps = {
            Job.STATUS_IN_PROGRESS: {'started_at': now},
            Job.STATUS_COMPLETED: {'completed_at': now, 'worker_payment': booking.worker_payment},
            Job.STATUS_CANCELLED: {'cancelled_at': now},
        }

        def build(current: Job):
            if current.status not in sources[target]:
                return None
            return sources[target], {'status': target, **stamps[target]}

        job.mirror(build)
