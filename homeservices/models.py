"""Domain models for the home-services marketplace."""
from __future__ import annotations

import logging
import uuid
from decimal import Decimal
from typing import Callable, Iterable, Optional

from django.conf import settings
from django.core.validators import MaxValueValidator, MinValueValidator
from django.db import models, transaction
from django.db.models import Avg, Count
from django.db.models.functions import Coalesce
from django.utils import timezone

from .exceptions import ConflictError, ValidationError

logger = logging.getLogger(__name__)

MONEY = {'max_digits': 12, 'decimal_places': 2}


class BaseModel(models.Model):
    """Base model that uses UUID primary keys for consistency."""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    class Meta:
        abstract = True


class TimestampedModel(BaseModel):
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        abstract = True


class CustomerProfile(BaseModel):
    user = models.OneToOneField(settings.AUTH_USER_MODEL, on_delete=models.CASCADE)
    phone = models.CharField(max_length=15, blank=True)
    push_token = models.CharField(max_length=255, blank=True)

    def __str__(self) -> str:  # pragma: no cover - trivial
        return f"CustomerProfile({self.user.username})"


class WorkerProfile(TimestampedModel):
    user = models.OneToOneField(settings.AUTH_USER_MODEL, on_delete=models.CASCADE)
    phone = models.CharField(max_length=15, blank=True)
    services = models.JSONField(default=list)
    is_verified = models.BooleanField(default=False)
    is_available = models.BooleanField(default=True)
    push_token = models.CharField(max_length=255, blank=True)
    rating_average = models.DecimalField(max_digits=3, decimal_places=2, default=Decimal('0.00'))
    rating_count = models.PositiveIntegerField(default=0)
    total_bookings = models.PositiveIntegerField(default=0)
    completed_bookings = models.PositiveIntegerField(default=0)
    total_earnings = models.DecimalField(default=Decimal('0.00'), **MONEY)

    class Meta:
        ordering = ['created_at', 'id']

    def __str__(self) -> str:  # pragma: no cover - trivial
        return f"WorkerProfile({self.user.username})"

    def offers(self, service_type: str) -> bool:
        wanted = (service_type or '').strip().lower()
        return any(str(s).strip().lower() == wanted for s in self.services)

    @transaction.atomic
    def recalc_ratings(self) -> None:
        """Recalculate rating aggregates from completed, rated bookings."""
        aggregates = self.bookings.filter(
            status=Booking.STATUS_COMPLETED, rating__isnull=False
        ).aggregate(avg=Avg('rating'), count=Coalesce(Count('id'), 0))
        self.rating_average = (
            Decimal(aggregates['avg']).quantize(Decimal('0.01')) if aggregates['avg'] else Decimal('0.00')
        )
        self.rating_count = aggregates['count']
        self.save(update_fields=['rating_average', 'rating_count', 'updated_at'])


class WorkerEarning(BaseModel):
    """One per-day earnings bucket of a worker's ledger."""

    worker = models.ForeignKey(WorkerProfile, on_delete=models.CASCADE, related_name='earnings')
    date = models.DateField()
    amount = models.DecimalField(default=Decimal('0.00'), **MONEY)

    class Meta:
        unique_together = ('worker', 'date')
        ordering = ['date']


class BookingQuerySet(models.QuerySet):
    def for_worker(self, worker: WorkerProfile) -> 'BookingQuerySet':
        return self.filter(worker=worker, status__in=Booking.ACTIVE_STATUSES)

    def top_level(self) -> 'BookingQuerySet':
        return self.filter(parent_booking__isnull=True)


class Booking(TimestampedModel):
    STATUS_PENDING = 'Pending'
    STATUS_WORKER_ASSIGNED = 'Worker Assigned'
    STATUS_ACCEPTED = 'Accepted'
    STATUS_IN_PROGRESS = 'In Progress'
    STATUS_COMPLETED = 'Completed'
    STATUS_CANCELLED = 'Cancelled'
    STATUS_REJECTED = 'Rejected'
    STATUS_CHOICES = [
        (STATUS_PENDING, 'Pending'),
        (STATUS_WORKER_ASSIGNED, 'Worker Assigned'),
        (STATUS_ACCEPTED, 'Accepted'),
        (STATUS_IN_PROGRESS, 'In Progress'),
        (STATUS_COMPLETED, 'Completed'),
        (STATUS_CANCELLED, 'Cancelled'),
        (STATUS_REJECTED, 'Rejected'),
    ]

    # Statuses in which a worker is attached to the booking.
    ACTIVE_STATUSES = (STATUS_WORKER_ASSIGNED, STATUS_ACCEPTED, STATUS_IN_PROGRESS)
    TERMINAL_STATUSES = (STATUS_COMPLETED, STATUS_CANCELLED, STATUS_REJECTED)

    ALLOWED_TRANSITIONS = {
        STATUS_PENDING: {STATUS_WORKER_ASSIGNED, STATUS_CANCELLED, STATUS_REJECTED},
        STATUS_WORKER_ASSIGNED: {
            STATUS_PENDING,
            STATUS_ACCEPTED,
            STATUS_IN_PROGRESS,
            STATUS_COMPLETED,
            STATUS_CANCELLED,
            STATUS_REJECTED,
        },
        STATUS_ACCEPTED: {STATUS_IN_PROGRESS, STATUS_COMPLETED, STATUS_CANCELLED, STATUS_REJECTED},
        STATUS_IN_PROGRESS: {STATUS_COMPLETED, STATUS_CANCELLED, STATUS_REJECTED},
    }

    customer = models.ForeignKey(CustomerProfile, on_delete=models.CASCADE, related_name='bookings')
    service_type = models.CharField(max_length=100, db_index=True)
    service_title = models.CharField(max_length=200)
    booking_date = models.DateField()
    booking_time = models.TimeField()
    address = models.JSONField(default=dict)
    phone = models.CharField(max_length=10)
    amount = models.DecimalField(**MONEY)
    distance = models.DecimalField(max_digits=8, decimal_places=2, default=Decimal('0.00'))
    distance_charge = models.DecimalField(default=Decimal('0.00'), **MONEY)
    total_amount = models.DecimalField(**MONEY)
    admin_commission = models.DecimalField(default=Decimal('0.00'), **MONEY)
    worker_payment = models.DecimalField(default=Decimal('0.00'), **MONEY)
    customer_coordinates = models.JSONField(null=True, blank=True)
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=STATUS_PENDING, db_index=True)
    worker = models.ForeignKey(
        WorkerProfile, on_delete=models.SET_NULL, null=True, blank=True, related_name='bookings'
    )
    assigned_at = models.DateTimeField(null=True, blank=True)
    accepted_at = models.DateTimeField(null=True, blank=True)
    rejected_at = models.DateTimeField(null=True, blank=True)
    started_at = models.DateTimeField(null=True, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)
    cancellation_reason = models.TextField(blank=True)
    completion_otp = models.CharField(max_length=6, null=True, blank=True)
    completion_otp_expires = models.DateTimeField(null=True, blank=True)
    rating = models.PositiveSmallIntegerField(
        null=True, blank=True, validators=[MinValueValidator(1), MaxValueValidator(5)]
    )
    review = models.TextField(blank=True)
    reviewed_at = models.DateTimeField(null=True, blank=True)
    payment_verified = models.BooleanField(default=False)
    paid_amount = models.DecimalField(null=True, blank=True, **MONEY)
    payment_verified_at = models.DateTimeField(null=True, blank=True)
    is_multiple_service_booking = models.BooleanField(default=False)
    parent_booking = models.ForeignKey(
        'self', on_delete=models.CASCADE, null=True, blank=True, related_name='child_bookings'
    )
    service_breakdown = models.JSONField(default=list, blank=True)

    objects = BookingQuerySet.as_manager()

    class Meta:
        ordering = ['-created_at']
        indexes = [models.Index(fields=['status', 'created_at'], name='booking_status_created_idx')]

    def __str__(self) -> str:  # pragma: no cover - trivial
        return f"Booking({self.service_title}, {self.status})"

    @property
    def is_terminal(self) -> bool:
        return self.status in self.TERMINAL_STATUSES

    def compare_and_set(self, expected: Iterable[str], where: Optional[dict] = None, **changes) -> bool:
        """Apply ``changes`` only if the stored status is still in ``expected``.

        The check and the write are one ``UPDATE`` statement, so two callers
        racing on the same booking cannot both win. On success the instance is
        refreshed from the database.
        """
        expected = list(expected)
        for status in expected:
            target = changes.get('status', status)
            if target != status and target not in self.ALLOWED_TRANSITIONS.get(status, set()):
                raise ValueError(f"Invalid transition from {status} to {target}")
        # A completion code belongs to the worker it was issued for.
        if 'worker' in changes:
            changes.setdefault('completion_otp', None)
            changes.setdefault('completion_otp_expires', None)
        changes['updated_at'] = timezone.now()
        queryset = Booking.objects.filter(pk=self.pk, status__in=expected)
        if where:
            queryset = queryset.filter(**where)
        updated = queryset.update(**changes)
        self.refresh_from_db()
        return updated == 1

    def complete_with_code(self, worker: WorkerProfile, otp, now) -> None:
        """Consume the pending completion code and mark the booking completed.

        Raises ``ConflictError`` when no code is pending, the code expired or
        it was already used, and ``ValidationError`` on a mismatch. An expired
        code is cleared as part of the caller's transaction.
        """
        stored = self.completion_otp
        if not stored or self.completion_otp_expires is None:
            raise ConflictError('No completion code is pending for this booking')
        if self.completion_otp_expires <= now:
            self.compare_and_set(
                [self.status], where={'completion_otp': stored}, completion_otp=None, completion_otp_expires=None
            )
            raise ConflictError('Completion code expired, request a new one')
        if str(otp).strip() != stored:
            raise ValidationError({'otp': ['Invalid completion code.']})
        if not self.compare_and_set(
            self.ACTIVE_STATUSES,
            where={'worker': worker, 'completion_otp': stored, 'completion_otp_expires__gt': now},
            status=self.STATUS_COMPLETED,
            completed_at=now,
            completion_otp=None,
            completion_otp_expires=None,
        ):
            raise ConflictError('Completion code was already used')

    def refresh_parent_status(self) -> Optional['Booking']:
        """Promote the composite parent once every child has caught up.

        The parent becomes ``Worker Assigned`` when all children have a worker
        and ``Completed`` when all children are completed. Returns the parent
        when it was promoted.
        """
        if not self.parent_booking_id:
            return None
        parent = Booking.objects.get(pk=self.parent_booking_id)
        children = list(parent.child_bookings.all())
        if not children:
            return None
        promoted = None
        staffed = self.ACTIVE_STATUSES + (self.STATUS_COMPLETED,)
        if all(child.worker_id and child.status in staffed for child in children):
            if parent.compare_and_set(
                [self.STATUS_PENDING],
                status=self.STATUS_WORKER_ASSIGNED,
                assigned_at=timezone.now(),
            ):
                promoted = parent
        if all(child.status == self.STATUS_COMPLETED for child in children):
            if parent.compare_and_set(
                self.ACTIVE_STATUSES,
                status=self.STATUS_COMPLETED,
                completed_at=timezone.now(),
            ):
                promoted = parent
        return promoted


class Job(TimestampedModel):
    STATUS_PENDING = 'pending'
    STATUS_ACCEPTED = 'accepted'
    STATUS_IN_PROGRESS = 'in_progress'
    STATUS_REJECTED = 'rejected'
    STATUS_COMPLETED = 'completed'
    STATUS_CANCELLED = 'cancelled'
    STATUS_CHOICES = [
        (STATUS_PENDING, 'Pending'),
        (STATUS_ACCEPTED, 'Accepted'),
        (STATUS_IN_PROGRESS, 'In Progress'),
        (STATUS_REJECTED, 'Rejected'),
        (STATUS_COMPLETED, 'Completed'),
        (STATUS_CANCELLED, 'Cancelled'),
    ]

    ALLOWED_TRANSITIONS = {
        STATUS_PENDING: {STATUS_PENDING, STATUS_ACCEPTED, STATUS_REJECTED, STATUS_CANCELLED},
        STATUS_ACCEPTED: {STATUS_PENDING, STATUS_REJECTED, STATUS_IN_PROGRESS, STATUS_COMPLETED, STATUS_CANCELLED},
        STATUS_IN_PROGRESS: {STATUS_COMPLETED, STATUS_CANCELLED},
    }

    service = models.CharField(max_length=100)
    customer = models.ForeignKey(CustomerProfile, on_delete=models.CASCADE, related_name='jobs')
    booking = models.OneToOneField(Booking, on_delete=models.CASCADE, related_name='job')
    assigned_worker = models.ForeignKey(
        WorkerProfile, on_delete=models.SET_NULL, null=True, blank=True, related_name='assigned_jobs'
    )
    candidate_workers = models.JSONField(default=list)
    rejected_by = models.JSONField(default=list)
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=STATUS_PENDING, db_index=True)
    requested_at = models.DateTimeField(default=timezone.now)
    accepted_at = models.DateTimeField(null=True, blank=True)
    started_at = models.DateTimeField(null=True, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)
    worker_payment = models.DecimalField(null=True, blank=True, **MONEY)
    details = models.JSONField(default=dict, blank=True)
    version = models.PositiveIntegerField(default=0)

    class Meta:
        ordering = ['-requested_at']

    def __str__(self) -> str:  # pragma: no cover - trivial
        return f"Job({self.service}, {self.status})"

    def is_candidate(self, worker: WorkerProfile) -> bool:
        return str(worker.pk) in self.candidate_workers

    def compare_and_set(self, expected: Iterable[str], **changes) -> bool:
        """Optimistic update guarded on both ``version`` and ``status``."""
        expected = list(expected)
        target = changes.get('status')
        for status in expected:
            if target and target not in self.ALLOWED_TRANSITIONS.get(status, set()):
                raise ValueError(f"Invalid transition from {status} to {target}")
        if 'candidate_workers' in changes or 'rejected_by' in changes:
            rejected = set(changes.get('rejected_by', self.rejected_by))
            candidates = changes.get('candidate_workers', self.candidate_workers)
            if rejected.intersection(candidates):
                raise ValueError('A rejecting worker cannot stay a candidate')
        changes['version'] = self.version + 1
        changes['updated_at'] = timezone.now()
        updated = Job.objects.filter(pk=self.pk, version=self.version, status__in=expected).update(**changes)
        self.refresh_from_db()
        return updated == 1

    def without_worker(self, worker_id: str) -> dict:
        """Field changes that move ``worker_id`` from candidates to ``rejected_by``."""
        candidates = [c for c in self.candidate_workers if c != worker_id]
        rejected = list(self.rejected_by)
        if worker_id not in rejected:
            rejected.append(worker_id)
        return {'candidate_workers': candidates, 'rejected_by': rejected}

    def mirror(self, build: Callable[['Job'], Optional[tuple]], attempts: int = 3) -> bool:
        """Best-effort follow-up write from the booking side.

        ``build`` receives the freshly loaded job and returns ``(expected,
        changes)`` or ``None`` when nothing should change. Lost races are
        retried a few times, then logged and dropped.
        """
        for _ in range(attempts):
            self.refresh_from_db()
            plan = build(self)
            if plan is None:
                return False
            expected, changes = plan
            if self.compare_and_set(expected, **changes):
                return True
        logger.warning('Job %s mirror update lost %d races, leaving it as %s', self.pk, attempts, self.status)
        return False


class Notification(BaseModel):
    KIND_CUSTOMER = 'Customer'
    KIND_WORKER = 'Worker'
    KIND_ADMIN = 'Admin'
    KIND_CHOICES = [
        (KIND_CUSTOMER, 'Customer'),
        (KIND_WORKER, 'Worker'),
        (KIND_ADMIN, 'Admin'),
    ]

    type = models.CharField(max_length=50)
    recipient = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name='notifications')
    recipient_kind = models.CharField(max_length=10, choices=KIND_CHOICES)
    message = models.TextField()
    booking = models.ForeignKey(
        Booking, on_delete=models.SET_NULL, null=True, blank=True, related_name='notifications'
    )
    job = models.ForeignKey(Job, on_delete=models.SET_NULL, null=True, blank=True, related_name='notifications')
    data = models.JSONField(default=dict, blank=True)
    read = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['-created_at']
        indexes = [models.Index(fields=['recipient', 'recipient_kind', 'read'], name='notification_unread_idx')]

    def __str__(self) -> str:  # pragma: no cover - trivial
        return f"Notification({self.type} -> {self.recipient_id})"
