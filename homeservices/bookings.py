"""Booking lifecycle.

Every transition is persisted first as a single conditional update on the
booking's status; the paired job, notifications and the earnings ledger are
brought up to date afterwards and never gate the transition itself.
"""
from __future__ import annotations

import logging
import secrets
import string
from datetime import timedelta
from decimal import ROUND_DOWN, Decimal
from typing import Any, Mapping, Optional

from django.conf import settings
from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import transaction

from . import ledger
from .commission import split_commission, split_multiple
from .context import get_context
from .exceptions import AuthorizationError, ConflictError, NotFoundError, ValidationError
from .jobs import JobService
from .matching import find_candidates, is_eligible
from .models import Booking, CustomerProfile, Job, WorkerProfile
from .notifications import NotificationDispatcher
from .pricing import resolve_distance
from .serializers import (
    BookingRequestSerializer,
    MultipleBookingRequestSerializer,
    PaymentRequestSerializer,
    ReviewRequestSerializer,
)

logger = logging.getLogger(__name__)

MULTIPLE_SERVICE_TYPE = 'Multiple'


def generate_otp(length: Optional[int] = None) -> str:
    length = length or settings.COMPLETION_OTP_LENGTH
    return ''.join(secrets.choice(string.digits) for _ in range(length))


def share_distance_charge(total: Decimal, parts: int) -> list[Decimal]:
    """Split ``total`` into ``parts`` whole-unit shares; the first absorbs the remainder."""
    total = Decimal(str(total))
    base = (total / parts).quantize(Decimal('1'), rounding=ROUND_DOWN)
    shares = [base] * parts
    shares[0] += total - base * parts
    return shares


def validate_payload(serializer_class, data: Mapping[str, Any]) -> dict[str, Any]:
    serializer = serializer_class(data=data)
    if not serializer.is_valid():
        raise ValidationError(serializer.errors)
    return serializer.validated_data


def worker_name(worker: WorkerProfile) -> str:
    return worker.user.get_full_name() or worker.user.username


class BookingService:
    def __init__(self, context=None):
        self.context = context or get_context()
        self.notifier = NotificationDispatcher(self.context)
        self.jobs = JobService(self.context)

    # Queries

    def get(self, booking_id) -> Booking:
        try:
            return Booking.objects.select_related('customer__user', 'worker__user').get(pk=booking_id)
        except (Booking.DoesNotExist, DjangoValidationError) as exc:
            raise NotFoundError('Booking not found') from exc

    def for_customer(self, customer: CustomerProfile):
        return Booking.objects.top_level().filter(customer=customer).select_related('worker__user')

    def for_worker(self, worker: WorkerProfile):
        return Booking.objects.for_worker(worker).select_related('customer__user')

    # Creation

    def create(self, customer: CustomerProfile, data: Mapping[str, Any]) -> Booking:
        payload = validate_payload(BookingRequestSerializer, data)
        quote = resolve_distance(
            self.context.resolver, address=payload['address'], coordinates=payload.get('coordinates')
        )
        split = split_commission(payload['amount'], quote.distance_charge)
        booking = Booking.objects.create(
            customer=customer,
            service_type=payload['service_type'],
            service_title=payload['service_title'],
            booking_date=payload['booking_date'],
            booking_time=payload['booking_time'],
            address=dict(payload['address']),
            phone=payload['phone'],
            amount=payload['amount'],
            distance=quote.distance,
            distance_charge=quote.distance_charge,
            total_amount=split.total_amount,
            admin_commission=split.admin_commission,
            worker_payment=split.worker_payment,
            customer_coordinates=quote.customer_coordinates,
            status=Booking.STATUS_PENDING,
        )
        self._open_job(booking)
        self.notifier.notify_customer(
            customer, 'booking_created', f'Your booking for {booking.service_title} has been received', booking=booking
        )
        self.notifier.notify_admins(
            'booking_created', f'New booking for {booking.service_title} placed by customer', booking=booking
        )
        return booking

    def create_multiple(self, customer: CustomerProfile, data: Mapping[str, Any]) -> Booking:
        """One parent booking plus one child booking (and job) per service line."""
        payload = validate_payload(MultipleBookingRequestSerializer, data)
        quote = resolve_distance(
            self.context.resolver, address=payload['address'], coordinates=payload.get('coordinates')
        )
        lines = [dict(line) for line in payload['services']]
        aggregate = split_multiple(lines, quote.distance_charge)
        shared = {
            'customer': customer,
            'booking_date': payload['booking_date'],
            'booking_time': payload['booking_time'],
            'address': dict(payload['address']),
            'phone': payload['phone'],
            'distance': quote.distance,
            'customer_coordinates': quote.customer_coordinates,
            'status': Booking.STATUS_PENDING,
        }
        parent = Booking.objects.create(
            service_type=MULTIPLE_SERVICE_TYPE,
            service_title=f'Multiple Services ({len(lines)} items)',
            amount=aggregate.total_service_amount,
            distance_charge=quote.distance_charge,
            total_amount=aggregate.total_amount,
            admin_commission=aggregate.total_admin_commission,
            worker_payment=aggregate.total_worker_payment,
            is_multiple_service_booking=True,
            service_breakdown=[
                {
                    'service_type': line['service_type'],
                    'service_title': line['service_title'],
                    'amount': str(line['amount']),
                    'quantity': line['quantity'],
                }
                for line in lines
            ],
            **shared,
        )
        shares = share_distance_charge(quote.distance_charge, len(lines))
        for line, share in zip(aggregate.services_breakdown, shares):
            child = Booking.objects.create(
                service_type=line['service_type'],
                service_title=line['service_title'],
                amount=line['service_amount'],
                distance_charge=share,
                total_amount=line['service_amount'] + share,
                admin_commission=line['admin_commission'],
                worker_payment=line['worker_payment'],
                parent_booking=parent,
                **shared,
            )
            self._open_job(child)
        self.notifier.notify_customer(
            customer, 'booking_created', f'Your booking for {parent.service_title} has been received', booking=parent
        )
        self.notifier.notify_admins(
            'booking_created', f'New multi-service booking with {len(lines)} services placed', booking=parent
        )
        return parent

    def _open_job(self, booking: Booking) -> Job:
        candidates = find_candidates(booking.service_type)
        if not candidates:
            logger.warning('No eligible worker for %s booking %s, it waits for an admin', booking.service_type, booking.pk)
        job = self.jobs.create_for_booking(booking, candidates)
        self.notifier.notify_workers(
            candidates, 'job_assigned', f'New job request for service: {booking.service_title}',
            booking=booking, job=job,
        )
        return job

    # Assignment

    def accept_by_worker(self, booking_id, worker: WorkerProfile) -> Booking:
        booking = self.get(booking_id)
        self._check_assignable(booking)
        if not is_eligible(worker, booking.service_type):
            raise AuthorizationError('You are not eligible to take this booking')
        return self._assign(booking, worker)

    def assign_by_admin(self, booking_id, worker_id) -> Booking:
        booking = self.get(booking_id)
        try:
            worker = WorkerProfile.objects.select_related('user').get(pk=worker_id)
        except (WorkerProfile.DoesNotExist, DjangoValidationError) as exc:
            raise NotFoundError('Worker not found') from exc
        self._check_assignable(booking)
        if not is_eligible(worker, booking.service_type):
            raise AuthorizationError('Worker is not eligible for this booking')
        booking = self._assign(booking, worker)
        self.notifier.notify_worker(
            worker, 'booking_assigned', f'New booking assigned for service: {booking.service_title}', booking=booking
        )
        return booking

    def _check_assignable(self, booking: Booking) -> None:
        if booking.is_multiple_service_booking:
            raise ConflictError('Multi-service bookings are assigned per service')
        if booking.status != Booking.STATUS_PENDING:
            raise ConflictError('Booking is no longer available')

    def _assign(self, booking: Booking, worker: WorkerProfile) -> Booking:
        with transaction.atomic():
            if not booking.compare_and_set(
                [Booking.STATUS_PENDING],
                where={'worker__isnull': True},
                worker=worker,
                status=Booking.STATUS_WORKER_ASSIGNED,
                assigned_at=self.context.now(),
            ):
                raise ConflictError('Booking is no longer available')
            if not self.jobs.mirror_assignment(booking, worker):
                raise ConflictError('Booking is no longer available')
        parent = booking.refresh_parent_status()

        self.notifier.notify_customer(
            booking.customer, 'booking_assigned',
            f'{worker_name(worker)} will handle your {booking.service_title} booking', booking=booking,
        )
        self.notifier.notify_admins(
            'booking_assigned', f'{booking.service_title} booking taken by {worker_name(worker)}', booking=booking
        )
        if parent is not None:
            self.notifier.notify_customer(
                parent.customer, 'booking_assigned', 'Every service in your booking now has a worker', booking=parent
            )
        return booking

    def reject_by_worker(self, booking_id, worker: WorkerProfile) -> Booking:
        booking = self.get(booking_id)
        self._require_worker(booking, worker)
        if booking.status != Booking.STATUS_WORKER_ASSIGNED:
            raise ConflictError(f'Booking is {booking.status}, it can no longer be rejected')
        if not booking.compare_and_set(
            [Booking.STATUS_WORKER_ASSIGNED],
            where={'worker': worker},
            worker=None,
            assigned_at=None,
            accepted_at=None,
            rejected_at=self.context.now(),
            completion_otp=None,
            completion_otp_expires=None,
            status=Booking.STATUS_PENDING,
        ):
            raise ConflictError('Booking changed while you were updating it, refresh and retry')
        self.jobs.mirror_unassignment(booking, worker)

        candidates = find_candidates(booking.service_type)
        self.notifier.notify_workers(
            candidates, 'job_assigned', f'New job request for service: {booking.service_title}', booking=booking
        )
        self.notifier.notify_customer(
            booking.customer, 'booking_rejected',
            f'Your {booking.service_title} booking is being offered to other workers', booking=booking,
        )
        self.notifier.notify_admins(
            'booking_rejected', f'{worker_name(worker)} rejected a {booking.service_title} booking', booking=booking
        )
        return booking

    def _require_worker(self, booking: Booking, worker: WorkerProfile) -> None:
        if booking.worker_id != worker.pk:
            raise AuthorizationError('This booking is not assigned to you')

    # Progress

    def confirm_by_worker(self, booking_id, worker: WorkerProfile) -> Booking:
        booking = self.get(booking_id)
        self._require_worker(booking, worker)
        if booking.status != Booking.STATUS_WORKER_ASSIGNED:
            raise ConflictError(f'Booking is {booking.status}, it cannot be accepted')
        if not booking.compare_and_set(
            [Booking.STATUS_WORKER_ASSIGNED],
            where={'worker': worker},
            status=Booking.STATUS_ACCEPTED,
            accepted_at=self.context.now(),
        ):
            raise ConflictError('Booking changed while you were updating it, refresh and retry')
        self.notifier.notify_customer(
            booking.customer, 'booking_accepted',
            f'{worker_name(worker)} accepted your {booking.service_title} booking', booking=booking,
        )
        self.notifier.notify_admins('booking_accepted', 'Booking accepted by worker', booking=booking)
        return booking

    def start(self, booking_id, worker: WorkerProfile) -> Booking:
        booking = self.get(booking_id)
        self._require_worker(booking, worker)
        startable = [Booking.STATUS_WORKER_ASSIGNED, Booking.STATUS_ACCEPTED]
        if booking.status not in startable:
            raise ConflictError(f'Booking is {booking.status}, it cannot be started')
        if not booking.compare_and_set(
            startable, where={'worker': worker}, status=Booking.STATUS_IN_PROGRESS, started_at=self.context.now()
        ):
            raise ConflictError('Booking changed while you were updating it, refresh and retry')
        self.jobs.mirror_status(booking, Job.STATUS_IN_PROGRESS)
        self.notifier.notify_customer(
            booking.customer, 'booking_started', f'Work on your {booking.service_title} booking has started',
            booking=booking,
        )
        self.notifier.notify_admins('booking_started', 'Booking started by worker', booking=booking)
        return booking

    # Cancellation

    def cancel(self, booking_id, customer: CustomerProfile, reason: str = '') -> Booking:
        booking = self.get(booking_id)
        if booking.customer_id != customer.pk:
            raise AuthorizationError('Not your booking')
        if booking.is_terminal:
            raise ConflictError(f'Booking is already {booking.status}')
        worker = self._cancel_record(booking, reason)
        for child in booking.child_bookings.exclude(status__in=Booking.TERMINAL_STATUSES):
            try:
                child_worker = self._cancel_record(child, reason)
            except ConflictError:
                logger.warning('Child booking %s changed during cascade cancel, left as %s', child.pk, child.status)
                continue
            if child_worker is not None:
                self._tell_worker_cancelled(child, child_worker)

        if worker is not None:
            self._tell_worker_cancelled(booking, worker)
        self.notifier.notify_customer(
            customer, 'booking_cancelled', f'Your {booking.service_title} booking has been cancelled', booking=booking
        )
        self.notifier.notify_admins(
            'booking_cancelled', f'{booking.service_title} booking cancelled by customer', booking=booking
        )
        return booking

    def _cancel_record(self, booking: Booking, reason: str) -> Optional[WorkerProfile]:
        worker = booking.worker
        guard = {'worker': worker} if worker is not None else {'worker__isnull': True}
        if not booking.compare_and_set(
            (Booking.STATUS_PENDING,) + Booking.ACTIVE_STATUSES,
            where=guard,
            status=Booking.STATUS_CANCELLED,
            worker=None,
            cancelled_at=self.context.now(),
            cancellation_reason=reason or '',
            completion_otp=None,
            completion_otp_expires=None,
        ):
            raise ConflictError('Booking changed while you were updating it, refresh and retry')
        self.jobs.mirror_status(booking, Job.STATUS_CANCELLED)
        return worker

    def _tell_worker_cancelled(self, booking: Booking, worker: WorkerProfile) -> None:
        self.notifier.notify_worker(
            worker, 'booking_cancelled', f'The {booking.service_title} booking was cancelled by the customer',
            booking=booking,
        )

    # Completion

    def request_completion(self, booking_id, worker: WorkerProfile) -> Booking:
        booking = self.get(booking_id)
        self._require_worker(booking, worker)
        if booking.status not in Booking.ACTIVE_STATUSES:
            raise ConflictError(f'Booking is {booking.status}, completion cannot be requested')
        otp = generate_otp()
        expires = self.context.now() + timedelta(minutes=settings.COMPLETION_OTP_TTL_MINUTES)
        if not booking.compare_and_set(
            Booking.ACTIVE_STATUSES, where={'worker': worker}, completion_otp=otp, completion_otp_expires=expires
        ):
            raise ConflictError('Booking changed while you were updating it, refresh and retry')

        transaction.on_commit(lambda: self._send_otp(booking, otp))
        self.notifier.notify_customer(
            booking.customer, 'completion_otp',
            f'{worker_name(worker)} marked {booking.service_title} as done. '
            f'Share code {otp} to confirm, valid for {settings.COMPLETION_OTP_TTL_MINUTES} minutes.',
            booking=booking,
        )
        return booking

    def _send_otp(self, booking: Booking, otp: str) -> None:
        try:
            delivered = self.context.otp_sender(booking, otp)
        except Exception:
            logger.exception('Completion OTP delivery for booking %s raised', booking.pk)
            return
        if not delivered:
            logger.warning('Completion OTP for booking %s not delivered, still available in the app', booking.pk)

    def verify_completion(self, booking_id, worker: WorkerProfile, otp) -> Booking:
        booking = self.get(booking_id)
        self._require_worker(booking, worker)
        booking.complete_with_code(worker, otp, self.context.now())

        self.jobs.mirror_status(booking, Job.STATUS_COMPLETED)
        parent = booking.refresh_parent_status()
        ledger.recompute_worker_stats(worker.pk)

        self.notifier.notify_customer(
            booking.customer, 'booking_completed', f'Your {booking.service_title} booking is complete', booking=booking
        )
        self.notifier.notify_worker(
            worker, 'booking_completed', f'{booking.service_title} completed, {booking.worker_payment} credited',
            booking=booking,
        )
        self.notifier.notify_admins(
            'booking_completed', f'{booking.service_title} booking completed by {worker_name(worker)}', booking=booking
        )
        if parent is not None and parent.status == Booking.STATUS_COMPLETED:
            self.notifier.notify_customer(
                parent.customer, 'booking_completed', 'Every service in your booking is complete', booking=parent
            )
        return booking

    # After completion

    def submit_review(self, booking_id, customer: CustomerProfile, rating, text: str = '') -> Booking:
        payload = validate_payload(ReviewRequestSerializer, {'rating': rating, 'review': text or ''})
        booking = self.get(booking_id)
        if booking.customer_id != customer.pk:
            raise AuthorizationError('Not your booking')
        if booking.status != Booking.STATUS_COMPLETED:
            raise ConflictError('Only completed bookings can be reviewed')
        if booking.rating is not None:
            raise ConflictError('This booking has already been reviewed')
        if not booking.compare_and_set(
            [Booking.STATUS_COMPLETED],
            where={'rating__isnull': True},
            rating=payload['rating'],
            review=payload['review'],
            reviewed_at=self.context.now(),
        ):
            raise ConflictError('This booking has already been reviewed')
        if booking.worker is not None:
            booking.worker.recalc_ratings()
            self.notifier.notify_worker(
                booking.worker, 'booking_reviewed',
                f'You received a {booking.rating}-star review for {booking.service_title}', booking=booking,
            )
        return booking

    def verify_payment(self, booking_id, data: Mapping[str, Any]) -> Booking:
        payload = validate_payload(PaymentRequestSerializer, data)
        booking = self.get(booking_id)
        if booking.payment_verified:
            raise ConflictError('Payment already verified')
        payable = [s for s, _ in Booking.STATUS_CHOICES if s not in (Booking.STATUS_CANCELLED, Booking.STATUS_REJECTED)]
        if not booking.compare_and_set(
            payable,
            where={'payment_verified': False},
            payment_verified=True,
            paid_amount=payload['paid_amount'],
            payment_verified_at=self.context.now(),
        ):
            raise ConflictError('Payment cannot be verified in the current state')
        self.notifier.notify_admins(
            'payment_verified', f'Payment of {booking.paid_amount} received for {booking.service_title}',
            booking=booking,
        )
        return booking
