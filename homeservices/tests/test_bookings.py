from datetime import timedelta
from decimal import Decimal

from django.test import TestCase
from django.utils import timezone

from homeservices.bookings import BookingService
from homeservices.exceptions import (
    AuthorizationError,
    ConflictError,
    ExternalServiceError,
    NotFoundError,
    ValidationError,
)
from homeservices.matching import find_candidates
from homeservices.models import Booking, Job, Notification, WorkerEarning

from .helpers import (
    BOOKING_PAYLOAD,
    FakeResolver,
    Recorder,
    make_admin,
    make_context,
    make_customer,
    make_worker,
)


class BookingServiceTestBase(TestCase):
    def setUp(self):
        now = timezone.now()
        self.customer = make_customer()
        self.alice = make_worker('alice', ['Plumbing'], joined=now - timedelta(days=3))
        self.bob = make_worker('bob', ['plumbing', 'Cleaning'], joined=now - timedelta(days=2))
        self.carol = make_worker('carol', ['Cleaning'], joined=now - timedelta(days=1))
        self.dave = make_worker('dave', ['Plumbing'], verified=False)
        self.admin = make_admin()
        self.context = make_context()
        self.service = BookingService(self.context)

    def create_booking(self, **overrides):
        return self.service.create(self.customer, {**BOOKING_PAYLOAD, **overrides})

    def complete(self, booking, worker):
        self.service.accept_by_worker(booking.pk, worker)
        self.service.request_completion(booking.pk, worker)
        booking.refresh_from_db()
        return self.service.verify_completion(booking.pk, worker, booking.completion_otp)


class CreateBookingTests(BookingServiceTestBase):
    def test_create_prices_service_and_distance(self):
        booking = self.create_booking()

        self.assertEqual(booking.status, Booking.STATUS_PENDING)
        self.assertIsNone(booking.worker)
        self.assertEqual(booking.distance_charge, Decimal('50'))
        self.assertEqual(booking.total_amount, Decimal('550'))
        self.assertEqual(booking.admin_commission, Decimal('100'))
        self.assertEqual(booking.worker_payment, Decimal('400'))

    def test_create_opens_job_for_eligible_workers(self):
        booking = self.create_booking()

        job = booking.job
        self.assertEqual(job.status, Job.STATUS_PENDING)
        self.assertEqual(job.candidate_workers, [str(self.alice.pk), str(self.bob.pk)])
        self.assertEqual(job.rejected_by, [])
        self.assertEqual(job.details['worker_payment'], '400.00')

    def test_create_notifies_customer_candidates_and_admins(self):
        booking = self.create_booking()

        notes = Notification.objects.filter(booking=booking)
        self.assertTrue(notes.filter(recipient=self.customer.user, type='booking_created').exists())
        self.assertTrue(notes.filter(recipient=self.admin, recipient_kind=Notification.KIND_ADMIN).exists())
        self.assertEqual(
            set(notes.filter(type='job_assigned').values_list('recipient', flat=True)),
            {self.alice.user.pk, self.bob.user.pk},
        )

    def test_create_rejects_malformed_payload(self):
        with self.assertRaises(ValidationError):
            self.create_booking(phone='12345')
        with self.assertRaises(ValidationError):
            self.create_booking(booking_time='10:30 AM')
        with self.assertRaises(ValidationError):
            self.create_booking(discount='10')
        self.assertFalse(Booking.objects.exists())

    def test_create_uses_default_distance_when_resolver_fails(self):
        self.context.resolver = FakeResolver(error=ExternalServiceError('geocoding', 'timeout'))
        booking = self.create_booking()

        self.assertEqual(booking.distance, Decimal('15.00'))
        self.assertEqual(booking.distance_charge, Decimal('150'))
        self.assertEqual(booking.total_amount, Decimal('650'))
        self.assertIsNone(booking.customer_coordinates)

    def test_create_without_candidates_still_succeeds(self):
        booking = self.create_booking(service_type='Painting', service_title='Paint bedroom')
        self.assertEqual(booking.status, Booking.STATUS_PENDING)
        self.assertEqual(booking.job.candidate_workers, [])


class AssignmentTests(BookingServiceTestBase):
    def test_accept_assigns_worker_and_mirrors_job(self):
        booking = self.create_booking()
        booking = self.service.accept_by_worker(booking.pk, self.alice)

        self.assertEqual(booking.status, Booking.STATUS_WORKER_ASSIGNED)
        self.assertEqual(booking.worker, self.alice)
        self.assertIsNotNone(booking.assigned_at)
        job = Job.objects.get(booking=booking)
        self.assertEqual(job.status, Job.STATUS_ACCEPTED)
        self.assertEqual(job.assigned_worker, self.alice)

    def test_second_accept_conflicts(self):
        booking = self.create_booking()
        self.service.accept_by_worker(booking.pk, self.alice)

        with self.assertRaises(ConflictError):
            self.service.accept_by_worker(booking.pk, self.bob)
        booking.refresh_from_db()
        self.assertEqual(booking.worker, self.alice)

    def test_stale_write_loses_the_race(self):
        booking = self.create_booking()
        stale = Booking.objects.get(pk=booking.pk)
        self.service.accept_by_worker(booking.pk, self.alice)

        won = stale.compare_and_set(
            [Booking.STATUS_PENDING],
            where={'worker__isnull': True},
            worker=self.bob,
            status=Booking.STATUS_WORKER_ASSIGNED,
        )
        self.assertFalse(won)
        self.assertEqual(stale.worker, self.alice)

    def test_invalid_transition_is_refused(self):
        booking = self.create_booking()
        with self.assertRaises(ValueError):
            booking.compare_and_set([Booking.STATUS_PENDING], status=Booking.STATUS_COMPLETED)

    def test_accept_after_job_taken_rolls_back(self):
        booking = self.create_booking()
        job = Job.objects.get(booking=booking)
        self.assertTrue(job.compare_and_set([Job.STATUS_PENDING], assigned_worker=self.bob, status=Job.STATUS_ACCEPTED))

        with self.assertRaises(ConflictError):
            self.service.accept_by_worker(booking.pk, self.alice)

        booking = Booking.objects.get(pk=booking.pk)
        self.assertEqual(booking.status, Booking.STATUS_PENDING)
        self.assertIsNone(booking.worker)
        self.assertIsNone(booking.assigned_at)
        self.assertEqual(Job.objects.get(pk=job.pk).assigned_worker, self.bob)

    def test_ineligible_workers_cannot_accept(self):
        booking = self.create_booking()
        with self.assertRaises(AuthorizationError):
            self.service.accept_by_worker(booking.pk, self.carol)
        with self.assertRaises(AuthorizationError):
            self.service.accept_by_worker(booking.pk, self.dave)

    def test_unknown_booking(self):
        with self.assertRaises(NotFoundError):
            self.service.accept_by_worker('not-a-uuid', self.alice)

    def test_admin_assignment_notifies_worker(self):
        booking = self.create_booking()
        booking = self.service.assign_by_admin(booking.pk, self.bob.pk)

        self.assertEqual(booking.worker, self.bob)
        self.assertTrue(
            Notification.objects.filter(recipient=self.bob.user, type='booking_assigned', booking=booking).exists()
        )

    def test_reject_returns_booking_to_pending(self):
        booking = self.create_booking()
        self.service.accept_by_worker(booking.pk, self.alice)
        booking = self.service.reject_by_worker(booking.pk, self.alice)

        self.assertEqual(booking.status, Booking.STATUS_PENDING)
        self.assertIsNone(booking.worker)
        self.assertIsNone(booking.assigned_at)
        self.assertIsNotNone(booking.rejected_at)
        self.assertIn(self.alice, find_candidates(booking.service_type))

        job = Job.objects.get(booking=booking)
        self.assertEqual(job.status, Job.STATUS_PENDING)
        self.assertIsNone(job.assigned_worker)
        self.assertEqual(job.rejected_by, [str(self.alice.pk)])
        self.assertEqual(job.candidate_workers, [str(self.bob.pk)])

    def test_rejected_booking_can_be_taken_again(self):
        booking = self.create_booking()
        self.service.accept_by_worker(booking.pk, self.alice)
        self.service.reject_by_worker(booking.pk, self.alice)

        booking = self.service.accept_by_worker(booking.pk, self.bob)
        self.assertEqual(booking.worker, self.bob)

    def test_only_assigned_worker_may_reject(self):
        booking = self.create_booking()
        self.service.accept_by_worker(booking.pk, self.alice)
        with self.assertRaises(AuthorizationError):
            self.service.reject_by_worker(booking.pk, self.bob)

    def test_confirm_then_start(self):
        booking = self.create_booking()
        self.service.accept_by_worker(booking.pk, self.alice)

        booking = self.service.confirm_by_worker(booking.pk, self.alice)
        self.assertEqual(booking.status, Booking.STATUS_ACCEPTED)
        with self.assertRaises(ConflictError):
            self.service.reject_by_worker(booking.pk, self.alice)

        booking = self.service.start(booking.pk, self.alice)
        self.assertEqual(booking.status, Booking.STATUS_IN_PROGRESS)
        self.assertEqual(Job.objects.get(booking=booking).status, Job.STATUS_IN_PROGRESS)


class CancelTests(BookingServiceTestBase):
    def test_customer_cancels_pending_booking(self):
        booking = self.create_booking()
        booking = self.service.cancel(booking.pk, self.customer, 'Plans changed')

        self.assertEqual(booking.status, Booking.STATUS_CANCELLED)
        self.assertEqual(booking.cancellation_reason, 'Plans changed')
        self.assertEqual(Job.objects.get(booking=booking).status, Job.STATUS_CANCELLED)

    def test_cancel_releases_worker_and_tells_them(self):
        booking = self.create_booking()
        self.service.accept_by_worker(booking.pk, self.alice)
        booking = self.service.cancel(booking.pk, self.customer)

        self.assertIsNone(booking.worker)
        self.assertTrue(
            Notification.objects.filter(recipient=self.alice.user, type='booking_cancelled').exists()
        )

    def test_cancel_is_not_repeatable(self):
        booking = self.create_booking()
        self.service.cancel(booking.pk, self.customer)
        with self.assertRaises(ConflictError):
            self.service.cancel(booking.pk, self.customer)

    def test_other_customer_cannot_cancel(self):
        booking = self.create_booking()
        with self.assertRaises(AuthorizationError):
            self.service.cancel(booking.pk, make_customer('mallory'))


class CompletionTests(BookingServiceTestBase):
    def setUp(self):
        super().setUp()
        self.booking = self.create_booking()
        self.service.accept_by_worker(self.booking.pk, self.alice)

    def test_request_completion_issues_code(self):
        with self.captureOnCommitCallbacks(execute=True):
            booking = self.service.request_completion(self.booking.pk, self.alice)

        self.assertRegex(booking.completion_otp, r'^\d{6}$')
        self.assertEqual(booking.completion_otp_expires, self.context.now() + timedelta(minutes=10))
        self.assertEqual(self.context.otp_sender.calls[0][1], booking.completion_otp)
        self.assertTrue(
            Notification.objects.filter(recipient=self.customer.user, type='completion_otp').exists()
        )

    def test_failed_otp_email_does_not_block(self):
        self.context.otp_sender = Recorder(error=RuntimeError('smtp down'))
        with self.captureOnCommitCallbacks(execute=True):
            booking = self.service.request_completion(self.booking.pk, self.alice)
        self.assertIsNotNone(booking.completion_otp)

    def test_correct_code_completes_once(self):
        self.service.request_completion(self.booking.pk, self.alice)
        otp = Booking.objects.get(pk=self.booking.pk).completion_otp

        booking = self.service.verify_completion(self.booking.pk, self.alice, otp)

        self.assertEqual(booking.status, Booking.STATUS_COMPLETED)
        self.assertIsNotNone(booking.completed_at)
        self.assertIsNone(booking.completion_otp)
        self.assertIsNone(booking.completion_otp_expires)
        self.assertEqual(Job.objects.get(booking=booking).status, Job.STATUS_COMPLETED)
        with self.assertRaises(ConflictError):
            self.service.verify_completion(self.booking.pk, self.alice, otp)

    def test_completion_credits_worker_ledger(self):
        self.service.request_completion(self.booking.pk, self.alice)
        otp = Booking.objects.get(pk=self.booking.pk).completion_otp
        self.service.verify_completion(self.booking.pk, self.alice, otp)

        self.alice.refresh_from_db()
        self.assertEqual(self.alice.total_earnings, Decimal('400'))
        self.assertEqual(self.alice.completed_bookings, 1)
        self.assertEqual(self.alice.total_bookings, 1)
        self.assertEqual(list(WorkerEarning.objects.filter(worker=self.alice).values_list('amount', flat=True)), [Decimal('400')])

    def test_wrong_code_is_rejected(self):
        self.service.request_completion(self.booking.pk, self.alice)
        otp = Booking.objects.get(pk=self.booking.pk).completion_otp
        wrong = '000000' if otp != '000000' else '111111'

        with self.assertRaises(ValidationError):
            self.service.verify_completion(self.booking.pk, self.alice, wrong)
        self.assertEqual(Booking.objects.get(pk=self.booking.pk).status, Booking.STATUS_WORKER_ASSIGNED)

    def test_expired_code_conflicts_even_when_correct(self):
        self.service.request_completion(self.booking.pk, self.alice)
        otp = Booking.objects.get(pk=self.booking.pk).completion_otp
        self.context.clock.advance(minutes=11)

        with self.assertRaises(ConflictError):
            self.service.verify_completion(self.booking.pk, self.alice, otp)
        booking = Booking.objects.get(pk=self.booking.pk)
        self.assertEqual(booking.status, Booking.STATUS_WORKER_ASSIGNED)
        self.assertIsNone(booking.completion_otp)

    def test_verify_without_pending_code(self):
        with self.assertRaises(ConflictError):
            self.service.verify_completion(self.booking.pk, self.alice, '123456')

    def test_reject_discards_pending_code(self):
        self.service.request_completion(self.booking.pk, self.alice)
        otp = Booking.objects.get(pk=self.booking.pk).completion_otp

        booking = self.service.reject_by_worker(self.booking.pk, self.alice)
        self.assertIsNone(booking.completion_otp)
        self.assertIsNone(booking.completion_otp_expires)

        self.service.accept_by_worker(self.booking.pk, self.bob)
        with self.assertRaises(ConflictError):
            self.service.verify_completion(self.booking.pk, self.bob, otp)
        self.assertEqual(Booking.objects.get(pk=self.booking.pk).status, Booking.STATUS_WORKER_ASSIGNED)

    def test_cancel_discards_pending_code(self):
        self.service.request_completion(self.booking.pk, self.alice)

        self.service.cancel(self.booking.pk, self.customer)

        booking = Booking.objects.get(pk=self.booking.pk)
        self.assertIsNone(booking.completion_otp)
        self.assertIsNone(booking.completion_otp_expires)

    def test_reassignment_discards_pending_code(self):
        self.service.request_completion(self.booking.pk, self.alice)
        booking = Booking.objects.get(pk=self.booking.pk)

        booking.compare_and_set(Booking.ACTIVE_STATUSES, worker=self.bob)

        booking = Booking.objects.get(pk=self.booking.pk)
        self.assertEqual(booking.worker, self.bob)
        self.assertIsNone(booking.completion_otp)
        self.assertIsNone(booking.completion_otp_expires)

    def test_only_assigned_worker_requests_completion(self):
        with self.assertRaises(AuthorizationError):
            self.service.request_completion(self.booking.pk, self.bob)


class ReviewAndPaymentTests(BookingServiceTestBase):
    def test_review_after_completion_updates_rating(self):
        booking = self.complete(self.create_booking(), self.alice)

        booking = self.service.submit_review(booking.pk, self.customer, 4, 'Quick and tidy')
        self.assertEqual(booking.rating, 4)
        self.alice.refresh_from_db()
        self.assertEqual(self.alice.rating_average, Decimal('4.00'))
        self.assertEqual(self.alice.rating_count, 1)

        with self.assertRaises(ConflictError):
            self.service.submit_review(booking.pk, self.customer, 5, 'Again')

    def test_review_requires_completed_booking(self):
        booking = self.create_booking()
        with self.assertRaises(ConflictError):
            self.service.submit_review(booking.pk, self.customer, 5, '')

    def test_review_rating_out_of_range(self):
        booking = self.complete(self.create_booking(), self.alice)
        with self.assertRaises(ValidationError):
            self.service.submit_review(booking.pk, self.customer, 6, '')

    def test_verify_payment_once(self):
        booking = self.complete(self.create_booking(), self.alice)

        booking = self.service.verify_payment(booking.pk, {'paid_amount': '550.00'})
        self.assertTrue(booking.payment_verified)
        self.assertEqual(booking.paid_amount, Decimal('550.00'))
        with self.assertRaises(ConflictError):
            self.service.verify_payment(booking.pk, {'paid_amount': '550.00'})


class MultipleServiceBookingTests(BookingServiceTestBase):
    payload = {
        **{k: v for k, v in BOOKING_PAYLOAD.items() if k not in ('service_type', 'service_title', 'amount')},
        'services': [
            {'service_type': 'Plumbing', 'service_title': 'Fix tap', 'amount': '300.00', 'quantity': 2},
            {'service_type': 'Cleaning', 'service_title': 'Deep clean', 'amount': '150.00'},
        ],
    }

    def test_parent_aggregates_children(self):
        parent = self.service.create_multiple(self.customer, self.payload)
        children = list(parent.child_bookings.order_by('service_type'))

        self.assertTrue(parent.is_multiple_service_booking)
        self.assertEqual(parent.amount, Decimal('750'))
        self.assertEqual(parent.total_amount, Decimal('800'))
        self.assertEqual(parent.admin_commission, Decimal('150'))
        self.assertEqual(len(parent.service_breakdown), 2)
        self.assertEqual(len(children), 2)
        self.assertEqual(sum(c.distance_charge for c in children), parent.distance_charge)
        self.assertFalse(Job.objects.filter(booking=parent).exists())
        self.assertEqual(Job.objects.filter(booking__parent_booking=parent).count(), 2)

    def test_empty_service_list_is_invalid(self):
        with self.assertRaises(ValidationError):
            self.service.create_multiple(self.customer, {**self.payload, 'services': []})

    def test_parent_cannot_be_accepted_directly(self):
        parent = self.service.create_multiple(self.customer, self.payload)
        with self.assertRaises(ConflictError):
            self.service.accept_by_worker(parent.pk, self.alice)

    def test_parent_promoted_when_every_child_staffed(self):
        parent = self.service.create_multiple(self.customer, self.payload)
        plumbing = parent.child_bookings.get(service_type='Plumbing')
        cleaning = parent.child_bookings.get(service_type='Cleaning')

        self.service.accept_by_worker(plumbing.pk, self.alice)
        parent.refresh_from_db()
        self.assertEqual(parent.status, Booking.STATUS_PENDING)

        self.service.accept_by_worker(cleaning.pk, self.carol)
        parent.refresh_from_db()
        self.assertEqual(parent.status, Booking.STATUS_WORKER_ASSIGNED)

        self.complete_child(plumbing, self.alice)
        self.complete_child(cleaning, self.carol)
        parent.refresh_from_db()
        self.assertEqual(parent.status, Booking.STATUS_COMPLETED)

    def complete_child(self, child, worker):
        self.service.request_completion(child.pk, worker)
        child.refresh_from_db()
        self.service.verify_completion(child.pk, worker, child.completion_otp)

    def test_cancel_parent_cascades(self):
        parent = self.service.create_multiple(self.customer, self.payload)
        plumbing = parent.child_bookings.get(service_type='Plumbing')
        self.service.accept_by_worker(plumbing.pk, self.alice)

        self.service.cancel(parent.pk, self.customer, 'No longer needed')

        statuses = set(parent.child_bookings.values_list('status', flat=True))
        self.assertEqual(statuses, {Booking.STATUS_CANCELLED})
        self.assertTrue(
            Notification.objects.filter(recipient=self.alice.user, type='booking_cancelled').exists()
        )
