"""Shared fixtures: users, profiles and a fully faked marketplace context."""
from __future__ import annotations

from datetime import timedelta
from decimal import Decimal

from django.contrib.auth.models import User
from django.utils import timezone

from homeservices.context import MarketplaceContext
from homeservices.models import CustomerProfile, WorkerProfile
from homeservices.pricing import DistanceQuote

BOOKING_PAYLOAD = {
    'service_type': 'Plumbing',
    'service_title': 'Fix kitchen tap',
    'amount': '500.00',
    'address': {'street': '12 Lanka Road', 'city': 'Varanasi', 'state': 'Uttar Pradesh', 'pincode': '221005'},
    'booking_date': '2026-11-02',
    'booking_time': '10:30',
    'phone': '9876543210',
}


class FakeResolver:
    def __init__(self, distance='5.00', charge='50', error=None):
        self.distance = Decimal(distance)
        self.charge = Decimal(charge)
        self.error = error
        self.calls = []

    def quote(self, address=None, coordinates=None):
        self.calls.append((address, coordinates))
        if self.error is not None:
            raise self.error
        return DistanceQuote(
            distance=self.distance,
            distance_charge=self.charge,
            customer_coordinates={'latitude': 25.3, 'longitude': 82.9},
            base_location={'latitude': 25.54, 'longitude': 82.31},
        )


class Recorder:
    def __init__(self, result=None, error=None):
        self.calls = []
        self.result = result
        self.error = error

    def __call__(self, *args):
        self.calls.append(args)
        if self.error is not None:
            raise self.error
        return self.result


class FakeClock:
    def __init__(self):
        self.current = timezone.now()

    def __call__(self):
        return self.current

    def advance(self, **kwargs):
        self.current += timedelta(**kwargs)


def make_context(resolver=None, push=None, realtime=None, otp_sender=None, clock=None) -> MarketplaceContext:
    return MarketplaceContext(
        resolver=resolver or FakeResolver(),
        push=push or Recorder(),
        realtime=realtime or Recorder(),
        otp_sender=otp_sender or Recorder(result=True),
        clock=clock or FakeClock(),
    )


def make_customer(username='customer') -> CustomerProfile:
    user = User.objects.create_user(username=username, password='pass', email=f'{username}@example.com')
    return CustomerProfile.objects.create(user=user, phone='9876543210', push_token=f'ExponentPushToken[{username}]')


def make_worker(username, services=('Plumbing',), verified=True, available=True, joined=None) -> WorkerProfile:
    user = User.objects.create_user(username=username, password='pass', first_name=username.title())
    worker = WorkerProfile.objects.create(
        user=user, services=list(services), is_verified=verified, is_available=available
    )
    if joined is not None:
        WorkerProfile.objects.filter(pk=worker.pk).update(created_at=joined)
        worker.refresh_from_db()
    return worker


def make_admin(username='admin') -> User:
    return User.objects.create_user(username=username, password='pass', is_staff=True)
