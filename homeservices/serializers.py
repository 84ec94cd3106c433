"""Serializers for the marketplace API.

Request serializers double as the input schemas of the booking/job managers:
the managers validate raw payloads through them before touching any record.
"""
from __future__ import annotations

from typing import Any, Mapping

from rest_framework import serializers

from .models import Booking, Job, Notification, WorkerEarning, WorkerProfile


class StrictSerializer(serializers.Serializer):
    """Rejects payload keys that are not declared fields."""

    def to_internal_value(self, data):
        if isinstance(data, Mapping):
            unknown = sorted(set(data) - set(self.fields))
            if unknown:
                raise serializers.ValidationError({name: ['Unknown field.'] for name in unknown})
        return super().to_internal_value(data)


class AddressSerializer(StrictSerializer):
    street = serializers.CharField(max_length=255)
    city = serializers.CharField(max_length=100)
    state = serializers.CharField(max_length=100)
    pincode = serializers.CharField(max_length=10)


class CoordinatesSerializer(StrictSerializer):
    latitude = serializers.FloatField(min_value=-90, max_value=90)
    longitude = serializers.FloatField(min_value=-180, max_value=180)


class ScheduleFieldsMixin(serializers.Serializer):
    address = AddressSerializer()
    booking_date = serializers.DateField(input_formats=['%Y-%m-%d'])
    booking_time = serializers.TimeField(input_formats=['%H:%M'])
    phone = serializers.RegexField(r'^\d{10}$', error_messages={'invalid': 'Phone number must be 10 digits.'})
    coordinates = CoordinatesSerializer(required=False)


class BookingRequestSerializer(ScheduleFieldsMixin, StrictSerializer):
    service_type = serializers.CharField(max_length=100)
    service_title = serializers.CharField(max_length=200)
    amount = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=0)


class ServiceLineSerializer(StrictSerializer):
    service_type = serializers.CharField(max_length=100)
    service_title = serializers.CharField(max_length=200)
    amount = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=0)
    quantity = serializers.IntegerField(min_value=1, default=1)


class MultipleBookingRequestSerializer(ScheduleFieldsMixin, StrictSerializer):
    services = ServiceLineSerializer(many=True, allow_empty=False)


class CancelRequestSerializer(StrictSerializer):
    reason = serializers.CharField(required=False, allow_blank=True, default='')


class VerifyCompletionSerializer(StrictSerializer):
    otp = serializers.RegexField(r'^\d{6}$', error_messages={'invalid': 'OTP must be 6 digits.'})


class ReviewRequestSerializer(StrictSerializer):
    rating = serializers.IntegerField(min_value=1, max_value=5)
    review = serializers.CharField(required=False, allow_blank=True, default='')


class PaymentRequestSerializer(StrictSerializer):
    paid_amount = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=0)


class AssignWorkerSerializer(StrictSerializer):
    worker_id = serializers.UUIDField()


class WorkerSummarySerializer(serializers.ModelSerializer):
    name = serializers.SerializerMethodField()

    class Meta:
        model = WorkerProfile
        fields = ['id', 'name', 'phone', 'services', 'rating_average', 'rating_count']

    def get_name(self, obj: WorkerProfile) -> str:
        return obj.user.get_full_name() or obj.user.username


class BookingSerializer(serializers.ModelSerializer):
    worker = WorkerSummarySerializer(read_only=True)
    child_bookings = serializers.PrimaryKeyRelatedField(many=True, read_only=True)

    class Meta:
        model = Booking
        exclude = ['completion_otp']

    def to_representation(self, instance: Booking) -> dict[str, Any]:
        data = super().to_representation(instance)
        # The owning customer can always read a pending completion code, even
        # when the email carrying it never arrived.
        if self.context.get('show_completion_otp'):
            data['completion_otp'] = instance.completion_otp
        return data


class JobSerializer(serializers.ModelSerializer):
    class Meta:
        model = Job
        fields = [
            'id',
            'service',
            'customer',
            'booking',
            'assigned_worker',
            'candidate_workers',
            'rejected_by',
            'status',
            'requested_at',
            'accepted_at',
            'started_at',
            'completed_at',
            'cancelled_at',
            'worker_payment',
            'details',
        ]


class NotificationSerializer(serializers.ModelSerializer):
    class Meta:
        model = Notification
        fields = ['id', 'type', 'recipient_kind', 'message', 'booking', 'job', 'data', 'read', 'created_at']


class WorkerEarningSerializer(serializers.ModelSerializer):
    class Meta:
        model = WorkerEarning
        fields = ['date', 'amount']


class WorkerStatsSerializer(serializers.ModelSerializer):
    earnings = WorkerEarningSerializer(many=True, read_only=True)

    class Meta:
        model = WorkerProfile
        fields = [
            'id',
            'total_bookings',
            'completed_bookings',
            'total_earnings',
            'earnings',
            'rating_average',
            'rating_count',
        ]
