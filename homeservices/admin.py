from django.contrib import admin

from .models import (
    CustomerProfile,
    WorkerProfile,
    WorkerEarning,
    Booking,
    Job,
    Notification,
)


@admin.register(CustomerProfile)
class CustomerProfileAdmin(admin.ModelAdmin):
    list_display = ('user', 'phone')
    search_fields = ('user__username', 'phone')


class WorkerEarningInline(admin.TabularInline):
    model = WorkerEarning
    extra = 0
    readonly_fields = ('date', 'amount')


@admin.register(WorkerProfile)
class WorkerProfileAdmin(admin.ModelAdmin):
    list_display = ('user', 'is_verified', 'is_available', 'rating_average', 'completed_bookings', 'total_earnings')
    list_filter = ('is_verified', 'is_available')
    search_fields = ('user__username', 'phone')
    readonly_fields = ('total_bookings', 'completed_bookings', 'total_earnings', 'rating_average', 'rating_count')
    inlines = [WorkerEarningInline]


class ChildBookingInline(admin.TabularInline):
    model = Booking
    fk_name = 'parent_booking'
    fields = ('service_type', 'status', 'worker', 'amount')
    readonly_fields = fields
    extra = 0
    can_delete = False


@admin.register(Booking)
class BookingAdmin(admin.ModelAdmin):
    list_display = ('service_title', 'customer', 'worker', 'booking_date', 'status', 'total_amount', 'payment_verified')
    list_filter = ('status', 'payment_verified', 'is_multiple_service_booking')
    search_fields = ('service_title', 'customer__user__username', 'worker__user__username')
    exclude = ('completion_otp',)
    inlines = [ChildBookingInline]


@admin.register(Job)
class JobAdmin(admin.ModelAdmin):
    list_display = ('service', 'customer', 'assigned_worker', 'status', 'requested_at', 'version')
    list_filter = ('status',)
    search_fields = ('service', 'customer__user__username')


@admin.register(Notification)
class NotificationAdmin(admin.ModelAdmin):
    list_display = ('type', 'recipient', 'recipient_kind', 'read', 'created_at')
    list_filter = ('recipient_kind', 'read', 'type')
