"""Notification fan-out for booking and job transitions.

Records are written synchronously; push and real-time delivery are scheduled
with ``transaction.on_commit`` so they run only after the transition that
triggered them is durable, and their failures never reach the caller.
"""
from __future__ import annotations

import logging
from typing import Any, Iterable, Optional

from django.contrib.auth import get_user_model
from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import DatabaseError, transaction

from .exceptions import AuthorizationError, NotFoundError
from .models import Booking, CustomerProfile, Job, Notification, WorkerProfile

logger = logging.getLogger(__name__)


class NotificationDispatcher:
    def __init__(self, context):
        self.context = context

    def notify(
        self,
        recipient,
        kind: str,
        type: str,
        message: str,
        booking: Optional[Booking] = None,
        job: Optional[Job] = None,
        data: Optional[dict[str, Any]] = None,
        push_token: str = '',
    ) -> Optional[Notification]:
        payload = dict(data or {})
        if booking is not None:
            payload.setdefault('booking_id', str(booking.pk))
        if job is not None:
            payload.setdefault('job_id', str(job.pk))
        try:
            with transaction.atomic():
                notification = Notification.objects.create(
                    type=type,
                    recipient=recipient,
                    recipient_kind=kind,
                    message=message,
                    booking=booking,
                    job=job,
                    data=payload,
                )
        except DatabaseError:
            logger.exception('Could not record %s notification for user %s', type, recipient.pk)
            return None
        transaction.on_commit(lambda: self.deliver(notification, push_token))
        return notification

    def deliver(self, notification: Notification, push_token: str = '') -> None:
        event = {
            'id': str(notification.pk),
            'type': notification.type,
            'message': notification.message,
            'data': notification.data,
            'created_at': notification.created_at.isoformat(),
        }
        if push_token:
            try:
                self.context.push(push_token, notification.type.replace('_', ' ').title(), notification.message, event)
            except Exception:
                logger.exception('Push channel raised for notification %s', notification.pk)
        try:
            self.context.realtime(notification.recipient_id, event)
        except Exception:
            logger.exception('Real-time channel raised for notification %s', notification.pk)

    def notify_customer(self, customer: CustomerProfile, type: str, message: str, **kwargs) -> Optional[Notification]:
        return self.notify(
            customer.user, Notification.KIND_CUSTOMER, type, message, push_token=customer.push_token, **kwargs
        )

    def notify_worker(self, worker: WorkerProfile, type: str, message: str, **kwargs) -> Optional[Notification]:
        return self.notify(
            worker.user, Notification.KIND_WORKER, type, message, push_token=worker.push_token, **kwargs
        )

    def notify_workers(self, workers: Iterable[WorkerProfile], type: str, message: str, **kwargs) -> list[Notification]:
        sent = (self.notify_worker(worker, type, message, **kwargs) for worker in workers)
        return [n for n in sent if n is not None]

    def notify_admins(self, type: str, message: str, **kwargs) -> list[Notification]:
        admins = get_user_model().objects.filter(is_staff=True, is_active=True)
        sent = (self.notify(admin, Notification.KIND_ADMIN, type, message, **kwargs) for admin in admins)
        return [n for n in sent if n is not None]


def unread_count(user, kind: str) -> int:
    return Notification.objects.filter(recipient=user, recipient_kind=kind, read=False).count()


def mark_read(notification_id, user) -> Notification:
    try:
        notification = Notification.objects.get(pk=notification_id)
    except (Notification.DoesNotExist, DjangoValidationError) as exc:
        raise NotFoundError('Notification not found') from exc
    if notification.recipient_id != user.pk:
        raise AuthorizationError('Not your notification')
    if not notification.read:
        notification.read = True
        notification.save(update_fields=['read'])
    return notification


def mark_all_read(user, kind: str) -> int:
    return Notification.objects.filter(recipient=user, recipient_kind=kind, read=False).update(read=True)
