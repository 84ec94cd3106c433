"""Outbound delivery channels: push, real-time and completion-OTP email.

Every channel honours the same contract: it may be slow or broken, it logs
its own failures and it never raises into the caller.
"""
from __future__ import annotations

import logging
from typing import Any, Optional

import requests
from asgiref.sync import async_to_sync
from channels.layers import get_channel_layer
from django.conf import settings
from django.core.mail import send_mail

from .exceptions import ExternalServiceError

logger = logging.getLogger(__name__)


def user_group(user_id) -> str:
    return f'user_{user_id}'


class ExpoPushSender:
    def __init__(self, session: Optional[requests.Session] = None):
        self.session = session or requests.Session()

    def send(self, token: str, title: str, body: str, data: Optional[dict[str, Any]] = None) -> dict:
        message = {
            'to': token,
            'title': title,
            'body': body,
            'sound': 'default',
            'priority': 'high',
            'data': data or {},
        }
        try:
            response = self.session.post(settings.EXPO_PUSH_URL, json=message, timeout=settings.PUSH_TIMEOUT)
            payload = response.json()
        except (requests.RequestException, ValueError) as exc:
            raise ExternalServiceError('push', str(exc)) from exc
        if not response.ok:
            raise ExternalServiceError('push', payload.get('message') or f'HTTP {response.status_code}')
        return payload

    def __call__(self, token: str, title: str, body: str, data: Optional[dict[str, Any]] = None) -> None:
        if not token:
            return
        try:
            self.send(token, title, body, data)
        except ExternalServiceError as exc:
            logger.warning('Push delivery to %s failed: %s', token, exc)


class ChannelLayerPublisher:
    """Pushes notification payloads to the recipient's channels group."""

    def __call__(self, user_id, payload: dict[str, Any]) -> None:
        layer = get_channel_layer()
        if layer is None:
            return
        try:
            async_to_sync(layer.group_send)(
                user_group(user_id), {'type': 'notification.message', 'notification': payload}
            )
        except Exception:
            logger.exception('Real-time delivery to user %s failed', user_id)


class EmailOtpSender:
    def __call__(self, booking, otp: str) -> bool:
        email = booking.customer.user.email
        if not email:
            logger.warning('Booking %s customer has no email, OTP stays available in the app only', booking.pk)
            return False
        try:
            send_mail(
                subject='Your service completion code',
                message=(
                    f'Your worker has finished "{booking.service_title}".\n\n'
                    f'Share this code with them to confirm completion: {otp}\n\n'
                    f'It is valid for {settings.COMPLETION_OTP_TTL_MINUTES} minutes.'
                ),
                from_email=settings.DEFAULT_FROM_EMAIL,
                recipient_list=[email],
                fail_silently=False,
            )
        except Exception:
            logger.exception('Completion OTP email for booking %s failed', booking.pk)
            return False
        return True
