"""Collaborators handed to the booking and job managers.

Built once per process by ``get_context`` and passed explicitly, so tests
can swap any external dependency for a fake.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from functools import lru_cache
from typing import Any, Callable

from django.utils import timezone

from .delivery import ChannelLayerPublisher, EmailOtpSender, ExpoPushSender
from .pricing import NominatimDistanceResolver


@dataclass
class MarketplaceContext:
    resolver: Any
    push: Callable[..., None]
    realtime: Callable[[Any, dict], None]
    otp_sender: Callable[[Any, str], bool]
    clock: Callable[[], datetime] = field(default=timezone.now)

    def now(self) -> datetime:
        return self.clock()


@lru_cache(maxsize=1)
def get_context() -> MarketplaceContext:
    return MarketplaceContext(
        resolver=NominatimDistanceResolver(),
        push=ExpoPushSender(),
        realtime=ChannelLayerPublisher(),
        otp_sender=EmailOtpSender(),
    )
