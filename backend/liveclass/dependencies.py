"""FastAPI providers for the payment gateway, meeting provider and the services built on them.

Tests swap these out through ``app.dependency_overrides``.
"""

from __future__ import annotations

from functools import lru_cache

from .config import settings
from .services.live_class_service import LiveClassService
from .services.live_toggle_service import LiveToggleService
from .services.meetings import MeetingProvider, ZoomMeetingProvider
from .services.payment_gateway import PaymentGateway, RazorpayGateway
from .services.subscription_service import SubscriptionService


@lru_cache(maxsize=1)
def get_payment_gateway() -> PaymentGateway:
    return RazorpayGateway(settings.razorpay_key_id, settings.razorpay_key_secret)


@lru_cache(maxsize=1)
def get_meeting_provider() -> MeetingProvider:
    return ZoomMeetingProvider.from_settings(settings)


def get_subscription_service() -> SubscriptionService:
    return SubscriptionService(get_payment_gateway())


def get_live_toggle_service() -> LiveToggleService:
    return LiveToggleService(get_meeting_provider())


def get_live_class_service() -> LiveClassService:
    return LiveClassService(get_meeting_provider())


__all__ = [
    "get_live_class_service",
    "get_live_toggle_service",
    "get_meeting_provider",
    "get_payment_gateway",
    "get_subscription_service",
]
