"""
salesflow.mergetags.providers

One data provider per merge-tag category.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime

from salesflow.db.models import utcnow
from salesflow.mergetags.providers.base import DataProvider
from salesflow.mergetags.providers.cart import CartDataProvider
from salesflow.mergetags.providers.contact import ContactDataProvider
from salesflow.mergetags.providers.funnel import FunnelDataProvider
from salesflow.mergetags.providers.order import OrderDataProvider
from salesflow.mergetags.providers.payment import PaymentDataProvider
from salesflow.mergetags.providers.session import SessionDataProvider
from salesflow.mergetags.providers.system import SystemDataProvider
from salesflow.settings import Settings

__all__ = ["DataProvider", "build_providers"]


def build_providers(
    settings: Settings, clock: Callable[[], datetime] = utcnow
) -> dict[str, DataProvider]:
    return {
        "contact": ContactDataProvider(settings, clock),
        "order": OrderDataProvider(settings, clock),
        "cart": CartDataProvider(settings, clock),
        "funnel": FunnelDataProvider(settings, clock),
        "payment": PaymentDataProvider(settings, clock),
        "session": SessionDataProvider(settings, clock),
        "system": SystemDataProvider(settings, clock),
    }
