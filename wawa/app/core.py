"""Wiring for the order and payment core.

:func:`build_core` assembles every engine around one session factory and one
set of collaborators (live updates, notifier, audit sink). The HTTP layer and
scheduled jobs reach the core only through the resulting :class:`Core`.
"""

from __future__ import annotations

import random
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.orm import sessionmaker

from config import LiveUpdatesBackend, Settings, get_settings

from .audit import AuditLogSink
from .events import EventBus, LiveUpdates, RedisBroadcaster
from .gateways import MonnifyGateway, PaymentReconciler, PaystackGateway
from .services import Checkout, InventoryEngine, OutboxNotifier, RewardEngine, StateMachine


@dataclass
class Core:
    settings: Settings
    session_factory: sessionmaker
    live_updates: LiveUpdates
    notifier: OutboxNotifier
    audit: AuditLogSink
    inventory: InventoryEngine
    rewards: RewardEngine
    state_machine: StateMachine
    checkout: Checkout
    reconciler: PaymentReconciler
    monnify: MonnifyGateway
    paystack: PaystackGateway


def live_updates_from_settings(settings: Settings) -> LiveUpdates:
    if settings.live_updates_backend is LiveUpdatesBackend.REDIS:
        return RedisBroadcaster.from_url(settings.redis_url)
    return EventBus()


def build_core(
    session_factory: sessionmaker,
    settings: Optional[Settings] = None,
    *,
    live_updates: Optional[LiveUpdates] = None,
    notifier: Optional[OutboxNotifier] = None,
    audit: Optional[AuditLogSink] = None,
    rng: Optional[random.Random] = None,
    clock=None,
) -> Core:
    """Return a :class:`Core` bound to ``session_factory``.

    Any collaborator left out is built from ``settings``; tests pass an
    in-memory :class:`EventBus`, a seeded ``random.Random`` and a fixed clock.
    """

    settings = settings or get_settings()
    live_updates = live_updates or live_updates_from_settings(settings)
    notifier = notifier or OutboxNotifier(session_factory)
    audit = audit or AuditLogSink(session_factory)
    timing = {"clock": clock} if clock is not None else {}

    inventory = InventoryEngine(
        session_factory,
        notifier=notifier,
        audit=audit,
        stock_floor=settings.stock_floor,
        **timing,
    )
    rewards = RewardEngine(
        session_factory,
        notifier=notifier,
        audit=audit,
        rng=rng,
        code_prefix=settings.reward_code_prefix,
        code_attempts=settings.reward_code_attempts,
        points_conversion_rate=settings.points_conversion_rate,
        **timing,
    )
    state_machine = StateMachine(
        session_factory,
        inventory=inventory,
        live_updates=live_updates,
        notifier=notifier,
        audit=audit,
        retries=settings.transition_retries,
        **timing,
    )
    checkout = Checkout(
        session_factory,
        state_machine=state_machine,
        live_updates=live_updates,
        audit=audit,
        rng=rng,
        order_number_prefix=settings.order_number_prefix,
        payment_reference_prefix=settings.payment_reference_prefix,
        **timing,
    )
    reconciler = PaymentReconciler(
        session_factory,
        state_machine=state_machine,
        inventory=inventory,
        rewards=rewards,
        notifier=notifier,
        audit=audit,
        **timing,
    )
    return Core(
        settings=settings,
        session_factory=session_factory,
        live_updates=live_updates,
        notifier=notifier,
        audit=audit,
        inventory=inventory,
        rewards=rewards,
        state_machine=state_machine,
        checkout=checkout,
        reconciler=reconciler,
        monnify=MonnifyGateway(settings.monnify_secret_key, reconciler),
        paystack=PaystackGateway(settings.paystack_secret_key, reconciler),
    )


__all__ = ["Core", "build_core", "live_updates_from_settings"]
