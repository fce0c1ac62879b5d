import logging
from datetime import timedelta

from sqlalchemy import select

from wawa.app.audit import AuditLogSink
from wawa.app.domain import SYSTEM
from wawa.app.models import AlertRule, AuditLog, NotificationOutbox
from wawa.app.services.notifications import ORDER_PAID, OutboxNotifier
from wawa.app.utils.clock import utcnow
from wawa.tests._support import ADMIN, monnify_body, monnify_signature


def _drop(ledger, table):
    table.drop(ledger.kw["bind"])


def test_log_event_inserts_row(ledger):
    sink = AuditLogSink(ledger)
    assert sink.log_event(ADMIN, "reward.expired", "reward", 12, {"reason": "abuse"})

    with ledger() as session:
        row = session.scalars(select(AuditLog)).one()
    assert (row.actor, row.actor_role) == ("admin-1", "admin")
    assert (row.action, row.resource, row.resource_id) == ("reward.expired", "reward", "12")
    assert row.details == {"reason": "abuse"}


def test_system_actor_is_labelled(ledger):
    AuditLogSink(ledger).log_event(SYSTEM, "payment.received", "order")
    with ledger() as session:
        row = session.scalars(select(AuditLog)).one()
    assert (row.actor, row.resource_id) == ("system", None)


def test_purge_old_logs(ledger):
    sink = AuditLogSink(ledger)
    with ledger() as session:
        session.add(
            AuditLog(
                at=utcnow() - timedelta(days=120),
                actor="system",
                actor_role="system",
                action="order.created",
                resource="order",
            )
        )
        session.commit()
    sink.log_event(SYSTEM, "order.created", "order", 2)

    assert sink.purge_old_logs(days=90) == 1
    with ledger() as session:
        assert session.scalar(select(AuditLog.resource_id)) == "2"


def test_audit_failure_is_reported_not_raised(ledger, caplog):
    _drop(ledger, AuditLog.__table__)
    with caplog.at_level(logging.ERROR, logger="wawa.audit"):
        assert AuditLogSink(ledger).log_event(SYSTEM, "order.created", "order", 1) is False
    assert any("lost" in r.getMessage() for r in caplog.records)


def test_notifier_queues_one_row_per_enabled_rule(ledger):
    with ledger() as session:
        session.add_all(
            [
                AlertRule(event=ORDER_PAID, channel="email", target="owner@example.com"),
                AlertRule(event=ORDER_PAID, channel="webhook", target="https://hooks.example"),
                AlertRule(event=ORDER_PAID, channel="sms", target="+2348000000000", enabled=False),
                AlertRule(event="inventory.low_stock", channel="email", target="chef@example.com"),
            ]
        )
        session.commit()

    assert OutboxNotifier(ledger).notify(ORDER_PAID, {"order_id": 3, "total": 5000}) == 2

    with ledger() as session:
        rows = session.scalars(select(NotificationOutbox).order_by(NotificationOutbox.id)).all()
    assert [(r.channel, r.status) for r in rows] == [("email", "queued"), ("webhook", "queued")]
    assert rows[0].payload == {"order_id": 3, "total": 5000}


def test_notifier_without_rules_queues_nothing(ledger):
    assert OutboxNotifier(ledger).notify(ORDER_PAID, {"order_id": 1}) == 0


def test_notifier_failure_is_contained(ledger):
    _drop(ledger, NotificationOutbox.__table__)
    with ledger() as session:
        session.add(AlertRule(event=ORDER_PAID, channel="email", target="x@example.com"))
        session.commit()
    assert OutboxNotifier(ledger).notify(ORDER_PAID, {"order_id": 1}) == 0


def test_payment_succeeds_when_audit_store_is_down(core, make_order, ledger):
    order = make_order(2)
    _drop(ledger, AuditLog.__table__)
    body = monnify_body(order.payment_reference)

    result = core.monnify.reconcile(body, monnify_signature(core, body))

    assert result.status == "confirmed"
