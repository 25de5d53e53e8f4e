import itertools
import os
from datetime import date, datetime, timezone
from types import SimpleNamespace
from unittest.mock import Mock

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["OUTBOX_WORKER_ENABLED"] = "false"
os.environ["WHATSAPP_VERIFY_TOKEN"] = "verify-token"
for _name in ("OPENAI_API_KEY", "REDIS_URL", "WEBHOOK_SECRET", "REPORT_SERVICE_URL", "REQUIRE_REGISTRATION"):
    os.environ.pop(_name, None)

import pytest  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from inspector_api.database import Base  # noqa: E402
from inspector_api.models import (  # noqa: E402
    ChecklistTemplate,
    ChecklistTemplateItem,
    Contract,
    OutboxMessage,
    Property,
    User,
    WorkOrder,
)
from inspector_api.schemas.inbound import InboundMessage, MediaDownload  # noqa: E402
from inspector_api.services.inbound_service import process_inbound_message  # noqa: E402
from inspector_api.services.intent_service import classify_intent  # noqa: E402
from inspector_api.services.providers import MessagingProvider  # noqa: E402

engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
TestingSessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)

TEMPLATE_ITEMS = ["Exterior", "Roof", "Plumbing", "Electrical", "Interior"]


@pytest.fixture
def db():
    """In-memory SQLite session with a fresh schema per test."""
    Base.metadata.create_all(engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(engine)


@pytest.fixture
def seed(db):
    now = datetime.now(timezone.utc)
    inspector = User(phone="15550001111", name="Ana", role="inspector", created_at=now)
    other_inspector = User(phone="15550002222", name="Ben", role="inspector", created_at=now)
    customer = User(phone="15550003333", name="Cara", role="customer", created_at=now)
    admin = User(phone="15550009999", name="Dan", role="admin", created_at=now)
    db.add_all([inspector, other_inspector, customer, admin])

    prop = Property(address="12 Oak Street", city="Springfield", property_type="residential", created_at=now)
    template = ChecklistTemplate(name="Standard residential")
    db.add_all([prop, template])
    db.flush()

    # inserted out of order; item_order decides numbering
    template_items = []
    for position, name in reversed(list(enumerate(TEMPLATE_ITEMS, start=1))):
        item = ChecklistTemplateItem(template_id=template.id, name=name, item_order=position * 10)
        db.add(item)
        template_items.append(item)

    contract = Contract(customer_id=customer.id, property_id=prop.id, status="active", created_at=now)
    db.add(contract)
    db.flush()

    def _order(inspector_id, window, status="scheduled", day=None):
        return WorkOrder(
            contract_id=contract.id,
            inspector_id=inspector_id,
            checklist_template_id=template.id,
            scheduled_date=day or date.today(),
            scheduled_time_window=window,
            status=status,
            created_at=now,
        )

    work_order = _order(inspector.id, "09:00-11:00")
    second_work_order = _order(inspector.id, "13:00-15:00")
    foreign_work_order = _order(other_inspector.id, "10:00-12:00")
    completed_work_order = _order(inspector.id, "08:00-09:00", status="completed")
    db.add_all([work_order, second_work_order, foreign_work_order, completed_work_order])
    db.commit()

    return SimpleNamespace(
        inspector=inspector,
        other_inspector=other_inspector,
        customer=customer,
        admin=admin,
        property=prop,
        contract=contract,
        template=template,
        template_items=template_items,
        work_order=work_order,
        second_work_order=second_work_order,
        foreign_work_order=foreign_work_order,
        completed_work_order=completed_work_order,
    )


@pytest.fixture
def provider():
    """Messaging provider double; media downloads succeed by default."""
    provider = Mock(spec=MessagingProvider)
    provider.name = "whatsapp"
    provider.send_message.return_value = True
    provider.download_media.return_value = MediaDownload(
        content=b"\xff\xd8\xff\xe0jpeg",
        content_type="image/jpeg",
        file_name="photo.jpg",
        media_type="image",
        provider_media_id="media-1",
    )
    return provider


@pytest.fixture
def send(db, provider, seed):
    """Push one inbound message through the full pipeline."""
    counter = itertools.count(1)

    def _send(
        text=None,
        *,
        sender=None,
        type="text",
        media_ref=None,
        caption=None,
        message_id=None,
        classifier=classify_intent,
    ):
        message = InboundMessage(
            message_id=message_id or f"wamid.test.{next(counter)}",
            sender=sender or seed.inspector.phone,
            timestamp=1760000000000,
            type=type,
            text=text,
            media_ref=media_ref,
            caption=caption,
            provider="whatsapp",
        )
        return process_inbound_message(db, message, provider, classifier)

    return _send


@pytest.fixture
def replies(db):
    """Texts of queued replies, oldest first."""

    def _replies(to=None):
        query = db.query(OutboxMessage).filter(OutboxMessage.kind == "reply")
        rows = query.order_by(OutboxMessage.id).all()
        return [row.payload_json["text"] for row in rows if to is None or row.payload_json["to"] == to]

    return _replies


@pytest.fixture
def triggers(db):
    def _triggers(name=None):
        rows = db.query(OutboxMessage).filter(OutboxMessage.kind == "trigger").order_by(OutboxMessage.id).all()
        return [row.payload_json for row in rows if name is None or row.payload_json["name"] == name]

    return _triggers
