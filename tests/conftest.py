from datetime import datetime, timedelta, timezone

import pytest

from common.events import InMemoryAuditSink
from config.settings import EngineSettings
from dispatch.dispatcher import build_dispatcher
from orders.models import LabTest, PrescriptionLine, RequesterSnapshot
from providers.models import Provider

NOW = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)

# Harare city center
CENTER = (-17.824858, 31.053028)


def make_provider(provider_id, category="pharmacy", **overrides):
    location = overrides.pop("location", (CENTER[0] + 0.01, CENTER[1] + 0.01))
    lat, lon = location if location else (None, None)
    attributes = dict(
        service_region="Harare Central",
        lat=lat,
        lon=lon,
        average_rating=4.2,
        total_ratings=120,
        sla_compliance=90.0,
        quality_grade="B",
        max_capacity=10,
    )
    if category == "pharmacy":
        attributes.update(services_offered=("Prescription Dispensing", "Home Delivery"), offers_delivery=True)
    else:
        attributes.update(tests_offered=("Full Blood Count", "Lipid Panel"), avg_turnaround_hours=24.0)
    attributes.update(overrides)
    return Provider.new(provider_id, f"Provider {provider_id}", category, **attributes)


class RecordingPushService:
    def __init__(self):
        self.broadcasts = []
        self.revocations = []

    def broadcast_offer(self, provider_ids, order):
        self.broadcasts.append((list(provider_ids), order.id))

    def revoke_offer(self, provider_ids, order_id):
        self.revocations.append((list(provider_ids), order_id))


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def later():
    def _later(minutes):
        return NOW + timedelta(minutes=minutes)
    return _later


@pytest.fixture
def requester():
    return RequesterSnapshot(
        patient_id="pat_00042",
        patient_name="Tendai Chikore",
        clinician_name="Dr. Moyo",
        clinic_address="Parirenyatwa Hospital",
        clinic_license="MDPCZ-1187",
        patient_location=CENTER,
        patient_region="Harare Central",
    )


@pytest.fixture
def providers():
    return [
        make_provider("PHA-001"),
        make_provider("PHA-002", average_rating=4.8, sla_compliance=97.0, quality_grade="A"),
        make_provider("PHA-003", average_rating=3.5, location=(CENTER[0] + 0.2, CENTER[1] + 0.2)),
        make_provider("LAB-001", "lab"),
        make_provider("LAB-002", "lab", avg_turnaround_hours=12.0, quality_grade="A"),
    ]


@pytest.fixture
def audit():
    return InMemoryAuditSink()


@pytest.fixture
def push():
    return RecordingPushService()


@pytest.fixture
def dispatcher(providers, audit, push):
    return build_dispatcher(EngineSettings(background_audit=False), providers, push_service=push, sinks=[audit])


@pytest.fixture
def ledger(dispatcher):
    return dispatcher.ledger


@pytest.fixture
def pharmacy_order(dispatcher, requester):
    return dispatcher.order_book.create_order(
        "pharmacy",
        requester,
        [PrescriptionLine("Amoxicillin 500mg", dosage="1 tds", quantity=21)],
        urgency="high",
        now=NOW,
    )


@pytest.fixture
def lab_order(dispatcher, requester):
    return dispatcher.order_book.create_order(
        "lab",
        requester,
        [LabTest("Full Blood Count"), LabTest("Lipid Panel", fasting_required=True)],
        now=NOW,
    )


@pytest.fixture
def set_provider(dispatcher):
    """Replace a provider's directory snapshot with changed fields."""
    from dataclasses import replace

    def _set(provider_id, **changes):
        return dispatcher.directory.update(replace(dispatcher.directory.get(provider_id), **changes))
    return _set
