"""
End-to-end simulation: intake -> broadcast -> bids -> evaluation -> award -> fulfillment.

Run from the repository root:
    python -m scripts.run_bidding_simulation
"""
import os
import time

import numpy as np
import pandas as pd

from bidding.models import DeliveryWindow
from common.events import InMemoryAuditSink
from common.exceptions import MarketplaceError
from config.settings import configure_logging, load_settings
from dispatch.dispatcher import build_dispatcher
from dispatch.sweeper import BiddingWindowSweeper
from orders.models import LabTest, PrescriptionLine, RequesterSnapshot, ServiceCategory, Urgency
from scripts.generate_mock_providers import CENTER_LAT, CENTER_LON, LAB_TESTS, generate_mock_providers, providers_from_frame

URGENCIES = list(Urgency)
WINDOWS = list(DeliveryWindow)


class MockPushService:
    def __init__(self):
        self.offers = 0
        self.revocations = 0

    def broadcast_offer(self, provider_ids, order):
        self.offers += len(provider_ids)

    def revoke_offer(self, provider_ids, order_id):
        self.revocations += len(provider_ids)


def _requester(rng, index):
    return RequesterSnapshot(
        patient_id=f"pat_{index:05d}",
        patient_name=f"Patient {index}",
        clinician_name="Dr. Moyo",
        clinic_address="Parirenyatwa Hospital",
        patient_location=(CENTER_LAT + rng.uniform(-0.05, 0.05), CENTER_LON + rng.uniform(-0.05, 0.05)),
    )


def run_simulation(num_orders=40, seed=7):
    print("=== STARTING END-TO-END BIDDING SIMULATION ===")
    settings = load_settings()
    configure_logging(settings)
    rng = np.random.default_rng(seed)

    # 1. Load data
    frame = generate_mock_providers(seed=seed)
    push = MockPushService()
    audit = InMemoryAuditSink()
    dispatcher = build_dispatcher(settings, providers_from_frame(frame), push_service=push, sinks=[audit])
    print(f"Loaded {len(dispatcher.directory)} providers.\n")

    rows = []
    start_time = time.time()
    for index in range(num_orders):
        category = ServiceCategory.PHARMACY if rng.random() < 0.6 else ServiceCategory.LAB
        urgency = URGENCIES[rng.integers(len(URGENCIES))]
        if category == ServiceCategory.PHARMACY:
            payload = [PrescriptionLine("Amoxicillin 500mg", dosage="1 tds", quantity=21)]
        else:
            payload = [LabTest(name) for name in rng.choice(LAB_TESTS, size=2, replace=False)]

        order = dispatcher.order_book.create_order(category, _requester(rng, index), payload, urgency=urgency)

        # 2. Broadcast
        broadcast = dispatcher.broadcast_order(order.id)

        # 3. Invited providers bid with some probability
        for match in broadcast.matches:
            if rng.random() > 0.7:
                continue
            base = match.provider.typical_order_amount or 40.0
            amount = round(float(base * rng.uniform(0.8, 1.2)), 2)
            if category == ServiceCategory.PHARMACY:
                dispatcher.ledger.submit(order.id, match.provider.id, amount, delivery_window=WINDOWS[rng.integers(len(WINDOWS))])
            else:
                hours = float(match.provider.avg_turnaround_hours or 24)
                dispatcher.ledger.submit(order.id, match.provider.id, amount, turnaround_hours=hours)

        # 4. Evaluate + award
        row = {
            "order_id": order.id,
            "category": category.value,
            "urgency": order.urgency.value,
            "invited": len(broadcast.matches),
            "bids": len(dispatcher.ledger.bids_for_order(order.id)),
            "winner": None,
            "amount": None,
            "score": None,
        }
        try:
            result = dispatcher.evaluate_order(order.id)
            dispatcher.award_best(order.id)
            row.update(winner=order.assigned_provider_id, amount=order.total_amount, score=round(result.winner.score, 1))
            dispatcher.start_fulfillment(order.id)
            dispatcher.complete_order(order.id)
        except MarketplaceError as exc:
            print(f"[OPEN] Order {order.id[:8]} ({category.value}): {exc}")
        rows.append(row)

    # 5. Let the heartbeat pick up anything left open
    report = BiddingWindowSweeper(dispatcher).run_cycle()
    dispatcher.publisher.flush()

    df = pd.DataFrame(rows)
    base_dir = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
    output_path = os.path.join(base_dir, "bidding_results.csv")
    df.to_csv(output_path, index=False)

    print("\n=== SIMULATION COMPLETE ===")
    print(f"Processed {num_orders} orders in {time.time() - start_time:.2f}s")
    print(f"Awarded: {df['winner'].notna().sum()} / {len(df)}")
    print(f"Offers pushed: {push.offers}, revoked: {push.revocations}")
    print(f"Audit events: {len(audit.events)}, sweep left open: {len(report.insufficient)}")
    print(f"Orders still open: {len(dispatcher.order_book.open_orders())}")
    print("\nAverage winning amount by category:")
    print(df.dropna(subset=["amount"]).groupby("category")["amount"].mean().round(2).to_string())
    print(f"\nResults written to '{output_path}'.")


if __name__ == "__main__":
    run_simulation()
