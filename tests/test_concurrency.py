import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from bidding.models import BidStatus
from common.exceptions import BidExpired, BidNotPending, DuplicateBid, OrderAlreadyAssigned, StaleBid
from conftest import make_provider
from orders.models import OrderStatus

RACERS = 12


@pytest.fixture
def crowded(dispatcher, pharmacy_order, later):
    for i in range(RACERS):
        dispatcher.directory.register(make_provider(f"RACE-{i:02d}"))
    dispatcher.broadcast_order(pharmacy_order.id, now=later(1))
    bids = [
        dispatcher.ledger.submit(pharmacy_order.id, f"RACE-{i:02d}", 20.0 + i, delivery_window="asap", now=later(2))
        for i in range(RACERS)
    ]
    return pharmacy_order, bids


def test_concurrent_awards_produce_exactly_one_winner(dispatcher, crowded, later):
    order, bids = crowded
    barrier = threading.Barrier(len(bids))

    def attempt(bid):
        barrier.wait()
        try:
            dispatcher.award_order(order.id, bid.id, now=later(5))
            return "won"
        except OrderAlreadyAssigned:
            return "lost"

    with ThreadPoolExecutor(max_workers=len(bids)) as pool:
        outcomes = list(pool.map(attempt, bids))

    assert outcomes.count("won") == 1
    assert outcomes.count("lost") == len(bids) - 1

    statuses = [bid.status for bid in dispatcher.ledger.bids_for_order(order.id)]
    assert statuses.count(BidStatus.ACCEPTED) == 1
    assert statuses.count(BidStatus.SUBMITTED) == 0
    assert order.status == OrderStatus.ASSIGNED
    winner = next(bid for bid in bids if bid.status == BidStatus.ACCEPTED)
    assert order.assigned_provider_id == winner.provider_id


def test_concurrent_award_and_respond_race(dispatcher, crowded, later):
    order, bids = crowded
    barrier = threading.Barrier(2)

    def award():
        barrier.wait()
        try:
            dispatcher.award_order(order.id, bids[0].id, now=later(5))
            return True
        except OrderAlreadyAssigned:
            return False

    def respond():
        barrier.wait()
        try:
            dispatcher.ledger.respond(bids[1].id, "accepted", now=later(5))
            return True
        except (BidNotPending, OrderAlreadyAssigned):
            return False

    with ThreadPoolExecutor(max_workers=2) as pool:
        results = [pool.submit(award), pool.submit(respond)]
        outcomes = [future.result() for future in results]

    assert outcomes.count(True) == 1
    accepted = [bid for bid in dispatcher.ledger.bids_for_order(order.id) if bid.status == BidStatus.ACCEPTED]
    assert len(accepted) == 1



@pytest.mark.parametrize(
    "decision, answered",
    [("rejected", BidStatus.REJECTED), ("accepted", BidStatus.ACCEPTED)],
)
def test_expiry_sweep_and_response_race_on_one_bid(dispatcher, pharmacy_order, later, decision, answered):
    dispatcher.broadcast_order(pharmacy_order.id, now=later(1))
    bid = dispatcher.ledger.submit(
        pharmacy_order.id, "PHA-001", 30.0, delivery_window="asap", valid_until=later(5), now=later(2)
    )
    barrier = threading.Barrier(2)

    def expire():
        barrier.wait()
        return bid in dispatcher.ledger.expire_stale(now=later(6))

    def respond():
        barrier.wait()
        try:
            dispatcher.ledger.respond(bid.id, decision, now=later(4))
            return True
        except (BidNotPending, BidExpired, StaleBid):
            return False

    with ThreadPoolExecutor(max_workers=2) as pool:
        expired = pool.submit(expire)
        responded = pool.submit(respond)
        outcomes = [expired.result(), responded.result()]

    assert outcomes.count(True) == 1
    if outcomes[0]:
        assert bid.status == BidStatus.EXPIRED
        assert pharmacy_order.status == OrderStatus.BIDS_RECEIVED
    else:
        assert bid.status == answered
    assert bid.responded_at is not None

def test_concurrent_submissions_from_one_provider(dispatcher, pharmacy_order, later):
    dispatcher.broadcast_order(pharmacy_order.id, now=later(1))
    barrier = threading.Barrier(8)

    def submit(amount):
        barrier.wait()
        try:
            dispatcher.ledger.submit(pharmacy_order.id, "PHA-001", amount, delivery_window="asap", now=later(2))
            return "ok"
        except DuplicateBid:
            return "duplicate"

    with ThreadPoolExecutor(max_workers=8) as pool:
        outcomes = list(pool.map(submit, [30.0 + i for i in range(8)]))

    assert outcomes.count("ok") == 1
    assert len(dispatcher.ledger.bids_for_order(pharmacy_order.id)) == 1
    assert pharmacy_order.status == OrderStatus.BIDS_RECEIVED


def test_orders_do_not_contend(dispatcher, requester, later):
    orders = [dispatcher.order_book.create_order("pharmacy", requester, now=later(0)) for _ in range(6)]

    def run(order):
        dispatcher.broadcast_order(order.id, now=later(1))
        dispatcher.ledger.submit(order.id, "PHA-001", 30.0, delivery_window="asap", now=later(2))
        dispatcher.award_best(order.id, now=later(3))
        return order.status

    with ThreadPoolExecutor(max_workers=6) as pool:
        statuses = list(pool.map(run, orders))

    assert statuses == [OrderStatus.ASSIGNED] * 6
    assert len(dispatcher.locks) == 6
