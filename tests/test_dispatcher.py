import pytest

from bidding.models import BidStatus
from common.exceptions import InsufficientBids, InvalidTransition, OrderAlreadyAssigned, StaleBid
from orders.models import OrderStatus


@pytest.fixture
def open_order(dispatcher, pharmacy_order, later):
    """A broadcast pharmacy order holding two bids. PHA-002 is the better one."""
    dispatcher.broadcast_order(pharmacy_order.id, now=later(1))
    dispatcher.ledger.submit(pharmacy_order.id, "PHA-001", 35.0, delivery_window="same-day", now=later(2))
    dispatcher.ledger.submit(pharmacy_order.id, "PHA-002", 30.0, delivery_window="same-day", now=later(3))
    return pharmacy_order


def _bid_of(dispatcher, order, provider_id):
    return next(bid for bid in dispatcher.ledger.bids_for_order(order.id) if bid.provider_id == provider_id)


def test_broadcast_opens_bidding_and_notifies_ranked_providers(dispatcher, push, pharmacy_order, later):
    result = dispatcher.broadcast_order(pharmacy_order.id, now=later(1))

    assert pharmacy_order.status == OrderStatus.AWAITING_BIDS
    assert set(result.provider_ids) == {"PHA-001", "PHA-002", "PHA-003"}
    assert result.provider_ids[-1] == "PHA-003"  # farthest away
    assert push.broadcasts == [(result.provider_ids, pharmacy_order.id)]
    assert dispatcher.ledger.bids_for_order(pharmacy_order.id) == []


def test_broadcast_to_nobody_still_opens_bidding(dispatcher, push, pharmacy_order, set_provider, later):
    for provider_id in ("PHA-001", "PHA-002", "PHA-003"):
        set_provider(provider_id, is_active=False)

    result = dispatcher.broadcast_order(pharmacy_order.id, now=later(1))

    assert result.matches == []
    assert pharmacy_order.status == OrderStatus.AWAITING_BIDS
    assert push.broadcasts == []


def test_award_order_assigns_and_rejects_the_rest(dispatcher, push, open_order, later):
    winner = _bid_of(dispatcher, open_order, "PHA-001")
    loser = _bid_of(dispatcher, open_order, "PHA-002")

    dispatcher.award_order(open_order.id, winner.id, now=later(10))

    assert open_order.status == OrderStatus.ASSIGNED
    assert open_order.assigned_provider_id == "PHA-001"
    assert open_order.total_amount == 35.0
    assert winner.status == BidStatus.ACCEPTED
    assert loser.status == BidStatus.REJECTED
    assert loser.response_note == "Another bid was accepted"
    assert push.revocations == [(["PHA-002", "PHA-003"], open_order.id)]

    accepted = [b for b in dispatcher.ledger.bids_for_order(open_order.id) if b.status == BidStatus.ACCEPTED]
    assert len(accepted) == 1


def test_second_award_loses(dispatcher, open_order, later):
    first = _bid_of(dispatcher, open_order, "PHA-001")
    second = _bid_of(dispatcher, open_order, "PHA-002")
    dispatcher.award_order(open_order.id, first.id, now=later(10))

    with pytest.raises(OrderAlreadyAssigned):
        dispatcher.award_order(open_order.id, second.id, now=later(11))
    assert open_order.assigned_provider_id == "PHA-001"


def test_provider_withdrawing_availability_makes_bid_stale(dispatcher, open_order, set_provider, later):
    bid = _bid_of(dispatcher, open_order, "PHA-001")
    set_provider("PHA-001", accepting_new_orders=False)

    with pytest.raises(StaleBid):
        dispatcher.award_order(open_order.id, bid.id, now=later(10))

    assert open_order.status == OrderStatus.BIDS_RECEIVED
    assert open_order.assigned_provider_id is None
    assert bid.status == BidStatus.SUBMITTED
    assert all(b.status == BidStatus.SUBMITTED for b in dispatcher.ledger.bids_for_order(open_order.id))


def test_expired_bid_is_stale(dispatcher, lab_order, later):
    dispatcher.broadcast_order(lab_order.id, now=later(1))
    bid = dispatcher.ledger.submit(lab_order.id, "LAB-001", 80.0, turnaround_hours=24, valid_until=later(5), now=later(2))

    with pytest.raises(StaleBid):
        dispatcher.award_order(lab_order.id, bid.id, now=later(6))
    assert lab_order.status == OrderStatus.BIDS_RECEIVED


def test_failed_award_rolls_everything_back(dispatcher, open_order, monkeypatch, later):
    import bidding.ledger

    def broken_transition(*args, **kwargs):
        raise RuntimeError("storage went away")

    monkeypatch.setattr(bidding.ledger, "transition", broken_transition)
    bid = _bid_of(dispatcher, open_order, "PHA-001")
    history_before = list(open_order.history)

    with pytest.raises(RuntimeError):
        dispatcher.award_order(open_order.id, bid.id, now=later(10))

    assert open_order.status == OrderStatus.BIDS_RECEIVED
    assert open_order.assigned_provider_id is None
    assert open_order.total_amount is None
    assert open_order.assigned_at is None
    assert open_order.history == history_before
    for other in dispatcher.ledger.bids_for_order(open_order.id):
        assert other.status == BidStatus.SUBMITTED
        assert other.responded_at is None


def test_award_best_picks_the_top_scored_bid(dispatcher, open_order, later):
    result = dispatcher.evaluate_order(open_order.id, now=later(10))
    assert result.config_name == "default_pharmacy"
    assert result.winner.bid.provider_id == "PHA-002"

    dispatcher.award_best(open_order.id, now=later(10))
    assert open_order.assigned_provider_id == "PHA-002"


def test_award_best_re_evaluates_when_the_winner_goes_stale(dispatcher, open_order, set_provider, later):
    set_provider("PHA-002", is_active=False)

    dispatcher.award_best(open_order.id, now=later(10))

    assert open_order.assigned_provider_id == "PHA-001"
    assert _bid_of(dispatcher, open_order, "PHA-002").status == BidStatus.REJECTED


def test_award_best_gives_up_after_max_attempts(dispatcher, open_order, set_provider, later):
    set_provider("PHA-002", is_active=False)

    with pytest.raises(StaleBid):
        dispatcher.award_best(open_order.id, max_attempts=1, now=later(10))
    assert open_order.status == OrderStatus.BIDS_RECEIVED


def test_evaluate_without_bids(dispatcher, pharmacy_order, later):
    dispatcher.broadcast_order(pharmacy_order.id, now=later(1))
    with pytest.raises(InsufficientBids):
        dispatcher.evaluate_order(pharmacy_order.id, now=later(2))


def test_cancel_retires_open_bids(dispatcher, push, open_order, later):
    dispatcher.cancel_order(open_order.id, "Patient cancelled", now=later(10))

    assert open_order.status == OrderStatus.CANCELLED
    for bid in dispatcher.ledger.bids_for_order(open_order.id):
        assert bid.status == BidStatus.REJECTED
        assert bid.response_note == "Order cancelled"
    assert push.revocations[-1][1] == open_order.id


def test_cancel_after_award_clears_the_provider(dispatcher, open_order, later):
    bid = _bid_of(dispatcher, open_order, "PHA-001")
    dispatcher.award_order(open_order.id, bid.id, now=later(10))

    dispatcher.cancel_order(open_order.id, "Clinic closed", now=later(20))

    assert open_order.status == OrderStatus.CANCELLED
    assert open_order.assigned_provider_id is None
    assert "was assigned to PHA-001" in open_order.history[-1].note
    assert bid.status == BidStatus.ACCEPTED

    with pytest.raises(InvalidTransition):
        dispatcher.cancel_order(open_order.id, now=later(21))



def test_advancing_to_cancelled_retires_open_bids(dispatcher, push, open_order, later):
    dispatcher.advance_order(open_order.id, "cancelled", "Requester withdrew", now=later(10))

    assert open_order.status == OrderStatus.CANCELLED
    for bid in dispatcher.ledger.bids_for_order(open_order.id):
        assert bid.status == BidStatus.REJECTED
        assert bid.response_note == "Order cancelled"
    assert dispatcher.ledger.live_bids(open_order.id, later(11)) == []
    assert push.revocations[-1][1] == open_order.id


def test_advancing_assigned_order_to_cancelled_clears_the_provider(dispatcher, open_order, later):
    bid = _bid_of(dispatcher, open_order, "PHA-001")
    dispatcher.award_order(open_order.id, bid.id, now=later(10))

    dispatcher.advance_order(open_order.id, OrderStatus.CANCELLED, "Clinic closed", now=later(20))

    assert open_order.status == OrderStatus.CANCELLED
    assert open_order.assigned_provider_id is None
    assert "was assigned to PHA-001" in open_order.history[-1].note

def test_post_award_lifecycle(dispatcher, audit, open_order, later):
    bid = _bid_of(dispatcher, open_order, "PHA-002")
    dispatcher.award_order(open_order.id, bid.id, now=later(10))

    with pytest.raises(InvalidTransition):
        dispatcher.complete_order(open_order.id, now=later(11))

    dispatcher.start_fulfillment(open_order.id, now=later(12))
    dispatcher.mark_out_for_delivery(open_order.id, now=later(40))
    dispatcher.complete_order(open_order.id, "Delivered to patient", now=later(75))

    assert open_order.status == OrderStatus.COMPLETED
    assert open_order.completed_at == later(75)

    order_states = [e.to_state for e in audit.for_order(open_order.id) if e.entity == "order"]
    assert order_states == [
        "awaiting_bids",
        "bids_received",
        "assigned",
        "in_progress",
        "out_for_delivery",
        "completed",
    ]
