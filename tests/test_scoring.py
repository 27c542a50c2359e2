import pytest

from bidding.models import Bid, BidStatus, DeliveryWindow
from bidding.policy import (
    ScoringConfig,
    default_lab_config,
    default_pharmacy_config,
    price_focused_pharmacy_config,
)
from bidding.scoring import evaluate_bids, price_score, speed_score
from common.exceptions import InsufficientBids, InvalidBid, InvalidScoringConfig
from orders.models import Order, RequesterSnapshot
from providers.models import QualitySnapshot
from providers.quality import blend_quality


@pytest.fixture
def order(now):
    return Order.new("pharmacy", RequesterSnapshot("pat_1", "Rudo"), now=now)


def make_bid(order, bid_id, amount, window, submitted_at, quality=None, **fields):
    return Bid(
        id=bid_id,
        order_id=order.id,
        provider_id=f"provider-{bid_id}",
        amount=amount,
        delivery_window=DeliveryWindow.parse(window),
        quality=quality or QualitySnapshot(rating=4.0, sla_compliance=90.0, quality_grade="B"),
        submitted_at=submitted_at,
        **fields,
    )


def test_cheaper_bid_outranks_faster_better_bid_under_price_focus(order, later):
    a = make_bid(order, "A", 40.0, "same-day", later(1), QualitySnapshot(4.5, 30, 95.0, "A"))
    b = make_bid(order, "B", 30.0, "next-day", later(2), QualitySnapshot(4.0, 30, 90.0, "B"))

    result = evaluate_bids(order, [a, b], price_focused_pharmacy_config(), now=later(5))

    assert [scored.bid.id for scored in result.ranking] == ["B", "A"]
    assert result.context.avg_amount == pytest.approx(35.0)
    assert result.context.fastest_estimate == DeliveryWindow.SAME_DAY.speed

    best, second = result.ranking
    assert best.rank == 1 and second.rank == 2
    assert best.price_score == pytest.approx(100.0 / 6)
    assert best.speed_score == pytest.approx(75.0)
    assert best.quality_score == pytest.approx(80.0)
    assert best.score == pytest.approx(41.0)
    assert second.price_score == 0.0  # above average is clamped
    assert second.speed_score == 100.0
    assert second.score == pytest.approx(38.3)
    assert result.context.best_quality == pytest.approx(91.5)


def test_too_few_live_bids(order, later):
    config = ScoringConfig("strict", 0.4, 0.3, 0.3, min_bids_required=2, max_bids_considered=5)
    live = make_bid(order, "A", 40.0, "asap", later(1))
    expired = make_bid(order, "B", 30.0, "asap", later(1), valid_until=later(3))

    with pytest.raises(InsufficientBids) as excinfo:
        evaluate_bids(order, [live, expired], config, now=later(5))
    assert excinfo.value.detail == {"live": 1, "required": 2}


def test_evaluation_is_deterministic_and_ties_go_to_earliest(order, later):
    late = make_bid(order, "0-late", 30.0, "asap", later(3))
    early = make_bid(order, "9-early", 30.0, "asap", later(1))
    other = make_bid(order, "5-other", 45.0, "next-day", later(2))

    first = evaluate_bids(order, [late, other, early], default_pharmacy_config(), now=later(5))
    second = evaluate_bids(order, [early, late, other], default_pharmacy_config(), now=later(5))

    assert [s.bid.id for s in first.ranking] == ["9-early", "0-late", "5-other"]
    assert [(s.bid.id, s.score) for s in first.ranking] == [(s.bid.id, s.score) for s in second.ranking]


def test_identical_bids_same_instant_break_on_id(order, later):
    x = make_bid(order, "x", 30.0, "asap", later(1))
    w = make_bid(order, "w", 30.0, "asap", later(1))
    result = evaluate_bids(order, [x, w], default_pharmacy_config(), now=later(5))
    assert [s.bid.id for s in result.ranking] == ["w", "x"]


def test_expired_and_resolved_bids_never_score(order, later):
    cheap_but_expired = make_bid(order, "A", 10.0, "within-hours", later(1), valid_until=later(4))
    rejected = make_bid(order, "B", 12.0, "asap", later(1), status=BidStatus.REJECTED)
    ok = make_bid(order, "C", 40.0, "next-day", later(2))

    result = evaluate_bids(order, [cheap_but_expired, rejected, ok], default_pharmacy_config(), now=later(4))

    assert [s.bid.id for s in result.ranking] == ["C"]
    assert result.winner.bid.id == "C"


def test_max_bids_considered_takes_earliest_submissions(order, later):
    config = ScoringConfig("narrow", 0.4, 0.3, 0.3, min_bids_required=1, max_bids_considered=2)
    bids = [make_bid(order, str(i), 50.0 - i, "asap", later(i)) for i in range(1, 5)]

    result = evaluate_bids(order, bids, config, now=later(10))

    assert sorted(s.bid.id for s in result.ranking) == ["1", "2"]
    assert result.context.candidates == 2


def test_config_for_other_category_is_rejected(order, later):
    with pytest.raises(InvalidScoringConfig):
        evaluate_bids(order, [make_bid(order, "A", 30.0, "asap", later(1))], default_lab_config(), now=later(2))


def test_scores_are_clamped():
    assert price_score(10.0, 35.0) == 100.0
    assert price_score(35.0, 35.0) == 0.0
    assert price_score(17.5, 35.0) == pytest.approx(100.0)
    assert speed_score(3.0, 3.0) == 100.0
    assert speed_score(6.0, 3.0) == pytest.approx(50.0)


def test_lab_bids_score_on_turnaround_hours(now, later):
    order = Order.new("lab", RequesterSnapshot("pat_2", "Farai"), now=now)
    fast = Bid(id="fast", order_id=order.id, provider_id="LAB-1", amount=90.0, turnaround_hours=6, submitted_at=later(1))
    slow = Bid(id="slow", order_id=order.id, provider_id="LAB-2", amount=90.0, turnaround_hours=24, submitted_at=later(1))

    result = evaluate_bids(order, [slow, fast], default_lab_config(), now=later(2))

    assert result.winner.bid.id == "fast"
    assert result.ranking[1].speed_score == pytest.approx(25.0)
    # no quality snapshot -> neutral
    assert result.winner.quality_score == 50.0


def test_blend_quality():
    assert blend_quality(None, None, None) == 50.0
    assert blend_quality(5.0, 100.0, "A+") == 100.0
    assert blend_quality(4.5, 95.0, "A") == pytest.approx(91.5)
    # missing components count at their midpoint
    assert blend_quality(5.0, None, None) == pytest.approx(40 + 15 + 15)


@pytest.mark.parametrize(
    "label, expected",
    [
        ("same-day", DeliveryWindow.SAME_DAY),
        ("Same_Day", DeliveryWindow.SAME_DAY),
        ("today", DeliveryWindow.SAME_DAY),
        ("tomorrow", DeliveryWindow.NEXT_DAY),
        ("pickup", DeliveryWindow.READY_FOR_PICKUP),
        ("2-3 days", DeliveryWindow.TWO_TO_THREE_DAYS),
    ],
)
def test_delivery_window_parsing(label, expected):
    assert DeliveryWindow.parse(label) == expected


def test_unknown_delivery_window():
    with pytest.raises(InvalidBid):
        DeliveryWindow.parse("by drone")


def test_ranking_respects_window_speed_order():
    order = [DeliveryWindow.WITHIN_HOURS, DeliveryWindow.ASAP, DeliveryWindow.SAME_DAY, DeliveryWindow.NEXT_DAY, DeliveryWindow.TWO_TO_THREE_DAYS]
    speeds = [window.speed for window in order]
    assert speeds == sorted(speeds)
