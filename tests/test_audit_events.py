import logging

from common.events import AuditEvent, AuditPublisher, InMemoryAuditSink, LoggingAuditSink


class ExplodingSink:
    def publish(self, event):
        raise RuntimeError("sink down")


def _event(to_state="assigned"):
    return AuditEvent(entity="order", entity_id="o1", order_id="o1", from_state="bids_received", to_state=to_state)


def test_background_delivery_preserves_order():
    sink = InMemoryAuditSink()
    publisher = AuditPublisher([sink], background=True)

    publisher.publish_all([_event("assigned"), _event("in_progress"), _event("completed")])
    publisher.flush()
    publisher.close()

    assert [e.to_state for e in sink.events] == ["assigned", "in_progress", "completed"]


def test_failing_sink_is_logged_and_others_still_receive(caplog):
    sink = InMemoryAuditSink()
    publisher = AuditPublisher([ExplodingSink(), sink], background=False)

    with caplog.at_level(logging.ERROR, logger="common.events"):
        publisher.publish(_event())

    assert len(sink.events) == 1
    assert "Audit sink" in caplog.text


def test_logging_sink_writes_transition(caplog):
    with caplog.at_level(logging.INFO, logger="marketplace.audit"):
        LoggingAuditSink().publish(_event())
    assert "bids_received -> assigned" in caplog.text


def test_close_without_worker_is_a_no_op():
    AuditPublisher(background=True).close()
