"""
Real-time notifier tests.
"""

import logging

from fiscalpos.services.notifier import OWNERS_TOPIC, branch_topic


class TestRealtimeNotifier:
    def test_branch_events_reach_owners_room(self, app):
        notifier = app.extensions["fiscalpos.notifier"]
        received = []

        def _collect(topic, event):
            received.append((topic, event["type"]))

        notifier.subscribe(branch_topic(7), _collect)
        notifier.subscribe(OWNERS_TOPIC, _collect)
        try:
            notifier.publish_branch(7, {"type": "SALE_CREATED"})
            notifier.publish_branch(7, {"type": "LOW_STOCK"}, owners=False)
        finally:
            notifier.unsubscribe(branch_topic(7), _collect)
            notifier.unsubscribe(OWNERS_TOPIC, _collect)

        assert received == [
            ("branch:7", "SALE_CREATED"),
            ("owners", "SALE_CREATED"),
            ("branch:7", "LOW_STOCK"),
        ]

    def test_failing_subscriber_is_logged_on_app_logger(self, app, caplog):
        notifier = app.extensions["fiscalpos.notifier"]
        received = []

        def _broken(topic, event):
            raise RuntimeError("socket closed")

        def _collect(topic, event):
            received.append(event["type"])

        notifier.subscribe(branch_topic(8), _broken)
        notifier.subscribe(branch_topic(8), _collect)
        try:
            with caplog.at_level(logging.ERROR, logger=app.logger.name):
                notifier.publish_branch(8, {"type": "SALE_VOIDED"}, owners=False)
        finally:
            notifier.unsubscribe(branch_topic(8), _broken)
            notifier.unsubscribe(branch_topic(8), _collect)

        assert received == ["SALE_VOIDED"]
        failures = [r for r in caplog.records if "Subscriber failed for topic branch:8" in r.getMessage()]
        assert len(failures) == 1
        assert failures[0].name == app.logger.name
