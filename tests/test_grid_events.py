import os
import sys
import unittest


ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
SRC = os.path.join(ROOT, "src")
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)
if SRC not in sys.path:
    sys.path.insert(0, SRC)

from grid_events import ALL_EVENTS, EventValidationError, GridEventBus, make_event, validate_event


class TestGridEvents(unittest.TestCase):
    def test_make_event_envelope(self) -> None:
        event = make_event("grid.record.created", {"record_id": 1}, "employees")
        self.assertEqual(event["name"], "grid.record.created")
        self.assertEqual(event["payload"], {"record_id": 1})
        self.assertEqual(event["meta"]["grid"], "employees")
        self.assertTrue(event["meta"]["occurred_at"].endswith("Z"))

    def test_unknown_event_name_rejected(self) -> None:
        with self.assertRaises(EventValidationError) as ctx:
            make_event("grid.exploded", {}, "employees")
        self.assertEqual(ctx.exception.code, "EVENT_NAME_INVALID")

    def test_payload_must_serialize(self) -> None:
        with self.assertRaises(EventValidationError) as ctx:
            make_event("grid.record.created", {"record": object()}, "employees")
        self.assertEqual(ctx.exception.code, "PAYLOAD_INVALID")

    def test_validate_meta(self) -> None:
        event = make_event("grid.page.changed", {"page_number": 1}, "employees")
        event["meta"]["occurred_at"] = "2024-01-01T00:00:00"
        with self.assertRaises(EventValidationError) as ctx:
            validate_event(event)
        self.assertEqual(ctx.exception.code, "META_OCCURRED_AT_INVALID")

    def test_handlers_called_in_order_with_wildcard(self) -> None:
        bus = GridEventBus()
        calls = []
        bus.subscribe("grid.record.created", lambda evt: calls.append("h1"))
        bus.subscribe(ALL_EVENTS, lambda evt: calls.append("all"))
        bus.subscribe("grid.record.created", lambda evt: calls.append("h2"))
        bus.publish(make_event("grid.record.created", {"record_id": 1}, "g"))
        bus.publish(make_event("grid.record.deleted", {"record_ids": [1], "soft": False}, "g"))
        self.assertEqual(calls, ["h1", "h2", "all", "all"])

    def test_handler_failure_is_contained(self) -> None:
        bus = GridEventBus()
        calls = []

        def broken(evt: dict) -> None:
            raise RuntimeError("render failed")

        bus.subscribe(ALL_EVENTS, broken)
        bus.subscribe(ALL_EVENTS, lambda evt: calls.append(evt["name"]))
        with self.assertLogs("datagrid.events", level="ERROR"):
            bus.publish(make_event("grid.query.changed", {"search": "x"}, "g"))
        self.assertEqual(calls, ["grid.query.changed"])

    def test_unsubscribe_and_recent(self) -> None:
        bus = GridEventBus(keep_last=2)
        calls = []

        def handler(evt: dict) -> None:
            calls.append(evt)

        bus.subscribe("grid.page.changed", handler)
        self.assertTrue(bus.unsubscribe("grid.page.changed", handler))
        self.assertFalse(bus.unsubscribe("grid.page.changed", handler))
        for page in (1, 2, 3):
            bus.publish(make_event("grid.page.changed", {"page_number": page}, "g"))
        self.assertEqual(calls, [])
        self.assertEqual([e["payload"]["page_number"] for e in bus.recent()], [2, 3])


if __name__ == "__main__":
    unittest.main()
