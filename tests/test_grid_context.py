import asyncio
import os
import sys
import unittest
from decimal import Decimal


ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
SRC = os.path.join(ROOT, "src")
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)
if SRC not in sys.path:
    sys.path.insert(0, SRC)

from edit_session import EDITING, IDLE
from grid_context import GridConfig, GridContext, GridWorkspace, unwrap_document
from grid_errors import ConflictError, NotFoundError, SchemaError, ValidationError
from grid_events import GridCallbacks


EMPLOYEES = {
    "schema": {
        "name": {"type": "string", "required": True},
        "salary": {"type": "number"},
    },
    "data": [
        {"id": 1, "name": "Bob", "salary": 65000},
        {"id": 2, "name": "Ann", "salary": 85000},
    ],
}


def _grid(config: GridConfig | None = None, callbacks: GridCallbacks | None = None) -> GridContext:
    return GridContext.from_entity("employees", EMPLOYEES, config=config, callbacks=callbacks)


def _names(events: list) -> list:
    return [e["name"] for e in events]


class TestGridScenarios(unittest.TestCase):
    def test_sort_and_filter(self) -> None:
        grid = _grid()
        self.assertEqual([r["id"] for r in grid.sort_by("salary", "desc")], [2, 1])
        grid.clear_sort()
        grid.set_filters([{"field": "salary", "operator": ">", "value": 70000}])
        self.assertEqual(grid.page_ids(), [2])

    def test_sort_directions_are_reversed(self) -> None:
        grid = _grid()
        asc = [r["id"] for r in grid.sort_by("name", "asc")]
        desc = [r["id"] for r in grid.sort_by("name", "desc")]
        self.assertEqual(asc, list(reversed(desc)))

    def test_edit_then_cancel(self) -> None:
        grid = _grid()
        grid.start_edit(1)
        grid.set_field("name", "Bobby")
        self.assertTrue(grid.cancel_edit())
        self.assertEqual(grid.get(1)["name"], "Bob")
        self.assertEqual(grid.edit.state, IDLE)

    def test_commit_with_empty_required_field(self) -> None:
        grid = _grid()
        grid.start_edit(1)
        grid.set_field("name", "")
        with self.assertRaises(ValidationError) as ctx:
            grid.commit_edit()
        self.assertIn("name", ctx.exception.result.field_errors)
        self.assertEqual(grid.edit.state, EDITING)
        self.assertEqual(grid.edit.record_id, 1)
        self.assertEqual(grid.get(1)["name"], "Bob")

    def test_soft_then_hard_delete_prunes_selection(self) -> None:
        grid = _grid()
        grid.toggle_selection(1)
        grid.delete(1, soft=True)
        record = grid.get(1)
        self.assertTrue(record["isDeleted"])
        self.assertTrue(grid.selection.is_selected(1))
        grid.delete(1, soft=False)
        self.assertIsNone(grid.get(1))
        self.assertFalse(grid.selection.is_selected(1))

    def test_missing_ids_leave_collection_unchanged(self) -> None:
        grid = _grid()
        before = grid.store.list()
        with self.assertRaises(NotFoundError):
            grid.update(99, {"name": "x"})
        with self.assertRaises(NotFoundError):
            grid.delete(99)
        with self.assertRaises(NotFoundError):
            grid.toggle_selection(99)
        self.assertEqual(grid.store.list(), before)

    def test_second_start_edit_conflicts(self) -> None:
        grid = _grid()
        grid.start_edit(1)
        grid.set_field("name", "Bobby")
        with self.assertRaises(ConflictError):
            grid.start_edit(2)
        self.assertEqual(grid.edit.session.draft["name"], "Bobby")

    def test_create_then_get(self) -> None:
        grid = _grid()
        new_id = grid.create({"name": "Cy", "salary": 1})
        self.assertNotIn(new_id, (1, 2))
        self.assertEqual(grid.get(new_id), {"id": new_id, "name": "Cy", "salary": 1})

    def test_empty_search_returns_all_in_order(self) -> None:
        grid = _grid()
        page = grid.search("")
        self.assertEqual(page.ids(), [1, 2])
        self.assertEqual(grid.search("ann").ids(), [2])


class TestGridContext(unittest.TestCase):
    def test_hard_delete_cancels_edit_on_that_row(self) -> None:
        grid = _grid()
        grid.start_edit(2)
        grid.delete(2)
        self.assertEqual(grid.edit.state, IDLE)
        self.assertIn("grid.edit.cancelled", _names(grid.events.recent()))

    def test_pagination_and_query_reset(self) -> None:
        grid = _grid(GridConfig(page_size=1))
        self.assertEqual(grid.current_page().total_pages, 2)
        self.assertEqual(grid.next_page().page_number, 2)
        self.assertEqual(grid.next_page().page_number, 2)
        self.assertEqual(grid.search("b").page_number, 1)
        grid.search("")
        self.assertEqual(grid.last_page().ids(), [2])
        self.assertEqual(grid.prev_page().ids(), [1])
        self.assertEqual(grid.go_to_page(50).page_number, 2)
        self.assertEqual(grid.first_page().page_number, 1)
        self.assertEqual(grid.set_page_size(10).total_pages, 1)

    def test_page_selection_and_bulk_delete(self) -> None:
        grid = _grid(GridConfig(page_size=1))
        self.assertEqual(grid.select_page(), "all")
        grid.next_page()
        self.assertEqual(grid.master_state(), "none")
        self.assertEqual(grid.toggle_page(), "all")
        self.assertEqual(grid.selection.selected_ids(), [1, 2])
        result = grid.bulk_delete()
        self.assertEqual(result.processed, [1, 2])
        self.assertFalse(result.soft)
        self.assertEqual(grid.store.ids(), [])
        self.assertEqual(grid.selection.selected_ids(), [])
        self.assertEqual(grid.current_page().total_pages, 1)

    def test_bulk_soft_delete_and_restore(self) -> None:
        grid = _grid(GridConfig(soft_delete=True))
        grid.toggle_selection(1)
        grid.toggle_selection("2")
        result = grid.bulk_delete()
        self.assertTrue(result.soft)
        self.assertTrue(grid.store.is_deleted(1))
        self.assertEqual(grid.selection.selected_ids(), [])
        grid.set_deleted_visibility("deleted")
        self.assertEqual(grid.page_ids(), [1, 2])
        grid.select_page()
        restored = grid.bulk_restore()
        self.assertEqual(restored.processed, [1, 2])
        self.assertEqual(grid.page_ids(), [])
        grid.set_deleted_visibility("active")
        self.assertEqual(grid.page_ids(), [1, 2])

    def test_deselect_and_clear(self) -> None:
        grid = _grid()
        grid.select_page()
        self.assertEqual(grid.deselect_page(), "none")
        grid.toggle_selection(2)
        self.assertEqual(grid.master_state(), "some")
        grid.clear_selection()
        self.assertEqual(grid.selection.selected_ids(), [])

    def test_repeating_visibility_keeps_selection_and_page(self) -> None:
        grid = _grid(GridConfig(page_size=1, deleted_visibility="active"))
        grid.toggle_selection(1)
        grid.next_page()
        self.assertEqual(grid.set_deleted_visibility("active").page_number, 2)
        self.assertEqual(grid.selection.selected_ids(), [1])
        grid.set_deleted_visibility("all")
        self.assertEqual(grid.selection.selected_ids(), [])
        self.assertEqual(grid.current_page().page_number, 1)

    def test_rejected_filter_value_changes_nothing(self) -> None:
        grid = _grid()
        seen = len(grid.events.recent())
        with self.assertRaises(SchemaError) as ctx:
            grid.set_filters([{"field": "salary", "operator": ">", "value": Decimal("70000")}])
        self.assertEqual(ctx.exception.code, "SCHEMA_FILTER_INVALID")
        self.assertEqual(grid.query.filters, [])
        self.assertEqual(len(grid.events.recent()), seen)

    def test_events_and_render_callback(self) -> None:
        rendered = []
        grid = _grid(callbacks=GridCallbacks(on_render=rendered.append))
        new_id = grid.create({"name": "Cy"})
        grid.update(new_id, {"salary": 5})
        grid.start_edit(new_id)
        grid.set_field("name", "Cyrus")
        grid.commit_edit()
        grid.sort_by("name")
        grid.restore(1)
        self.assertEqual(
            _names(rendered),
            [
                "grid.record.created",
                "grid.record.updated",
                "grid.edit.started",
                "grid.edit.committed",
                "grid.query.changed",
                "grid.record.restored",
            ],
        )
        self.assertEqual(rendered[1]["payload"], {"record_id": new_id, "fields": ["salary"]})

    def test_validate_callback_blocks_create(self) -> None:
        grid = _grid(callbacks=GridCallbacks(on_validate=lambda r: {"salary": "Too low"} if (r.get("salary") or 0) < 10 else None))
        with self.assertRaises(ValidationError):
            grid.create({"name": "Cy", "salary": 1})
        self.assertEqual(grid.store.ids(), [1, 2])

    def test_import_and_export(self) -> None:
        grid = _grid()
        preview = grid.preview_import('[{"name": "Cy"}, {"salary": 3}]')
        self.assertEqual([row.result.is_valid for row in preview], [True, False])
        report = grid.commit_import("name,salary\nCy,10\n,3\n", fmt="csv")
        self.assertEqual(report.created, [3])
        self.assertEqual(len(report.failures), 1)
        self.assertIn("grid.import.committed", _names(grid.events.recent()))
        grid.search("cy")
        self.assertEqual(grid.export("csv"), "id,name,salary\n3,Cy,10\n")
        self.assertEqual(grid.export("csv", scope="all").count("\n"), 4)
        grid.toggle_selection(1)
        self.assertEqual(grid.export("csv", fields=["name"], scope="selection"), "id,name\n1,Bob\n")
        with self.assertRaises(SchemaError):
            grid.export(scope="everything")

    def test_render_state(self) -> None:
        grid = _grid(GridConfig(page_size=5))
        grid.toggle_selection(2)
        grid.start_edit(1)
        grid.set_field("name", "Bobby")
        state = grid.render_state()
        self.assertEqual([c["key"] for c in state["columns"]], ["name", "salary"])
        self.assertEqual(state["rows"][0]["mode"], "edit")
        self.assertEqual(state["rows"][0]["values"]["name"], "Bobby")
        self.assertEqual(state["rows"][1]["mode"], "display")
        self.assertTrue(state["rows"][1]["selected"])
        self.assertEqual(state["selection"]["master"], "some")
        self.assertEqual(state["page"]["total_records"], 2)
        self.assertEqual(state["editing"]["record_id"], 1)

    def test_search_later_is_debounced(self) -> None:
        grid = _grid(GridConfig(search_debounce_ms=10))

        async def scenario() -> list:
            grid.search_later("b")
            grid.search_later("bo")
            await asyncio.sleep(0.05)
            return grid.page_ids()

        self.assertEqual(asyncio.run(scenario()), [1])
        self.assertEqual(grid.query.search_term, "bo")
        self.assertFalse(grid.flush_search())


class TestGridConfig(unittest.TestCase):
    def test_defaults(self) -> None:
        config = GridConfig.from_env({})
        self.assertEqual(config.page_size, 10)
        self.assertEqual(config.page_size_options, (5, 10, 25, 50))
        self.assertEqual(config.search_debounce_ms, 300)
        self.assertFalse(config.soft_delete)
        self.assertEqual(config.deleted_visibility, "all")

    def test_from_env(self) -> None:
        config = GridConfig.from_env(
            {
                "GRID_PAGE_SIZE": "25",
                "GRID_PAGE_SIZE_OPTIONS": "10, 25,x",
                "GRID_SEARCH_DEBOUNCE_MS": "150",
                "GRID_MIN_SEARCH_LENGTH": "2",
                "GRID_CASE_SENSITIVE": "yes",
                "GRID_SOFT_DELETE": "1",
                "GRID_DELETED_VISIBILITY": "Active",
            }
        )
        self.assertEqual(config.page_size, 25)
        self.assertEqual(config.page_size_options, (10, 25))
        self.assertEqual(config.search_debounce_ms, 150)
        self.assertEqual(config.min_search_length, 2)
        self.assertTrue(config.case_sensitive)
        self.assertTrue(config.soft_delete)
        self.assertEqual(config.deleted_visibility, "active")

    def test_bad_values_fall_back(self) -> None:
        with self.assertLogs("datagrid", level="WARNING"):
            config = GridConfig.from_env({"GRID_PAGE_SIZE": "ten", "GRID_DELETED_VISIBILITY": "gone"})
        self.assertEqual(config.page_size, 10)
        self.assertEqual(config.deleted_visibility, "all")


class TestGridWorkspace(unittest.TestCase):
    DOCUMENT = {
        "crm": {
            "contacts": {
                "schema": {"lname": {"required": True}, "fname": {}},
                "data": [{"id": 1, "lname": "Smith", "fname": "Ann"}],
            },
            "positions": {
                "schema": {
                    "title": {"required": True},
                    "contactId": {"foreignKey": "contacts.id", "foreignKeyDisplay": "contacts.lname"},
                    "contact": {"computed": True, "computedFrom": "contacts.lname,contacts.fname", "computedKey": "contactId"},
                },
                "data": [{"id": 1, "title": "Engineer", "contactId": 1}],
            },
        }
    }

    def test_unwrap_namespace(self) -> None:
        self.assertEqual(sorted(unwrap_document(self.DOCUMENT)), ["contacts", "positions"])
        self.assertEqual(unwrap_document(self.DOCUMENT["crm"]), self.DOCUMENT["crm"])
        self.assertEqual(unwrap_document([1, 2]), {})

    def test_related_stores_resolve(self) -> None:
        workspace = GridWorkspace.from_document(self.DOCUMENT)
        self.assertEqual(workspace.names(), ["contacts", "positions"])
        positions = workspace.require("positions")
        self.assertEqual(positions.render_state()["rows"][0]["values"]["contact"], "Smith, Ann")
        self.assertEqual(positions.search("smith").ids(), [1])
        with self.assertRaises(ValidationError):
            positions.create({"title": "Designer", "contactId": 5})
        workspace.require("contacts").update(1, {"lname": "Jones"})
        self.assertEqual(positions.search("jones").ids(), [1])

    def test_unknown_grid(self) -> None:
        workspace = GridWorkspace.from_document(self.DOCUMENT)
        self.assertIsNone(workspace.get("nope"))
        with self.assertRaises(SchemaError) as ctx:
            workspace.require("nope")
        self.assertEqual(ctx.exception.code, "SCHEMA_UNKNOWN_GRID")

    def test_bad_entities_are_reported(self) -> None:
        workspace = GridWorkspace.from_document(
            {
                "good": {"schema": {"name": {}}, "data": []},
                "dupes": {"schema": [{"key": "a"}, {"key": "a"}]},
                "flat": {"schema": {"name": {}}, "data": {"not": "a list"}},
                "junk": 5,
            }
        )
        self.assertEqual(workspace.names(), ["good"])
        codes = [issue["code"] for issue in workspace.issues]
        self.assertIn("SCHEMA_DUPLICATE_FIELD", codes)
        self.assertIn("SCHEMA_DATA_INVALID", codes)
        self.assertIn("ENTITY_INVALID", codes)

    def test_empty_document(self) -> None:
        workspace = GridWorkspace.from_document({})
        self.assertEqual(workspace.names(), [])
        self.assertEqual(workspace.issues[0]["code"], "DOCUMENT_EMPTY")


if __name__ == "__main__":
    unittest.main()
