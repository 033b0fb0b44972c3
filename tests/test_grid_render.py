import os
import sys
import unittest


ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
SRC = os.path.join(ROOT, "src")
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)
if SRC not in sys.path:
    sys.path.insert(0, SRC)

from jinja2.exceptions import SecurityError

from app.grid_render import build_render_context, format_cell, render_grid
from grid_context import GridContext


PRODUCTS = {
    "schema": {
        "name": {"type": "string", "displayName": "Product", "maxlength": 10},
        "notes": {"type": "text", "rows": 3},
        "size": {"type": "enum", "options": ["S", {"value": "L", "label": "Large"}]},
        "active": {"type": "boolean"},
    },
    "data": [
        {"id": 1, "name": "Mug", "notes": "hi", "size": "L", "active": True},
        {"id": 2, "name": "<i>Cup</i>", "notes": "", "size": "S", "active": False},
    ],
}


def _grid(entity: dict = PRODUCTS) -> GridContext:
    return GridContext.from_entity("products", entity)


class TestFormatCell(unittest.TestCase):
    def test_formats_by_type(self) -> None:
        self.assertEqual(format_cell(None, "string"), "")
        self.assertEqual(format_cell(True, "boolean"), "Yes")
        self.assertEqual(format_cell(False, "boolean"), "No")
        self.assertEqual(format_cell(2.0, "number"), "2")


class TestRenderGrid(unittest.TestCase):
    def test_display_rows(self) -> None:
        html = render_grid(_grid())
        self.assertIn('<th data-key="name">Product</th>', html)
        self.assertIn('<td data-key="name">Mug</td>', html)
        self.assertIn('<td data-key="size">Large</td>', html)
        self.assertIn('<td data-key="active">Yes</td>', html)
        self.assertIn("Page 1 of 1 (2 records)", html)

    def test_values_are_escaped(self) -> None:
        html = render_grid(_grid())
        self.assertIn("&lt;i&gt;Cup&lt;/i&gt;", html)
        self.assertNotIn("<i>Cup</i>", html)

    def test_editing_row_uses_edit_widgets(self) -> None:
        ctx = _grid()
        ctx.start_edit(1)
        html = render_grid(ctx)
        self.assertIn('class="grid-row edit"', html)
        self.assertIn('<input type="text" name="name" value="Mug" maxlength="10">', html)
        self.assertIn('<textarea name="notes" rows="3">hi</textarea>', html)
        self.assertIn('<option value="L" selected>Large</option>', html)
        self.assertIn('<option value="S">S</option>', html)
        self.assertIn('<input type="checkbox" name="active" checked>', html)
        self.assertIn('<td data-key="name">&lt;i&gt;Cup&lt;/i&gt;</td>', html)

    def test_draft_values_are_rendered(self) -> None:
        ctx = _grid()
        ctx.start_edit(1)
        ctx.set_field("name", "Jug")
        self.assertIn('value="Jug"', render_grid(ctx))

    def test_selection_and_deleted_markers(self) -> None:
        ctx = _grid()
        ctx.select_page()
        ctx.delete(2, soft=True)
        context = build_render_context(ctx)
        self.assertEqual(context["master"], "all")
        self.assertTrue(all(row["selected"] for row in context["rows"]))
        html = render_grid(ctx)
        self.assertIn('data-master="all" checked', html)
        self.assertIn('class="grid-row display deleted"', html)

    def test_empty_grid(self) -> None:
        html = render_grid(_grid({"schema": PRODUCTS["schema"], "data": []}))
        self.assertIn('<td colspan="5">No records</td>', html)
        self.assertIn("Page 1 of 1 (0 records)", html)

    def test_custom_template_is_sandboxed(self) -> None:
        ctx = _grid()
        self.assertEqual(render_grid(ctx, "{{ grid | upper }}:{{ rows | length }}"), "PRODUCTS:2")
        with self.assertRaises(SecurityError):
            render_grid(ctx, "{{ grid.__class__ }}")


if __name__ == "__main__":
    unittest.main()
