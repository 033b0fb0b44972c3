"""Selected-row tracking, independent of the current page."""

from __future__ import annotations

from typing import Any, Dict, Iterable

MASTER_NONE = "none"
MASTER_SOME = "some"
MASTER_ALL = "all"


def _key(record_id: Any) -> str:
    return str(record_id)


class SelectionController:
    """Ordered set of selected ids; ids compare by their text form."""

    def __init__(self) -> None:
        self._selected: Dict[str, Any] = {}

    def __len__(self) -> int:
        return len(self._selected)

    def __contains__(self, record_id: Any) -> bool:
        return self.is_selected(record_id)

    def is_selected(self, record_id: Any) -> bool:
        return _key(record_id) in self._selected

    def selected_ids(self) -> list:
        return list(self._selected.values())

    def select(self, record_id: Any) -> None:
        self._selected.setdefault(_key(record_id), record_id)

    def deselect(self, record_id: Any) -> bool:
        return self._selected.pop(_key(record_id), None) is not None

    def toggle(self, record_id: Any) -> bool:
        """Flip one id; returns the new selected state."""
        if self.deselect(record_id):
            return False
        self.select(record_id)
        return True

    def select_all(self, page_ids: Iterable[Any]) -> None:
        for record_id in page_ids:
            self.select(record_id)

    def deselect_all(self, page_ids: Iterable[Any]) -> None:
        for record_id in page_ids:
            self.deselect(record_id)

    def toggle_all(self, page_ids: Iterable[Any]) -> str:
        ids = list(page_ids)
        if self.master_state(ids) == MASTER_ALL:
            self.deselect_all(ids)
        else:
            self.select_all(ids)
        return self.master_state(ids)

    def clear(self) -> None:
        self._selected.clear()

    def prune(self, record_id: Any) -> bool:
        return self.deselect(record_id)

    def master_state(self, page_ids: Iterable[Any]) -> str:
        ids = list(page_ids)
        if not ids:
            return MASTER_NONE
        selected = sum(1 for record_id in ids if self.is_selected(record_id))
        if selected == 0:
            return MASTER_NONE
        if selected == len(ids):
            return MASTER_ALL
        return MASTER_SOME
