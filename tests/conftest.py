"""
Shared fixtures. The environment is seeded before any project module is
imported because configuration is read at import time.

Run:  pytest tests/ -v
"""
import os

os.environ.setdefault("MONDAY_API_KEY", "test-monday-key")
os.environ.setdefault("EVOLUTION_API_KEY", "test-evolution-key")
os.environ.setdefault("WHATSAPP_DESTINATION", "5500000000000")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/15")

import pytest

import monday_utils
import monday_tasks

SUBITEM_BOARD_ID = "5001"
PARENT_BOARD_ID = "4001"

SUBITEM_COLUMNS = [
    {"id": "date4", "title": "FINALIZAÇÃO", "type": "date"},
    {"id": "check", "title": "CONCLUIDO", "type": "checkbox"},
    {"id": "person", "title": "RESPONSÁVEL", "type": "people"},
    {"id": "status", "title": "Controle", "type": "status"},
    {"id": "timer", "title": "TEMPO", "type": "time_tracking"},
]

PARENT_COLUMNS = [
    {"id": "status", "title": "Status", "type": "status"},
    {"id": "doc_ext", "title": "DOC EXTERNO", "type": "status"},
]


class FakeMonday(object):
    """In-memory stand-in for the Monday.com calls made by the executors and tasks."""

    def __init__(self):
        self.subitems = {}
        self.boards = {}
        self.values = {}
        self.mutations = []

    def add_parent(self, item_id, subitem_names):
        subitems = []
        for position, name in enumerate(subitem_names, 1):
            subitem_id = f"{item_id}{position:02d}"
            subitems.append({"id": subitem_id, "name": name})
            self.boards[subitem_id] = (SUBITEM_BOARD_ID, SUBITEM_COLUMNS)
        self.subitems[item_id] = subitems
        self.boards[item_id] = (PARENT_BOARD_ID, PARENT_COLUMNS)
        return subitems

    def set_value(self, item_id, column_id, value, text):
        self.values[(str(item_id), column_id)] = {"value": value, "text": text}

    def mutated_items(self, column_id=None):
        return [m[2] for m in self.mutations if column_id is None or m[3] == column_id]

    # --- patched API surface ---

    def get_subitems_of_item(self, item_id):
        return list(self.subitems.get(str(item_id), []))

    def get_item_board_and_columns(self, item_id):
        return self.boards[str(item_id)]

    def get_column_value(self, item_id, column_id):
        return self.values.get((str(item_id), column_id))

    def find_subitem_by_name(self, parent_item_id, name):
        for subitem in self.subitems.get(str(parent_item_id), []):
            if subitem["name"].strip() == name:
                return subitem
        return None

    def change_column_value(self, board_id, item_id, column_id, value):
        self.mutations.append(("change_column_value", board_id, str(item_id), column_id, value))
        if isinstance(value, dict) and "date" in value:
            self.set_value(item_id, column_id, value, f"{value['date']} {value['time']}")
        return True

    def change_simple_column_value(self, board_id, item_id, column_id, value):
        self.mutations.append(("change_simple_column_value", board_id, str(item_id), column_id, value))
        return True

    def stop_time_tracking(self, item_id, column_id):
        self.mutations.append(("stop_time_tracking", None, str(item_id), column_id, None))
        return True


@pytest.fixture
def fake_monday(monkeypatch):
    fake = FakeMonday()
    for name in ("get_subitems_of_item", "get_item_board_and_columns", "get_column_value",
                 "find_subitem_by_name", "change_column_value", "change_simple_column_value",
                 "stop_time_tracking"):
        monkeypatch.setattr(monday_utils, name, getattr(fake, name))
    monkeypatch.setattr(monday_tasks, "DELAY_BETWEEN_SUBITEMS", 0)
    return fake


def status_body(label, item_id="123", **event):
    event.setdefault("columnTitle", "Status")
    event.update({"value": {"label": {"text": label}}, "pulseId": int(item_id)})
    return {"event": event}
