import re
from collections import namedtuple

NormalizedEvent = namedtuple('NormalizedEvent', ['item_id', 'status_text'])

ITEM_ID_PATTERN = re.compile(r'^\d+$')


def _dig(data, *path):
    for key in path:
        if isinstance(data, dict):
            data = data.get(key)
        elif isinstance(data, list) and isinstance(key, int) and -len(data) <= key < len(data):
            data = data[key]
        else:
            return None
    return data


def _first_text(*candidates):
    for candidate in candidates:
        if isinstance(candidate, (str, int, float)) and not isinstance(candidate, bool):
            text = str(candidate).strip()
            if text:
                return text
    return ''


def normalize_status(text):
    """Trims and case-folds a status label for comparisons."""
    return (text or '').strip().casefold()


def extract_status_text(body):
    event = _dig(body, 'event') or {}
    return _first_text(
        _dig(event, 'value', 'label', 'text'),
        _dig(event, 'value', 'label'),
        _dig(event, 'columnTitle'),
        _dig(event, 'column_title'),
        _dig(event, 'payload', 'value', 'label'),
    )


def extract_item_id(body):
    event = _dig(body, 'event') or {}
    candidates = [
        _dig(event, 'pulseId'), _dig(event, 'pulse_id'), _dig(event, 'itemId'), _dig(event, 'item_id'),
        _dig(body, 'pulseId'), _dig(body, 'pulse_id'), _dig(body, 'itemId'), _dig(body, 'item_id'),
        _dig(event, 'payload', 'itemId'), _dig(event, 'payload', 'item_id'),
    ]
    for candidate in candidates:
        if candidate is None or isinstance(candidate, bool):
            continue
        if ITEM_ID_PATTERN.match(str(candidate)):
            return str(candidate)
    return None


def normalize_event(body):
    """Extracts the (item_id, status_text) pair from a loosely shaped webhook body."""
    if not isinstance(body, dict):
        return NormalizedEvent(None, '')
    return NormalizedEvent(extract_item_id(body), extract_status_text(body))


def extract_person_id(body):
    """Returns the newly assigned person id of a people-column change, if any."""
    event = _dig(body, 'event') or {}
    person_id = _dig(event, 'value', 'personsAndTeams', 0, 'id') or _dig(event, 'value', 'changed_person_id')
    if person_id is None:
        for column_value in _dig(event, 'column_values') or []:
            if isinstance(column_value, dict) and column_value.get('id') == 'responsavel':
                person_id = _dig(column_value, 'value', 'personsAndTeams', 0, 'id')
                break
    return str(person_id) if person_id is not None else None
