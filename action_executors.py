import logging
from datetime import datetime, timezone

import monday_utils as monday

logger = logging.getLogger(__name__)

WRITTEN = 'written'
SKIPPED = 'skipped'
MISSING = 'missing'


def _has_value(column_value):
    if not column_value:
        return False
    if (column_value.get('text') or '').strip():
        return True
    value = column_value.get('value')
    if isinstance(value, dict):
        return any(value.values())
    if isinstance(value, str):
        return bool(value.strip())
    return bool(value)


def set_date_if_empty(subitem_id, board_id, column_id, now=None):
    """Stamps the current UTC date and time unless the column already holds a date."""
    current = monday.get_column_value(subitem_id, column_id)
    if _has_value(current):
        logger.info("Date column %s on subitem %s already set (%s). Skipping.",
                    column_id, subitem_id, current.get('text') or current.get('value'))
        return SKIPPED
    now = now or datetime.now(timezone.utc)
    value = {"date": now.strftime('%Y-%m-%d'), "time": now.strftime('%H:%M:%S')}
    logger.info("Setting date %s %s on subitem %s (board %s, column %s).",
                value['date'], value['time'], subitem_id, board_id, column_id)
    if not monday.change_column_value(board_id, subitem_id, column_id, value):
        logger.warning("Date write on subitem %s was not confirmed by the API.", subitem_id)
        return SKIPPED
    return WRITTEN


def set_checked(subitem_id, board_id, column_id):
    logger.info("Marking checkbox %s on subitem %s.", column_id, subitem_id)
    try:
        return monday.change_column_value(board_id, subitem_id, column_id, {"checked": True})
    except monday.MondayAPIError as e:
        logger.warning("Checkbox mutation failed for subitem %s (%s). Trying simple value.", subitem_id, e)
        return monday.change_simple_column_value(board_id, subitem_id, column_id, "true")


def assign_owner(subitem_id, board_id, column_id, user_id):
    logger.info("Assigning user %s to column %s on subitem %s.", user_id, column_id, subitem_id)
    value = {"personsAndTeams": [{"id": int(user_id), "kind": "person"}]}
    return monday.change_column_value(board_id, subitem_id, column_id, value)


def remove_owner(subitem_id, board_id, column_id):
    logger.info("Clearing responsible person %s on subitem %s.", column_id, subitem_id)
    return monday.change_column_value(board_id, subitem_id, column_id, {"personsAndTeams": []})


def set_label(item_id, board_id, column_id, label_text):
    logger.info("Setting label '%s' on column %s of item %s.", label_text, column_id, item_id)
    return monday.change_column_value(board_id, item_id, column_id, {"label": label_text})


def set_status_index(item_id, board_id, column_id, index):
    logger.info("Setting status index %s on column %s of item %s.", index, column_id, item_id)
    return monday.change_column_value(board_id, item_id, column_id, {"index": int(index)})


def stop_time_tracking(item_id, board_id, column_id):
    logger.info("Stopping time tracking %s on item %s (board %s).", column_id, item_id, board_id)
    return monday.stop_time_tracking(item_id, column_id)


def find_label_column(columns, title):
    """Label columns prefer a title substring over the first status-typed column."""
    return monday.find_column(columns, title) or monday.find_column(columns, title, 'status')


class ActionContext(object):
    """Resolves the item each action targets and caches board metadata per item.

    ``date_written`` is set once the rule's date action writes a date. A retried
    rule passes it in so the checkbox still follows a date stamped by the
    failed attempt.
    """

    def __init__(self, parent_item_id, target_subitem, date_written=False):
        self.parent_item_id = parent_item_id
        self.target_subitem = target_subitem
        self.date_written = date_written
        self._boards = {}

    def board_for(self, item_id):
        if item_id not in self._boards:
            self._boards[item_id] = monday.get_item_board_and_columns(item_id)
        return self._boards[item_id]

    def subject_for(self, action):
        if action.get('on_parent'):
            return self.parent_item_id
        if action.get('subitem_name'):
            subitem = monday.find_subitem_by_name(self.parent_item_id, action['subitem_name'])
            return subitem['id'] if subitem else None
        return self.target_subitem['id']


def execute_action(action, item_id, board_id, column_id):
    action_type = action['type']
    if action_type == 'set_date_if_empty':
        return set_date_if_empty(item_id, board_id, column_id)
    if action_type == 'set_checked':
        return set_checked(item_id, board_id, column_id)
    if action_type == 'assign_owner':
        return assign_owner(item_id, board_id, column_id, action['user_id'])
    if action_type == 'remove_owner':
        return remove_owner(item_id, board_id, column_id)
    if action_type == 'set_label':
        return set_label(item_id, board_id, column_id, action['label'])
    if action_type == 'set_status_index':
        return set_status_index(item_id, board_id, column_id, action['index'])
    if action_type == 'stop_time_tracking':
        return stop_time_tracking(item_id, board_id, column_id)
    raise ValueError(f"Unknown action type '{action_type}'")


def execute_actions(actions, context):
    """Runs one rule's actions in order and returns [(action_type, result)].

    MondayAPIError propagates so the caller can abandon the rest of the rule.
    """
    outcomes = []
    for action in actions:
        action_type = action['type']
        if action.get('only_if_date_written') and not context.date_written:
            logger.info("Skipping %s: date was not freshly written.", action_type)
            outcomes.append((action_type, SKIPPED))
            continue

        subject_id = context.subject_for(action)
        if not subject_id:
            outcomes.append((action_type, MISSING))
            continue
        board_id, columns = context.board_for(subject_id)
        if action_type == 'set_label':
            column = find_label_column(columns, action['column'])
        else:
            column = monday.find_column(columns, action['column'], action.get('column_type'))
        if not column:
            logger.warning("Column '%s' not found on board %s for item %s.", action['column'], board_id, subject_id)
            outcomes.append((action_type, MISSING))
            continue

        result = execute_action(action, subject_id, board_id, column['id'])
        if action_type == 'set_date_if_empty' and result == WRITTEN:
            context.date_written = True
        outcomes.append((action_type, result))
    return outcomes
