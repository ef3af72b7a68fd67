import time
import logging

import config
import monday_utils as monday
import status_rules
from action_executors import MISSING, SKIPPED, ActionContext, execute_actions

logger = logging.getLogger(__name__)

PAGE_SIZE = 25
DELAY_BETWEEN_SUBITEMS = 0.15


def get_all_items_from_group(board_id, group_id, page_size=PAGE_SIZE):
    all_items = []
    page = 1
    while True:
        items = monday.get_group_items_page(board_id, group_id, page, page_size)
        if not items:
            break
        all_items.extend(items)
        if len(items) < page_size:
            break
        page += 1
    return all_items


def close_group_subitems(board_id=None, group_id=None, column_title=None, index=None):
    """Sets every subitem of every item in a group to the 'Fechado' status index.

    ``board_id`` is the parent board holding the group. Each subitem's own board
    and its status column (matched by title) are looked up before writing.
    """
    board_id = board_id or config.DONE_BOARD_ID
    group_id = group_id or config.DONE_GROUP_ID
    action = dict(status_rules.CLOSE_SUBITEM_ACTION)
    if column_title:
        action['column'] = column_title
    if index is not None:
        action['index'] = index

    items = get_all_items_from_group(board_id, group_id)
    logger.info("Found %s items in group %s.", len(items), group_id)
    updated = 0
    for item in items:
        for subitem in item.get('subitems') or []:
            logger.info("Updating subitem '%s' (%s) -> index %s", subitem.get('name'), subitem['id'], action['index'])
            try:
                [(_, result)] = execute_actions([action], ActionContext(item['id'], subitem))
            except monday.MondayAPIError as e:
                logger.error("Could not update subitem %s: %s", subitem['id'], e.errors or e)
            else:
                if result and result not in (MISSING, SKIPPED):
                    updated += 1
            time.sleep(DELAY_BETWEEN_SUBITEMS)
    return updated


if __name__ == '__main__':
    logging.basicConfig(level=config.LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    config.ensure_required_settings("MONDAY_API_KEY", "DONE_BOARD_ID", "DONE_GROUP_ID")
    try:
        total = close_group_subitems()
    except monday.MondayAPIError as e:
        logger.error("Aborted: %s. If this is 'maxComplexityExceeded', lower PAGE_SIZE.", e.errors or e)
    else:
        logger.info("Done: %s subitems processed.", total)
