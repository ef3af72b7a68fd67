import re
import json
import time
import logging
from datetime import datetime, timedelta, timezone

import config
import monday_utils as monday

logger = logging.getLogger(__name__)

PAGE_LIMIT = 200
DELAY_BETWEEN_ARCHIVES = 0.2
DELAY_BETWEEN_PAGES = 0.3

PT_MONTHS = {
    'jan': 1, 'fev': 2, 'feb': 2, 'mar': 3, 'abr': 4, 'apr': 4, 'mai': 5, 'may': 5, 'jun': 6,
    'jul': 7, 'ago': 8, 'aug': 8, 'set': 9, 'sep': 9, 'out': 10, 'oct': 10, 'nov': 11,
    'dez': 12, 'dec': 12,
}

ISO_RE = re.compile(r'\d{4}-\d{2}-\d{2}(?:[T ]\d{2}:\d{2}:\d{2}(?:\.\d+)?)?')
DMY_RE = re.compile(r'(\d{1,2})/(\d{1,2})/(\d{4})')
MONTH_NAME_RE = re.compile(r'([A-Za-zÀ-ú]{3,})\s+(\d{1,2}),\s*(\d{4})')


def parse_date_tolerant(text):
    """Parses ISO, DD/MM/YYYY and 'Mon DD, YYYY' (English or Portuguese months) as UTC."""
    if text is None:
        return None
    s = str(text).strip()
    if not s:
        return None

    iso = ISO_RE.search(s)
    if iso:
        raw = iso.group(0).replace(' ', 'T')
        fmt = '%Y-%m-%dT%H:%M:%S' if 'T' in raw else '%Y-%m-%d'
        try:
            return datetime.strptime(raw.split('.')[0], fmt).replace(tzinfo=timezone.utc)
        except ValueError:
            return None

    dmy = DMY_RE.search(s)
    if dmy:
        day, month, year = (int(part) for part in dmy.groups())
        try:
            return datetime(year, month, day, tzinfo=timezone.utc)
        except ValueError:
            return None

    named = MONTH_NAME_RE.search(s)
    if named:
        month = PT_MONTHS.get(named.group(1)[:3].lower())
        if month:
            try:
                return datetime(int(named.group(3)), month, int(named.group(2)), tzinfo=timezone.utc)
            except ValueError:
                return None
    return None


def parse_timestamp(value):
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(str(value).replace('Z', '+00:00'))
    except ValueError:
        return parse_date_tolerant(value)
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def parse_last_updated(item):
    """Finds when an item was last touched: item.updated_at, else the first dated column."""
    last = parse_timestamp(item.get('updated_at'))
    if last:
        return last
    for column in item.get('column_values') or []:
        if not column:
            continue
        last = parse_timestamp(column.get('updated_at')) or parse_date_tolerant(column.get('text'))
        if last:
            return last
        raw_value = column.get('value')
        if raw_value:
            try:
                value = json.loads(raw_value)
            except (json.JSONDecodeError, TypeError):
                continue
            if isinstance(value, dict):
                candidate = (value.get('date') or value.get('datetime') or value.get('updated_at')
                             or value.get('timestamp') or value.get('value'))
                last = parse_date_tolerant(candidate)
                if last:
                    return last
    return None


def run_archive(board_ids=None, days=None, dry_run=None, now=None):
    """Archives items not updated in `days` days. Returns how many were archived."""
    board_ids = config.ARCHIVE_BOARD_IDS if board_ids is None else board_ids
    days = config.ARCHIVE_DAYS if days is None else days
    dry_run = config.DRY_RUN if dry_run is None else dry_run
    cutoff = (now or datetime.now(timezone.utc)) - timedelta(days=days)
    logger.info("Archive started. boards=%s days=%s dry_run=%s cutoff=%s", board_ids, days, dry_run, cutoff.isoformat())

    total_archived = 0
    for board_id in board_ids:
        cursor = None
        page = 1
        while True:
            logger.info("Board %s: processing page %s...", board_id, page)
            try:
                page_info = monday.get_board_items_page(board_id, cursor, PAGE_LIMIT)
            except monday.MondayAPIError as e:
                logger.error("Could not fetch page %s of board %s: %s", page, board_id, e.errors or e)
                break
            if not page_info:
                break

            for item in page_info.get('items') or []:
                last = parse_last_updated(item)
                if not last or last >= cutoff:
                    continue
                logger.info("[CANDIDATE] %s '%s' last=%s", item['id'], item.get('name'), last.isoformat())
                if dry_run:
                    continue
                try:
                    monday.archive_item(int(item['id']))
                except monday.MondayAPIError as e:
                    logger.error("Could not archive item %s: %s", item['id'], e.errors or e)
                    continue
                total_archived += 1
                time.sleep(DELAY_BETWEEN_ARCHIVES)

            cursor = page_info.get('cursor')
            if not cursor:
                break
            page += 1
            time.sleep(DELAY_BETWEEN_PAGES)

    logger.info("Archive finished. Total archived: %s", total_archived)
    return total_archived


if __name__ == '__main__':
    logging.basicConfig(level=config.LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    config.ensure_required_settings("MONDAY_API_KEY")
    if config.DRY_RUN:
        logger.info("=== SCRIPT IS RUNNING IN DRY RUN MODE ===")
    run_archive()
