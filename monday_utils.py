import json
import time
import logging

import requests

import config

logger = logging.getLogger(__name__)

MAX_RETRIES = 4
INITIAL_BACKOFF_SECONDS = 2

ITEM_COLUMNS_FRAGMENT = "column_values { id value text column { id title type } }"


class MondayAPIError(Exception):
    """Raised when the Monday.com API cannot be reached or answers with GraphQL errors."""

    def __init__(self, message, errors=None):
        super().__init__(message)
        self.errors = errors


def monday_headers():
    return {
        "Authorization": config.MONDAY_API_KEY or "",
        "Content-Type": "application/json",
        "API-Version": config.MONDAY_API_VERSION,
    }


def execute_monday_graphql(query, variables=None):
    """Executes a GraphQL query/mutation against the Monday.com API.

    Rate limits and transport errors are retried with exponential backoff.
    GraphQL ``errors`` are not retried. Returns the decoded JSON response.
    """
    payload = {"query": query}
    if variables:
        payload["variables"] = variables
    delay = INITIAL_BACKOFF_SECONDS
    for attempt in range(MAX_RETRIES):
        try:
            response = requests.post(config.MONDAY_API_URL, json=payload, headers=monday_headers(), timeout=30)
            if response.status_code == 429 and attempt < MAX_RETRIES - 1:
                logger.warning("Rate limit hit. Waiting %s seconds...", delay)
                time.sleep(delay)
                delay *= 2
                continue
            response.raise_for_status()
            json_response = response.json()
        except (requests.exceptions.RequestException, ValueError) as e:
            if attempt < MAX_RETRIES - 1:
                logger.warning("Monday HTTP request error: %s. Retrying...", e)
                time.sleep(delay)
                delay *= 2
                continue
            body = getattr(getattr(e, "response", None), "text", None)
            logger.error("Final retry failed calling Monday.com: %s %s", e, body or "")
            raise MondayAPIError(f"Error communicating with Monday.com API: {e}") from e
        if "errors" in json_response:
            logger.error("Monday GraphQL error: %s", json.dumps(json_response["errors"]))
            raise MondayAPIError("GraphQL error", errors=json_response["errors"])
        return json_response
    raise MondayAPIError("Monday.com API rate limit retries exhausted")


def graphql_json_value(value):
    """Encodes a column value as the JSON string literal the mutations expect."""
    return json.dumps(json.dumps(value))


# --- Queries ---

def get_subitems_of_item(item_id):
    """Returns the ordered subitems ([{id, name}]) of a parent item."""
    query = f"query {{ items (ids: [{item_id}]) {{ id subitems {{ id name }} }} }}"
    result = execute_monday_graphql(query)
    items = result.get('data', {}).get('items') or []
    if not items:
        return []
    return items[0].get('subitems') or []


def get_item_board_and_columns(item_id):
    """Returns (board_id, columns) for the board an item (or subitem) lives on."""
    query = f"query {{ items (ids: [{item_id}]) {{ id board {{ id name columns {{ id title type }} }} }} }}"
    result = execute_monday_graphql(query)
    items = result.get('data', {}).get('items') or []
    if not items or not items[0].get('board'):
        raise MondayAPIError(f"No board found for item {item_id}")
    board = items[0]['board']
    return board['id'], board.get('columns') or []


def get_column_value(item_id, column_id):
    """Fetches the parsed value and text for a given column."""
    if not item_id or not column_id:
        return None
    query = f"""query {{ items (ids: [{item_id}]) {{ column_values (ids: ["{column_id}"]) {{ id text value type }} }} }}"""
    result = execute_monday_graphql(query)
    items = result.get('data', {}).get('items') or []
    if not items:
        return None
    column_list = items[0].get('column_values') or []
    if not column_list:
        return None
    col_val = column_list[0]
    parsed_value = col_val.get('value')
    if isinstance(parsed_value, str):
        try:
            parsed_value = json.loads(parsed_value)
        except json.JSONDecodeError:
            pass
    return {'value': parsed_value, 'text': col_val.get('text')}


def get_item_with_column_values(item_id):
    """Fetches an item with every column value and its column metadata."""
    query = f"query {{ items (ids: [{item_id}]) {{ id name {ITEM_COLUMNS_FRAGMENT} }} }}"
    result = execute_monday_graphql(query)
    items = result.get('data', {}).get('items') or []
    return items[0] if items else None


def get_parent_item(subitem_id):
    """Returns the parent item of a subitem, including its board columns."""
    query = f"""query {{ items (ids: [{subitem_id}]) {{ id name parent_item {{
        id name board {{ id columns {{ id title type }} }}
    }} }} }}"""
    result = execute_monday_graphql(query)
    items = result.get('data', {}).get('items') or []
    return items[0].get('parent_item') if items else None


def find_subitem_by_name(parent_item_id, subitem_name):
    """Finds a subitem by exact (trimmed) name, with its board and column values."""
    query = f"""query {{ items (ids: [{parent_item_id}]) {{ subitems {{
        id name board {{ id }} {ITEM_COLUMNS_FRAGMENT}
    }} }} }}"""
    result = execute_monday_graphql(query)
    items = result.get('data', {}).get('items') or []
    subitems = (items[0].get('subitems') if items else None) or []
    for subitem in subitems:
        if (subitem.get('name') or '').strip() == subitem_name:
            return subitem
    logger.warning("Subitem '%s' not found under item %s. Available: %s",
                   subitem_name, parent_item_id, ", ".join(s.get('name') or '' for s in subitems))
    return None


def get_board_items_page(board_id, cursor=None, limit=200):
    """Returns one cursor page ({cursor, items}) of a board, or None when exhausted."""
    item_fields = """items { id name updated_at column_values {
        id text type value ... on LastUpdatedValue { updated_at updater_id } } }"""
    if cursor:
        query = f"query {{ next_items_page (cursor: {json.dumps(cursor)}, limit: {limit}) {{ cursor {item_fields} }} }}"
        result = execute_monday_graphql(query)
        return result.get('data', {}).get('next_items_page')
    query = f"query {{ boards (ids: [{board_id}]) {{ items_page (limit: {limit}) {{ cursor {item_fields} }} }} }}"
    result = execute_monday_graphql(query)
    boards = result.get('data', {}).get('boards') or []
    return boards[0].get('items_page') if boards else None


def get_group_items_page(board_id, group_id, page, limit=25):
    """Returns the items (with subitems) of one numbered page of a board group."""
    query = f"""query {{ boards (ids: [{board_id}]) {{ groups (ids: {json.dumps(group_id)}) {{
        id items_page (limit: {limit}, page: {page}) {{ items {{ id name subitems {{ id name }} }} }}
    }} }} }}"""
    result = execute_monday_graphql(query)
    boards = result.get('data', {}).get('boards') or []
    groups = boards[0].get('groups') if boards else None
    if not groups:
        return []
    return (groups[0].get('items_page') or {}).get('items') or []


def find_column(columns, title, expected_type=None):
    """Locates a column by exact title, then by type, then by title substring."""
    if not isinstance(columns, list):
        return None
    wanted = (title or '').lower()
    for column in columns:
        if (column.get('title') or '').lower() == wanted:
            return column
    if expected_type:
        expected = expected_type.lower()
        for column in columns:
            if expected in (column.get('type') or '').lower():
                return column
    for column in columns:
        if wanted and wanted in (column.get('title') or '').lower():
            return column
    logger.warning("Column title='%s' type='%s' not found.", title, expected_type)
    return None


# --- Mutations ---

def change_column_value(board_id, item_id, column_id, value):
    """Writes a JSON column value (date, people, checkbox, status...)."""
    mutation = f"""mutation {{ change_column_value (
        board_id: {board_id}, item_id: {item_id}, column_id: "{column_id}", value: {graphql_json_value(value)}
    ) {{ id }} }}"""
    result = execute_monday_graphql(mutation)
    return bool(result.get('data', {}).get('change_column_value'))


def change_simple_column_value(board_id, item_id, column_id, value):
    mutation = f"""mutation {{ change_simple_column_value (
        board_id: {board_id}, item_id: {item_id}, column_id: "{column_id}", value: {json.dumps(str(value))}
    ) {{ id }} }}"""
    result = execute_monday_graphql(mutation)
    return bool(result.get('data', {}).get('change_simple_column_value'))


def stop_time_tracking(item_id, column_id):
    mutation = f'mutation {{ stop_time_tracking (item_id: {item_id}, column_id: "{column_id}") {{ id }} }}'
    result = execute_monday_graphql(mutation)
    return bool(result.get('data', {}).get('stop_time_tracking'))


def archive_item(item_id):
    mutation = f"mutation {{ archive_item (item_id: {item_id}) {{ id }} }}"
    result = execute_monday_graphql(mutation)
    return bool(result.get('data', {}).get('archive_item'))
