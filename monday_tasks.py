import json
import time

from celery.utils.log import get_task_logger

import config
import monday_utils as monday
import status_rules
import whatsapp_utils as whatsapp
from action_executors import ActionContext, execute_actions, find_label_column, set_checked, set_label
from archive_old_items import run_archive
from celery_app import celery_app
from event_normalizer import extract_person_id, normalize_event

logger = get_task_logger(__name__)

DELAYED_RULE_MAX_RETRIES = 3
DELAYED_RULE_RETRY_SECONDS = 30
DELAY_BETWEEN_SUBITEMS = 0.25

DOCUMENTOS_COLUMN_TITLE = 'DOCUMENTOS'
DOC_EXTERNO_LABELS = (('UNIFICAÇÃO', 'DOC - UNIFICAÇÃO'), ('DESMEMBRAMENTO', 'DOC - DESMEMBRAMENTO'))
COLUMN_CHANGE_TYPES = ('update_column_value', 'change_column_value')

# --- Helper Functions ---

def apply_rule(rule, item_id, subitems, dated_subitems=()):
    """Runs a rule against its target subitem(s).

    A MondayAPIError abandons the remaining actions for the current target only.
    ``dated_subitems`` lists subitems whose date an earlier attempt already wrote.
    Returns (outcomes, errors, dated) where dated lists the subitem ids whose
    date is known to have been written by this rule.
    """
    outcomes, errors, dated = [], [], []
    targets = status_rules.resolve_targets(subitems, rule.target)
    for position, target in enumerate(targets):
        if position:
            time.sleep(DELAY_BETWEEN_SUBITEMS)
        context = ActionContext(item_id, target, date_written=target.get('id') in dated_subitems)
        try:
            outcomes.extend(execute_actions(rule.actions, context))
        except monday.MondayAPIError as e:
            logger.error("Rule '%s' abandoned for subitem %s of item %s: %s",
                         rule.name, target.get('id'), item_id, e.errors or e)
            errors.append(e)
        if context.date_written:
            dated.append(target.get('id'))
    return outcomes, errors, dated


def schedule_delayed_rule(rule, item_id, status_text):
    """Queues a rule to run after its settle delay. Returns the cancellable AsyncResult."""
    logger.info("Scheduling rule '%s' for item %s in %ss.", rule.name, item_id, rule.delay_seconds)
    return run_delayed_rule.apply_async(args=[item_id, rule.name, status_text], countdown=rule.delay_seconds)


def cancel_delayed_rule(task_id):
    logger.info("Revoking delayed rule task %s.", task_id)
    celery_app.control.revoke(task_id)


def dispatch_status_event(item_id, status_text):
    """Maps a status change on a parent item to its rule and runs or schedules it."""
    if not status_rules.is_accepted_status(status_text):
        logger.info("Status '%s' is not accepted. Ignoring.", status_text)
        return None
    try:
        subitems = monday.get_subitems_of_item(item_id)
    except monday.MondayAPIError as e:
        logger.error("Could not load subitems of item %s: %s", item_id, e.errors or e)
        return None
    if not subitems:
        logger.info("Item %s has no subitems. Nothing to update.", item_id)
        return None

    rule = status_rules.match_rule(status_text)
    if rule is None:
        logger.info("No rule matches status '%s'.", status_text)
        return None
    logger.info("Status '%s' on item %s matched rule '%s' (%s subitems).", status_text, item_id, rule.name, len(subitems))

    if rule.delay_seconds > 0:
        result = schedule_delayed_rule(rule, item_id, status_text)
        return {'rule': rule.name, 'scheduled': result.id}
    outcomes, _, _ = apply_rule(rule, item_id, subitems)
    return {'rule': rule.name, 'outcomes': outcomes}


def list_document_files(column_value):
    """Lists the files of a file column from its JSON value, falling back to its text."""
    files = []
    raw_value = column_value.get('value')
    if raw_value:
        try:
            parsed = json.loads(raw_value) if isinstance(raw_value, str) else raw_value
        except json.JSONDecodeError:
            parsed = None
        if isinstance(parsed, dict) and isinstance(parsed.get('files'), list):
            files = parsed['files']
        elif isinstance(parsed, list):
            files = parsed
        elif isinstance(parsed, dict) and isinstance(parsed.get('assets'), list):
            files = parsed['assets']
    if not files and column_value.get('text'):
        files = [{'name': name.strip()} for name in column_value['text'].split(',') if name.strip()]
    return [f.get('name') or f.get('file_name') or f.get('filename') or '' for f in files if isinstance(f, dict)]


def _column_by_title(item, title):
    for column_value in item.get('column_values') or []:
        if (column_value.get('column') or {}).get('title') == title:
            return column_value
    return None

# --- Celery Tasks ---

@celery_app.task(name='monday_tasks.process_status_event')
def process_status_event(body):
    """Normalizes a status webhook and runs the matching rule."""
    item_id, status_text = normalize_event(body)
    if not status_text:
        logger.info("No status extracted. Ignoring event.")
        return None
    if not item_id:
        logger.warning("No item id found in payload.")
        return None
    return dispatch_status_event(item_id, status_text)


@celery_app.task(name='monday_tasks.run_delayed_rule', bind=True, max_retries=DELAYED_RULE_MAX_RETRIES)
def run_delayed_rule(self, item_id, rule_name, status_text, dated_subitems=None):
    """Re-resolves the subitem list after the settle delay and runs the rule.

    Retries carry the subitems whose date was already stamped so their
    checkbox is still set once the API recovers.
    """
    dated_subitems = list(dated_subitems or [])
    rule = next((r for r in status_rules.STATUS_RULES if r.name == rule_name), None)
    if rule is None:
        logger.warning("Rule '%s' no longer exists. Dropping delayed action for item %s.", rule_name, item_id)
        return None
    try:
        subitems = monday.get_subitems_of_item(item_id)
    except monday.MondayAPIError as exc:
        return _retry_or_drop(self, exc, rule_name, item_id, dated_subitems)
    if not subitems:
        logger.info("Item %s has no subitems after delay. Nothing to update.", item_id)
        return None
    outcomes, errors, dated = apply_rule(rule, item_id, subitems, dated_subitems)
    if errors:
        return _retry_or_drop(self, errors[-1], rule_name, item_id, sorted(set(dated_subitems) | set(dated)))
    return {'rule': rule.name, 'status': status_text, 'outcomes': outcomes}


def _retry_or_drop(task, exc, rule_name, item_id, dated_subitems):
    if task.request.retries >= task.max_retries:
        logger.error("Delayed rule '%s' for item %s failed after %s retries: %s",
                     rule_name, item_id, task.request.retries, exc)
        return None
    raise task.retry(exc=exc, countdown=DELAYED_RULE_RETRY_SECONDS,
                     kwargs={'dated_subitems': dated_subitems})


@celery_app.task(name='monday_tasks.process_owner_change_notification')
def process_owner_change_notification(body):
    """Forwards a WhatsApp notice when the responsible person becomes the watched user."""
    person_id = extract_person_id(body)
    logger.info("Owner change detected. New responsible id: %s", person_id)
    if person_id is None or person_id != str(config.NOTIFY_PERSON_ID):
        return False
    try:
        whatsapp.send_text(config.NOTIFY_MESSAGE)
    except whatsapp.WhatsAppError as e:
        logger.error("Could not send WhatsApp notification: %s", e)
        return False
    logger.info("Notification sent for person %s.", person_id)
    return True


@celery_app.task(name='monday_tasks.process_documentos_event')
def process_documentos_event(body):
    """Marks 'ABRIR O. S.' done once DOCUMENTOS holds exactly two files, one being ART.pdf."""
    item_id = normalize_event(body).item_id
    if not item_id:
        logger.warning("No item id found in DOCUMENTOS event.")
        return False
    try:
        item = monday.get_item_with_column_values(item_id)
        if not item:
            logger.warning("Item %s not found.", item_id)
            return False
        documentos = _column_by_title(item, DOCUMENTOS_COLUMN_TITLE)
        if not documentos:
            logger.warning("Column %s not found on item %s.", DOCUMENTOS_COLUMN_TITLE, item_id)
            return False
        file_names = list_document_files(documentos)
        has_art_pdf = any('art.pdf' in name.lower() for name in file_names)
        logger.info("Item '%s': %s file(s) %s. ART.pdf present: %s", item.get('name'), len(file_names), file_names, has_art_pdf)
        if len(file_names) != 2 or not has_art_pdf:
            return False

        subitem = monday.find_subitem_by_name(item_id, status_rules.ABRIR_OS_SUBITEM_NAME)
        concluido = _column_by_title(subitem, status_rules.CHECK_COLUMN_TITLE) if subitem else None
        if not concluido:
            logger.warning("Subitem '%s' or its %s column not found on item %s.",
                           status_rules.ABRIR_OS_SUBITEM_NAME, status_rules.CHECK_COLUMN_TITLE, item_id)
            return False
        set_checked(subitem['id'], subitem['board']['id'], concluido['column']['id'])
    except monday.MondayAPIError as e:
        logger.error("DOCUMENTOS processing failed for item %s: %s", item_id, e.errors or e)
        return False
    logger.info("Subitem '%s' of item %s marked as done.", status_rules.ABRIR_OS_SUBITEM_NAME, item_id)
    return True


@celery_app.task(name='monday_tasks.process_doc_externo_event')
def process_doc_externo_event(body):
    """Propagates a ticked UNIFICAÇÃO/DESMEMBRAMENTO subitem to the parent's DOC EXTERNO label."""
    event = (body or {}).get('event') or {}
    if event.get('type') not in COLUMN_CHANGE_TYPES:
        logger.info("Event type '%s' is not a column change. Ignoring.", event.get('type'))
        return False
    subitem_id = normalize_event(body).item_id
    if not subitem_id:
        logger.warning("No item id found in DOC EXTERNO event.")
        return False
    try:
        subitem = monday.get_item_with_column_values(subitem_id)
        if not subitem:
            logger.warning("Subitem %s not found.", subitem_id)
            return False
        name = (subitem.get('name') or '').upper()
        label = next((text for token, text in DOC_EXTERNO_LABELS if token in name), None)
        if not label:
            logger.info("Subitem '%s' is neither UNIFICAÇÃO nor DESMEMBRAMENTO. Ignoring.", subitem.get('name'))
            return False

        checkbox = next((cv for cv in subitem.get('column_values') or []
                         if (cv.get('column') or {}).get('type') == 'checkbox'), None)
        if not checkbox:
            logger.warning("No checkbox column on subitem %s.", subitem_id)
            return False
        try:
            checked = json.loads(checkbox.get('value') or '{}').get('checked') in (True, 'true')
        except (json.JSONDecodeError, AttributeError):
            logger.warning("Could not parse checkbox value: %s", checkbox.get('value'))
            return False
        if not checked:
            logger.info("Checkbox on subitem %s is not checked. Ignoring.", subitem_id)
            return False

        parent = monday.get_parent_item(subitem_id)
        if not parent or not parent.get('board'):
            logger.warning("Parent item of subitem %s not found.", subitem_id)
            return False
        column = find_label_column(parent['board'].get('columns') or [], status_rules.DOC_EXTERNO_COLUMN_TITLE)
        if not column:
            logger.warning("Column %s not found on parent item %s.", status_rules.DOC_EXTERNO_COLUMN_TITLE, parent['id'])
            return False
        set_label(parent['id'], parent['board']['id'], column['id'], label)
    except monday.MondayAPIError as e:
        logger.error("DOC EXTERNO processing failed for subitem %s: %s", subitem_id, e.errors or e)
        return False
    logger.info("'%s' applied to DOC EXTERNO of parent item %s.", label, parent['id'])
    return True


@celery_app.task(name='monday_tasks.archive_old_items')
def archive_old_items(dry_run=None):
    return run_archive(dry_run=dry_run)
