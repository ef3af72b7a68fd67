# ==============================================================================
# MONDAY.COM STATUS AUTOMATION WEBHOOK RECEIVER
# ==============================================================================
import os
import logging
from datetime import datetime, timezone

from flask import Flask, request, jsonify

import config
from monday_tasks import (
    archive_old_items,
    process_doc_externo_event,
    process_documentos_event,
    process_owner_change_notification,
    process_status_event,
)

logging.basicConfig(level=config.LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
config.ensure_required_settings("MONDAY_API_KEY")

app = Flask(__name__)

app.logger.info("STARTUP: %s BOOT_ID: %s PID: %s", datetime.now(timezone.utc).isoformat(), config.BOOT_ID, os.getpid())


def is_person_change(event):
    value = event.get('value')
    return isinstance(value, dict) and ('personsAndTeams' in value or 'changed_person_id' in value)


def is_subitem_checkbox_change(event):
    return bool(event.get('parentItemId')) and event.get('columnType') == 'checkbox'


def route_event(body):
    """Picks the task that handles a non-challenge webhook body."""
    event = body.get('event') if isinstance(body.get('event'), dict) else {}
    if event.get('columnTitle') == 'DOCUMENTOS':
        return process_documentos_event
    if is_person_change(event):
        return process_owner_change_notification
    if is_subitem_checkbox_change(event):
        return process_doc_externo_event
    return process_status_event


@app.route('/webhook', methods=['POST'])
def monday_webhook():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        data = {}
    if 'challenge' in data:
        app.logger.info("Responding to Monday.com webhook challenge.")
        return jsonify({'challenge': data['challenge']}), 200

    task = route_event(data)
    try:
        task.delay(data)
        app.logger.info("Queued %s.", task.name)
    except Exception:
        app.logger.exception("Could not queue %s.", task.name)
    return jsonify({"ok": True, "boot": config.BOOT_ID}), 200


@app.route('/webhook', methods=['GET'])
def webhook_status():
    return jsonify({"status": "ok", "now": datetime.now(timezone.utc).isoformat(), "boot_id": config.BOOT_ID})


@app.route('/archive', methods=['POST'])
def archive():
    started = datetime.now(timezone.utc).isoformat()
    try:
        archive_old_items.delay(config.DRY_RUN)
    except Exception:
        app.logger.exception("Could not queue archive routine.")
    return jsonify({"ok": True, "boot": config.BOOT_ID, "dryRun": config.DRY_RUN, "started": started})


@app.route('/')
def home():
    return f"Monday.com status automation is running - BOOT_ID: {config.BOOT_ID}", 200


if __name__ == '__main__':
    app.run(host='0.0.0.0', port=config.PORT)
