# celery_app.py
from celery import Celery

import config

broker_use_ssl_config = {}
if config.REDIS_URL.startswith('rediss://'):
    broker_use_ssl_config = {
        'ssl_cert_reqs': 'required',
    }

celery_app = Celery(
    'monday_tasks',
    broker=config.REDIS_URL,
    backend=config.REDIS_URL,
    include=['monday_tasks']
)

if broker_use_ssl_config:
    celery_app.conf.broker_use_ssl = broker_use_ssl_config
    celery_app.conf.redis_backend_use_ssl = broker_use_ssl_config

celery_app.conf.timezone = 'America/Sao_Paulo'
celery_app.conf.broker_heartbeat = 30
celery_app.conf.broker_transport_options = {'health_check_interval': 30, 'socket_keepalive': True}
celery_app.conf.broker_connection_retry_on_startup = True

# Countdown tasks are acknowledged after they run; a lost worker returns
# pending delayed actions to the broker.
celery_app.conf.task_acks_late = True
celery_app.conf.task_reject_on_worker_lost = True
