"""
Celery configuration for the ESG submission workers.

Loaded by `celery_app.config_from_object("celeryconfig")` in
esg_pipeline/tasks/__init__.py.  Broker/result-backend URLs come from
the application settings (CELERY_BROKER_URL / CELERY_RESULT_BACKEND),
defaulting to localhost for local dev.
"""

from esg_pipeline.core.config import settings

# ═══════════════════════════════════════════════════════════
#  Broker & Result Backend
# ═══════════════════════════════════════════════════════════

broker_url = settings.CELERY_BROKER_URL
result_backend = settings.CELERY_RESULT_BACKEND

# ═══════════════════════════════════════════════════════════
#  Serialization — JSON only
# ═══════════════════════════════════════════════════════════

task_serializer = "json"
result_serializer = "json"
accept_content = ["json"]

# ═══════════════════════════════════════════════════════════
#  Timezone
# ═══════════════════════════════════════════════════════════

timezone = "UTC"
enable_utc = True

# ═══════════════════════════════════════════════════════════
#  Task Execution
# ═══════════════════════════════════════════════════════════

# Submissions are not idempotent across attempts: a redelivered task would
# consume another attempt from the case's lifetime budget.
task_acks_late = False
task_reject_on_worker_lost = False

worker_prefetch_multiplier = 1

# 4 steps x (max 10 retries x 30 s backoff + 30 s per call), rounded up
task_soft_time_limit = 900
task_time_limit = 960

# ═══════════════════════════════════════════════════════════
#  Result Expiry — auto-clean after 24h
# ═══════════════════════════════════════════════════════════

result_expires = 86400

# ═══════════════════════════════════════════════════════════
#  Worker Settings
# ═══════════════════════════════════════════════════════════

worker_max_tasks_per_child = 200

worker_send_task_events = False
task_send_sent_event = False

# ═══════════════════════════════════════════════════════════
#  Task Routes
# ═══════════════════════════════════════════════════════════
# Run a dedicated worker for gateway traffic:
#   celery -A esg_pipeline.tasks worker -Q submissions

task_routes = {
    "esg_pipeline.tasks.submission_tasks.*": {"queue": "submissions"},
}

task_default_queue = "default"

# ═══════════════════════════════════════════════════════════
#  Beat Schedule (periodic tasks)
# ═══════════════════════════════════════════════════════════
# Deployments that do not run the API's in-process poller can poll from beat:
#   beat_schedule = {
#       "poll-esg-acknowledgments": {
#           "task": "esg_pipeline.tasks.submission_tasks.poll_acknowledgments",
#           "schedule": 300.0,
#       },
#   }
beat_schedule = {}
