# issue_sync/config.py — Runtime switches for the issue synchronisation engine
import os


def _flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() not in {"0", "false", "no", "off"}


# Inbound edits overwrite the task description (title is always re-synced)
BIDIRECTIONAL_DESCRIPTIONS = _flag("SYNC_BIDIRECTIONAL_DESCRIPTIONS", "true")

DEFAULT_PRIORITY = os.getenv("SYNC_DEFAULT_PRIORITY", "medium")
EMPTY_DESCRIPTION = os.getenv("SYNC_EMPTY_DESCRIPTION", "No description provided")

# Titles carrying this prefix were written by us (legacy outbound format)
TITLE_PREFIX = os.getenv("SYNC_TITLE_PREFIX", "[Boardsync]")

# Source tag stamped on task mutations that originate from an inbound webhook
WEBHOOK_SOURCE = "webhook"

# Pushes to these branches never move a task
PROTECTED_BRANCHES = [
    b.strip() for b in os.getenv("SYNC_PROTECTED_BRANCHES", "main,master,develop,staging,production").split(",")
    if b.strip()
]

# Target columns for code events when no WorkflowRule covers them
BRANCH_PUSH_STATUS = os.getenv("SYNC_BRANCH_PUSH_STATUS", "in-progress")
PR_OPENED_STATUS = os.getenv("SYNC_PR_OPENED_STATUS", "in-review")
PR_MERGED_STATUS = os.getenv("SYNC_PR_MERGED_STATUS", "done")

HTTP_TIMEOUT = float(os.getenv("SYNC_HTTP_TIMEOUT", "15"))

# Gitea label listing is paged; 50 is its default MAX_RESPONSE_ITEMS
LABEL_PAGE_SIZE = int(os.getenv("SYNC_LABEL_PAGE_SIZE", "50"))
LABEL_MAX_PAGES = int(os.getenv("SYNC_LABEL_MAX_PAGES", "100"))

OUTBOUND_QUEUE_SIZE = int(os.getenv("SYNC_LABEL_QUEUE_SIZE", "1000"))
OUTBOUND_WORKERS = int(os.getenv("SYNC_LABEL_WORKERS", "2"))

RUN_COLUMN_MIGRATION = _flag("SYNC_RUN_COLUMN_MIGRATION", "true")

# Link lookups retry transient store errors with capped exponential backoff
DB_RETRY_ATTEMPTS = int(os.getenv("SYNC_DB_RETRY_ATTEMPTS", "3"))
DB_RETRY_BASE_DELAY = float(os.getenv("SYNC_DB_RETRY_BASE_DELAY", "0.1"))
DB_RETRY_MAX_DELAY = float(os.getenv("SYNC_DB_RETRY_MAX_DELAY", "1.0"))
