import os

# Logging
LOG_LEVEL = os.getenv("OPPSTATUS_LOG_LEVEL", "INFO").upper()

# Audit worker log stream
AUDIT_WORKER_LOG_GROUP = os.getenv("AUDIT_WORKER_LOG_GROUP", "/aws/lambda/spacecat-services--audit-worker")

# Search windows (milliseconds)
EXECUTION_BUFFER_MS = int(os.getenv("OPPSTATUS_EXECUTION_BUFFER_MS", str(5 * 60 * 1000)))
FAILURE_BUFFER_MS = int(os.getenv("OPPSTATUS_FAILURE_BUFFER_MS", str(30 * 1000)))
FALLBACK_WINDOW_MS = int(os.getenv("OPPSTATUS_FALLBACK_WINDOW_MS", str(30 * 60 * 1000)))

# Timeouts (seconds)
PROBE_TIMEOUT_SECONDS = float(os.getenv("OPPSTATUS_PROBE_TIMEOUT", "10"))
DIAGNOSIS_DEADLINE_SECONDS = float(os.getenv("OPPSTATUS_DEADLINE", "60"))
MAX_WORKERS = int(os.getenv("OPPSTATUS_MAX_WORKERS", "8"))

# Top pages import
TOP_PAGES_SOURCE = os.getenv("OPPSTATUS_TOP_PAGES_SOURCE", "ahrefs")
TOP_PAGES_GEO = os.getenv("OPPSTATUS_TOP_PAGES_GEO", "global")

# Bot protection
HIGH_CONFIDENCE_THRESHOLD = float(os.getenv("OPPSTATUS_HIGH_CONFIDENCE", "0.95"))
BOT_IPS = os.getenv("SPACECAT_BOT_IPS", "")
BOT_USER_AGENT = os.getenv("SPACECAT_BOT_USER_AGENT", "Spacecat/1.0")
