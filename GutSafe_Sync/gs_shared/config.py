# Redis Connection (on-device store)

REDIS_HOST              = "localhost"
REDIS_PORT              = 6379
REDIS_CACHE_DB          = 0          # Logical DB for the offline cache
REDIS_SOCKET_TIMEOUT    = 5          # seconds

# Key Namespace Prefixes

ROW_KEY_PREFIX          = "gs:v1:row"            # gs:v1:row:{table}:{key}
IDX_KEY_PREFIX          = "gs:v1:idx"            # gs:v1:idx:{table}
SEQ_KEY_PREFIX          = "gs:v1:seq"            # gs:v1:seq:{name}

# Tables

FOOD_TABLE              = "food_items"
SCAN_QUEUE_TABLE        = "scan_queue"
SCAN_ID_SEQUENCE        = "scan_queue_id"

# Network Monitor

PROBE_URL               = "http://localhost:8000/v1/health"
PROBE_TIMEOUT_SECONDS   = 5.0
PROBE_INTERVAL_SECONDS  = 30.0
PROBE_DEBOUNCE_SECONDS  = 1.0

# Latency buckets: (upper bound ms, penalty). Anything slower takes the last penalty.
LATENCY_PENALTIES       = ((200, 0), (500, 5), (1000, 15))
LATENCY_MAX_PENALTY     = 30
RELIABILITY_WEIGHT      = 0.2
RELIABILITY_PER_MINUTE  = 10         # points of reliability per minute of uptime

# Sync Coordinator

SYNC_QUALITY_THRESHOLD      = 50
MAX_ATTEMPTS                = 8
SUBMISSION_TIMEOUT_SECONDS  = 10.0
DRAIN_INTERVAL_SECONDS      = 60.0
BACKOFF_BASE_SECONDS        = 1.0
BACKOFF_MULTIPLIER          = 2.0
BACKOFF_CAP_SECONDS         = 60.0
BACKOFF_MAX_DOUBLINGS       = 6

# Remote Sync Endpoint

REMOTE_BASE_URL         = "http://localhost:8000"
REMOTE_SCANS_PATH       = "/v1/scans"

# Retention

SYNCED_RETENTION_DAYS   = 30

# Encryption

ENCRYPTION_SALT         = "gutsafe-salt-v01"     # must be 16 bytes (argon2id salt size)
ENCRYPTED_MARKER        = "__encrypted"

# Fields treated as sensitive health data wherever they appear in a record
DEFAULT_SENSITIVE_FIELDS = frozenset({
    "name",
    "email",
    "symptoms",
    "medications",
    "personal_notes",
    "health_conditions",
    "dietary_restrictions",
    "medical_history",
})

# Per-table sensitive columns encrypted before they reach the store
TABLE_SENSITIVE_FIELDS = {
    SCAN_QUEUE_TABLE: ("analysis_payload",),
}

# Valid Enums (for validation)

VALID_SYNC_STATES       = {"PENDING", "SYNCING", "SYNCED", "FAILED"}
