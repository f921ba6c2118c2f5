"""
Application Configuration and Constants
=======================================

This module contains the constants and defaults used throughout immich-stacker.
It serves as a single source of truth for:

- Environment variable naming
- Immich API endpoints and their expected status codes
- Pagination and network parameters
- Stack apply modes and asset sources

Note:
    All constants use UPPER_SNAKE_CASE naming convention. Modify these values to
    change application-wide behavior without touching business logic.
"""

from pathlib import Path

# ============================================================================
# ENVIRONMENT
# ============================================================================
# Every setting can be supplied as an environment variable carrying this prefix,
# e.g. IMMICH_API_KEY or IMMICH_MATCH.

ENV_PREFIX = "IMMICH_"

# Optional JSON file read before the environment (lowest precedence after defaults)
DEFAULT_CONFIG_PATH = Path.home() / ".immich_stacker_config.json"

# ============================================================================
# IMMICH API ENDPOINTS
# ============================================================================

API_KEY_HEADER = "x-api-key"

ENDPOINT_SERVER_VERSION = "/api/server/version"
ENDPOINT_SEARCH_METADATA = "/api/search/metadata"
ENDPOINT_TIME_BUCKETS = "/api/timeline/buckets"
ENDPOINT_TIME_BUCKET = "/api/timeline/bucket"
ENDPOINT_STACKS = "/api/stacks"
ENDPOINT_ASSETS = "/api/assets"

# Documented success codes for each call
HTTP_OK = 200
HTTP_CREATED = 201
HTTP_NO_CONTENT = 204

# Time buckets are always requested per month
TIME_BUCKET_SIZE = "MONTH"

# ============================================================================
# PAGINATION AND NETWORK
# ============================================================================

# Number of assets requested per metadata search page
DEFAULT_PAGE_SIZE = 1000

# Maximum time to wait for a single response before timing out
NETWORK_TIMEOUT_SECONDS = 30

# Number of concurrent apply calls (1 = sequential)
DEFAULT_WORKERS = 1

# ============================================================================
# SOURCES AND APPLY MODES
# ============================================================================

SOURCE_SEARCH = "search"          # POST /api/search/metadata, nextPage cursoring
SOURCE_TIMEBUCKET = "timebucket"  # GET /api/timeline/buckets + /bucket
SUPPORTED_SOURCES = (SOURCE_SEARCH, SOURCE_TIMEBUCKET)

MODE_CREATE = "create"  # POST /api/stacks (current servers)
MODE_UPDATE = "update"  # PUT /api/assets with stackParentId (legacy servers)
MODE_AUTO = "auto"      # choose from the server version
SUPPORTED_MODES = (MODE_CREATE, MODE_UPDATE, MODE_AUTO)

# First server release exposing the dedicated stacks endpoint
STACKS_API_MIN_VERSION = (1, 113, 0)

# ============================================================================
# LOGGING
# ============================================================================

DEFAULT_LOG_LEVEL = "INFO"
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
