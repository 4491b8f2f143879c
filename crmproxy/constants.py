from __future__ import annotations

import logging

LOGGER = logging.getLogger("crmproxy.api")
APP_VERSION = "0.1.0"

DEFAULT_PORT = 3000
DEFAULT_SESSION_SECRET = "fallback-secret-change-in-production"
SESSION_MAX_AGE_SECONDS = 24 * 60 * 60

SALESFORCE_API_VERSION = "v58.0"
DEFAULT_LIST_LIMIT = 10
MAX_LIST_LIMIT = 200
