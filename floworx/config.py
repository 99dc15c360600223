"""Centralized configuration for the FloWorx backend.

Typed constants for database, HTTP retry, n8n, Microsoft Graph, provisioning
and API settings. Environment variable overrides use safe defaults so the app
starts without extra env configuration. The nearest .env file is loaded first.
"""

from __future__ import annotations

import os

from floworx.infrastructure.env import ensure_env_loaded

ensure_env_loaded()

# --- App ---
APP_VERSION: str = "1.0.0"
APP_ENV: str = os.getenv("FLOWORX_ENV", "development")

# --- Database ---
DB_POOL_SIZE: int = int(os.getenv("FLOWORX_DB_POOL_SIZE", "5"))
DB_POOL_TIMEOUT: float = float(os.getenv("FLOWORX_DB_POOL_TIMEOUT", "5.0"))
DB_CONNECT_TIMEOUT: float = float(os.getenv("FLOWORX_DB_CONNECT_TIMEOUT", "30.0"))
DB_TEMP_CONN_MAX: int = int(os.getenv("FLOWORX_DB_TEMP_CONN_MAX", "10"))
DB_RETRY_MAX: int = int(os.getenv("FLOWORX_DB_RETRY_MAX", "5"))
DB_RETRY_BASE_DELAY: float = float(os.getenv("FLOWORX_DB_RETRY_BASE_DELAY", "0.1"))
DB_RETRY_MAX_DELAY: float = float(os.getenv("FLOWORX_DB_RETRY_MAX_DELAY", "2.0"))
DB_RETRY_JITTER: float = float(os.getenv("FLOWORX_DB_RETRY_JITTER", "0.1"))

# --- Outbound HTTP ---
HTTP_TIMEOUT_SECONDS: float = float(os.getenv("FLOWORX_HTTP_TIMEOUT", "30.0"))
HTTP_RETRY_MAX_ATTEMPTS: int = int(os.getenv("FLOWORX_HTTP_RETRY_MAX_ATTEMPTS", "3"))
HTTP_RETRY_BASE_DELAY: float = float(os.getenv("FLOWORX_HTTP_RETRY_BASE_DELAY", "0.5"))
HTTP_RETRY_MAX_DELAY: float = float(os.getenv("FLOWORX_HTTP_RETRY_MAX_DELAY", "5.0"))

# --- n8n ---
N8N_BASE_URL: str = os.getenv("N8N_BASE_URL", "http://localhost:5678")
N8N_API_KEY: str = os.getenv("N8N_API_KEY", "")
N8N_TIMEOUT_SECONDS: float = float(os.getenv("FLOWORX_N8N_TIMEOUT", "30.0"))
N8N_OPENAI_CREDENTIAL_ID: str = os.getenv("N8N_OPENAI_CREDENTIAL_ID", "")
N8N_EXECUTION_SAMPLE_LIMIT: int = 5
WORKFLOW_HEALTH_MAX_AGE_HOURS: int = int(os.getenv("FLOWORX_WORKFLOW_HEALTH_MAX_AGE_HOURS", "24"))

# --- Microsoft Graph ---
GRAPH_BASE_URL: str = "https://graph.microsoft.com/v1.0"
GRAPH_RETRY_MAX: int = int(os.getenv("FLOWORX_GRAPH_RETRY_MAX", "3"))
GRAPH_RETRY_BASE_DELAY: float = float(os.getenv("FLOWORX_GRAPH_RETRY_BASE_DELAY", "1.0"))
GRAPH_RETRY_MAX_DELAY: float = float(os.getenv("FLOWORX_GRAPH_RETRY_MAX_DELAY", "30.0"))

# --- OAuth client apps (used when creating n8n credentials) ---
GOOGLE_OAUTH_CLIENT_ID: str = os.getenv("GOOGLE_OAUTH_CLIENT_ID", "")
GOOGLE_OAUTH_CLIENT_SECRET: str = os.getenv("GOOGLE_OAUTH_CLIENT_SECRET", "")
MICROSOFT_OAUTH_CLIENT_ID: str = os.getenv("MICROSOFT_OAUTH_CLIENT_ID", "")
MICROSOFT_OAUTH_CLIENT_SECRET: str = os.getenv("MICROSOFT_OAUTH_CLIENT_SECRET", "")

# --- Provisioning ---
DEFAULT_BUSINESS_TYPE: str = "Pools & Spas"
CORE_FOLDER_THRESHOLD: float = 0.70
LABEL_CREATE_DELAY_SECONDS: float = float(os.getenv("FLOWORX_LABEL_CREATE_DELAY", "0.1"))
MAX_MANAGERS: int = 5
MAX_SUPPLIERS: int = 10

# --- Schemas ---
SCHEMA_CACHE_SIZE: int = int(os.getenv("FLOWORX_SCHEMA_CACHE_SIZE", "64"))

# --- API ---
API_KEY: str = os.getenv("FLOWORX_API_KEY", "")
