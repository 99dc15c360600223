"""
Database schema initialization for FloWorx.
"""

from __future__ import annotations

import sqlite3
from pathlib import Path

from floworx.observability.logging import get_logger

logger = get_logger(__name__)

REQUIRED_TABLES = (
    "profiles",
    "integrations",
    "workflows",
    "credential_mappings",
    "deployment_metadata",
    "user_credentials",
)


def init_database(db_path: Path) -> None:
    """
    Initialize database with schema (idempotent)

    JSON-valued columns (business_types, managers, suppliers, client_config,
    email_labels, workflow_json, issues, metadata) are stored as TEXT.

    Side Effects:
        - Creates the parent directory and database file if needed
        - Creates tables and indexes that do not exist yet
    """
    db_path.parent.mkdir(parents=True, exist_ok=True)

    conn = sqlite3.connect(db_path)
    try:
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS profiles (
                user_id TEXT PRIMARY KEY,
                business_name TEXT,
                business_types TEXT NOT NULL DEFAULT '[]',
                managers TEXT NOT NULL DEFAULT '[]',
                suppliers TEXT NOT NULL DEFAULT '[]',
                client_config TEXT NOT NULL DEFAULT '{}',
                email_labels TEXT NOT NULL DEFAULT '{}',
                onboarding_step TEXT,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            );

            CREATE TABLE IF NOT EXISTS integrations (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id TEXT NOT NULL,
                provider TEXT NOT NULL,
                status TEXT NOT NULL DEFAULT 'active',
                email TEXT,
                n8n_credential_id TEXT,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                UNIQUE(user_id, provider)
            );

            CREATE TABLE IF NOT EXISTS workflows (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id TEXT NOT NULL,
                n8n_workflow_id TEXT NOT NULL,
                version INTEGER NOT NULL DEFAULT 1,
                status TEXT NOT NULL DEFAULT 'active',
                workflow_json TEXT,
                is_functional INTEGER NOT NULL DEFAULT 0,
                issues TEXT NOT NULL DEFAULT '[]',
                last_checked TIMESTAMP,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            );

            CREATE TABLE IF NOT EXISTS credential_mappings (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id TEXT NOT NULL,
                provider TEXT NOT NULL,
                n8n_credential_id TEXT NOT NULL,
                n8n_credential_name TEXT,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                UNIQUE(user_id, provider)
            );

            CREATE TABLE IF NOT EXISTS deployment_metadata (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id TEXT NOT NULL,
                n8n_workflow_id TEXT NOT NULL,
                version INTEGER NOT NULL,
                provider TEXT NOT NULL,
                business_types TEXT NOT NULL DEFAULT '[]',
                metadata TEXT NOT NULL DEFAULT '{}',
                deployed_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            );

            CREATE TABLE IF NOT EXISTS user_credentials (
                user_id TEXT NOT NULL,
                provider TEXT NOT NULL,
                encrypted_token_json TEXT NOT NULL,
                scopes TEXT NOT NULL DEFAULT '[]',
                token_expiry TIMESTAMP,
                last_refresh_at TIMESTAMP,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                PRIMARY KEY (user_id, provider)
            );

            CREATE INDEX IF NOT EXISTS idx_integrations_user_status
                ON integrations(user_id, status);
            CREATE INDEX IF NOT EXISTS idx_workflows_user_status
                ON workflows(user_id, status);
            CREATE INDEX IF NOT EXISTS idx_deployment_metadata_user
                ON deployment_metadata(user_id, deployed_at);
        """)
        conn.commit()
    finally:
        conn.close()

    logger.info("Database schema ready at %s", db_path)


def validate_schema(conn: sqlite3.Connection) -> bool:
    """
    Raises:
        ValueError: If any required table is missing
    """
    rows = conn.execute("SELECT name FROM sqlite_master WHERE type='table'").fetchall()
    existing = {row[0] for row in rows}
    missing = [table for table in REQUIRED_TABLES if table not in existing]
    if missing:
        raise ValueError(f"Database missing tables: {', '.join(missing)}")
    return True
