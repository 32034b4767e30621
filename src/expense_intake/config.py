"""Configuration for expense intake services."""

import os
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field

ENV_PREFIX = "EXPENSE_INTAKE_"


class IntakeSettings(BaseModel):
    """
    Every key, endpoint, timeout and limit the services need.

    Components receive these values at construction; nothing reads the
    environment after ``from_env`` has run.
    """

    model_config = ConfigDict(frozen=True)

    anthropic_api_key: str | None = Field(default=None, repr=False)
    anthropic_model: str = "claude-haiku-4-5"
    anthropic_max_tokens: int = 1024
    completion_timeout: float = 20.0
    completion_max_attempts: int = 2

    ocr_enabled: bool = True
    ocr_timeout: float = 30.0

    workflow_url: str | None = None
    workflow_timeout: float = 30.0
    workflow_health_timeout: float = 5.0
    workflow_max_retries: int = 2
    workflow_retry_delay: float = 2.0
    pdf_primary_budget_seconds: float = 90.0

    supabase_url: str | None = None
    supabase_key: str | None = Field(default=None, repr=False)
    document_function_timeout: float = 30.0
    storage_bucket: str = "receipts"
    local_storage_path: Path | None = None

    max_upload_bytes: int = 10 * 1024 * 1024
    conversation_history_limit: int = 10

    @classmethod
    def from_env(cls, env_file: str | Path | None = None) -> "IntakeSettings":
        """Build settings from the process environment after loading a ``.env`` file."""
        load_dotenv(env_file)

        def env(name: str) -> str | None:
            value = os.getenv(ENV_PREFIX + name)
            return value if value not in (None, "") else None

        values = {
            "anthropic_api_key": os.getenv("ANTHROPIC_API_KEY") or None,
            "anthropic_model": env("ANTHROPIC_MODEL"),
            "anthropic_max_tokens": env("ANTHROPIC_MAX_TOKENS"),
            "completion_timeout": env("COMPLETION_TIMEOUT"),
            "completion_max_attempts": env("COMPLETION_MAX_ATTEMPTS"),
            "ocr_enabled": env("OCR_ENABLED"),
            "ocr_timeout": env("OCR_TIMEOUT"),
            "workflow_url": env("WORKFLOW_URL"),
            "workflow_timeout": env("WORKFLOW_TIMEOUT"),
            "workflow_health_timeout": env("WORKFLOW_HEALTH_TIMEOUT"),
            "workflow_max_retries": env("WORKFLOW_MAX_RETRIES"),
            "workflow_retry_delay": env("WORKFLOW_RETRY_DELAY"),
            "pdf_primary_budget_seconds": env("PDF_PRIMARY_BUDGET_SECONDS"),
            "supabase_url": os.getenv("SUPABASE_URL") or None,
            "supabase_key": os.getenv("SUPABASE_KEY") or None,
            "document_function_timeout": env("DOCUMENT_FUNCTION_TIMEOUT"),
            "storage_bucket": env("STORAGE_BUCKET"),
            "local_storage_path": env("LOCAL_STORAGE_PATH"),
            "max_upload_bytes": env("MAX_UPLOAD_BYTES"),
            "conversation_history_limit": env("CONVERSATION_HISTORY_LIMIT"),
        }
        # Unset variables keep the field defaults
        return cls.model_validate({k: v for k, v in values.items() if v is not None})
