from pydantic_settings import BaseSettings
from pydantic import field_validator
from typing import Any, List, Optional
import re


CONFLICT_POLICIES: List[str] = ["queue", "reject"]
ENVIRONMENTS: List[str] = ["development", "production", "testing"]


def parse_tag_prefix(v: Any) -> str:
    """Normalize the protocol tag prefix (``forge`` -> ``<forge-write>``)"""
    prefix = str(v or "").strip().lower().rstrip("-")
    if not re.fullmatch(r"[a-z][a-z0-9]*", prefix):
        raise ValueError(f"Invalid tag prefix: {v!r}")
    return prefix


class Settings(BaseSettings):
    """ForgeLoop settings - all configurable via FORGELOOP_* environment variables"""

    # ==========================================
    # Application
    # ==========================================
    APP_NAME: str = "ForgeLoop"
    ENVIRONMENT: str = "development"

    # ==========================================
    # Logging
    # ==========================================
    LOG_LEVEL: str = "INFO"
    LOG_FILE: Optional[str] = None

    # ==========================================
    # Tag protocol
    # ==========================================
    TAG_PREFIX: str = "forge"

    # ==========================================
    # Workspace
    # ==========================================
    CYCLE_CONFLICT_POLICY: str = "queue"  # "queue" waits, "reject" raises WorkspaceBusyError
    MAX_FILE_SIZE_MB: int = 10

    # ==========================================
    # Auto-fix
    # ==========================================
    FIX_PROMPT_SNIPPET_LINES: int = 2  # Source lines around each problem, 0 disables
    CHECK_COMMAND_TIMEOUT: float = 120.0  # seconds

    class Config:
        env_file = ".env"
        env_prefix = "FORGELOOP_"
        case_sensitive = True
        extra = "ignore"  # Ignore extra fields in .env that aren't defined in Settings

    @field_validator("ENVIRONMENT")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        v = v.strip().lower()
        if v not in ENVIRONMENTS:
            raise ValueError(f"ENVIRONMENT must be one of {ENVIRONMENTS}")
        return v

    @field_validator("CYCLE_CONFLICT_POLICY")
    @classmethod
    def validate_conflict_policy(cls, v: str) -> str:
        v = v.strip().lower()
        if v not in CONFLICT_POLICIES:
            raise ValueError(f"CYCLE_CONFLICT_POLICY must be one of {CONFLICT_POLICIES}")
        return v

    @field_validator("TAG_PREFIX", mode="before")
    @classmethod
    def validate_tag_prefix(cls, v: Any) -> str:
        return parse_tag_prefix(v)

    @field_validator("FIX_PROMPT_SNIPPET_LINES")
    @classmethod
    def validate_snippet_lines(cls, v: int) -> int:
        return max(0, v)

    @property
    def max_file_size_bytes(self) -> int:
        return self.MAX_FILE_SIZE_MB * 1024 * 1024

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"


# Create settings instance
settings = Settings()
