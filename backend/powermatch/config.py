import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

AUTO_APPLY_POLICIES = ("unviewed_only", "include_viewed")

_TRUTHY = {"1", "true", "True", "yes", "YES"}

# Default to a local SQLite DB for dev so the backend can start out-of-the-box.
# Use an absolute path so it works regardless of current working directory.
_default_sqlite_path = (Path(__file__).resolve().parent.parent / "dev.db").as_posix()


def _env_int(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip()
    return int(raw) if raw else default


def _env_float(name: str, default: float) -> float:
    raw = (os.getenv(name) or "").strip()
    return float(raw) if raw else default


def _env_flag(name: str, default: bool = False) -> bool:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    return raw in _TRUTHY


@dataclass(frozen=True)
class Settings:
    """
    Immutable runtime configuration.

    Built once (usually via `Settings.from_env()`) and handed to the batch
    services and the FastAPI app; nothing reads the environment after that.
    """

    database_url: str = f"sqlite:///{_default_sqlite_path}"
    # Shared secret for the batch entry points. Empty means every call is rejected.
    function_secret: str = ""

    # Hosted scoring / trigger service
    scoring_service_url: str = ""
    scoring_service_key: str = ""
    scoring_timeout_s: float = 10.0
    scoring_max_retries: int = 1

    batch_max_workers: int = 4
    auto_apply_policy: str = "unviewed_only"
    auto_apply_atomic: bool = False
    auto_apply_cover_letter: str = "Automatically applied via Power Match feature."

    withdraw_after_days: int = 2
    check_in_max_age_hours: int = 24

    frontend_origins: tuple[str, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        if self.auto_apply_policy not in AUTO_APPLY_POLICIES:
            raise ValueError(
                f"auto_apply_policy must be one of {', '.join(AUTO_APPLY_POLICIES)}, got {self.auto_apply_policy!r}"
            )
        if self.batch_max_workers < 1:
            raise ValueError("batch_max_workers must be >= 1")
        if self.withdraw_after_days < 0:
            raise ValueError("withdraw_after_days must be >= 0")

    @classmethod
    def from_env(cls) -> "Settings":
        # Override=True so changes in .env take effect on process reload.
        # Tests set DISABLE_DOTENV=1 so a developer .env never leaks in.
        if os.getenv("DISABLE_DOTENV") != "1":
            load_dotenv(override=True)

        origins = tuple(
            origin.strip()
            for origin in (os.getenv("FRONTEND_ORIGINS") or "").split(",")
            if origin.strip()
        )
        return cls(
            database_url=(os.getenv("DATABASE_URL") or "").strip() or cls.database_url,
            function_secret=(os.getenv("FUNCTION_SECRET") or "").strip(),
            scoring_service_url=(os.getenv("SCORING_SERVICE_URL") or "").strip(),
            scoring_service_key=(os.getenv("SCORING_SERVICE_KEY") or "").strip(),
            scoring_timeout_s=_env_float("SCORING_TIMEOUT_S", cls.scoring_timeout_s),
            scoring_max_retries=_env_int("SCORING_MAX_RETRIES", cls.scoring_max_retries),
            batch_max_workers=_env_int("BATCH_MAX_WORKERS", cls.batch_max_workers),
            auto_apply_policy=(os.getenv("AUTO_APPLY_POLICY") or cls.auto_apply_policy).strip(),
            auto_apply_atomic=_env_flag("AUTO_APPLY_ATOMIC"),
            withdraw_after_days=_env_int("WITHDRAW_AFTER_DAYS", cls.withdraw_after_days),
            check_in_max_age_hours=_env_int("CHECK_IN_MAX_AGE_HOURS", cls.check_in_max_age_hours),
            frontend_origins=origins,
        )
