"""
Award lifecycle settings.

Read from environment variables (``.env`` is loaded by ``backend.main``).
The settings object is passed explicitly into every core decision function
so the core never reads global state.
"""
import os
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field


DEFAULT_DB_PATH = Path(__file__).parent.parent / "data" / "awards.db"


def _int_env(name: str, default: Optional[int]) -> Optional[int]:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return int(raw)


class AwardSettings(BaseModel):
    """Quorum, standby and deadline settings read by the status machine guards."""

    committee_quorum: int = Field(default=3, ge=1)
    standby_count_all: int = Field(default=2, ge=0)
    standby_count_item: int = Field(default=1, ge=0)

    # Minutes a vendor has to respond when no explicit deadline is given
    default_award_response_minutes: Optional[int] = Field(default=None, ge=1)

    # 0 disables the background sweeper; lazy expiry on read still applies
    deadline_sweep_seconds: int = Field(default=0, ge=0)

    db_url: str = f"sqlite:///{DEFAULT_DB_PATH}"

    @classmethod
    def from_env(cls) -> "AwardSettings":
        """Build settings from ``AWARD_*`` environment variables."""
        return cls(
            committee_quorum=_int_env("AWARD_COMMITTEE_QUORUM", 3),
            standby_count_all=_int_env("AWARD_STANDBY_COUNT_ALL", 2),
            standby_count_item=_int_env("AWARD_STANDBY_COUNT_ITEM", 1),
            default_award_response_minutes=_int_env("AWARD_RESPONSE_MINUTES", None),
            deadline_sweep_seconds=_int_env("AWARD_DEADLINE_SWEEP_SECONDS", 0),
            db_url=os.getenv("AWARD_DB_URL", f"sqlite:///{DEFAULT_DB_PATH}"),
        )


# Singleton
_settings = None


def get_settings() -> AwardSettings:
    global _settings
    if _settings is None:
        _settings = AwardSettings.from_env()
    return _settings


def override_settings(settings: Optional[AwardSettings]) -> None:
    """Replace the process-wide settings (``None`` re-reads the environment)."""
    global _settings
    _settings = settings
