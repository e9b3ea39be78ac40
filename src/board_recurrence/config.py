import os
from typing import Mapping, Optional

from pydantic import BaseModel, Field

ENV_PREFIX = "BOARD_RECURRENCE_"


class RecurrenceSettings(BaseModel):
    """
    Runtime settings for the series controller, storage and sweeper.
    """
    database_url: str = Field(
        default="sqlite+aiosqlite:///:memory:",
        description="SQLAlchemy async database URL for the task store"
    )
    lookahead_days: int = Field(
        default=7, ge=0,
        description="How many days ahead of today the sweep materializes upcoming occurrences"
    )
    sweep_interval_seconds: float = Field(
        default=60.0, gt=0,
        description="Seconds between two sweeps of the recurrence sweeper"
    )
    catch_up_missed: bool = Field(
        default=False,
        description="Skip occurrences that fall before today instead of firing them one by one"
    )

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "RecurrenceSettings":
        """
        Build settings from BOARD_RECURRENCE_* environment variables, falling back
        to defaults for anything unset.
        """
        environ = os.environ if environ is None else environ
        values = {}
        mapping = {
            "DATABASE_URL": "database_url",
            "LOOKAHEAD_DAYS": "lookahead_days",
            "SWEEP_INTERVAL": "sweep_interval_seconds",
            "CATCH_UP": "catch_up_missed",
        }
        for env_name, field_name in mapping.items():
            raw = environ.get(ENV_PREFIX + env_name)
            if raw is not None and raw != "":
                values[field_name] = raw
        return cls(**values)
