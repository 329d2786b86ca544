"""CLIConfig: the operational flags accepted on the command line.

Only settings that change from run to run live here: locations, the date
window, worker count and log level. They take precedence over the user
file and the defaults.
"""

from typing import Literal, Optional
from pydantic import Field, field_validator
from gapfill.schemas.base import GapfillBaseModel
from gapfill.schemas.param import check_date_string

_PIPELINE_FLAGS = ("start_date", "end_date", "workers")


class CLIConfig(GapfillBaseModel):
    """Command line overrides.

    Usage
    -----
        cli_cfg = CLIConfig(data_dir="/data/sentinel/field_12", workers=8)
        internal = resolve_config(param_cfg, user_cfg, cli_cfg)
    """

    base_dir: Optional[str] = None
    data_dir: Optional[str] = None
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    workers: Optional[int] = Field(None, ge=1)
    log_level: Optional[Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]] = None

    @field_validator("start_date", "end_date", mode="before")
    @classmethod
    def validate_dates(cls, v):
        return check_date_string(v)

    def to_internal_overrides(self) -> dict:
        """Nested override dict shaped like InternalConfig, unset flags omitted."""
        overrides = {
            key: str(getattr(self, key))
            for key in ("base_dir", "data_dir")
            if getattr(self, key) is not None
        }

        pipeline = {key: getattr(self, key) for key in _PIPELINE_FLAGS if getattr(self, key) is not None}
        if pipeline:
            overrides["pipeline"] = pipeline
        if self.log_level is not None:
            overrides["logging"] = {"level": self.log_level}
        return overrides
