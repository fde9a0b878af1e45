from __future__ import annotations

import logging
import os
from functools import lru_cache
from typing import List

from pydantic_settings import BaseSettings
from pydantic import Field

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    origin: str = Field(default="", alias="ORIGIN")
    trick_settle_delay_sec: float = Field(default=1.2, ge=0, alias="TRICK_SETTLE_DELAY_SEC")
    draw_delay_sec: float = Field(default=0.3, ge=0, alias="DRAW_DELAY_SEC")
    trick_feedback_ttl_sec: float = Field(default=2.5, ge=0, alias="TRICK_FEEDBACK_TTL_SEC")

    class Config:
        env_file = ".env"
        extra = "ignore"

    def allowed_origins(self) -> List[str]:
        """
        Splits ORIGIN on commas, trimming blanks.
        Example: "https://toco.example, https://www.toco.example"
        """
        extra = [x.strip() for x in self.origin.split(",") if x.strip()]
        return ["http://localhost:5173"] + extra

    def log_status(self) -> None:
        env_name = os.getenv("RENDER_SERVICE_NAME") or os.getenv("ENV", "unknown")
        logger.info(
            "Table timing: settle=%ss draw=%ss feedback=%ss, env=%s",
            self.trick_settle_delay_sec,
            self.draw_delay_sec,
            self.trick_feedback_ttl_sec,
            env_name,
        )


@lru_cache()
def get_settings() -> Settings:
    settings = Settings()
    settings.log_status()
    return settings
