from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


@dataclass(frozen=True)
class RunContext:
    run_id: str
    seed: int
    start_dt_utc: datetime
    horizon_s: float
    # False when no project id was found; every visitor then gets base content
    personalize_configured: bool
