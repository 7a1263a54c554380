from datetime import datetime, timezone
from typing import Optional


def make_cycle_id(prefix: str = "cycle", now: Optional[datetime] = None) -> str:
    # e.g., cycle-20250805T052310Z
    stamp = (now or datetime.now(timezone.utc)).strftime("%Y%m%dT%H%M%SZ")
    return f"{prefix}-{stamp}"
