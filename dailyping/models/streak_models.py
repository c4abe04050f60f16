from dataclasses import dataclass
from datetime import date
from typing import Optional


@dataclass(frozen=True)
class StreakState:
    current: int = 0
    max: int = 0
    last_entry_date: Optional[date] = None
