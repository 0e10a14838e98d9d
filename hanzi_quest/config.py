from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path


PROJECT_ROOT = Path(__file__).resolve().parents[1]
DATA_DIR = PROJECT_ROOT / "data"
DB_PATH = Path(os.getenv("HANZI_QUEST_DB_PATH") or DATA_DIR / "hanzi_quest.db")
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


@dataclass(frozen=True)
class SessionDefaults:
    distractor_count: int = 3
    new_batch_size: int = 10
    recent_limit: int = 5
    mastery_threshold: int = 3
    good_score_ratio: float = 0.7


def ensure_dirs() -> None:
    for path in [DATA_DIR, DB_PATH.parent]:
        path.mkdir(parents=True, exist_ok=True)


def configure_logging(level: str | None = None) -> None:
    name = (level or os.getenv("HANZI_QUEST_LOG_LEVEL") or "INFO").strip().upper()
    logging.basicConfig(level=getattr(logging, name, logging.INFO), format=LOG_FORMAT)
