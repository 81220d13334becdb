from __future__ import annotations

from jobcodex.config import get_settings
from jobcodex.db import models  # noqa: F401
from jobcodex.db.base import Base
from jobcodex.db.session import engine


def ensure_data_directories() -> None:
    settings = get_settings()
    settings.data_dir.mkdir(parents=True, exist_ok=True)


def init_database() -> dict[str, int]:
    ensure_data_directories()
    Base.metadata.create_all(bind=engine)
    return {"tables": len(Base.metadata.tables)}
