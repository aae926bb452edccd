from __future__ import annotations

from typing import Generator

from fastapi import Header

from stockledger.app.db.session import SessionLocal
from stockledger.app.settings import settings


def get_db() -> Generator:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_actor(x_actor_id: str | None = Header(default=None, alias="X-Actor-Id")) -> str:
    if not x_actor_id or not x_actor_id.strip():
        return settings.SYSTEM_ACTOR_ID
    return x_actor_id.strip()
