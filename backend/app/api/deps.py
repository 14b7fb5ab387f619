from __future__ import annotations

from typing import Generator

from fastapi import Header

from backend.app.db.session import SessionLocal


def get_db() -> Generator:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_actor_id(x_user_id: str | None = Header(default=None, alias="X-User-Id")) -> str | None:
    # identité fournie par la couche d'auth en amont, non vérifiée ici
    if x_user_id is None or not x_user_id.strip():
        return None
    return x_user_id.strip()
