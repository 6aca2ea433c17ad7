from __future__ import annotations

import logging
import time

from sqlalchemy.orm import Session

from .db import Database
from .models import LocalSetting

logger = logging.getLogger("preferences")

PREDICTOR_ADDRESS_KEY = "deviceIpAddress"


def get_setting(session: Session, key: str) -> str | None:
    row = session.get(LocalSetting, key)
    return row.value if row is not None else None


def put_setting(session: Session, key: str, value: str) -> LocalSetting:
    now = int(time.time())
    row = session.get(LocalSetting, key)
    if row is None:
        row = LocalSetting(key=key, value=value, updated_at=now)
        session.add(row)
    else:
        row.value = value
        row.updated_at = now
    return row


class PreferenceStore:
    """Client-local settings that survive restarts."""

    def __init__(self, database: Database) -> None:
        self._db = database

    def load_predictor_address(self, default: str = "") -> str:
        with self._db.get_session() as session:
            stored = get_setting(session, PREDICTOR_ADDRESS_KEY)
        if stored:
            logger.info("Loaded predictor address %s", stored)
            return stored
        logger.info("No predictor address stored; using %r", default)
        return default

    def save_predictor_address(self, address: str) -> str:
        address = address.strip()
        with self._db.get_session() as session:
            put_setting(session, PREDICTOR_ADDRESS_KEY, address)
        logger.info("Saved predictor address %r", address)
        return address
