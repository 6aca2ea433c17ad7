from __future__ import annotations

from soledge.db import Database
from soledge.models import LocalSetting
from soledge.preferences import PREDICTOR_ADDRESS_KEY, PreferenceStore


def _database() -> Database:
    db = Database("sqlite://")
    db.create_all()
    return db


def test_default_when_nothing_stored():
    prefs = PreferenceStore(_database())
    assert prefs.load_predictor_address("127.0.0.1:5000") == "127.0.0.1:5000"


def test_saved_address_survives_new_store_instance():
    db = _database()
    PreferenceStore(db).save_predictor_address("  192.168.1.40:5000 ")

    assert PreferenceStore(db).load_predictor_address("fallback") == "192.168.1.40:5000"
    with db.get_session() as session:
        row = session.get(LocalSetting, PREDICTOR_ADDRESS_KEY)
        assert row is not None
        assert row.updated_at > 0


def test_overwrite_keeps_single_row():
    db = _database()
    prefs = PreferenceStore(db)
    prefs.save_predictor_address("a")
    prefs.save_predictor_address("b")

    with db.get_session() as session:
        assert session.query(LocalSetting).count() == 1
    assert prefs.load_predictor_address() == "b"
