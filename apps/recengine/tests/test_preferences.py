# apps/recengine/tests/test_preferences.py
from datetime import datetime, timezone

import pytest
from sqlalchemy.exc import OperationalError

import catalog
import metadata
import preferences


def test_weights_from_liked_and_saved_languages(db, make_user, make_post, add_interaction):
    user_id = make_user()
    english = make_post(original_language="en")
    korean = make_post(original_language="ko")
    add_interaction(user_id, english, like_state=True, save_state=True)
    add_interaction(user_id, korean, like_state=True)

    prefs = preferences.language_preferences(db, user_id)

    # en counted once for likes and once for saves
    assert prefs.weights == {"en": pytest.approx(2 / 3), "ko": pytest.approx(1 / 3)}
    assert list(prefs.topLanguages) == ["en", "ko"]
    assert prefs.languageNames["ko"] == "Korean"


def test_no_signal_returns_none(db, make_user, make_post, add_interaction):
    user_id = make_user()
    add_interaction(user_id, make_post(original_language="en"))
    assert preferences.language_preferences(db, user_id) is None
    assert preferences.update_language_preferences(db, user_id) is None
    assert metadata.get_user_metadata(db, user_id) is None


def test_update_writes_weights_and_payload(db, make_user, make_post, add_interaction):
    user_id = make_user()
    add_interaction(user_id, make_post(original_language="fr"), save_state=True)
    metadata.store_user_metadata(db, user_id, comment="hand written", payload={"keep": True})
    now = datetime(2024, 1, 1, tzinfo=timezone.utc)

    preferences.update_language_preferences(db, user_id, now=now)

    stored = metadata.get_user_metadata(db, user_id)
    assert stored.comment == "hand written"
    assert stored.payload["keep"] is True
    assert stored.payload["languagePreferences"]["weights"] == {"fr": 1.0}
    assert stored.payload["languagePreferences"]["updatedAt"] == now.isoformat()
    weights = metadata.get_user_vector_weights(db, user_id)
    assert weights.language_weights["topLanguages"] == {"fr": 1.0}


def test_update_all_counts_outcomes(db, make_user, make_post, add_interaction):
    active = make_user()
    make_user()
    add_interaction(active, make_post(original_language="ja"), like_state=True)

    result = preferences.update_all_language_preferences(db)

    assert result == {"updated": 1, "skipped": 1, "failed": 0}


def test_update_all_isolates_database_errors(db, monkeypatch, make_user, make_post, add_interaction):
    broken, healthy = make_user(), make_user()
    add_interaction(healthy, make_post(original_language="de"), save_state=True)
    real_languages = catalog.liked_or_saved_languages

    def flaky_languages(session, user_id):
        if user_id == broken:
            raise OperationalError("select", {}, Exception("connection reset"))
        return real_languages(session, user_id)

    monkeypatch.setattr(catalog, "liked_or_saved_languages", flaky_languages)

    result = preferences.update_all_language_preferences(db)

    assert result == {"updated": 1, "skipped": 0, "failed": 1}
    assert metadata.get_user_metadata(db, healthy).payload["languagePreferences"]["weights"] == {"de": 1.0}
