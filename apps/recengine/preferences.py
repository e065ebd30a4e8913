# apps/recengine/preferences.py
"""Original-language preferences derived from liked and saved posts."""
from __future__ import annotations

import logging
from collections import Counter
from datetime import datetime, timezone
from typing import Dict, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

import catalog
import metadata
from errors import EngineError
from schemas import LanguagePreferences

log = logging.getLogger("preferences")

LANGUAGE_PREFERENCES_KEY = "languagePreferences"
TOP_LANGUAGES = 5

LANGUAGE_NAMES: Dict[str, str] = {
    "en": "English",
    "ja": "Japanese",
    "ko": "Korean",
    "hi": "Hindi",
    "fr": "French",
    "es": "Spanish",
    "de": "German",
    "it": "Italian",
    "zh": "Chinese",
    "ru": "Russian",
    "pt": "Portuguese",
    "tr": "Turkish",
    "ar": "Arabic",
    "th": "Thai",
    "id": "Indonesian",
    "tl": "Tagalog",
    "vi": "Vietnamese",
    "sv": "Swedish",
    "da": "Danish",
    "fi": "Finnish",
    "nl": "Dutch",
    "no": "Norwegian",
    "pl": "Polish",
    "hu": "Hungarian",
    "cs": "Czech",
    "el": "Greek",
    "he": "Hebrew",
    "fa": "Persian",
}


def language_preferences(db: Session, user_id: int, now: Optional[datetime] = None) -> Optional[LanguagePreferences]:
    languages = catalog.liked_or_saved_languages(db, user_id)
    if not languages:
        return None
    counts = Counter(languages)
    total = float(sum(counts.values()))
    weights = {lang: count / total for lang, count in counts.items()}
    top = sorted(weights.items(), key=lambda item: (-item[1], item[0]))[:TOP_LANGUAGES]
    return LanguagePreferences(
        weights=weights,
        languageNames=dict(LANGUAGE_NAMES),
        topLanguages=dict(top),
        updatedAt=(now or datetime.now(timezone.utc)).isoformat(),
    )


def update_language_preferences(db: Session, user_id: int, now: Optional[datetime] = None) -> Optional[LanguagePreferences]:
    prefs = language_preferences(db, user_id, now=now)
    if prefs is None:
        log.info("language_preferences_empty user_id=%s", user_id)
        return None
    data = prefs.model_dump()
    metadata.update_user_vector_weights(db, user_id, language_weights=data)
    metadata.store_user_metadata(db, user_id, payload={LANGUAGE_PREFERENCES_KEY: data}, merge=True)
    log.info("language_preferences_updated user_id=%s languages=%s", user_id, len(prefs.weights))
    return prefs


def update_all_language_preferences(db: Session) -> Dict[str, int]:
    updated = 0
    skipped = 0
    failed = 0
    for user_id in catalog.all_user_ids(db):
        try:
            if update_language_preferences(db, user_id) is None:
                skipped += 1
            else:
                updated += 1
        except (EngineError, SQLAlchemyError) as exc:
            failed += 1
            db.rollback()
            log.warning("language_preferences_failed user_id=%s", user_id, exc_info=exc)
    log.info("language_preferences_batch updated=%s skipped=%s failed=%s", updated, skipped, failed)
    return {"updated": updated, "skipped": skipped, "failed": failed}
