"""
Story Store Module

SQL persistence for stories, narration audio, child profiles and the
vocabulary a child has met. Every statement binds its parameters.
"""

import json
import random
import sqlite3
import string
import threading
import time
from pathlib import Path
from typing import Any, Dict, List, Optional

from storybridge.services.tts import decode_payload, payload_audio
from storybridge.utils import logger

SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS stories (
        STORY_ID VARCHAR(255) PRIMARY KEY,
        USER_ID VARCHAR(255) NOT NULL,
        STORY_TITLE VARCHAR(255),
        STORY_TEXT TEXT NOT NULL,
        VOCAB_WORDS TEXT,
        VOCAB_DEFINITIONS TEXT,
        SENTENCE_AUDIO_DATA TEXT,
        CREATED_AT TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS user_profiles (
        USER_ID VARCHAR(255) PRIMARY KEY,
        CHILD_NAME VARCHAR(255),
        CHILD_AGE VARCHAR(10),
        CHILD_PRONOUNS VARCHAR(50),
        INTERESTS TEXT,
        PROFILE_COMPLETED BOOLEAN DEFAULT FALSE,
        CREATED_AT TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        UPDATED_AT TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS user_vocabulary (
        VOCAB_ID INTEGER PRIMARY KEY AUTOINCREMENT,
        USER_ID VARCHAR(255) NOT NULL,
        WORD VARCHAR(255) NOT NULL,
        STORY_ID VARCHAR(255),
        CREATED_AT TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
    """,
]

DEFAULT_VOCAB_DEFINITION = {
    "pronunciation": "",
    "simple_definition": "A vocabulary word from your stories",
    "example_sentence": "",
    "synonyms": [],
}


class StoreError(Exception):
    """Raised when a database statement fails."""


def new_story_id() -> str:
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=9))
    return f"story_{int(time.time() * 1000)}_{suffix}"


def _parse_words(raw: Optional[str]) -> List[str]:
    # Stored as JSON, older rows as comma-separated text
    if not raw:
        return []
    try:
        words = json.loads(raw)
    except json.JSONDecodeError:
        words = raw.split(",")
    if not isinstance(words, list):
        return []
    return [str(w).strip() for w in words if str(w).strip()]


def _parse_json_object(raw: Optional[str]) -> Dict[str, Any]:
    if not raw:
        return {}
    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("Could not parse stored vocabulary definitions")
        return {}
    return data if isinstance(data, dict) else {}


class StoryStore:
    """
    Database access for the HTTP handlers.

    The connection is opened lazily on first use and shared between
    handler threads behind a lock.
    """

    def __init__(self, path: Path):
        """
        Initialize the store.

        Args:
            path: SQLite database file (":memory:" for a throwaway store)
        """
        self.path = path
        self._connection: Optional[sqlite3.Connection] = None
        self._lock = threading.RLock()

    @property
    def connection(self) -> sqlite3.Connection:
        if self._connection is None:
            if str(self.path) != ":memory:":
                Path(self.path).parent.mkdir(parents=True, exist_ok=True)
            self._connection = sqlite3.connect(str(self.path), check_same_thread=False)
            self._connection.row_factory = sqlite3.Row
            logger.info(f"Connected to story database: {self.path}")
        return self._connection

    def close(self) -> None:
        if self._connection is not None:
            self._connection.close()
            self._connection = None

    def execute(self, sql: str, params: tuple = ()) -> List[sqlite3.Row]:
        """Run one statement and return its rows."""
        with self._lock:
            try:
                cursor = self.connection.execute(sql, params)
                rows = cursor.fetchall()
                self.connection.commit()
                return rows
            except sqlite3.Error as e:
                self.connection.rollback()
                raise StoreError(str(e)) from e

    def setup(self) -> None:
        """Create every table that does not exist yet."""
        for statement in SCHEMA:
            self.execute(statement)
        logger.success("Database tables ready")

    # Stories

    def save_story(
        self,
        user_id: str,
        title: str,
        content: str,
        vocabulary_words: Optional[List[str]] = None,
        definitions: Optional[Dict[str, Any]] = None,
    ) -> str:
        story_id = new_story_id()
        self.execute(
            """
            INSERT INTO stories (STORY_ID, USER_ID, STORY_TITLE, STORY_TEXT, VOCAB_WORDS, VOCAB_DEFINITIONS)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                story_id,
                user_id,
                title,
                content,
                json.dumps(vocabulary_words or []),
                json.dumps(definitions or {}),
            ),
        )
        return story_id

    def get_story(self, story_id: str) -> Optional[Dict[str, Any]]:
        rows = self.execute("SELECT * FROM stories WHERE STORY_ID = ?", (story_id,))
        return self._story_dict(rows[0]) if rows else None

    def list_stories(self, user_id: str) -> List[Dict[str, Any]]:
        rows = self.execute(
            "SELECT * FROM stories WHERE USER_ID = ? ORDER BY CREATED_AT DESC, rowid DESC",
            (user_id,),
        )
        return [self._story_dict(row) for row in rows]

    def delete_story(self, story_id: str) -> bool:
        if self.get_story(story_id) is None:
            return False
        self.execute("DELETE FROM user_vocabulary WHERE STORY_ID = ?", (story_id,))
        self.execute("DELETE FROM stories WHERE STORY_ID = ?", (story_id,))
        return True

    def _story_dict(self, row: sqlite3.Row) -> Dict[str, Any]:
        return {
            "id": row["STORY_ID"],
            "userId": row["USER_ID"],
            "title": row["STORY_TITLE"],
            "content": row["STORY_TEXT"],
            "vocabularyWords": _parse_words(row["VOCAB_WORDS"]),
            "definitions": _parse_json_object(row["VOCAB_DEFINITIONS"]),
            "hasAudio": bool(row["SENTENCE_AUDIO_DATA"]),
            "createdAt": row["CREATED_AT"],
        }

    # Narration audio

    def has_sentence_audio(self, story_id: str) -> bool:
        rows = self.execute(
            "SELECT 1 FROM stories WHERE STORY_ID = ? AND SENTENCE_AUDIO_DATA IS NOT NULL",
            (story_id,),
        )
        return bool(rows)

    def set_sentence_audio(self, story_id: str, encoded: str) -> None:
        self.execute(
            "UPDATE stories SET SENTENCE_AUDIO_DATA = ? WHERE STORY_ID = ?",
            (encoded, story_id),
        )

    def get_sentence_audio(self, story_id: str) -> Optional[Dict[str, Any]]:
        rows = self.execute("SELECT SENTENCE_AUDIO_DATA FROM stories WHERE STORY_ID = ?", (story_id,))
        if not rows:
            return None
        return decode_payload(rows[0]["SENTENCE_AUDIO_DATA"])

    def clear_sentence_audio(self, story_id: str) -> None:
        self.execute("UPDATE stories SET SENTENCE_AUDIO_DATA = NULL WHERE STORY_ID = ?", (story_id,))

    def get_audio(self, story_id: str) -> Optional[bytes]:
        return payload_audio(self.get_sentence_audio(story_id))

    # Vocabulary

    def add_vocabulary(self, user_id: str, words: List[str], story_id: Optional[str] = None) -> int:
        if not words:
            raise ValueError("Words array is required")
        for word in words:
            self.execute(
                "INSERT INTO user_vocabulary (USER_ID, WORD, STORY_ID) VALUES (?, ?, ?)",
                (user_id, word, story_id),
            )
        return len(words)

    def list_vocabulary(self, user_id: str) -> List[str]:
        rows = self.execute(
            "SELECT DISTINCT WORD FROM user_vocabulary WHERE USER_ID = ? ORDER BY WORD",
            (user_id,),
        )
        return [row["WORD"] for row in rows]

    def remove_vocabulary(self, user_id: str, story_id: str) -> None:
        self.execute(
            "DELETE FROM user_vocabulary WHERE USER_ID = ? AND STORY_ID = ?",
            (user_id, story_id),
        )

    def vocabulary_with_definitions(self, user_id: str) -> List[Dict[str, Any]]:
        """Every vocabulary word from a user's stories, newest first, once each."""
        rows = self.execute(
            """
            SELECT STORY_ID, VOCAB_WORDS, VOCAB_DEFINITIONS, CREATED_AT
            FROM stories
            WHERE USER_ID = ? AND VOCAB_WORDS IS NOT NULL
            ORDER BY CREATED_AT DESC, rowid DESC
            """,
            (user_id,),
        )

        seen = set()
        vocabulary = []
        for row in rows:
            definitions = {k.lower(): v for k, v in _parse_json_object(row["VOCAB_DEFINITIONS"]).items()}
            for word in _parse_words(row["VOCAB_WORDS"]):
                if word.lower() in seen:
                    continue
                seen.add(word.lower())
                vocabulary.append({
                    "word": word,
                    "definitions": definitions.get(word.lower(), dict(DEFAULT_VOCAB_DEFINITION)),
                    "learnedDate": row["CREATED_AT"],
                    "storyId": row["STORY_ID"],
                })
        return vocabulary

    # Profiles

    def get_profile(self, user_id: str) -> Dict[str, Any]:
        rows = self.execute("SELECT * FROM user_profiles WHERE USER_ID = ?", (user_id,))
        if not rows:
            return {
                "childName": "",
                "childAge": "",
                "childPronouns": "",
                "interests": [],
                "profileCompleted": False,
            }
        row = rows[0]
        return {
            "childName": row["CHILD_NAME"] or "",
            "childAge": row["CHILD_AGE"] or "",
            "childPronouns": row["CHILD_PRONOUNS"] or "",
            "interests": [i for i in (row["INTERESTS"] or "").split(",") if i],
            "profileCompleted": bool(row["PROFILE_COMPLETED"]),
        }

    def upsert_profile(self, user_id: str, profile: Dict[str, Any]) -> None:
        self.execute(
            """
            INSERT INTO user_profiles (USER_ID, CHILD_NAME, CHILD_AGE, CHILD_PRONOUNS, INTERESTS, PROFILE_COMPLETED)
            VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT(USER_ID) DO UPDATE SET
                CHILD_NAME = excluded.CHILD_NAME,
                CHILD_AGE = excluded.CHILD_AGE,
                CHILD_PRONOUNS = excluded.CHILD_PRONOUNS,
                INTERESTS = excluded.INTERESTS,
                PROFILE_COMPLETED = excluded.PROFILE_COMPLETED,
                UPDATED_AT = CURRENT_TIMESTAMP
            """,
            (
                user_id,
                profile.get("childName") or "",
                str(profile.get("childAge") or ""),
                profile.get("childPronouns") or "",
                ",".join(profile.get("interests") or []),
                bool(profile.get("profileCompleted", False)),
            ),
        )

    # Stats

    def user_stats(self, user_id: str) -> Dict[str, int]:
        words = self.execute(
            "SELECT COUNT(DISTINCT WORD) AS n FROM user_vocabulary WHERE USER_ID = ?",
            (user_id,),
        )
        stories = self.execute("SELECT COUNT(*) AS n FROM stories WHERE USER_ID = ?", (user_id,))
        return {
            "wordsLearned": words[0]["n"],
            "storiesGenerated": stories[0]["n"],
        }
