"""Key-value storage substrate.

This module defines the SQLAlchemy table backing every persisted value of the
client (reminders, delivery token, user id, feature toggles) and a small
durable string -> string mapping on top of it.
IMPORTANT: every write is committed before the call returns.
"""

import asyncio
import uuid
from datetime import datetime, timezone
from typing import Dict, Optional

from sqlalchemy import create_engine, Column, String, Text, DateTime
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from config import settings
from exceptions import StorageError
from logger_config import setup_logger

logger = setup_logger(__name__, 'storage.log')

# SQLAlchemy Base
Base = declarative_base()


class StorageKeys:
    """Key names shared by the core and the feature toggles"""
    USER_ID = "user_id"
    API_URL = "api_url"
    WEB_SEARCH_ENABLED = "web_search_enabled"
    AUTO_PLAY_AUDIO = "auto_play_audio"
    CONVERSATION_HISTORY = "conversation_history"
    LOCAL_REMINDERS = "local_reminders"
    FCM_TOKEN = "fcm_token"
    FCM_TOKEN_CACHED_AT = "fcm_token_cached_at"
    DEVICE_REGISTERED = "device_registered"


class KeyValueEntry(Base):
    """One persisted key"""

    __tablename__ = "key_value_store"

    key = Column(String, primary_key=True, doc="Storage key (see StorageKeys)")
    value = Column(Text, nullable=False, doc="Serialized value")
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        doc="When the key was last written"
    )

    def __repr__(self):
        return f"<KeyValueEntry(key={self.key}, updated={self.updated_at})>"


class KeyValueStorage:
    """Durable string mapping.

    lock serializes read-modify-write sequences over a single key so that
    concurrent operations never lose each other's updates.
    """

    def __init__(self, database_url: Optional[str] = None):
        self.database_url = database_url or settings.DATABASE_URL
        engine_kwargs = {"echo": False}
        if "sqlite" in self.database_url:
            engine_kwargs["connect_args"] = {"check_same_thread": False}
            if self.database_url in ("sqlite://", "sqlite:///:memory:"):
                # One shared connection, otherwise every session sees a fresh empty DB
                engine_kwargs["poolclass"] = StaticPool

        self.engine = create_engine(self.database_url, **engine_kwargs)
        self.SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=self.engine)
        Base.metadata.create_all(bind=self.engine)
        self.lock = asyncio.Lock()

    def get(self, key: str) -> Optional[str]:
        db = self.SessionLocal()
        try:
            entry = db.get(KeyValueEntry, key)
            return entry.value if entry else None
        except SQLAlchemyError as e:
            logger.error(f"Failed to read key '{key}': {e}")
            raise StorageError(f"Failed to read '{key}'") from e
        finally:
            db.close()

    def set(self, key: str, value: str) -> None:
        db = self.SessionLocal()
        try:
            entry = db.get(KeyValueEntry, key)
            now = datetime.now(timezone.utc)
            if entry is None:
                db.add(KeyValueEntry(key=key, value=value, updated_at=now))
            else:
                entry.value = value
                entry.updated_at = now
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Failed to write key '{key}': {e}")
            raise StorageError(f"Failed to write '{key}'") from e
        finally:
            db.close()

    def set_many(self, values: Dict[str, str]) -> None:
        """Write several keys in one transaction: all of them or none."""
        db = self.SessionLocal()
        try:
            now = datetime.now(timezone.utc)
            for key, value in values.items():
                entry = db.get(KeyValueEntry, key)
                if entry is None:
                    db.add(KeyValueEntry(key=key, value=value, updated_at=now))
                else:
                    entry.value = value
                    entry.updated_at = now
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Failed to write keys {list(values)}: {e}")
            raise StorageError(f"Failed to write {list(values)}") from e
        finally:
            db.close()

    def delete(self, *keys: str) -> None:
        db = self.SessionLocal()
        try:
            db.query(KeyValueEntry).filter(KeyValueEntry.key.in_(keys)).delete(
                synchronize_session=False
            )
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Failed to delete keys {keys}: {e}")
            raise StorageError(f"Failed to delete {keys}") from e
        finally:
            db.close()

    def get_flag(self, key: str, default: bool) -> bool:
        value = self.get(key)
        if value is None:
            return default
        return value == "true"

    def set_flag(self, key: str, enabled: bool) -> None:
        self.set(key, "true" if enabled else "false")

    # User identity -----------------------------------------------------

    def get_user_id(self) -> str:
        """Return the stored user id, generating one on first use."""
        user_id = self.get(StorageKeys.USER_ID)
        if not user_id:
            user_id = self.generate_new_user_id()
        return user_id

    def set_user_id(self, user_id: str) -> None:
        self.set(StorageKeys.USER_ID, user_id)

    def generate_new_user_id(self) -> str:
        user_id = str(uuid.uuid4())
        self.set_user_id(user_id)
        return user_id

    # Backend endpoint -----------------------------------------------------

    def get_api_url(self) -> Optional[str]:
        """User override of the backend base URL, if one was saved."""
        return self.get(StorageKeys.API_URL) or None

    def set_api_url(self, url: str) -> None:
        self.set(StorageKeys.API_URL, url.rstrip("/"))

    # Feature toggles -----------------------------------------------------

    def get_web_search_enabled(self) -> bool:
        return self.get_flag(StorageKeys.WEB_SEARCH_ENABLED, True)

    def set_web_search_enabled(self, enabled: bool) -> None:
        self.set_flag(StorageKeys.WEB_SEARCH_ENABLED, enabled)

    def get_auto_play_audio(self) -> bool:
        return self.get_flag(StorageKeys.AUTO_PLAY_AUDIO, False)

    def set_auto_play_audio(self, enabled: bool) -> None:
        self.set_flag(StorageKeys.AUTO_PLAY_AUDIO, enabled)

    def close(self) -> None:
        self.engine.dispose()
