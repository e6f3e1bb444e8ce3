"""Persistent single-slot stores for the OAuth credential.

The bridge keeps exactly one credential under a fixed key so that authorization
survives restarts. The default store is a SQLite file in the data directory;
a Redis store is available for containerized deployments.
"""

import abc
import json
import pathlib
from typing import Any

import redis
import sqlalchemy
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, SQLModel, create_engine

from sonos_audioclip_tts.config import BridgeConfig
from sonos_audioclip_tts.errors import CredentialStoreError
from sonos_audioclip_tts.models import CredentialRecord


class CredentialStore(abc.ABC):
    """Key-value persistence for exactly one credential.

    Writes are last-writer-wins; only the TokenManager writes.

    Attributes:
        key: Fixed key the credential is stored under.
    """

    def __init__(self, key: str = "token") -> None:
        self.key = key

    @abc.abstractmethod
    def get_cached_token(self) -> dict[str, Any] | None:
        """Return the stored credential or None if nothing is stored."""

    @abc.abstractmethod
    def save_token_to_cache(self, token_info: dict[str, Any]) -> None:
        """Replace the stored credential."""


class DBCredentialStore(CredentialStore):
    """SQLite-backed credential store.

    Attributes:
        db_engine: SQLAlchemy engine for the credential database.
    """

    def __init__(self, db_engine: sqlalchemy.Engine, key: str = "token") -> None:
        super().__init__(key)
        self.db_engine = db_engine
        # AIDEV-NOTE: Ensure database tables exist before use
        SQLModel.metadata.create_all(self.db_engine, tables=[CredentialRecord.__table__])  # type: ignore[attr-defined]

    @classmethod
    def from_path(cls, db_path: pathlib.Path, key: str = "token") -> "DBCredentialStore":
        db_path.parent.mkdir(parents=True, exist_ok=True)
        # AIDEV-NOTE: Store is called from worker threads via asyncio.to_thread
        engine = create_engine(f"sqlite:///{db_path}", connect_args={"check_same_thread": False})
        return cls(engine, key=key)

    def get_cached_token(self) -> dict[str, Any] | None:
        try:
            with Session(self.db_engine) as session:
                record = session.get(CredentialRecord, self.key)
                if record:
                    return json.loads(record.token)  # type: ignore[no-any-return]
                return None
        except SQLAlchemyError as e:
            raise CredentialStoreError(f"Failed to read credential: {e}") from e

    def save_token_to_cache(self, token_info: dict[str, Any]) -> None:
        token_json = json.dumps(token_info)
        try:
            with Session(self.db_engine) as session:
                record = session.get(CredentialRecord, self.key)
                if record is None:
                    record = CredentialRecord(key=self.key, token=token_json)
                else:
                    record.token = token_json
                session.add(record)
                session.commit()
        except SQLAlchemyError as e:
            raise CredentialStoreError(f"Failed to write credential: {e}") from e

    def close(self) -> None:
        self.db_engine.dispose()


class RedisCredentialStore(CredentialStore):
    """Redis-backed credential store.

    Attributes:
        redis_client: Connected redis-py client.
    """

    def __init__(self, redis_client: redis.Redis, key: str = "token") -> None:
        super().__init__(key)
        self.redis_client = redis_client

    def get_cached_token(self) -> dict[str, Any] | None:
        try:
            token_json = self.redis_client.get(self.key)
        except redis.RedisError as e:
            raise CredentialStoreError(f"Failed to read credential: {e}") from e
        if token_json:
            return json.loads(token_json)  # type: ignore[arg-type,no-any-return]
        return None

    def save_token_to_cache(self, token_info: dict[str, Any]) -> None:
        try:
            self.redis_client.set(self.key, json.dumps(token_info))
        except redis.RedisError as e:
            raise CredentialStoreError(f"Failed to write credential: {e}") from e

    def close(self) -> None:
        self.redis_client.close()


def create_credential_store(config_obj: BridgeConfig) -> DBCredentialStore | RedisCredentialStore:
    """Create the credential store selected in the configuration."""
    if config_obj.token_store == "redis":
        return RedisCredentialStore(redis.from_url(config_obj.redis.url), key=config_obj.token_key)
    return DBCredentialStore.from_path(config_obj.sqlite_path, key=config_obj.token_key)
