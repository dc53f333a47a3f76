"""Local durable key-value store holding one JSON array per entity kind."""

import json
from typing import Optional

from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from storefront.core.logging_config import get_logger
from storefront.domain.models import StoredCollection
from storefront.infrastructure.db import build_engine, build_session_factory, init_models

logger = get_logger(__name__)

PRODUCTS_KEY = "products"
ORDERS_KEY = "orders"

class LocalStore:
    def __init__(self, session_factory: sessionmaker, engine: Optional[Engine] = None):
        self.session_factory = session_factory
        self.engine = engine

    @classmethod
    def from_url(cls, database_url: str) -> "LocalStore":
        engine = build_engine(database_url)
        init_models(engine)
        return cls(build_session_factory(engine), engine=engine)

    def close(self) -> None:
        if self.engine is not None:
            self.engine.dispose()

    def get(self, key: str) -> Optional[str]:
        with self.session_factory() as session:
            entry = session.get(StoredCollection, key)
            return entry.payload if entry else None

    def set(self, key: str, value: str) -> None:
        with self.session_factory() as session:
            entry = session.get(StoredCollection, key)
            if entry is None:
                session.add(StoredCollection(key=key, payload=value))
            else:
                entry.payload = value
            session.commit()

    def read_records(self, key: str) -> list[dict]:
        """Records stored under ``key``; unreadable payloads read as empty."""
        payload = self.get(key)
        if not payload:
            return []
        try:
            records = json.loads(payload)
        except json.JSONDecodeError as exc:
            logger.error(
                f"Local store payload for '{key}' is not valid JSON, treating as empty: {exc}",
                extra={'extra_fields': {'key': key}}
            )
            return []
        if not isinstance(records, list):
            logger.error(f"Local store payload for '{key}' is not a list, treating as empty")
            return []
        return [record for record in records if isinstance(record, dict)]

    def write_records(self, key: str, records: list[dict]) -> None:
        self.set(key, json.dumps(records, default=str))

    def ping(self) -> None:
        self.get(PRODUCTS_KEY)
