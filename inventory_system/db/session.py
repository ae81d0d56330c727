import os

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from db.base import Base


def _require_env(name: str) -> str:
    value = os.environ.get(name)
    if not value:
        raise RuntimeError(f"Missing required environment variable: {name}")
    return value


def _connect_args(url: str) -> dict:
    if url.startswith("sqlite"):
        return {"check_same_thread": False}
    return {}


INVENTORY_DB_URL = _require_env("INVENTORY_DB_URL")

engine_inventory = create_engine(
    INVENTORY_DB_URL,
    pool_pre_ping=True,
    connect_args=_connect_args(INVENTORY_DB_URL),
    future=True,
)

SessionLocalInventory = sessionmaker(
    bind=engine_inventory,
    autoflush=False,
    autocommit=False,
    expire_on_commit=False,
    future=True,
)


def init_schema(bind=None) -> None:
    # Importing the models registers every table on Base.metadata.
    import models.inventory_models  # noqa: F401

    Base.metadata.create_all(bind=bind or engine_inventory)
