"""Shared fixtures: temp SQLite database and config built from a fake env."""

from __future__ import annotations

import asyncio
import dataclasses
from typing import Any

import pytest

from config import Config, load_config
from database import init_db


BASE_ENV = {
    "MP_ACCESS_TOKEN": "TEST-0000-access-token",
    "MP_WEBHOOK_URL": "https://billing.example.com/webhook_mp",
    "PUBLIC_BASE_URL": "http://localhost:3001",
    "APP_ENV": "development",
}


@pytest.fixture
def db_path(tmp_path) -> str:
    path = str(tmp_path / "state.db")
    asyncio.run(init_db(path))
    return path


@pytest.fixture
def make_config(db_path):
    def _make(env: dict[str, str] | None = None, **overrides: Any) -> Config:
        config = load_config({**BASE_ENV, "DB_PATH": db_path, **(env or {})})
        return dataclasses.replace(config, **overrides) if overrides else config

    return _make


@pytest.fixture
def config(make_config) -> Config:
    return make_config()
