"""Root conftest: settings are read at import time, so the test environment is set up first."""
from __future__ import annotations

import os
from pathlib import Path

# no database or redis is needed unless a test builds one itself
_TEST_DEFAULTS = {
    "POSTGRES_USER": "chat",
    "POSTGRES_PASSWORD": "chat",
    "POSTGRES_DB": "chat_stream_test",
    "GUEST_STORAGE": "memory",
    "JWT_VERIFY_MODE": "hs256",
}


def _read_env_file(path: Path) -> dict[str, str]:
    if not path.exists():
        return {}
    values: dict[str, str] = {}
    for line in path.read_text().splitlines():
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        key, _, value = line.partition("=")
        values[key.strip()] = value.strip()
    return values


for _key, _value in {**_TEST_DEFAULTS, **_read_env_file(Path(__file__).resolve().parent / ".env.test")}.items():
    os.environ.setdefault(_key, _value)
