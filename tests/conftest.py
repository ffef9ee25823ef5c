from __future__ import annotations

import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from labcms.bootstrap import Bootstrapper
from labcms.config import AppConfig
from labcms.services.local_platform import LocalPlatform


@pytest.fixture()
def temp_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> AppConfig:
    monkeypatch.chdir(tmp_path)

    config = AppConfig.from_mapping(
        {
            "storage_root": "storage",
            "database_file": "storage/labcms.db",
            "bucket": "spcai_images",
            "public_base_url": "http://testserver",
            "items_per_page": 6,
        },
        base_path=tmp_path,
    )

    Bootstrapper(config).initialize()
    return config


@pytest.fixture()
def platform(temp_config: AppConfig) -> LocalPlatform:
    return LocalPlatform(temp_config)
