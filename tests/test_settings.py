from __future__ import annotations

import pytest

from dbstudio.config.settings import load_settings

YAML = """
app:
  log_level: WARNING
  data_dir: {data}
vault:
  key_file: ""
query:
  default_page_size: 25
  max_page_size: 200
  allow_raw_queries: false
drivers:
  connect_timeout_s: 5
"""

ENV_KEYS = (
    "DB_STUDIO_DATA_DIR",
    "DB_STUDIO_VAULT_PATH",
    "DB_STUDIO_MASTER_KEY_FILE",
    "DB_STUDIO_MASTER_KEY",
    "DEFAULT_PAGE_SIZE",
    "MAX_PAGE_SIZE",
    "ALLOW_RAW_QUERIES",
    "CONNECT_TIMEOUT_S",
    "MONGO_APP_NAME",
    "LOG_LEVEL",
    "LOG_FILE",
)


@pytest.fixture
def config_dir(tmp_path, monkeypatch):
    for key in ENV_KEYS:
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("APP_ENV", "test")
    (tmp_path / "test.yaml").write_text(YAML.format(data=tmp_path / "data"), encoding="utf-8")
    return tmp_path


def test_yaml_values(config_dir) -> None:
    s = load_settings(str(config_dir))
    assert s.env == "test"
    assert s.log_level == "WARNING"
    assert s.default_page_size == 25
    assert s.max_page_size == 200
    assert s.allow_raw_queries is False
    assert s.connect_timeout_s == 5
    assert s.mongo_app_name == "dbstudio"
    assert s.vault_path == str(config_dir / "data" / "vault.sqlite")
    assert s.master_key_file == str(config_dir / "data" / "vault.key")
    assert s.master_key is None


def test_environment_overrides(config_dir, monkeypatch) -> None:
    monkeypatch.setenv("MAX_PAGE_SIZE", "50")
    monkeypatch.setenv("ALLOW_RAW_QUERIES", "yes")
    monkeypatch.setenv("DB_STUDIO_MASTER_KEY", "correct horse battery staple")
    s = load_settings(str(config_dir))
    assert s.max_page_size == 50
    assert s.allow_raw_queries is True
    assert s.master_key == "correct horse battery staple"
    assert "correct horse" not in repr(s)


def test_missing_config(tmp_path, monkeypatch) -> None:
    monkeypatch.setenv("APP_ENV", "nowhere")
    with pytest.raises(FileNotFoundError):
        load_settings(str(tmp_path))
