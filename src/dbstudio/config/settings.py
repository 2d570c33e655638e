from __future__ import annotations
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional
import yaml
from dotenv import load_dotenv

load_dotenv()

def _env(key: str, default: Optional[str] = None) -> Optional[str]:
    return os.environ.get(key, default)

def _env_bool(key: str, default: bool = False) -> bool:
    val = os.environ.get(key)
    if val is None:
        return default
    return val.strip().lower() in ("1", "true", "yes", "y", "on")

@dataclass(frozen=True)
class Settings:
    env: str
    log_level: str
    log_file: str

    data_dir: str

    # ------------------------------------------------------------------
    # Credential vault
    # ------------------------------------------------------------------
    vault_path: str
    master_key_file: str
    # Only ever read from the environment; never written to yaml or disk.
    master_key: Optional[str]

    default_page_size: int
    max_page_size: int

    # Passed through to the drivers; the facade adds no deadline of its own.
    connect_timeout_s: int
    mongo_app_name: str
    allow_raw_queries: bool

    def __repr__(self) -> str:
        masked = "set" if self.master_key else "unset"
        return f"Settings(env={self.env!r}, vault_path={self.vault_path!r}, master_key={masked})"

def load_settings(config_dir: str = "config") -> Settings:
    app_env = _env("APP_ENV", "dev")
    cfg_path = Path(config_dir) / f"{app_env}.yaml"
    if not cfg_path.exists():
        raise FileNotFoundError(f"Config not found: {cfg_path}")

    cfg = yaml.safe_load(cfg_path.read_text(encoding="utf-8")) or {}

    app_cfg = cfg.get("app") or {}
    data_dir = _env("DB_STUDIO_DATA_DIR", str(app_cfg.get("data_dir", "data"))) or "data"

    vault_cfg = cfg.get("vault") or {}
    vault_path = _env("DB_STUDIO_VAULT_PATH", str(vault_cfg.get("path", ""))) or str(Path(data_dir) / "vault.sqlite")
    master_key_file = (
        _env("DB_STUDIO_MASTER_KEY_FILE", str(vault_cfg.get("key_file", ""))) or str(Path(data_dir) / "vault.key")
    )
    master_key = _env("DB_STUDIO_MASTER_KEY") or None

    q_cfg = cfg.get("query") or {}
    default_page_size = int(_env("DEFAULT_PAGE_SIZE", str(q_cfg.get("default_page_size", 20))))
    max_page_size = int(_env("MAX_PAGE_SIZE", str(q_cfg.get("max_page_size", 1000))))
    allow_raw_queries = _env_bool("ALLOW_RAW_QUERIES", bool(q_cfg.get("allow_raw_queries", True)))

    drv_cfg = cfg.get("drivers") or {}
    connect_timeout_s = int(_env("CONNECT_TIMEOUT_S", str(drv_cfg.get("connect_timeout_s", 10))))
    mongo_app_name = _env("MONGO_APP_NAME", str(drv_cfg.get("mongo_app_name", "dbstudio"))) or "dbstudio"

    return Settings(
        env=app_env,
        log_level=_env("LOG_LEVEL", str(app_cfg.get("log_level", "INFO"))) or "INFO",
        log_file=_env("LOG_FILE", str(app_cfg.get("log_file", "logs/dbstudio.log"))) or "",
        data_dir=data_dir,
        vault_path=vault_path,
        master_key_file=master_key_file,
        master_key=master_key,
        default_page_size=default_page_size,
        max_page_size=max_page_size,
        connect_timeout_s=connect_timeout_s,
        mongo_app_name=mongo_app_name,
        allow_raw_queries=allow_raw_queries,
    )
