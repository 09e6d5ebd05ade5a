from __future__ import annotations

import os
from pathlib import Path

APP_ENV_HOME = "BLOCKCAL_HOME"
APP_ENV_DATA = "BLOCKCAL_DATA"
APP_ENV_CONFIG = "BLOCKCAL_CONFIG"


def project_root() -> Path:
    """
    Repository/project root directory.
    Contains blockcal/, config/, tests/.
    """
    return Path(__file__).parent.parent.resolve()


def app_home() -> Path:
    """
    User-writable home for blockcal.
    Override with BLOCKCAL_HOME.
    """
    if os.environ.get(APP_ENV_HOME):
        return Path(os.environ[APP_ENV_HOME]).expanduser().resolve()
    return (Path.home() / ".blockcal").resolve()


def data_dir() -> Path:
    """
    Root of the text store (tasks.jsonl, blocks.jsonl, ai_inbox/, ai_outbox/).

    Resolution order:
    1. BLOCKCAL_DATA env var (explicit override)
    2. ~/.blockcal/data (default)
    """
    if os.environ.get(APP_ENV_DATA):
        d = Path(os.environ[APP_ENV_DATA]).expanduser().resolve()
    else:
        d = app_home() / "data"
    d.mkdir(parents=True, exist_ok=True)
    return d


def user_config_path() -> Path:
    """Writable settings file: BLOCKCAL_CONFIG, else ~/.blockcal/config/blockcal.yaml."""
    if os.environ.get(APP_ENV_CONFIG):
        return Path(os.environ[APP_ENV_CONFIG]).expanduser().resolve()
    return app_home() / "config" / "blockcal.yaml"


def config_path() -> Path:
    """
    Engine settings file.

    Resolution order:
    1. BLOCKCAL_CONFIG env var
    2. ~/.blockcal/config/blockcal.yaml if present
    3. <project_root>/config/blockcal.yaml (shipped defaults)
    """
    user_file = user_config_path()
    if os.environ.get(APP_ENV_CONFIG) or user_file.exists():
        return user_file
    return project_root() / "config" / "blockcal.yaml"
