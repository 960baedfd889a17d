import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

logger = logging.getLogger(__name__)

TOKEN_KEY = "TELEGRAM_BOT_TOKEN"
DB_PATH_KEY = "PLUGIN_GATE_DB_PATH"
CACHE_TTL_KEY = "PLUGIN_GATE_CACHE_TTL_SEC"
INTERNAL_PLUGINS_KEY = "PLUGIN_GATE_INTERNAL_PLUGINS"
BUILTIN_PLUGINS_KEY = "PLUGIN_GATE_BUILTIN_PLUGINS"

DEFAULT_CONFIG_DIR = Path.home() / ".config" / "plugin-gate"
DEFAULT_CACHE_TTL_SEC = 60.0


@dataclass
class Config:
    config_dir: Path
    env_path: Path
    db_path: Path
    cache_ttl_sec: float = DEFAULT_CACHE_TTL_SEC
    internal_plugins: List[str] = field(default_factory=list)
    builtin_plugins: List[str] = field(default_factory=list)
    token: Optional[str] = None


def load_env_file(path: Path) -> Dict[str, str]:
    data: Dict[str, str] = {}
    if not path.exists():
        return data
    try:
        for line in path.read_text(encoding="utf-8").splitlines():
            line = line.strip()
            if not line or line.startswith("#") or "=" not in line:
                continue
            k, v = line.split("=", 1)
            data[k.strip()] = v.strip()
    except OSError as exc:
        logger.warning("Failed to read %s: %s", path, exc)
    return data


def get_env_value(key: str, env_file: Dict[str, str]) -> Optional[str]:
    return os.environ.get(key) or env_file.get(key)


def get_env_path(config_dir: Path) -> Path:
    return config_dir / ".env"


def parse_name_list(raw: Optional[str]) -> List[str]:
    if not raw:
        return []
    names: List[str] = []
    for part in raw.split(","):
        part = part.strip()
        if part and part not in names:
            names.append(part)
    return names


def parse_ttl(raw: Optional[str], default: float = DEFAULT_CACHE_TTL_SEC) -> float:
    if raw is None or not str(raw).strip():
        return default
    try:
        value = float(str(raw).strip())
    except ValueError:
        logger.warning("Invalid %s=%r, using %s", CACHE_TTL_KEY, raw, default)
        return default
    if value < 0:
        return default
    return value


def load_config(config_dir: Path) -> Config:
    config_dir = Path(config_dir).expanduser()
    env_file = load_env_file(get_env_path(config_dir))
    db_raw = get_env_value(DB_PATH_KEY, env_file)
    db_path = Path(db_raw).expanduser() if db_raw else config_dir / "registry.db"
    return Config(
        config_dir=config_dir,
        env_path=get_env_path(config_dir),
        db_path=db_path,
        cache_ttl_sec=parse_ttl(get_env_value(CACHE_TTL_KEY, env_file)),
        internal_plugins=parse_name_list(get_env_value(INTERNAL_PLUGINS_KEY, env_file)),
        builtin_plugins=parse_name_list(get_env_value(BUILTIN_PLUGINS_KEY, env_file)),
        token=get_env_value(TOKEN_KEY, env_file),
    )
