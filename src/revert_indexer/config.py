"""
Process configuration.

Values are merged from, lowest precedence first: built-in defaults, a YAML
config file, the environment (a ``.env`` file is loaded if present) and
command-line flags.
"""

import argparse
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from dotenv import load_dotenv

from revert_indexer import __version__
from revert_indexer.variables import (
    BATCH_SIZE,
    CONFIG_NAME,
    CONFIG_SEARCH_PATHS,
    DEFAULT_DATABASE_URL,
    POLL_INTERVAL,
    RPC_TIMEOUT,
    WORKERS,
)


class ConfigError(ValueError):
    pass


@dataclass(frozen=True)
class Settings:
    rpc_url: str
    database_url: str = DEFAULT_DATABASE_URL
    debug: bool = False
    from_block: int = 0
    to_block: int = 0
    workers: int = WORKERS
    rpc_timeout: float = RPC_TIMEOUT
    batch_size: int = BATCH_SIZE
    poll_interval: float = POLL_INTERVAL
    log_file: Optional[str] = None
    config_file: Optional[str] = None


# setting name -> (yaml key, env var, cli dest, converter)
_FIELDS = {
    "database_url": ("database", "DATABASE_URL", "database", str),
    "rpc_url": ("rpc", "RPC_URL", "rpc", str),
    "debug": ("debug", "DEBUG", "debug", "bool"),
    "from_block": ("fromBlock", "FROM_BLOCK", "fromBlock", int),
    "to_block": ("toBlock", "TO_BLOCK", "toBlock", int),
    "workers": ("workers", "WORKERS", "workers", int),
    "rpc_timeout": ("rpcTimeout", "RPC_TIMEOUT", "rpc_timeout", float),
    "batch_size": ("batchSize", "BATCH_SIZE", "batch_size", int),
    "poll_interval": ("pollInterval", "POLL_INTERVAL", "poll_interval", float),
    "log_file": ("logFile", "LOG_FILE", None, str),
}

_TRUE = {"1", "true", "yes", "on"}


def _convert(name: str, value: Any, converter) -> Any:
    try:
        if converter == "bool":
            if isinstance(value, bool):
                return value
            return str(value).strip().lower() in _TRUE
        return converter(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"invalid value for {name}: {value!r}") from e


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="revert-indexer",
        description="Queries debug_traceTransaction for revert status and a reason",
    )
    parser.add_argument("-c", "--config", help="config file (default is config/local.yaml)")
    parser.add_argument("-r", "--rpc", help="rpc url")
    parser.add_argument("-d", "--debug", action="store_true", default=None, help="enable debug logging")
    parser.add_argument("--database", help=f"database url (default {DEFAULT_DATABASE_URL})")
    parser.add_argument("-f", "--fromBlock", type=int, help="block to start from, ignored if missing or 0")
    parser.add_argument("-t", "--toBlock", type=int, help="block to end on, ignored if missing or 0")
    parser.add_argument("-w", "--workers", type=int, help=f"concurrent trace calls (default {WORKERS})")
    parser.add_argument("--rpc-timeout", type=float, help=f"seconds per trace call (default {RPC_TIMEOUT})")
    parser.add_argument("--batch-size", type=int, help=f"rows per poll (default {BATCH_SIZE})")
    parser.add_argument("--poll-interval", type=float, help=f"idle sleep in seconds (default {POLL_INTERVAL})")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def find_config_file(explicit: Optional[str] = None) -> Optional[Path]:
    if explicit:
        path = Path(explicit)
        if not path.is_file():
            raise ConfigError(f"config file not found: {explicit}")
        return path
    for directory in CONFIG_SEARCH_PATHS:
        path = Path(directory) / CONFIG_NAME
        if path.is_file():
            return path
    return None


def read_config_file(path: Path) -> Dict[str, Any]:
    with path.open("r", encoding="utf-8") as f:
        try:
            data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigError(f"unable to parse {path}: {e}") from e
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"{path} must contain a mapping")
    return data


def validate(settings: Settings) -> Settings:
    if not settings.rpc_url:
        raise ConfigError("an rpc url is required (--rpc, RPC_URL or 'rpc' in the config file)")
    if not settings.rpc_url.startswith(("http://", "https://")):
        raise ConfigError(f"unsupported rpc url: {settings.rpc_url}")
    if settings.from_block < 0 or settings.to_block < 0:
        raise ConfigError("block bounds must not be negative")
    if settings.from_block and settings.to_block and settings.to_block < settings.from_block:
        raise ConfigError(f"toBlock {settings.to_block} is before fromBlock {settings.from_block}")
    if settings.workers < 1:
        raise ConfigError("workers must be at least 1")
    if settings.batch_size < 1:
        raise ConfigError("batch size must be at least 1")
    if settings.rpc_timeout <= 0:
        raise ConfigError("rpc timeout must be positive")
    if settings.poll_interval < 0:
        raise ConfigError("poll interval must not be negative")
    return settings


def load_settings(argv: Optional[List[str]] = None, environ: Optional[Dict[str, str]] = None) -> Settings:
    args = build_parser().parse_args(argv)
    if environ is None:
        load_dotenv()
        environ = dict(os.environ)

    config_path = find_config_file(args.config)
    file_values = read_config_file(config_path) if config_path else {}

    values: Dict[str, Any] = {}
    for name, (yaml_key, env_var, dest, converter) in _FIELDS.items():
        raw = None
        if yaml_key in file_values and file_values[yaml_key] is not None:
            raw = file_values[yaml_key]
        if environ.get(env_var):
            raw = environ[env_var]
        if dest is not None and getattr(args, dest) is not None:
            raw = getattr(args, dest)
        if raw is not None:
            values[name] = _convert(name, raw, converter)

    values.setdefault("rpc_url", "")
    if config_path:
        values["config_file"] = str(config_path.resolve())
    return validate(Settings(**values))
