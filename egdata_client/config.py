import configparser
import threading
from enum import StrEnum
from pathlib import Path

import appdirs
import msgspec

from .logger import setup_logger, APP_NAME, APP_AUTHOR

logger = setup_logger()


def get_config_path() -> str:
    return str(Path(appdirs.user_config_dir(APP_NAME, APP_AUTHOR)) / "config.ini")


def get_data_dir() -> Path:
    return Path(appdirs.user_data_dir(APP_NAME, APP_AUTHOR))


class ConfigSection(StrEnum):
    SCAN = 'Scan'
    LOGS = 'Logs'
    GATEWAY = 'Gateway'
    UPLOADS = 'Uploads'


DEFAULTS = {
    ConfigSection.SCAN: {
        'nominal_duration_ms': '3000',
        'tick_interval_ms': '100',
        'hold_ms': '500',
    },
    ConfigSection.LOGS: {
        'max_entries': '1000',
    },
    ConfigSection.GATEWAY: {
        'call_timeout_seconds': '30',
    },
    ConfigSection.UPLOADS: {
        'mirror_enabled': 'true',
    },
}


class ClientConfig(msgspec.Struct, frozen=True):
    """Typed view over config.ini; out-of-range values are rejected in __post_init__."""
    nominal_duration_ms: int = 3000
    tick_interval_ms: int = 100
    hold_ms: int = 500
    max_entries: int = 1000
    call_timeout_seconds: float = 30.0
    mirror_enabled: bool = True

    def __post_init__(self):
        if self.nominal_duration_ms <= 0:
            raise ValueError(f"nominal_duration_ms must be positive, got {self.nominal_duration_ms}")
        if self.tick_interval_ms <= 0:
            raise ValueError(f"tick_interval_ms must be positive, got {self.tick_interval_ms}")
        if self.hold_ms < 0:
            raise ValueError(f"hold_ms must not be negative, got {self.hold_ms}")
        if self.max_entries < 1:
            raise ValueError(f"max_entries must be at least 1, got {self.max_entries}")


class ConfigManager(configparser.ConfigParser):
    _instance = None
    _lock = threading.Lock()

    def __new__(cls, *args, **kwargs):
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = super(ConfigManager, cls).__new__(cls)
        return cls._instance

    def __init__(self):
        if not hasattr(self, 'initialized'):
            super().__init__()
            self.logger = setup_logger()
            self.config_path = get_config_path()
            self.read_dict(DEFAULTS)
            self.read(self.config_path, encoding="utf-8")
            self.initialized = True

    def set_value(self, section: ConfigSection, option: str, value) -> None:
        self.logger.debug(f'Attempting to update {section}.{option}.')
        if not self.has_section(section):
            self.add_section(section)
        self[section][option] = str(value)
        # Write changes back to the INI file
        path = Path(self.config_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, 'w', encoding="utf-8") as configfile:
            self.write(configfile)
        self.logger.debug(f'Updated {section}.{option} to {value}.')

    def get_client_config(self) -> ClientConfig:
        try:
            return ClientConfig(
                nominal_duration_ms=self.getint(ConfigSection.SCAN, 'nominal_duration_ms'),
                tick_interval_ms=self.getint(ConfigSection.SCAN, 'tick_interval_ms'),
                hold_ms=self.getint(ConfigSection.SCAN, 'hold_ms'),
                max_entries=self.getint(ConfigSection.LOGS, 'max_entries'),
                call_timeout_seconds=self.getfloat(ConfigSection.GATEWAY, 'call_timeout_seconds'),
                mirror_enabled=self.getboolean(ConfigSection.UPLOADS, 'mirror_enabled'),
            )
        except ValueError as e:
            self.logger.warning(f"Invalid value in {self.config_path}, using defaults: {e}")
            return ClientConfig()


config_manager = ConfigManager()


def get_client_config() -> ClientConfig:
    return config_manager.get_client_config()
