"""
SightMate - Utility Functions
Provides configuration loading and logging setup.
"""

import os
import copy
import logging
from typing import Dict, Optional

import yaml
import colorlog


class ConfigManager:
    """Manages configuration loading and validation."""

    def __init__(self, config_path: str = "config/config.yaml"):
        self.config_path = config_path
        self.config = self.load_config()

    def load_config(self) -> Dict:
        """Load configuration from YAML file."""
        try:
            with open(self.config_path, 'r') as f:
                config = yaml.safe_load(f)
            if not isinstance(config, dict):
                logging.error(f"Config file is empty or malformed: {self.config_path}")
                return self._default_config()
            return config
        except FileNotFoundError:
            logging.error(f"Config file not found: {self.config_path}")
            return self._default_config()
        except yaml.YAMLError as e:
            logging.error(f"Error parsing config: {e}")
            return self._default_config()

    @classmethod
    def from_dict(cls, config: Dict) -> 'ConfigManager':
        """Build a manager around an in-memory config (defaults filled in underneath)."""
        manager = cls.__new__(cls)
        manager.config_path = None
        manager.config = _deep_merge(manager._default_config(), config)
        return manager

    def _default_config(self) -> Dict:
        """Return default configuration."""
        return {
            'app': {'welcome_message': "SightMate ready. Press to speak."},
            'interaction': {
                'debounce_seconds': 0.3,
                'min_transcript_length': 2,
                'listen_timeout': 45,
                'silence_timeout': 2.5,
                'listen_poll': 0.25,
                'error_restore_delay': 3.0,
                'capture_settle_delay': 0.4,
            },
            'perception': {
                'cadence_seconds': 0.1,
                'capture_retry_delay': 0.1,
                'companion_interval': 15,
                'path_clear_probability': 0.05,
            },
            'navigation': {'step_duration': 14, 'busy_backoff': 3, 'geolocation_timeout': 4},
            'location': {'where_am_i_timeout': 6},
            'emergency': {
                'severity': {
                    'high': {'attempts': 1, 'listen_window': 20},
                    'medium': {'attempts': 2, 'listen_window': 30},
                    'low': {'attempts': 2, 'listen_window': 30},
                },
            },
            'distress': {'amplitude_threshold': 0.85, 'noise_debounce': 5},
            'watchdog': {'interval': 2, 'stale_threshold': 2, 'stale_checks': 2},
            'retry': {'attempts': 3, 'base_delay': 1.0},
            'camera': {'source': 0, 'brightness_threshold': 15},
            'models': {
                'llm': {'primary': 'gemma3:4b', 'vision': 'moondream', 'temperature': 0.5}
            },
        }

    def get(self, key_path: str, default=None):
        """Get configuration value using dot notation (e.g., 'perception.cadence_seconds')."""
        keys = key_path.split('.')
        value = self.config
        for key in keys:
            if isinstance(value, dict) and key in value:
                value = value[key]
            else:
                return default
        return value


def _deep_merge(base: Dict, override: Dict) -> Dict:
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


class Logger:
    """Custom logger with color output and file logging."""

    def __init__(self, name: str = "sightmate", log_file: Optional[str] = "data/logs/sightmate.log",
                 level: str = "INFO"):
        self.logger = logging.getLogger(name)
        self.logger.setLevel(logging.DEBUG)

        # Re-running setup must not stack handlers
        for handler in list(self.logger.handlers):
            self.logger.removeHandler(handler)

        # Console handler with colors
        console_handler = logging.StreamHandler()
        console_handler.setLevel(getattr(logging, str(level).upper(), logging.INFO))
        console_formatter = colorlog.ColoredFormatter(
            '%(log_color)s%(asctime)s - %(name)s - %(levelname)s - %(message)s',
            datefmt='%H:%M:%S',
            log_colors={
                'DEBUG': 'cyan',
                'INFO': 'green',
                'WARNING': 'yellow',
                'ERROR': 'red',
                'CRITICAL': 'red,bg_white',
            }
        )
        console_handler.setFormatter(console_formatter)
        self.logger.addHandler(console_handler)

        # File handler
        if log_file:
            log_dir = os.path.dirname(log_file)
            if log_dir:
                os.makedirs(log_dir, exist_ok=True)
            file_handler = logging.FileHandler(log_file)
            file_handler.setLevel(logging.DEBUG)
            file_formatter = logging.Formatter(
                '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
            )
            file_handler.setFormatter(file_formatter)
            self.logger.addHandler(file_handler)

    def info(self, message: str):
        self.logger.info(message)

    def warning(self, message: str):
        self.logger.warning(message)

    def error(self, message: str):
        self.logger.error(message)

    def debug(self, message: str):
        self.logger.debug(message)

    def critical(self, message: str):
        self.logger.critical(message)


def setup_logging(config: ConfigManager, debug: bool = False) -> Logger:
    """Install the console/file handlers for the whole package."""
    level = "DEBUG" if debug else config.get('logging.level', 'INFO')
    log_file = config.get('logging.file', 'data/logs/sightmate.log')
    return Logger(name="sightmate", log_file=log_file, level=level)
