"""
Configuration module for the reward economy core
Centralizes all tunables with environment overrides and validation
"""

import os
import json
import copy
import logging
import threading
from pathlib import Path
from typing import Dict, Any, Optional, Union

from models.levels import DEFAULT_BUCKET_COUNT, DEFAULT_LEVELS, LevelConfig, LevelTable


class ConfigError(Exception):
    """Configuration validation error"""
    pass


def _safe_int_env(name: str, default: int, min_val: int = None, max_val: int = None) -> int:
    """
    Safely parse integer environment variable with bounds.
    Falls back to default on invalid values.
    """
    logger_local = logging.getLogger(__name__)
    try:
        value = int(os.getenv(name, str(default)))
        if min_val is not None:
            value = max(min_val, value)
        if max_val is not None:
            value = min(max_val, value)
        return value
    except (ValueError, TypeError):
        logger_local.warning(f"Invalid {name}, using default {default}")
        return default


def _safe_float_env(name: str, default: float, min_val: float = None, max_val: float = None) -> float:
    """Float counterpart of _safe_int_env"""
    logger_local = logging.getLogger(__name__)
    try:
        value = float(os.getenv(name, str(default)))
        if min_val is not None:
            value = max(min_val, value)
        if max_val is not None:
            value = min(max_val, value)
        return value
    except (ValueError, TypeError):
        logger_local.warning(f"Invalid {name}, using default {default}")
        return default


class Config:
    """
    Configuration management with:
    - Sectioned defaults
    - Environment variable overrides
    - JSON file overrides
    - Validation
    """

    # ========== Reward Batching ==========
    BATCHING = {
        'batch_size': _safe_int_env('PLINKO_BATCH_SIZE', 10, 1, 1000),
        'batch_timeout_seconds': _safe_float_env('PLINKO_BATCH_TIMEOUT', 3.0, 0.1),
        'retry_interval_seconds': _safe_float_env('PLINKO_RETRY_INTERVAL', 1.0, 0.0),
        'max_retries': _safe_int_env('PLINKO_MAX_RETRIES', 3, 0, 100),
        'flush_poll_interval': 0.1,
    }

    # ========== Simulated Network ==========
    NETWORK = {
        'min_latency_ms': _safe_float_env('PLINKO_MIN_LATENCY_MS', 50.0, 0.0),
        'max_latency_ms': _safe_float_env('PLINKO_MAX_LATENCY_MS', 200.0, 0.0),
        'error_rate': _safe_float_env('PLINKO_ERROR_RATE', 0.01, 0.0, 1.0),
    }

    # ========== Sessions ==========
    SESSION = {
        'duration_minutes': _safe_float_env('PLINKO_SESSION_MINUTES', 15.0, 0.1),
        'timer_update_interval': 0.25,
        'initial_ball_count': _safe_int_env('PLINKO_INITIAL_BALLS', 200, 0),
    }

    # ========== Board Geometry ==========
    BOARD = {
        'spawn_left': -2.5,
        'spawn_right': 2.5,
        'default_bucket_count': DEFAULT_BUCKET_COUNT,
    }

    # ========== Anti-Cheat ==========
    ANTI_CHEAT = {
        'plausibility_deviation_multiplier': 0.4,
        'plausibility_grace_period': 10,
        'statistical_sample_size': 100,
        'average_reward_threshold': 2.5,
        'high_value_hit_rate_threshold': 3.0,
        'high_value_reward_threshold': 9,
        'suspicious_flags_before_reject': 20,
        'implausible_outcomes_before_flag': 5,
        'implausible_rate_threshold': 0.1,
        'max_balls_per_minute': 120,
        'enable_detailed_logging': os.getenv('PLINKO_ANTICHEAT_LOGGING', 'true').lower() == 'true',
        'log_only_suspicious': os.getenv('PLINKO_ANTICHEAT_ONLY_SUSPICIOUS', 'false').lower() == 'true',
    }

    # ========== Level Reward Tables ==========
    LEVELS = copy.deepcopy(DEFAULT_LEVELS)

    # ========== Logging Settings ==========
    LOGGING = {
        'level': os.getenv('LOG_LEVEL', 'INFO'),
        'format': '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        'date_format': '%Y-%m-%d %H:%M:%S',
        'max_bytes': 5 * 1024 * 1024,
        'backup_count': 3,
        'json_logs': os.getenv('PLINKO_JSON_LOGS', 'false').lower() == 'true',
        'file_output': True,
    }

    # Sections that may be overridden from a JSON config file
    _SECTIONS = ['batching', 'network', 'session', 'board', 'anti_cheat', 'logging']

    # ========== File Settings ==========
    @classmethod
    def get_files_config(cls) -> dict:
        """Get file configuration with lazy initialization to avoid import issues"""
        base_dir = Path(os.getenv('PLINKO_STATE_DIR', str(Path.home() / '.plinko_core')))
        return {
            'state_dir': base_dir,
            'preferences_file': base_dir / 'preferences.json',
            'log_dir': Path(os.getenv('PLINKO_LOG_DIR', str(base_dir / 'logs'))),
        }

    def __init__(
        self,
        config_file: Optional[str] = None,
        validate: bool = True,
        ensure_directories: bool = True,
    ):
        """
        Initialize configuration with optional validation

        Args:
            config_file: Optional path to JSON config file
            validate: Whether to validate configuration on init
            ensure_directories: Create required directories on init
        """
        self._lock = threading.RLock()
        self._files_config: Optional[dict] = None
        self.config_file = config_file
        self._logger = logging.getLogger(__name__)

        # Instance copies so overrides never leak between Config objects
        self.BATCHING = dict(self.BATCHING)
        self.NETWORK = dict(self.NETWORK)
        self.SESSION = dict(self.SESSION)
        self.BOARD = dict(self.BOARD)
        self.ANTI_CHEAT = dict(self.ANTI_CHEAT)
        self.LEVELS = copy.deepcopy(self.LEVELS)
        self.LOGGING = dict(self.LOGGING)

        if ensure_directories:
            self.ensure_directories()

        if config_file:
            self.load_from_file(config_file)

        if validate:
            self.validate()

    @property
    def FILES(self) -> dict:
        """Cached file configuration"""
        with self._lock:
            if self._files_config is None:
                self._files_config = self.get_files_config()
            return self._files_config

    def ensure_directories(self) -> Dict[str, bool]:
        """Ensure all required directories exist, track success."""
        status: Dict[str, bool] = {}
        for key in ['state_dir', 'log_dir']:
            path = self.FILES[key]
            try:
                path.mkdir(parents=True, exist_ok=True)
                status[key] = path.exists() and path.is_dir()
            except OSError as e:
                self._logger.warning(f"Could not create {key}: {e}")
                status[key] = False
        self._directory_status = status
        return status

    def validate(self):
        """
        Validate all configuration values

        Raises:
            ConfigError: If configuration is invalid
        """
        errors = []

        # Batching
        if self.BATCHING['batch_size'] < 1:
            errors.append("batch_size must be at least 1")
        if self.BATCHING['batch_timeout_seconds'] <= 0:
            errors.append("batch_timeout_seconds must be positive")
        if self.BATCHING['retry_interval_seconds'] < 0:
            errors.append("retry_interval_seconds cannot be negative")
        if self.BATCHING['max_retries'] < 0:
            errors.append("max_retries cannot be negative")

        # Network
        if self.NETWORK['min_latency_ms'] < 0:
            errors.append("min_latency_ms cannot be negative")
        if self.NETWORK['max_latency_ms'] < self.NETWORK['min_latency_ms']:
            errors.append("max_latency_ms must be >= min_latency_ms")
        if not 0.0 <= self.NETWORK['error_rate'] <= 1.0:
            errors.append("error_rate must be between 0 and 1")

        # Session
        if self.SESSION['duration_minutes'] <= 0:
            errors.append("duration_minutes must be positive")
        if self.SESSION['timer_update_interval'] <= 0:
            errors.append("timer_update_interval must be positive")

        # Board
        if self.BOARD['spawn_right'] <= self.BOARD['spawn_left']:
            errors.append("spawn_right must be greater than spawn_left")

        # Anti-cheat
        ac = self.ANTI_CHEAT
        if not 0 < ac['plausibility_deviation_multiplier'] <= 1:
            errors.append("plausibility_deviation_multiplier must be in (0, 1]")
        if ac['statistical_sample_size'] < 1:
            errors.append("statistical_sample_size must be at least 1")
        if ac['suspicious_flags_before_reject'] < 1:
            errors.append("suspicious_flags_before_reject must be at least 1")

        # Levels
        if not self.LEVELS:
            errors.append("At least one level must be defined")
        for i, level in enumerate(self.LEVELS):
            if not level.get('rewards'):
                errors.append(f"Level {i} has no buckets")
            if level.get('multiplier', 1.0) <= 0:
                errors.append(f"Level {i} multiplier must be positive")

        # Logging
        valid_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        if self.LOGGING['level'].upper() not in valid_levels:
            errors.append(f"Invalid log level: {self.LOGGING['level']}")

        if hasattr(self, '_directory_status'):
            for key, success in self._directory_status.items():
                if not success:
                    errors.append(f"Required directory {key} could not be created")

        if errors:
            raise ConfigError("Configuration validation failed:\n" + "\n".join(errors))

    def load_from_file(self, filepath: Union[str, Path]):
        """
        Load configuration overrides from a JSON file

        Args:
            filepath: Path to JSON configuration file
        """
        filepath = Path(filepath)

        if not filepath.exists():
            self._logger.warning(f"Config file not found: {filepath}")
            return

        try:
            with open(filepath, 'r') as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            error_msg = f"Invalid JSON in config file: {e}"
            self._logger.error(error_msg)
            raise ConfigError(error_msg)
        except OSError as e:
            error_msg = f"Error loading config file: {e}"
            self._logger.error(error_msg)
            raise ConfigError(error_msg)

        if not isinstance(data, dict):
            raise ConfigError("Config file must contain a JSON object")

        with self._lock:
            for section in self._SECTIONS:
                values = data.get(section)
                if isinstance(values, dict):
                    getattr(self, section.upper()).update(values)
            if isinstance(data.get('levels'), list):
                self.LEVELS = data['levels']

        self._logger.info(f"Loaded configuration from {filepath}")

    def save_to_file(self, filepath: Union[str, Path]):
        """
        Save current configuration to JSON file

        Args:
            filepath: Path where to save the configuration
        """
        filepath = Path(filepath)
        filepath.parent.mkdir(parents=True, exist_ok=True)

        with open(filepath, 'w') as f:
            json.dump(self.to_dict(), f, indent=2, default=str)

        self._logger.info(f"Saved configuration to {filepath}")

    def get(self, section: str, key: str, default: Any = None) -> Any:
        """
        Get configuration value

        Args:
            section: Configuration section name
            key: Configuration key
            default: Default value if not found
        """
        with self._lock:
            section_dict = getattr(self, section.upper(), None)
            if isinstance(section_dict, dict):
                return section_dict.get(key, default)
        return default

    def set(self, section: str, key: str, value: Any):
        """
        Set a configuration value

        Raises:
            ConfigError: Unknown section
        """
        with self._lock:
            section_dict = getattr(self, section.upper(), None)
            if not isinstance(section_dict, dict):
                raise ConfigError(f"Unknown config section: {section}")
            section_dict[key] = value

    def get_level_config(self, level: int) -> LevelConfig:
        """Reward table for a level (clamped to the defined range)"""
        return self.get_level_table().get(level)

    def get_level_table(self) -> LevelTable:
        return LevelTable.from_config(self.LEVELS)

    def to_dict(self) -> dict:
        """Export entire configuration as dictionary"""
        with self._lock:
            return {
                'batching': dict(self.BATCHING),
                'network': dict(self.NETWORK),
                'session': dict(self.SESSION),
                'board': dict(self.BOARD),
                'anti_cheat': dict(self.ANTI_CHEAT),
                'levels': copy.deepcopy(self.LEVELS),
                'logging': dict(self.LOGGING),
                'files': {k: str(v) for k, v in self.FILES.items()},
            }


# Create global configuration instance.
#
# IMPORTANT: Keep this import side-effect free. Runtime initialization (logging
# configuration, directory creation, validation) must happen in an explicit app
# startup path (see `src/main.py`).
config = Config(validate=False, ensure_directories=False)
