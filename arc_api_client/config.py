"""
Configuration loading for the ARC API client.

Settings live in YAML files. The packaged defaults in
configurations/config_client.yml are always loaded first; a user file only
needs to contain the keys it overrides.
"""

import copy
import logging
import pathlib
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Union

import yaml

logger = logging.getLogger(__name__)

package_dir = pathlib.Path(__file__).parent
DEFAULT_CONFIG_PATH = package_dir / "configurations" / "config_client.yml"


class ConfigManager:
    """Loads and merges YAML configuration files."""

    def __init__(self):
        self.configs: Dict[str, Dict[str, Any]] = {}

    def load_config_file(self, config_path: Union[str, pathlib.Path]) -> Dict[str, Any]:
        """
        Load a YAML configuration file.

        Args:
            config_path: Path to the YAML file

        Returns:
            dict: Parsed configuration (empty if the file is empty)
        """
        config_path = pathlib.Path(config_path)
        if not config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        with open(config_path, "r") as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ValueError(f"Configuration file {config_path} must contain a mapping")

        self.configs[config_path.stem] = data
        logger.debug(f"Loaded configuration from {config_path}")
        return data

    @staticmethod
    def merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
        """Recursively merge override into a copy of base."""
        merged = copy.deepcopy(base)
        for key, value in override.items():
            if isinstance(value, dict) and isinstance(merged.get(key), dict):
                merged[key] = ConfigManager.merge(merged[key], value)
            else:
                merged[key] = value
        return merged


def configure_logging(
    level: str = "INFO",
    log_dir: Optional[Union[str, pathlib.Path]] = None,
    prefix: str = "arc_api_client",
) -> Optional[pathlib.Path]:
    """
    Configure root logging with a console handler and, if log_dir is given,
    a timestamped log file.

    Returns:
        Path of the log file, or None when logging only to the console
    """
    handlers: List[logging.Handler] = [logging.StreamHandler()]
    filename = None
    if log_dir is not None:
        log_dir = pathlib.Path(log_dir)
        log_dir.mkdir(parents=True, exist_ok=True)  # Create it if it doesn't exist
        filename = log_dir / f'{prefix}_{datetime.now().strftime("%Y%m%d_%H%M%S")}.log'
        handlers.append(logging.FileHandler(filename))

    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=handlers,
        force=True,
    )
    return filename


@dataclass
class ClientSettings:
    host: str = "127.0.0.1"
    port: int = 5000
    connect_timeout: float = 10.0
    io_timeout: Optional[float] = 30.0
    end_of_line: bool = True
    recv_buffer_bytes: int = 1024
    max_response_bytes: int = 1 << 20
    chunk_bytes: int = 65536
    broadcast_address: str = "255.255.255.255"
    discovery_window: float = 2.0
    log_level: str = "INFO"
    log_directory: str = "client_logfiles"

    @classmethod
    def from_dict(cls, settings: Dict[str, Any]) -> "ClientSettings":
        server = settings.get("server") or {}
        connection = settings.get("connection") or {}
        transfer = settings.get("file_transfer") or {}
        discovery = settings.get("discovery") or {}
        log = settings.get("logging") or {}
        defaults = cls()
        io_timeout = connection.get("io_timeout_s", defaults.io_timeout)

        return cls(
            host=str(server.get("host", defaults.host)),
            port=int(server.get("port", defaults.port)),
            connect_timeout=float(connection.get("connect_timeout_s", defaults.connect_timeout)),
            io_timeout=None if io_timeout is None else float(io_timeout),
            end_of_line=bool(connection.get("end_of_line", defaults.end_of_line)),
            recv_buffer_bytes=int(connection.get("recv_buffer_bytes", defaults.recv_buffer_bytes)),
            max_response_bytes=int(connection.get("max_response_bytes", defaults.max_response_bytes)),
            chunk_bytes=int(transfer.get("chunk_bytes", defaults.chunk_bytes)),
            broadcast_address=str(discovery.get("broadcast_address", defaults.broadcast_address)),
            discovery_window=float(discovery.get("window_s", defaults.discovery_window)),
            log_level=str(log.get("level", defaults.log_level)),
            log_directory=str(log.get("directory", defaults.log_directory)),
        )

    @classmethod
    def from_config(cls, config_path: Optional[Union[str, pathlib.Path]] = None) -> "ClientSettings":
        """
        Build settings from the packaged defaults plus an optional user file.

        Args:
            config_path: Optional YAML file whose keys override the defaults
        """
        config_manager = ConfigManager()
        settings = config_manager.load_config_file(DEFAULT_CONFIG_PATH)
        if config_path is not None:
            logger.info(f"Loading client config from {config_path}")
            settings = ConfigManager.merge(settings, config_manager.load_config_file(config_path))
        return cls.from_dict(settings)
