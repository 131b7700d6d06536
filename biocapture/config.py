"""
Configuration loading for the capture package.

Settings live in config.yaml at the project root (or in the file named by
the BIOCAPTURE_CONFIG environment variable). The parsed file is cached as a
process-wide dict and handed out section by section.

Components never require this module: each one accepts a plain dict and
falls back to built-in defaults for missing keys, so tests and one-off
scripts can skip config.yaml entirely.

Usage:
    from biocapture.config import get_capture_config, get_backend_config

    threshold = get_capture_config()["movement_threshold"]
    backend_url = get_backend_config()["url"]
"""

import os
import yaml
from pathlib import Path
from typing import Any, Dict, Optional


CONFIG_FILENAME = "config.yaml"
CONFIG_ENV_VAR = "BIOCAPTURE_CONFIG"

# Cached parsed config (module-level singleton)
_config_cache: Optional[Dict[str, Any]] = None


def get_project_root() -> Path:
    """
    Locate the directory holding config.yaml.

    Starts next to this package and climbs parent directories until one
    contains the config file.

    Raises:
        FileNotFoundError: When no parent directory has a config.yaml.
    """
    directory = Path(__file__).resolve().parent

    while directory != directory.parent:
        if (directory / CONFIG_FILENAME).exists():
            return directory
        directory = directory.parent

    raise FileNotFoundError(
        f"No {CONFIG_FILENAME} found above {Path(__file__).resolve().parent}. "
        f"Run from the project checkout or set {CONFIG_ENV_VAR}."
    )


def _default_config_path() -> Path:
    override = os.environ.get(CONFIG_ENV_VAR)
    if override:
        return Path(override)
    return get_project_root() / CONFIG_FILENAME


def load_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    """
    Parse a YAML config file.

    Args:
        config_path: File to read. Defaults to $BIOCAPTURE_CONFIG, then to
                     config.yaml in the project root.

    Returns:
        The parsed mapping ({} for an empty file).

    Raises:
        FileNotFoundError: If the file is missing.
        yaml.YAMLError: If the file is not valid YAML.
    """
    path = Path(config_path) if config_path is not None else _default_config_path()

    if not path.exists():
        raise FileNotFoundError(f"Config file {path} does not exist")

    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f)

    return data or {}


def get_config(reload: bool = False) -> Dict[str, Any]:
    """
    Return the cached configuration, reading it on first use.

    Args:
        reload: Re-read the file even if a cached copy exists.
    """
    global _config_cache

    if reload or _config_cache is None:
        _config_cache = load_config()

    return _config_cache


def set_config(config: Optional[Dict[str, Any]]) -> None:
    """Replace the cached configuration (None clears it so the next get reloads)."""
    global _config_cache
    _config_cache = config


def get_section(name: str) -> Dict[str, Any]:
    """
    Return one top-level section of the configuration.

    A section present but left empty in the YAML comes back as {}.

    Raises:
        KeyError: If the section is not in the configuration at all.
    """
    config = get_config()

    if name not in config:
        raise KeyError(
            f"Config has no '{name}' section (sections: {', '.join(config)})"
        )

    return config[name] or {}


def get_capture_config() -> Dict[str, Any]:
    """Pose sequence, movement threshold and liveness settings."""
    return get_section("capture")


def get_landmark_config() -> Dict[str, Any]:
    return get_section("landmarks")


def get_face_detection_config() -> Dict[str, Any]:
    """MediaPipe Face Landmarker settings."""
    return get_section("face_detection")


def get_webcam_config() -> Dict[str, Any]:
    return get_section("webcam")


def get_backend_config() -> Dict[str, Any]:
    """Hosted backend URL, timeout and token."""
    return get_section("backend")


def get_api_config() -> Dict[str, Any]:
    return get_section("api")


def get_logging_config() -> Dict[str, Any]:
    """Logging settings; {} when the section is absent."""
    return get_config().get("logging") or {}


def get_server_config() -> Dict[str, Any]:
    """
    Host and port for running the capture service.

    Derived from api.base_url. A localhost URL binds to all interfaces.
    """
    base_url = get_api_config().get("base_url", "http://localhost:8000")

    host, port = "0.0.0.0", 8000

    netloc = base_url.split("//")[-1].rstrip("/")
    if ":" in netloc:
        name, _, port_text = netloc.rpartition(":")
        try:
            port = int(port_text)
        except ValueError:
            port = 8000
        if name and name != "localhost":
            host = name

    return {"host": host, "port": port}
