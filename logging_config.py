"""
Logging for the CO₂ dashboard.

app.py calls `setup_logging` once per server process (through
st.cache_resource). The handlers and per-module loggers (`utils`,
`entities`, `aggregation`, `views`) are declared in logging.yml; the
rotating file handler's target can be redirected, e.g. for tests or when the
working directory is read-only. A missing YAML file is not fatal: the
dashboard keeps running on basicConfig.
"""

import logging
import logging.config
import os
from typing import Optional

import yaml

APP_LOGGER = "co2_dashboard"
DEFAULT_LOG_FILE = "co2_dashboard.log"

logger = logging.getLogger(__name__)


def _redirect_file_handler(handler_cfg: dict, log_dir: Optional[str], log_file: Optional[str]) -> str:
    filename = log_file or handler_cfg.get("filename", DEFAULT_LOG_FILE)
    if log_dir:
        filename = os.path.join(log_dir, os.path.basename(filename))
    folder = os.path.dirname(filename)
    if folder:
        os.makedirs(folder, exist_ok=True)
    handler_cfg["filename"] = filename
    return filename


def setup_logging(
    config_path: str = "logging.yml",
    log_dir: Optional[str] = None,
    log_file: Optional[str] = None,
    default_level: int = logging.INFO,
) -> logging.Logger:
    """Configure logging from `config_path` and return the dashboard logger."""
    if not os.path.exists(config_path):
        logging.basicConfig(level=default_level)
        logger.warning("Logging config %s not found, using basicConfig", config_path)
        return logging.getLogger(APP_LOGGER)

    with open(config_path, "r", encoding="utf-8") as f:
        config = yaml.safe_load(f)

    file_cfg = config.get("handlers", {}).get("file")
    target = _redirect_file_handler(file_cfg, log_dir, log_file) if file_cfg is not None else None

    logging.config.dictConfig(config)
    app_logger = logging.getLogger(APP_LOGGER)
    app_logger.debug("Logging configured from %s (file: %s)", config_path, target)
    return app_logger
