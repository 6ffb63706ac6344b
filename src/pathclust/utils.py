"""Utility functions shared by the pathway clustering pipeline."""

import logging
from pathlib import Path
from typing import Any, Optional

import numpy as np


def setup_logging(log_dir: Optional[Path] = None, level=logging.INFO):
    """Set up logging for a pipeline run.

    Args:
        log_dir: Directory to store the run log file
        level: Logging level

    Returns:
        The package logger
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    # Handlers from a previous run in the same process would duplicate output
    for handler in root_logger.handlers[:]:
        if getattr(handler, '_pathclust', False):
            root_logger.removeHandler(handler)
            handler.close()

    if log_dir:
        log_dir = ensure_dir(Path(log_dir))
        file_handler = logging.FileHandler(log_dir / 'pipeline.log', mode='w')
        file_handler.setFormatter(logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        ))
        file_handler._pathclust = True
        root_logger.addHandler(file_handler)
        root_logger.info("Logging initialized")

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(logging.Formatter(
        '%(asctime)s - %(levelname)s - %(message)s'
    ))
    console_handler._pathclust = True
    root_logger.addHandler(console_handler)

    return logging.getLogger('pathclust')


def ensure_dir(path: Path) -> Path:
    """Ensure a directory exists, creating it if necessary.

    Args:
        path: Directory path

    Returns:
        Path object for the directory
    """
    path = Path(path)
    path.mkdir(parents=True, exist_ok=True)
    return path


def clean_for_json(item: Any) -> Any:
    """Convert numpy scalars and arrays nested in dicts/lists to Python natives."""
    if isinstance(item, dict):
        return {str(k): clean_for_json(v) for k, v in item.items()}
    elif isinstance(item, (list, tuple)):
        return [clean_for_json(i) for i in item]
    elif isinstance(item, np.integer):
        return int(item)
    elif isinstance(item, np.floating):
        return float(item)
    elif isinstance(item, np.ndarray):
        return clean_for_json(item.tolist())
    elif isinstance(item, np.bool_):
        return bool(item)
    elif isinstance(item, Path):
        return str(item)
    return item
