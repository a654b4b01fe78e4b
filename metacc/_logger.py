"""Logging functionality for MetaCC builds."""

import logging
from pathlib import Path

from ._type_check import typecheck_methods

LOG_FILE_NAME = "metacc.log"


@typecheck_methods
class MetaccLogger(logging.Logger):
    """Logger that records toolchain selection, skipped steps and every command run."""

    def __init__(self, log_dir: Path, level: int = logging.INFO):
        """Initialize logger with file handler.
        Args:    log_dir: Directory where metacc.log will be created
                 level: Minimum level written to the file"""
        super().__init__("metacc", level)

        log_dir = Path(log_dir)
        log_dir.mkdir(parents=True, exist_ok=True)
        self.log_file = log_dir / LOG_FILE_NAME

        # Remove existing handlers to avoid duplicates
        self.handlers.clear()

        handler = logging.FileHandler(self.log_file, encoding="utf-8")
        handler.setLevel(level)

        # Format: timestamp - level - message
        formatter = logging.Formatter('%(asctime)s - %(levelname)s - %(message)s')
        handler.setFormatter(formatter)

        self.addHandler(handler)

    def close(self):
        """Flush and detach the file handler."""
        for handler in list(self.handlers):
            handler.close()
            self.removeHandler(handler)
