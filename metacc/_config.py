"""Configuration for MetaCC, loaded from ~/.metacc/config.json."""

import json
import os
from pathlib import Path
from typing import Dict, List, Optional, Type

from ._errors import ConfigurationError
from ._msvc import DEFAULT_MSVC_ARCH
from ._toolchain import Toolchain
from ._detector import DEFAULT_CANDIDATES, toolchain_class
from ._type_check import typecheck_methods

DATA_DIR = Path.home() / ".metacc"
CONFIG_ENV_VAR = "METACC_CONFIG"
DEFAULT_OUTPUT_DIR = "build"


@typecheck_methods
class MetaccConfig:
    """Settings shared by the CLI and library users.

    Example config.json:
        {
          "prefer": ["clang", "gnu", "msvc"],
          "search_paths": ["C:\\\\LLVM\\\\bin"],
          "output_dir": "build",
          "log_dir": null,
          "msvc_arch": "x64"
        }
    Every key is optional.
    """

    def __init__(self, data: Optional[Dict] = None, path: Optional[Path] = None):
        data = dict(data or {})
        self.path = path
        prefer = data.get("prefer")
        self.prefer: List[Type[Toolchain]] = (
            [toolchain_class(kind) for kind in prefer] if prefer is not None else list(DEFAULT_CANDIDATES)
        )
        self.search_paths: List[Path] = [Path(p) for p in data.get("search_paths", [])]
        self.output_dir = Path(data.get("output_dir", DEFAULT_OUTPUT_DIR))
        log_dir = data.get("log_dir")
        self.log_dir: Optional[Path] = Path(log_dir) if log_dir else None
        self.msvc_arch: str = data.get("msvc_arch", DEFAULT_MSVC_ARCH)

    @classmethod
    def default_path(cls) -> Path:
        """METACC_CONFIG if set, otherwise ~/.metacc/config.json."""
        override = os.environ.get(CONFIG_ENV_VAR)
        return Path(override) if override else DATA_DIR / "config.json"

    @classmethod
    def load(cls, path: Optional[Path] = None) -> "MetaccConfig":
        """Load configuration. A missing file yields the defaults.
        Raises:  ConfigurationError for unreadable JSON or unknown toolchain names"""
        config_path = Path(path) if path is not None else cls.default_path()
        if not config_path.is_file():
            return cls(path=None)
        try:
            with open(config_path, 'r', encoding="utf-8") as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"Invalid configuration file {config_path}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigurationError(f"Configuration file {config_path} must contain a JSON object")
        return cls(data, path=config_path)
