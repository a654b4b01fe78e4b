"""Exception types raised by MetaCC."""

from typing import Sequence


class MetaccError(Exception):
    """Base class for all MetaCC errors."""


class ConfigurationError(MetaccError, ValueError):
    """A request or configuration is malformed. Raised before any subprocess is spawned."""


class UnknownFlagError(ConfigurationError):
    """A flag outside the closed set of universal flags was requested."""

    def __init__(self, flag):
        self.flag = flag
        super().__init__(f"{flag!r} is not a known flag")


class CompilerNotFoundError(MetaccError):
    """No candidate toolchain has a compiler that can be launched."""

    def __init__(self, candidates: Sequence[str]):
        self.candidates = list(candidates)
        tried = ", ".join(self.candidates) if self.candidates else "none"
        super().__init__(f"No supported C/C++ compiler found (tried {tried})")
