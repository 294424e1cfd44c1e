"""Session configuration.

Module constants hold the defaults; ``SessionConfig`` bundles the values a
session actually runs with and can read overrides from the environment.
"""

import os
from dataclasses import dataclass
from typing import Any, Mapping, Optional

# Autosave
DEFAULT_AUTOSAVE_INTERVAL = 30.0  # seconds between autosave ticks
AUTOSAVE_ENABLED = True

# Wizard
WIZARD_SECTION_THRESHOLD = 3  # visible sections needed before the form pages

# Environment variable names
ENV_AUTOSAVE_INTERVAL = "FORMSESSION_AUTOSAVE_INTERVAL"
ENV_WIZARD_THRESHOLD = "FORMSESSION_WIZARD_THRESHOLD"
ENV_AUTOSAVE_ENABLED = "FORMSESSION_AUTOSAVE_ENABLED"

_TRUE_STRINGS = {"1", "true", "yes", "on"}


def _coerce_float(value: Any) -> Optional[float]:
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _coerce_int(value: Any) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


@dataclass(frozen=True)
class SessionConfig:
    """Tunables of one form session.

    Attributes:
        autosave_interval: Seconds between autosave ticks
        wizard_threshold: Minimum visible sections for wizard mode
        autosave_enabled: Whether the session starts an autosave scheduler
    """
    autosave_interval: float = DEFAULT_AUTOSAVE_INTERVAL
    wizard_threshold: int = WIZARD_SECTION_THRESHOLD
    autosave_enabled: bool = AUTOSAVE_ENABLED

    def __post_init__(self):
        if self.autosave_interval <= 0:
            raise ValueError(f"autosave_interval must be positive, got {self.autosave_interval}")
        if self.wizard_threshold < 1:
            raise ValueError(f"wizard_threshold must be at least 1, got {self.wizard_threshold}")

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "SessionConfig":
        """Build a config from ``FORMSESSION_*`` variables; unparsable values keep the default.

        Examples:
            >>> SessionConfig.from_env({"FORMSESSION_WIZARD_THRESHOLD": "4"}).wizard_threshold
            4
        """
        env = os.environ if environ is None else environ

        interval = _coerce_float(env.get(ENV_AUTOSAVE_INTERVAL))
        threshold = _coerce_int(env.get(ENV_WIZARD_THRESHOLD))
        enabled = env.get(ENV_AUTOSAVE_ENABLED)

        return cls(
            autosave_interval=interval if interval is not None and interval > 0 else DEFAULT_AUTOSAVE_INTERVAL,
            wizard_threshold=threshold if threshold is not None and threshold >= 1 else WIZARD_SECTION_THRESHOLD,
            autosave_enabled=AUTOSAVE_ENABLED if enabled is None else enabled.strip().lower() in _TRUE_STRINGS,
        )


__all__ = [
    "DEFAULT_AUTOSAVE_INTERVAL",
    "AUTOSAVE_ENABLED",
    "WIZARD_SECTION_THRESHOLD",
    "ENV_AUTOSAVE_INTERVAL",
    "ENV_WIZARD_THRESHOLD",
    "ENV_AUTOSAVE_ENABLED",
    "SessionConfig",
]
