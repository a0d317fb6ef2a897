"""
Conversion options.

Options come from three layers, later layers winning:
built-in defaults < YAML config file < command line flags.

Example ``~/.k2p.yaml``::

    output_dir: ~/Books
    page_delay: 0.8
    pdf_quality: medium
    end_threshold: 0.95
    trim:
      top: 40
      bottom: 40
    retry:
      max_attempts: 5
"""

from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from k2p.errors import ConfigError
from k2p.pipeline.margins import TrimMargins
from k2p.pipeline.retry import RetryConfig

DEFAULT_CONFIG_PATH = Path("~/.k2p.yaml")

MODES = ("generate", "detect")
DIRECTIONS = ("auto", "forward", "reverse")
PDF_QUALITIES = ("low", "medium", "high")


@dataclass(frozen=True)
class ConversionOptions:
    """All knobs of a conversion session."""

    output_dir: str = ""                 # empty = current directory
    mode: str = "generate"               # generate | detect
    pdf_quality: str = "high"            # low | medium | high
    page_delay: float = 0.5              # seconds between page turn and capture
    startup_delay: float = 3.0           # seconds before the session starts
    show_countdown: bool = True
    direction: str = "auto"              # auto | forward | reverse
    trim: TrimMargins = field(default_factory=TrimMargins)
    auto_trim: bool = False              # per-page border trim in generate mode
    overwrite: bool = False
    max_pages: int = 1000                # safety ceiling for the capture loop
    end_window: int = 5                  # identical trailing pages that mean "end of book"
    end_threshold: float = 0.995         # similarity above which two pages are identical
    direction_threshold: float = 0.90    # similarity below which a page turn happened
    probe_presses: int = 3
    min_free_mb: int = 100
    sound: bool = True
    retry: RetryConfig = field(default_factory=RetryConfig)

    # -------------------- Validation --------------------

    def validate(self) -> "ConversionOptions":
        if self.mode not in MODES:
            raise ConfigError(f"mode must be one of {MODES}, got: {self.mode!r}")
        if self.pdf_quality not in PDF_QUALITIES:
            raise ConfigError(f"pdf_quality must be one of {PDF_QUALITIES}, got: {self.pdf_quality!r}")
        if self.direction not in DIRECTIONS:
            raise ConfigError(f"direction must be one of {DIRECTIONS}, got: {self.direction!r}")
        if self.page_delay < 0:
            raise ConfigError("page_delay cannot be negative")
        if self.startup_delay < 0:
            raise ConfigError("startup_delay cannot be negative")
        if self.max_pages < 1:
            raise ConfigError(f"max_pages must be at least 1, got: {self.max_pages}")
        if self.direction == "auto" and self.max_pages < 2:
            raise ConfigError("max_pages must be at least 2 when the direction is detected (the probe keeps two pages)")
        if self.end_window < 2:
            raise ConfigError(f"end_window must be at least 2, got: {self.end_window}")
        if not 0.0 < self.end_threshold <= 1.0:
            raise ConfigError(f"end_threshold must be in (0, 1], got: {self.end_threshold}")
        if not 0.0 < self.direction_threshold <= 1.0:
            raise ConfigError(f"direction_threshold must be in (0, 1], got: {self.direction_threshold}")
        if self.probe_presses < 1:
            raise ConfigError(f"probe_presses must be at least 1, got: {self.probe_presses}")
        if self.min_free_mb < 0:
            raise ConfigError("min_free_mb cannot be negative")
        if min(self.trim.top, self.trim.bottom, self.trim.left, self.trim.right) < 0:
            raise ConfigError(f"trim margins cannot be negative, got: {self.trim}")
        if self.retry.max_attempts < 1:
            raise ConfigError(f"retry.max_attempts must be at least 1, got: {self.retry.max_attempts}")
        if self.retry.initial_delay < 0 or self.retry.max_delay < 0:
            raise ConfigError("retry delays cannot be negative")
        if self.retry.multiplier < 1.0:
            raise ConfigError(f"retry.multiplier must be >= 1.0, got: {self.retry.multiplier}")
        return self

    @property
    def has_custom_trim(self) -> bool:
        return self.mode == "generate" and not self.trim.is_zero()


# -------------------- Loading & merging --------------------

_SCALAR_FIELDS = {f.name for f in fields(ConversionOptions)} - {"trim", "retry"}


def options_from_dict(data: Dict[str, Any], base: Optional[ConversionOptions] = None) -> ConversionOptions:
    """
    Overlay a plain mapping (YAML document or CLI overrides) on ``base``.

    Keys with a None value are ignored so unset CLI flags do not clobber
    file settings.
    """
    base = base or ConversionOptions()
    if not isinstance(data, dict):
        raise ConfigError(f"config must be a mapping, got {type(data).__name__}")

    unknown = set(data) - _SCALAR_FIELDS - {"trim", "retry"}
    if unknown:
        raise ConfigError(f"unknown config keys: {', '.join(sorted(unknown))}")

    changes = {k: v for k, v in data.items() if k in _SCALAR_FIELDS and v is not None}

    trim = data.get("trim")
    if trim:
        changes["trim"] = replace(base.trim, **_sub_mapping("trim", trim, ("top", "bottom", "left", "right")))

    retry = data.get("retry")
    if retry:
        keys = ("max_attempts", "initial_delay", "max_delay", "multiplier")
        changes["retry"] = replace(base.retry, **_sub_mapping("retry", retry, keys))

    try:
        return replace(base, **changes)
    except TypeError as e:
        raise ConfigError(f"invalid config: {e}") from e


def _sub_mapping(name: str, value: Any, allowed) -> Dict[str, Any]:
    if not isinstance(value, dict):
        raise ConfigError(f"'{name}' must be a mapping")
    unknown = set(value) - set(allowed)
    if unknown:
        raise ConfigError(f"unknown '{name}' keys: {', '.join(sorted(unknown))}")
    return {k: v for k, v in value.items() if v is not None}


def load_config(path) -> ConversionOptions:
    """Load and validate options from a YAML file."""
    if not path:
        raise ConfigError("config file path cannot be empty")

    path = Path(path).expanduser()
    try:
        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}
    except OSError as e:
        raise ConfigError(f"failed to read config file {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"failed to parse config file {path}: {e}") from e

    return options_from_dict(data).validate()


def merge_options(file_options: Optional[ConversionOptions], cli_overrides: Dict[str, Any]) -> ConversionOptions:
    """CLI flags take precedence over config file settings, which take precedence over defaults."""
    return options_from_dict(cli_overrides, base=file_options or ConversionOptions()).validate()
