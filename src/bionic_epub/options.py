from __future__ import annotations

import math
import os
import tempfile
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Mapping

from .errors import ValidationError

DEFAULT_MAX_PREFIX_RATIO = 0.6
DEFAULT_MIN_WORD_LENGTH = 3
DEFAULT_MAX_PREFIX_LENGTH = 8
DEFAULT_SKIP_UPPERCASE = True

TEMP_DIR_ENV = "BIONIC_EPUB_TEMP_DIR"
WORKERS_ENV = "BIONIC_EPUB_WORKERS"
MAX_UPLOAD_ENV = "BIONIC_EPUB_MAX_UPLOAD_MB"

_TRUE_STRINGS = {"1", "true", "yes", "on", "y"}
_FALSE_STRINGS = {"0", "false", "no", "off", "n", ""}

# payload key -> field name; camelCase keys are what the original web form posted.
_PAYLOAD_KEYS = {
    "max_prefix_ratio": "max_prefix_ratio",
    "maxPrefixRatio": "max_prefix_ratio",
    "prefix_ratio": "max_prefix_ratio",
    "min_word_length": "min_word_length",
    "minWordLength": "min_word_length",
    "min_length": "min_word_length",
    "max_prefix_length": "max_prefix_length",
    "maxPrefixLength": "max_prefix_length",
    "max_prefix": "max_prefix_length",
    "skip_uppercase": "skip_uppercase",
    "skipUpperCase": "skip_uppercase",
}
_INVERTED_KEYS = ("process_uppercase", "processUppercase")


@dataclass(frozen=True, slots=True)
class BionicOptions:
    max_prefix_ratio: float = DEFAULT_MAX_PREFIX_RATIO
    min_word_length: int = DEFAULT_MIN_WORD_LENGTH
    max_prefix_length: int = DEFAULT_MAX_PREFIX_LENGTH
    skip_uppercase: bool = DEFAULT_SKIP_UPPERCASE

    def validate(self) -> "BionicOptions":
        """Raise ValidationError unless every field is in range; returns self."""
        ratio = self.max_prefix_ratio
        if isinstance(ratio, bool) or not isinstance(ratio, (int, float)):
            raise ValidationError("max_prefix_ratio must be a number between 0 and 1.")
        if not math.isfinite(ratio) or ratio < 0 or ratio > 1:
            raise ValidationError(
                f"max_prefix_ratio must be between 0 and 1 (got {ratio!r})."
            )
        for name in ("min_word_length", "max_prefix_length"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
                raise ValidationError(f"{name} must be a positive integer (got {value!r}).")
        if not isinstance(self.skip_uppercase, bool):
            raise ValidationError("skip_uppercase must be true or false.")
        return self

    def as_payload(self) -> dict[str, float | int | bool]:
        return asdict(self)

    @classmethod
    def from_payload(cls, payload: Mapping[str, object] | None) -> "BionicOptions":
        """Build validated options from loose form/JSON values.

        Unknown keys are ignored, missing or empty ones keep their defaults.
        """
        if payload is None:
            return cls()
        if not isinstance(payload, Mapping):
            raise ValidationError("Options payload must be a mapping.")
        values: dict[str, object] = {}
        for key, field_name in _PAYLOAD_KEYS.items():
            raw = payload.get(key)
            if raw is None or raw == "":
                continue
            if field_name == "max_prefix_ratio":
                values[field_name] = _coerce_float(key, raw)
            elif field_name == "skip_uppercase":
                values[field_name] = _coerce_bool(key, raw)
            else:
                values[field_name] = _coerce_int(key, raw)
        for key in _INVERTED_KEYS:
            raw = payload.get(key)
            if raw is None or raw == "":
                continue
            values["skip_uppercase"] = not _coerce_bool(key, raw)
        return cls(**values).validate()  # type: ignore[arg-type]


DEFAULT_OPTIONS = BionicOptions()


def _coerce_float(name: str, raw: object) -> float:
    if isinstance(raw, bool):
        raise ValidationError(f"{name} must be a number.")
    if isinstance(raw, (int, float)):
        return float(raw)
    try:
        return float(str(raw).strip())
    except ValueError as exc:
        raise ValidationError(f"{name} must be a number (got {raw!r}).") from exc


def _coerce_int(name: str, raw: object) -> int:
    if isinstance(raw, bool):
        raise ValidationError(f"{name} must be an integer.")
    if isinstance(raw, int):
        return raw
    if isinstance(raw, float):
        if not raw.is_integer():
            raise ValidationError(f"{name} must be an integer (got {raw!r}).")
        return int(raw)
    try:
        return int(str(raw).strip())
    except ValueError as exc:
        raise ValidationError(f"{name} must be an integer (got {raw!r}).") from exc


def _coerce_bool(name: str, raw: object) -> bool:
    if isinstance(raw, bool):
        return raw
    text = str(raw).strip().lower()
    if text in _TRUE_STRINGS:
        return True
    if text in _FALSE_STRINGS:
        return False
    raise ValidationError(f"{name} must be true or false (got {raw!r}).")


def default_temp_root() -> Path:
    override = os.environ.get(TEMP_DIR_ENV)
    if override:
        return Path(override).expanduser()
    return Path(tempfile.gettempdir()) / "bionic-epub"


def default_workers(fallback: int = 1) -> int:
    workers = fallback
    env_workers = os.getenv(WORKERS_ENV)
    if env_workers:
        try:
            parsed = int(env_workers)
            if parsed > 0:
                workers = parsed
        except ValueError:
            workers = fallback
    return max(1, min(workers, 8))


def default_max_upload_bytes(fallback_mb: int = 100) -> int:
    megabytes = fallback_mb
    env_value = os.getenv(MAX_UPLOAD_ENV)
    if env_value:
        try:
            parsed = int(env_value)
            if parsed > 0:
                megabytes = parsed
        except ValueError:
            megabytes = fallback_mb
    return megabytes * 1024 * 1024


__all__ = [
    "BionicOptions",
    "DEFAULT_OPTIONS",
    "default_max_upload_bytes",
    "default_temp_root",
    "default_workers",
]
