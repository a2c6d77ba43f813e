"""Parsing of Kubernetes style duration strings such as `30s`, `5m` or `1h30m`."""

from datetime import timedelta
import re

__all__ = ["parse_duration"]

_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "μs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}

# Longer unit names come first so that `ms` is not read as `m` followed by `s`
_COMPONENT = r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|μs|ms|s|m|h)"
_COMPONENT_RE = re.compile(_COMPONENT)
_DURATION_RE = re.compile(rf"(?:{_COMPONENT})+")


def parse_duration(value: str) -> timedelta:
    """Parse a duration as accepted by Go's time.ParseDuration.

    A duration is a sequence of decimal numbers, each with an optional
    fraction and a unit suffix, e.g. `300ms`, `1.5h` or `2h45m`, with an
    optional leading sign. The bare string `0` is also accepted.

    Raises:
        ValueError: If the value is not a valid duration.
    """
    text = value
    sign = 1
    if text[:1] in ("+", "-"):
        sign = -1 if text[0] == "-" else 1
        text = text[1:]
    if text == "0":
        return timedelta(0)
    if not text or not _DURATION_RE.fullmatch(text):
        raise ValueError(f"Invalid duration '{value}'")
    seconds = sum(
        float(number) * _UNITS[unit] for number, unit in _COMPONENT_RE.findall(text)
    )
    return sign * timedelta(seconds=seconds)
