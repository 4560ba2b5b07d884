"""
Parsing of Go-style durations, as used in the resources' specs.

Kubernetes-native controllers serialise ``metav1.Duration`` as Go durations:
``"30s"``, ``"1m30s"``, ``"1h"``, ``"250ms"``, ``"1.5h"``. The resources can
be shared with such controllers, so we accept the same syntax, and only it.
"""
import re

UNITS: dict[str, float] = {
    'ns': 1e-9,
    'us': 1e-6,
    'µs': 1e-6,
    'μs': 1e-6,
    'ms': 1e-3,
    's': 1.0,
    'm': 60.0,
    'h': 3600.0,
}

_PART = re.compile(r'(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|μs|ms|s|m|h)')


def parse_duration(value: str | int | float) -> float:
    """
    Convert a Go-style duration to seconds.

    Plain numbers are accepted as seconds for convenience (e.g. from YAML).
    Negative durations make no sense for intervals and are rejected.
    """
    if isinstance(value, bool):
        raise ValueError(f"Unsupported duration: {value!r}")
    if isinstance(value, (int, float)):
        if value < 0:
            raise ValueError(f"Negative durations are not supported: {value!r}")
        return float(value)

    text = value.strip()
    if not text:
        raise ValueError("Empty duration.")
    if text == '0':
        return 0.0

    pos = 0
    total = 0.0
    while pos < len(text):
        match = _PART.match(text, pos)
        if match is None:
            raise ValueError(f"Invalid duration: {value!r}")
        number, unit = match.groups()
        total += float(number) * UNITS[unit]
        pos = match.end()
    return total
