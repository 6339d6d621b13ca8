"""
Parsing of compose duration strings such as '30s', '1m30s' or '1h'.
"""
import re
from typing import Union

_UNITS = {
    'us': 1e-6,
    'ms': 1e-3,
    's': 1.0,
    'm': 60.0,
    'h': 3600.0,
}
_TOKEN = re.compile(r'(\d+(?:\.\d+)?)(us|ms|s|m|h)')


def parse_duration(value: Union[str, int, float, None], default: float = 0.0) -> float:
    """
    Converts a compose duration to seconds.

    Bare numbers are taken as seconds.

    :param value: Duration string or number.
    :param default: Value returned for None or an empty string.
    :return: Duration in seconds.
    :raises ValueError: If the string is not a valid duration.
    """
    if value is None:
        return default
    if isinstance(value, (int, float)):
        return float(value)

    text = value.strip()
    if not text:
        return default
    try:
        return float(text)
    except ValueError:
        pass

    total = 0.0
    pos = 0
    for match in _TOKEN.finditer(text):
        if match.start() != pos:
            break
        total += float(match.group(1)) * _UNITS[match.group(2)]
        pos = match.end()
    if pos != len(text) or pos == 0:
        raise ValueError(f"Invalid duration: '{value}'")
    return total
