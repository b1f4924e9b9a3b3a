import re

_UNITS = {"": 1, "s": 1, "m": 60, "h": 3600}


def parse_duration(time_str: str) -> int:
    """
    Parse a duration string like '120', '15s', '10m', '1h' into seconds.

    A bare number is taken as seconds.
    """
    if not isinstance(time_str, str):
        raise ValueError("Invalid time string format")

    match = re.fullmatch(r"\s*(\d+)\s*([smh]?)\s*", time_str)
    if not match:
        raise ValueError("Invalid time string format")

    value, unit = match.groups()
    return int(value) * _UNITS[unit]
