"""Byte size formatting for listings."""

from typing import Optional, Union

_UNITS = ["B", "KiB", "MiB", "GiB", "TiB", "PiB"]


def format_size(size: Optional[int], humanize: bool = True) -> Optional[Union[str, int]]:
    """Render a byte count.

    With ``humanize`` the value becomes a short string such as ``"1.5 KiB"``;
    otherwise the exact byte count is returned unchanged.
    """
    if size is None:
        return None
    if not humanize:
        return size

    value = float(size)
    for unit in _UNITS:
        if abs(value) < 1024 or unit == _UNITS[-1]:
            if unit == "B":
                return f"{int(value)} B"
            return f"{value:.1f} {unit}"
        value /= 1024
    return f"{size} B"
