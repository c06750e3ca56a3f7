"""UTF-8 text I/O and datetime parsing helpers shared by the YAML layer."""

from __future__ import annotations

import os
import tempfile
from datetime import date, datetime, timezone
from pathlib import Path

PathLike = Path | str


def read_text(path: PathLike, errors: str = "strict") -> str:
    """Read *path* as UTF-8 text."""
    return Path(path).read_text(encoding="utf-8", errors=errors)


def write_text_atomic(path: PathLike, text: str) -> None:
    """Write *text* to a sibling temp file, then rename it over *path*.

    Readers never observe a half-written task file.
    """
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(prefix=f".{target.name}.", dir=target.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8", newline="\n") as fh:
            fh.write(text)
        os.replace(tmp, target)
    except BaseException:
        Path(tmp).unlink(missing_ok=True)
        raise


def as_utc(value: datetime) -> datetime:
    """Return *value* as an aware UTC datetime; naive values are taken as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_datetime(value: object) -> datetime | None:
    """Parse ISO-8601 strings, dates and datetimes into aware UTC datetimes."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return as_utc(value)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
    if isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            return as_utc(datetime.fromisoformat(text))
        except ValueError:
            raise ValueError(f"Invalid datetime: {value!r}") from None
    raise ValueError(f"Invalid datetime: {value!r}")


def format_datetime(value: datetime | None) -> str | None:
    if value is None:
        return None
    return as_utc(value).isoformat().replace("+00:00", "Z")
