"""Small helpers for bounding and parsing diffs.

Keep this module dependency-light and easy to unit test.
"""

from __future__ import annotations

from typing import Any

from .config import MAX_PAYLOAD_CHARS


def truncation_marker(limit: int) -> str:
    return f"\n\n... [truncated, showing first {limit} chars]"


def truncate_payload(text: str | None, *, limit: int = MAX_PAYLOAD_CHARS) -> tuple[str, bool]:
    """Bound ``text`` to ``limit`` characters plus a trailing marker.

    Applying this to its own output is a no-op, so the marker never appears
    twice. Returns ``(text, truncated)``.
    """

    raw = text or ""
    if limit <= 0:
        return raw, False

    marker = truncation_marker(limit)
    if raw.endswith(marker) and len(raw) - len(marker) <= limit:
        return raw, True
    if len(raw) <= limit:
        return raw, False
    return raw[:limit] + marker, True


def parse_numstat(stdout: str) -> list[dict[str, Any]]:
    """Parse ``git diff --numstat`` / ``git show --numstat`` output."""

    out: list[dict[str, Any]] = []
    for raw in (stdout or "").splitlines():
        if not raw.strip():
            continue
        # Format: <added>\t<removed>\t<path>
        parts = raw.split("\t")
        if len(parts) < 3:
            continue
        added_s, removed_s = parts[0].strip(), parts[1].strip()
        path = "\t".join(parts[2:]).strip()
        binary = added_s == "-" or removed_s == "-"
        out.append(
            {
                "path": path,
                "added": 0 if binary else int(added_s),
                "removed": 0 if binary else int(removed_s),
                "is_binary": binary,
            }
        )
    return out


def parse_name_status(stdout: str) -> dict[str, str]:
    """Map path -> single-letter status from ``--name-status`` output.

    Renames and copies (``R100\\told\\tnew``) are keyed by the new path.
    """

    statuses: dict[str, str] = {}
    for raw in (stdout or "").splitlines():
        if not raw.strip():
            continue
        parts = raw.split("\t")
        letter = parts[0][:1].upper()
        if letter in {"R", "C"} and len(parts) >= 3:
            statuses[parts[2]] = letter
        elif len(parts) >= 2:
            statuses[parts[1]] = letter if letter in {"A", "M", "D", "U"} else "M"
    return statuses


def numstat_path(path: str) -> str:
    """Collapse rename notation (``a/{x => y}/b`` or ``x => y``) to the new path."""

    if " => " not in path:
        return path
    if "{" in path and "}" in path:
        prefix, rest = path.split("{", 1)
        inner, suffix = rest.split("}", 1)
        new = inner.split(" => ", 1)[1]
        return (prefix + new + suffix).replace("//", "/")
    return path.split(" => ", 1)[1]


_GITHUB_FILE_STATUS = {
    "added": "A",
    "removed": "D",
    "renamed": "R",
    "copied": "C",
    "modified": "M",
    "changed": "M",
}


def map_github_file_status(status: str | None) -> str:
    return _GITHUB_FILE_STATUS.get((status or "").lower(), "M")


__all__ = [
    "map_github_file_status",
    "numstat_path",
    "parse_name_status",
    "parse_numstat",
    "truncate_payload",
    "truncation_marker",
]
