"""
Presentation helpers for the rendering layer.

The synchronizers pass backend messages through untouched; turning them into
something a user can read happens here.
"""

from typing import Literal, NamedTuple

import msgspec

from egdata_client.models import LogEntry, UploadStatus

Severity = Literal["success", "info", "error"]


class Notice(NamedTuple):
    severity: Severity
    text: str


def extract_error_message(message: str | None) -> str | None:
    """Return the `error` field if `message` is a serialized JSON object carrying one."""
    if not message:
        return None
    try:
        parsed = msgspec.json.decode(message)
    except msgspec.DecodeError:
        return None
    if isinstance(parsed, dict) and isinstance(parsed.get("error"), str):
        return parsed["error"]
    return None


def describe_upload_result(result: UploadStatus) -> Notice:
    if result.status == "uploaded":
        return Notice("success", "Manifest uploaded successfully!")
    if result.status == "already_uploaded":
        return Notice("info", result.message or "Manifest already uploaded")
    return Notice("error", extract_error_message(result.message) or "Upload failed.")


def log_severity(entry: LogEntry) -> Severity:
    if entry.level in ("ERROR", "CRITICAL"):
        return "error"
    if entry.level == "SUCCESS":
        return "success"
    return "info"


def export_logs(entries: list[LogEntry]) -> str:
    """Plain-text dump of the console, one formatted line per entry, for the clipboard."""
    return "\n".join(entry.formatted for entry in entries)
