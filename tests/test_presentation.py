from datetime import datetime

import pytest

from egdata_client.models import LogEntry, UploadStatus
from egdata_client.presentation import (
    Notice,
    describe_upload_result,
    export_logs,
    extract_error_message,
    log_severity,
)


def log_entry(level, message="m"):
    return LogEntry(
        id=f"{level}-{message}",
        level=level,
        message=message,
        timestamp=datetime(2025, 1, 1, 8, 0, 0),
        sequence=1,
        formatted=f"[08:00:00] {level}: {message}",
    )


class TestExtractErrorMessage:
    @pytest.mark.parametrize("message,expected", [
        ('{"error": "Manifest already exists"}', "Manifest already exists"),
        ('{"detail": "nope"}', None),
        ('{"error": 42}', None),
        ("plain text failure", None),
        ("[1, 2]", None),
        ("", None),
        (None, None),
    ])
    def test_extract(self, message, expected):
        assert extract_error_message(message) == expected


class TestDescribeUploadResult:
    def test_uploaded(self):
        assert describe_upload_result(UploadStatus("uploaded")) == Notice("success", "Manifest uploaded successfully!")

    def test_already_uploaded_uses_backend_message(self):
        notice = describe_upload_result(UploadStatus("already_uploaded", message="Seen on 2025-01-01"))
        assert notice == Notice("info", "Seen on 2025-01-01")
        assert describe_upload_result(UploadStatus("already_uploaded")).text == "Manifest already uploaded"

    def test_failed_with_json_error(self):
        notice = describe_upload_result(UploadStatus("failed", message='{"error": "Invalid manifest"}'))
        assert notice == Notice("error", "Invalid manifest")

    def test_failed_with_unparseable_message(self):
        notice = describe_upload_result(UploadStatus("failed", message="upload_manifest: connection reset"))
        assert notice == Notice("error", "Upload failed.")


class TestLogs:
    @pytest.mark.parametrize("level,severity", [
        ("ERROR", "error"),
        ("CRITICAL", "error"),
        ("SUCCESS", "success"),
        ("WARNING", "info"),
        ("INFO", "info"),
    ])
    def test_severity(self, level, severity):
        assert log_severity(log_entry(level)) == severity

    def test_export(self):
        entries = [log_entry("INFO", "second"), log_entry("ERROR", "first")]
        assert export_logs(entries) == "[08:00:00] INFO: second\n[08:00:00] ERROR: first"
        assert export_logs([]) == ""
