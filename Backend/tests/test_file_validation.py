import asyncio
import io
import os
import time

import pytest
from fastapi import HTTPException

from agentdesk.core.file_validation import validate_csv_upload
from agentdesk.services.cleanup import LazyCleanup, cleanup_old_files
from agentdesk.services.storage import LocalStorageProvider
from conftest import FakeClock

class MockUploadFile:
    def __init__(self, filename, content, content_type="text/csv"):
        self.filename = filename
        self.content = content
        self.content_type = content_type
        self.position = 0

    async def seek(self, pos):
        self.position = pos

    async def read(self, size):
        data = self.content[self.position:self.position+size]
        self.position += size
        return data

def _check(upload):
    asyncio.run(validate_csv_upload(upload))

def test_valid_csv_passes_and_rewinds():
    upload = MockUploadFile("contacts.csv", b"FirstName,Phone,Notes\nAnn,1,hi\n")
    _check(upload)
    assert upload.position == 0

def test_excel_mime_for_csv_is_accepted():
    _check(MockUploadFile("contacts.CSV", b"a,b\n", content_type="application/vnd.ms-excel"))

@pytest.mark.parametrize("filename", ["contacts.xlsx", "contacts.txt", "contacts", ""])
def test_wrong_extension(filename):
    with pytest.raises(HTTPException) as exc:
        _check(MockUploadFile(filename, b"a,b\n"))
    assert exc.value.status_code == 400

def test_wrong_content_type():
    with pytest.raises(HTTPException):
        _check(MockUploadFile("contacts.csv", b"a,b\n", content_type="image/png"))

def test_empty_file():
    with pytest.raises(HTTPException) as exc:
        _check(MockUploadFile("contacts.csv", b""))
    assert "empty" in exc.value.detail

def test_binary_content():
    with pytest.raises(HTTPException):
        _check(MockUploadFile("contacts.csv", b"\x00\x01\x02\x03"))

# ─── Storage & Cleanup ───────────────────────────────────────────────────────

def test_storage_round_trip(tmp_path):
    storage = LocalStorageProvider(str(tmp_path / "uploads"))
    ref = storage.save_upload(io.BytesIO(b"a,b\n"), "contacts.csv")
    assert ref.endswith(".csv")
    assert os.path.isabs(storage.get_absolute_path(ref))
    assert storage.delete(ref) is True
    assert storage.delete(ref) is False

def test_cleanup_removes_only_old_files(tmp_path):
    old = tmp_path / "old.csv"
    fresh = tmp_path / "fresh.csv"
    old.write_text("x")
    fresh.write_text("y")
    two_days_ago = time.time() - 2 * 86400
    os.utime(old, (two_days_ago, two_days_ago))

    assert cleanup_old_files(str(tmp_path)) == 1
    assert not old.exists()
    assert fresh.exists()

def test_cleanup_missing_directory(tmp_path):
    assert cleanup_old_files(str(tmp_path / "nope")) == 0

def test_lazy_cleanup_runs_at_most_hourly():
    clock = FakeClock(start=10_000.0)
    gate = LazyCleanup(interval_seconds=3600, clock=clock)
    assert gate.due()
    assert not gate.due()
    clock.advance(3601)
    assert gate.due()
