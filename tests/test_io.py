"""Tests for workbook file handling: backups, atomic replace, locking."""

from pathlib import Path

import pytest

from sheetguard.io.fileops import (
    WorkbookBusyError,
    backup_copy,
    lock_path_for,
    read_config_text,
    replace_file,
    writer_lock,
)


def test_backup_copy(sales_workbook: Path):
    bak_path = Path(backup_copy(sales_workbook))
    assert bak_path.exists()
    assert bak_path.name.startswith("sales.bak-")
    assert bak_path.suffix == ".xlsx"
    assert bak_path.read_bytes() == sales_workbook.read_bytes()


def test_replace_file_overwrites(tmp_path: Path):
    target = tmp_path / "output.xlsx"
    target.write_bytes(b"old content")
    replace_file(target, b"new content")
    assert target.read_bytes() == b"new content"
    assert not list(tmp_path.glob(".sg_tmp_*"))


def test_writer_lock_is_exclusive(sales_workbook: Path):
    with writer_lock(sales_workbook) as sidecar:
        assert sidecar == lock_path_for(sales_workbook)
        assert "pid=" in sidecar.read_text()
        with pytest.raises(WorkbookBusyError) as exc_info:
            with writer_lock(sales_workbook, timeout=0):
                pass
        assert exc_info.value.lock_path == sidecar
    # released: acquiring again succeeds
    with writer_lock(sales_workbook, timeout=0.2):
        pass


def test_read_config_text_strips_bom(tmp_path: Path):
    path = tmp_path / "policy.yaml"
    path.write_bytes(b"\xef\xbb\xbfprotected_tabs: []\n")
    assert read_config_text(path) == "protected_tabs: []\n"
