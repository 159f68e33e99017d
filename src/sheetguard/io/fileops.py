"""Workbook file handling: backups, atomic replacement and the writer lock."""

from __future__ import annotations

import os
import shutil
import tempfile
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator

import portalocker

LOCK_SUFFIX = ".sg.lock"
TEMP_PREFIX = ".sg_tmp_"


class WorkbookBusyError(Exception):
    """Another writer holds the sidecar lock of a workbook."""

    def __init__(self, lock_path: Path) -> None:
        super().__init__(f"Workbook is locked by another writer: {lock_path}")
        self.lock_path = lock_path


def backup_copy(path: str | Path) -> str:
    """Copy a workbook to ``<stem>.bak-<utc stamp><suffix>`` beside it."""
    source = Path(path)
    stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%fZ")
    target = source.with_name(f"{source.stem}.bak-{stamp}{source.suffix}")
    shutil.copy2(source, target)
    return str(target)


def replace_file(target: str | Path, data: bytes) -> None:
    """Write *data* next to *target* and swap it in with ``os.replace``.

    Readers see either the old workbook or the new one, never a partial save.
    """
    target = Path(target)
    tmp = tempfile.NamedTemporaryFile(
        dir=target.parent, prefix=TEMP_PREFIX, suffix=target.suffix, delete=False
    )
    try:
        with tmp:
            tmp.write(data)
            tmp.flush()
            os.fsync(tmp.fileno())
        os.replace(tmp.name, target)
    except BaseException:
        Path(tmp.name).unlink(missing_ok=True)
        raise


def lock_path_for(workbook: str | Path) -> Path:
    path = Path(workbook).resolve()
    return path.with_name(path.name + LOCK_SUFFIX)


@contextmanager
def writer_lock(workbook: str | Path, *, timeout: float = 0) -> Iterator[Path]:
    """Hold the exclusive sidecar lock for a read-modify-write of *workbook*.

    A *timeout* of 0 tries once. The OS drops the lock when the holder exits,
    so a sidecar left behind by a crashed writer is simply reacquired.
    """
    sidecar = lock_path_for(workbook)
    lock = portalocker.Lock(
        str(sidecar),
        mode="w",
        timeout=max(timeout, 0),
        check_interval=0.05,
        flags=portalocker.LOCK_EX | portalocker.LOCK_NB,
    )
    try:
        fh = lock.acquire()
    except portalocker.LockException as e:
        raise WorkbookBusyError(sidecar) from e
    try:
        fh.write(f"pid={os.getpid()}\nsince={datetime.now(timezone.utc).isoformat()}\n")
        fh.flush()
        yield sidecar
    finally:
        lock.release()


def read_config_text(path: str | Path) -> str:
    # utf-8-sig drops the BOM some editors put in front of YAML/JSON files
    return Path(path).read_text(encoding="utf-8-sig")
