"""Persisted record of each device's original driver."""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path

from vfioswap.core.errors import SecurityError, ValidationError
from vfioswap.core.model import TransferRecord
from vfioswap.core.pci import is_device_id

LOGGER = logging.getLogger(__name__)

LEDGER_MODE = 0o600


class TransferLedger:
    """Line-oriented ``<device>,<driver>`` file.

    The file is replaced atomically on every append and is never followed
    through a symlink. Its presence with content means devices are isolated.
    """

    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    @classmethod
    def open(cls, path: Path | str) -> TransferLedger:
        ledger = cls(Path(path))
        ledger._guard()
        return ledger

    def _guard(self) -> None:
        if self.path.is_symlink():
            raise SecurityError(f"{self.path} is a symlink. Refusing to use it as the ledger.")

    def exists(self) -> bool:
        self._guard()
        return self.path.is_file()

    def is_active(self) -> bool:
        self._guard()
        return self.path.is_file() and self.path.stat().st_size > 0

    def initialize_empty(self) -> None:
        self._guard()
        self.path.unlink(missing_ok=True)
        fd = os.open(self.path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, LEDGER_MODE)
        os.close(fd)
        os.chmod(self.path, LEDGER_MODE)

    def records(self) -> tuple[TransferRecord, ...]:
        self._guard()
        return self._parse()[0]

    def _parse(self) -> tuple[tuple[TransferRecord, ...], list[str]]:
        try:
            content = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return (), []

        records: list[TransferRecord] = []
        malformed: list[str] = []
        for lineno, raw in enumerate(content.splitlines(), start=1):
            line = raw.strip()
            if not line:
                continue
            device_id, sep, driver = line.partition(",")
            device_id, driver = device_id.strip(), driver.strip()
            if not sep or not driver or "," in driver or not is_device_id(device_id):
                LOGGER.warning("Skipping malformed ledger line %d in %s: %r", lineno, self.path, raw)
                malformed.append(raw)
                continue
            records.append(TransferRecord(device_id=device_id, driver=driver))
        return tuple(records), malformed

    def append(self, record: TransferRecord) -> bool:
        """Add ``record`` unless its device already has one. Returns True if written."""
        if "," in record.device_id or "," in record.driver or not record.driver:
            raise ValidationError(f"Cannot store {record.device_id!r},{record.driver!r} in the ledger")

        self._guard()
        existing, malformed = self._parse()
        if any(r.device_id == record.device_id for r in existing):
            LOGGER.debug("State already saved for %s", record.device_id)
            return False

        if malformed:
            LOGGER.warning(
                "Dropping %d malformed line(s) from %s while rewriting it: %s",
                len(malformed),
                self.path,
                "; ".join(repr(line) for line in malformed),
            )

        LOGGER.info("Saving state: %s uses %s", record.device_id, record.driver)
        content = "".join(r.to_line() for r in (*existing, record))
        self._replace(content)
        return True

    def clear(self) -> None:
        self._guard()
        self.path.unlink(missing_ok=True)

    def discard_if_empty(self) -> bool:
        if self.exists() and not self.is_active():
            LOGGER.debug("Removing empty ledger %s", self.path)
            self.path.unlink(missing_ok=True)
            return True
        return False

    def _replace(self, content: str) -> None:
        self._guard()
        fd, tmp_name = tempfile.mkstemp(prefix=f".{self.path.name}.", suffix=".tmp", dir=self.path.parent)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(content)
                handle.flush()
                os.fsync(handle.fileno())
            os.chmod(tmp_name, LEDGER_MODE)
            os.replace(tmp_name, self.path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        os.chmod(self.path, LEDGER_MODE)
