"""
Credential snapshot store for the session transport.

Layout of the credential directory:
    creds.json     opaque credential blob from the session client
    identity.json  {"jid": ..., "e164": ...} of the linked account

SessionTransport is the only writer. Everything else (provider
auto-detection, "linked as" logging) reads.
"""
from __future__ import annotations

import json
import logging
import os
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from chatrelay.utils import jid_to_e164

logger = logging.getLogger(__name__)

CREDS_FILE = "creds.json"
IDENTITY_FILE = "identity.json"


@dataclass(frozen=True, slots=True)
class SelfIdentity:
    jid: str | None = None
    e164: str | None = None

    def describe(self) -> str:
        if not (self.jid or self.e164):
            return "unknown"
        suffix = f" (jid {self.jid})" if self.jid else ""
        return f"{self.e164 or 'unknown'}{suffix}"


class CredentialStore:
    """Reads and writes the credential directory."""

    def __init__(self, directory: Path):
        self._directory = Path(directory)

    @property
    def directory(self) -> Path:
        return self._directory

    @property
    def creds_path(self) -> Path:
        return self._directory / CREDS_FILE

    @property
    def identity_path(self) -> Path:
        return self._directory / IDENTITY_FILE

    def exists(self) -> bool:
        return self._directory.is_dir()

    def has_valid_snapshot(self) -> bool:
        """True if a readable credential blob is present."""
        return self.load() is not None

    def load(self) -> dict[str, Any] | None:
        """Load the credential blob, or None if missing or unreadable."""
        try:
            raw = self.creds_path.read_text(encoding="utf-8")
            data = json.loads(raw)
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as e:
            logger.warning(f"Ignoring unreadable credential snapshot {self.creds_path}: {e}")
            return None
        return data if isinstance(data, dict) else None

    def save(self, creds: dict[str, Any], self_jid: str | None = None) -> None:
        """Persist the credential blob (and identity, when known)."""
        self._directory.mkdir(parents=True, exist_ok=True)
        self._write_json(self.creds_path, creds)
        if self_jid:
            self._write_json(
                self.identity_path,
                {"jid": self_jid, "e164": jid_to_e164(self_jid)},
            )
        logger.debug(f"Saved credential snapshot to {self._directory}")

    def read_identity(self) -> SelfIdentity:
        """Read the linked identity; never raises."""
        try:
            data = json.loads(self.identity_path.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            return SelfIdentity()
        if not isinstance(data, dict):
            return SelfIdentity()
        jid = data.get("jid")
        return SelfIdentity(jid=jid, e164=data.get("e164") or jid_to_e164(jid))

    def clear(self) -> None:
        """Delete the whole credential directory, forcing re-pairing."""
        shutil.rmtree(self._directory, ignore_errors=True)
        logger.info(f"Cleared credential snapshot at {self._directory}")

    def _write_json(self, path: Path, data: Any) -> None:
        tmp = path.with_suffix(path.suffix + ".tmp")
        tmp.write_text(json.dumps(data), encoding="utf-8")
        os.replace(tmp, path)
