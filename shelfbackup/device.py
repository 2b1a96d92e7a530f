# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Shelfbackup Device - Installation identity and device description.

Each installation has a stable identifier which names its backup slot in
cloud storage. The identifier is created on first use and persisted in the
state directory; reinstalling (deleting the state directory) yields a new one.
"""

import os
import socket
import uuid
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

import structlog

logger = structlog.get_logger()

INSTALLATION_ID_FILENAME = "installation-id"


class DeviceClass(str, Enum):
    """Coarse device category; restores are only proposed between equal classes."""

    PHONE = "phone"
    TABLET = "tablet"
    DESKTOP = "desktop"
    UNSPECIFIED = "unspecified"


@dataclass(frozen=True)
class DeviceInfo:
    """Description of the device a backup is made on."""

    name: str = field(default_factory=socket.gethostname)
    device_class: DeviceClass = DeviceClass.DESKTOP


class InstallationIdentity:
    """
    Provides the stable per-installation identifier.

    identifier() returns None when the state directory cannot currently be
    read or written. Callers must treat that as "try again later" rather
    than as a permanently missing identity.
    """

    def __init__(self, state_dir: Path):
        self.state_dir = Path(state_dir)
        self._cached: uuid.UUID | None = None

    @property
    def id_path(self) -> Path:
        return self.state_dir / INSTALLATION_ID_FILENAME

    def identifier(self) -> uuid.UUID | None:
        if self._cached is not None:
            return self._cached

        try:
            if self.id_path.exists():
                self._cached = uuid.UUID(self.id_path.read_text(encoding="utf-8").strip())
            else:
                self._cached = self._create()
        except (OSError, ValueError) as e:
            logger.warning(
                "installation_identifier_unavailable",
                path=str(self.id_path),
                error=str(e),
            )
            return None

        return self._cached

    def _create(self) -> uuid.UUID:
        new_id = uuid.uuid4()
        self.state_dir.mkdir(parents=True, exist_ok=True)

        # Write atomically: temp file -> rename
        temp_path = self.id_path.with_suffix(".tmp")
        temp_path.write_text(str(new_id), encoding="utf-8")
        os.replace(temp_path, self.id_path)

        logger.info("installation_identifier_created", installation_id=str(new_id))
        return new_id
