"""Stable machine identity."""

import hashlib
import socket
from pathlib import Path

MACHINE_ID_FILES = (Path("/etc/machine-id"), Path("/var/lib/dbus/machine-id"))


def get_machine_id() -> str:
    """Short stable id for this machine, derived from the OS machine id or host name."""
    seed = None
    for path in MACHINE_ID_FILES:
        try:
            seed = path.read_text(encoding="utf-8").strip()
        except OSError:
            continue
        if seed:
            break
    if not seed:
        seed = socket.gethostname()
    return hashlib.sha256(seed.encode("utf-8")).hexdigest()[:16]


def get_machine_name() -> str:
    return socket.gethostname()
