"""
Snapshot file helpers for the disk-backed cache.
"""

import json
import os
import tempfile
from pathlib import Path
from typing import Any, Tuple, Union

from ..logging import get_logger

logger = get_logger(__name__)

# Snapshots hold inventory tag values; keep them private to the owner
SNAPSHOT_MODE = 0o600


def atomic_write(target_path: Union[str, Path], data: Union[str, bytes], mode: int = SNAPSHOT_MODE) -> None:
    """
    Replace ``target_path`` with ``data`` in a single rename.

    Readers see the old file or the new one, never a half-written snapshot.
    """
    target = Path(target_path)
    target.parent.mkdir(parents=True, exist_ok=True)

    # Same directory as the target so os.replace never crosses devices
    fd, temp_name = tempfile.mkstemp(dir=target.parent, prefix=f".{target.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "wb") as tf:
            tf.write(data.encode("utf-8") if isinstance(data, str) else data)
        os.chmod(temp_name, mode)
        os.replace(temp_name, target)
    except OSError as e:
        logger.error(f"Failed to perform atomic write to {target}: {e}")
        if os.path.exists(temp_name):
            os.unlink(temp_name)
        raise


def read_json_snapshot(path: Union[str, Path]) -> Tuple[Any, float]:
    """
    Load a JSON snapshot and the time it was written.

    Raises OSError if the file cannot be read and ValueError if it is not JSON.
    """
    path = Path(path)
    with path.open("r", encoding="utf-8") as f:
        written = os.fstat(f.fileno()).st_mtime
        return json.load(f), written
