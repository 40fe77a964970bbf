from __future__ import annotations

import contextlib
import json
import os
import tempfile
from pathlib import Path
from typing import Any

from ..exceptions import PersistenceFailure


def write_json_atomic(path: Path, payload: Any) -> None:
    """Write ``payload`` as JSON next to ``path`` and swap it into place.

    Readers see either the previous file or the complete new one.
    """

    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, temp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(payload, handle, indent=2)
                handle.write("\n")
            os.replace(temp_name, path)
        except BaseException:
            with contextlib.suppress(OSError):
                os.unlink(temp_name)
            raise
    except OSError as exc:
        raise PersistenceFailure(f"Could not write snapshot {path}: {exc}") from exc


__all__ = ["write_json_atomic"]
