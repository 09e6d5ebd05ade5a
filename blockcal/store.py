"""
Text store - the opaque key-value blob layer under the engine.

Names are slash-separated paths relative to the store root, e.g.
"tasks.jsonl" or "ai_outbox/last_sig.txt". Whole-blob read and write only.
"""

import logging
import os
import tempfile
from pathlib import Path

from blockcal import config, paths
from blockcal.errors import ReadFailError

logger = logging.getLogger(__name__)


class TextStore:
    """
    Directory-backed text blob store.

    Writes go to a temp file in the target folder and are swapped in with
    os.replace, so a crash mid-write leaves the previous blob intact.
    """

    FOLDERS = (config.INBOX_DIR, config.OUTBOX_DIR, config.EXPORT_DIR)

    def __init__(self, root: Path | str | None = None):
        self.root = Path(root) if root is not None else paths.data_dir()

    def _path(self, name: str) -> Path:
        return self.root / name

    def ensure_folders(self) -> None:
        self.root.mkdir(parents=True, exist_ok=True)
        for folder in self.FOLDERS:
            (self.root / folder).mkdir(parents=True, exist_ok=True)

    def exists(self, name: str) -> bool:
        return self._path(name).is_file()

    def read_text(self, name: str) -> str:
        """
        Read a blob.

        Raises:
            ReadFailError: if the blob is absent or unreadable
        """
        try:
            return self._path(name).read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise ReadFailError(f"{name}: {e}") from e

    def write_text(self, name: str, text: str) -> None:
        target = self._path(name)
        target.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=target.parent, prefix=f".{target.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(text)
            os.replace(tmp, target)
        except OSError:
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise
        logger.debug(f"Wrote {name} ({len(text)} chars)")

    def list_names(self, folder: str) -> list[str]:
        """Blob names inside a folder, sorted (used to list outbox results)."""
        d = self._path(folder)
        if not d.is_dir():
            return []
        return sorted(f"{folder}/{p.name}" for p in d.iterdir() if p.is_file() and not p.name.startswith("."))
