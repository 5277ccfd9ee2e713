# src/scancore/engine/source.py
"""
SourceRef: the contract source handed to a scan job, either a file on disk or an
in-memory blob. The job owns it and releases it once no tool run needs it.
"""
import os
import shutil
import tempfile
import threading
from typing import Optional

from scancore.engine.errors import InvalidInput


class SourceRef:
    def __init__(self, path: Optional[str] = None, content: Optional[str] = None,
                 filename: Optional[str] = None):
        self.path = path
        self.content = content
        self.filename = filename or (os.path.basename(path) if path else "Contract.sol")
        self._tmp_dir: Optional[str] = None
        self._lock = threading.Lock()

    @classmethod
    def from_content(cls, content: str, filename: Optional[str] = None) -> "SourceRef":
        return cls(content=content, filename=filename)

    @property
    def name(self) -> str:
        return self.filename

    def validate(self):
        if self.content is not None:
            if not self.content.strip():
                raise InvalidInput("Contract source is empty")
            return
        if not self.path:
            raise InvalidInput("No contract source provided")
        if not os.path.isfile(self.path):
            raise InvalidInput(f"Contract file not found: {self.path}")
        if os.path.getsize(self.path) == 0:
            raise InvalidInput(f"Contract file is empty: {self.path}")

    def materialize(self) -> str:
        """Return a path the analysis tools can read."""
        if self.content is None:
            return self.path
        with self._lock:
            if self._tmp_dir is None:
                self._tmp_dir = tempfile.mkdtemp(prefix="contract_scan_")
                with open(os.path.join(self._tmp_dir, os.path.basename(self.filename)), "w", encoding="utf-8") as f:
                    f.write(self.content)
            return os.path.join(self._tmp_dir, os.path.basename(self.filename))

    def cleanup(self):
        with self._lock:
            if self._tmp_dir and os.path.exists(self._tmp_dir):
                shutil.rmtree(self._tmp_dir, ignore_errors=True)
            self._tmp_dir = None

    def __repr__(self):
        return f"SourceRef(filename={self.filename!r}, path={self.path!r}, inline={self.content is not None})"
