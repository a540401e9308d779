"""
Streaming zip archive for whole-dataset downloads
"""
import logging
import zipfile
from dataclasses import dataclass, field
from pathlib import PurePosixPath
from typing import BinaryIO, List, Set

logger = logging.getLogger(__name__)


@dataclass
class ArchiveSummary:
    dataset_id: str
    entries: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)


def safe_entry_name(filename: str) -> str:
    """Strip directory components so entries cannot escape the archive root"""
    name = PurePosixPath(filename.replace('\\', '/')).name
    return name or "file"


def unique_entry_name(filename: str, taken: Set[str]) -> str:
    name = safe_entry_name(filename)
    if name not in taken:
        return name
    path = PurePosixPath(name)
    counter = 1
    while True:
        candidate = f"{path.stem} ({counter}){path.suffix}"
        if candidate not in taken:
            return candidate
        counter += 1


class DatasetArchiveWriter:
    """
    Writes a deflate-compressed zip to a caller-supplied binary sink.

    Entries are appended as files arrive; the central directory is written
    on close. The sink does not need to be seekable.
    """

    def __init__(self, sink: BinaryIO, dataset_id: str):
        self.summary = ArchiveSummary(dataset_id=dataset_id)
        self._names: Set[str] = set()
        self._zip = zipfile.ZipFile(sink, mode='w', compression=zipfile.ZIP_DEFLATED, compresslevel=9)

    def add(self, filename: str, content: bytes) -> str:
        name = unique_entry_name(filename, self._names)
        self._zip.writestr(name, content)
        self._names.add(name)
        self.summary.entries.append(name)
        return name

    def skip(self, filename: str, reason: str):
        logger.warning(f"Skipping {filename} in archive of {self.summary.dataset_id}: {reason}")
        self.summary.skipped.append(filename)

    def close(self):
        self._zip.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False
