from __future__ import annotations

import os
import shutil
import tempfile
from pathlib import Path
from typing import Optional, Protocol

from ..archive_codec import ArchiveError, TarGzCodec, discard_archive
from ..aws_backend import BlobStoreError
from ..node_common import safe_error_text
from .node_events import EventSink

JAR_PATH_PREFIX = "mcjar"
DATA_PATH_PREFIX = "mcdata"
SEED_FILENAME = "eula.txt"


class PersistenceError(RuntimeError):
    """Raised when the working directory cannot be restored or snapshotted."""


class BlobStore(Protocol):
    def fetch(self, url: str, destination: Path) -> Path: ...

    def store(self, url: str, local_path: Path) -> None: ...


class ArchiveCodec(Protocol):
    def pack(self, directory: Path) -> Path: ...

    def unpack(self, archive_path: Path, destination: Path) -> Path: ...


class Persistence:
    def __init__(
        self,
        *,
        blob_store: BlobStore,
        data_url: str,
        seed_url: str,
        events: EventSink,
        codec: Optional[ArchiveCodec] = None,
        work_root: str = "",
    ) -> None:
        self.blob_store = blob_store
        self.data_url = data_url
        self.seed_url = seed_url
        self.events = events
        self.work_root = work_root or None
        self.codec = codec or TarGzCodec(temp_root=self.work_root)

    def fetch_server_jar(self, jar_url: str) -> Path:
        try:
            jar_dir = Path(tempfile.mkdtemp(prefix=JAR_PATH_PREFIX, dir=self.work_root))
        except OSError as exc:
            raise PersistenceError(f"cannot create jar directory: {exc}") from exc
        jar_path = jar_dir / "server.jar"
        self.events.emit("jar_fetch", f"retrieving game server jar file: {jar_url}", url=jar_url)
        try:
            self.blob_store.fetch(jar_url, jar_path)
        except BlobStoreError as exc:
            raise PersistenceError(f"cannot fetch server jar: {exc}") from exc
        self.events.emit("jar_ready", f"game server path: {jar_path}", path=str(jar_path))
        return jar_path

    def restore(self) -> Path:
        try:
            work_dir = Path(tempfile.mkdtemp(prefix=DATA_PATH_PREFIX, dir=self.work_root))
        except OSError as exc:
            raise PersistenceError(f"cannot create working directory: {exc}") from exc

        try:
            return self._restore_into(work_dir)
        except PersistenceError:
            shutil.rmtree(work_dir, ignore_errors=True)
            raise

    def _restore_into(self, work_dir: Path) -> Path:
        try:
            fd, archive_name = tempfile.mkstemp(suffix=".tar.gz", dir=self.work_root)
            os.close(fd)
        except OSError as exc:
            raise PersistenceError(f"cannot create temp archive: {exc}") from exc
        archive_path = Path(archive_name)

        try:
            try:
                self.blob_store.fetch(self.data_url, archive_path)
            except BlobStoreError as exc:
                # No prior snapshot; first run on this data url.
                self.events.emit(
                    "restore_first_run",
                    f"no data archive at {self.data_url}; seeding from {self.seed_url}",
                    data_url=self.data_url,
                    reason=safe_error_text(exc),
                )
                return self._seed(work_dir)

            try:
                self.codec.unpack(archive_path, work_dir)
            except ArchiveError as exc:
                raise PersistenceError(f"cannot unpack data archive: {exc}") from exc
        finally:
            archive_path.unlink(missing_ok=True)

        self.events.emit(
            "restore_done",
            f"data directory restored from {self.data_url}: {work_dir}",
            path=str(work_dir),
            data_url=self.data_url,
        )
        return work_dir

    def _seed(self, work_dir: Path) -> Path:
        seed_path = work_dir / SEED_FILENAME
        try:
            self.blob_store.fetch(self.seed_url, seed_path)
        except BlobStoreError as exc:
            raise PersistenceError(
                f"no data archive and seed file unavailable: {exc}"
            ) from exc
        self.events.emit(
            "restore_seeded",
            f"EULA file path: {seed_path}",
            path=str(seed_path),
            seed_url=self.seed_url,
        )
        return work_dir

    def snapshot(self, work_dir: Path) -> None:
        self.events.emit("snapshot_started", f"saving data to {self.data_url} started")
        try:
            archive_path = self.codec.pack(work_dir)
        except ArchiveError as exc:
            raise PersistenceError(f"cannot pack working directory: {exc}") from exc
        try:
            self.blob_store.store(self.data_url, archive_path)
        except BlobStoreError as exc:
            raise PersistenceError(f"cannot store data archive: {exc}") from exc
        finally:
            discard_archive(archive_path)
        self.events.emit(
            "snapshot_saved",
            f"saving data to {self.data_url} done",
            data_url=self.data_url,
        )
