"""tar.gz packing and extraction of the server working directory."""

from __future__ import annotations

import os
import pathlib
import shutil
import tarfile
import tempfile
from typing import Optional


class ArchiveError(RuntimeError):
    """Raised when a directory cannot be packed or an archive cannot be extracted."""


def _within(root: pathlib.Path, target: pathlib.Path) -> bool:
    return os.path.commonpath([str(root), str(target)]) == str(root)


def _check_member(dest_root: pathlib.Path, destination: pathlib.Path, member: tarfile.TarInfo) -> None:
    target = (destination / member.name).resolve()
    if not _within(dest_root, target):
        raise ArchiveError(f"archive contains unsafe path: {member.name}")
    if member.issym():
        link_target = ((destination / member.name).parent / member.linkname).resolve()
    elif member.islnk():
        link_target = (destination / member.linkname).resolve()
    else:
        return
    if not _within(dest_root, link_target):
        raise ArchiveError(f"archive link escapes destination: {member.name} -> {member.linkname}")


class TarGzCodec:
    def __init__(self, *, temp_root: Optional[str] = None) -> None:
        self.temp_root = temp_root or None

    def pack(self, directory: pathlib.Path) -> pathlib.Path:
        if not directory.is_dir():
            raise ArchiveError(f"cannot pack missing directory: {directory}")
        temp_dir = pathlib.Path(tempfile.mkdtemp(prefix="spotnode_snapshot_", dir=self.temp_root))
        archive_path = temp_dir / "data.tar.gz"
        try:
            with tarfile.open(archive_path, mode="w:gz") as tf:
                for child in sorted(directory.iterdir()):
                    tf.add(child, arcname=child.name)
        except (OSError, tarfile.TarError) as exc:
            shutil.rmtree(temp_dir, ignore_errors=True)
            raise ArchiveError(f"failed to pack {directory}: {exc}") from exc
        return archive_path

    def unpack(self, archive_path: pathlib.Path, destination: pathlib.Path) -> pathlib.Path:
        destination.mkdir(parents=True, exist_ok=True)
        try:
            with tarfile.open(archive_path, mode="r:gz") as tf:
                dest_root = destination.resolve()
                for member in tf.getmembers():
                    _check_member(dest_root, destination, member)
                if hasattr(tarfile, "data_filter"):
                    tf.extractall(destination, filter="data")
                else:  # pragma: no cover
                    tf.extractall(destination)
        except (OSError, tarfile.TarError) as exc:
            raise ArchiveError(f"failed to extract {archive_path}: {exc}") from exc
        return destination


def discard_archive(archive_path: pathlib.Path) -> None:
    archive_path.unlink(missing_ok=True)
    parent = archive_path.parent
    if parent.name.startswith("spotnode_snapshot_"):
        shutil.rmtree(parent, ignore_errors=True)
