#!/usr/bin/env python3
"""
Backup Manager

Snapshots files into timestamped, owner-only, gzip-compressed tar archives and
enforces a retention window. An archive only counts as a backup once it has
been read back successfully; an archive that fails the read-back is removed
and the operation fails, so deployments never proceed without a verified copy
of what they replace.
"""

import logging
import os
import tarfile
import time
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import FrozenSet, Iterable, List, Optional

from run_report import RunReport
from zone_errors import BackupError

ARCHIVE_SUFFIX = '.tar.gz'
ARCHIVE_MODE = 0o600
SECONDS_PER_DAY = 86400


@dataclass
class BackupArchive:
    """A created and verified backup archive"""
    path: Path
    created_at: datetime
    source_paths: FrozenSet[str] = field(default_factory=frozenset)
    verified_readable: bool = False
    member_count: int = 0
    size_bytes: int = 0


class BackupManager:
    """Creates, verifies and expires backup archives under one backup root"""

    def __init__(self, backup_root: str, report: RunReport = None,
                 logger: logging.Logger = None, dry_run: bool = False):
        self.backup_root = Path(backup_root)
        self.report = report
        self.dry_run = dry_run
        self.logger = logger or logging.getLogger('zone_manager.backup')

    def _info(self, message: str):
        if self.report:
            self.report.info(message)
        else:
            self.logger.info(message)

    def category_dir(self, category: str) -> Path:
        return self.backup_root / category

    def _archive_path(self, directory: Path, prefix: str, now: datetime) -> Path:
        """Pick an unused archive name for this second"""
        stamp = now.strftime('%Y%m%d_%H%M%S')
        candidate = directory / f"{prefix}_{stamp}{ARCHIVE_SUFFIX}"
        counter = 1
        while candidate.exists():
            candidate = directory / f"{prefix}_{stamp}_{counter}{ARCHIVE_SUFFIX}"
            counter += 1
        return candidate

    def backup(self, source_paths: Iterable[str], category: str = 'dns',
               prefix: str = 'dns_backup') -> Optional[BackupArchive]:
        """Pack the existing source paths into one verified archive

        Returns None when none of the sources exist (nothing to back up).
        """
        sources = []
        for source in source_paths:
            path = Path(source)
            if path.exists():
                sources.append(path)
            else:
                self.logger.info(f"Skipping non-existent: {path}")

        if not sources:
            self._info("No existing files to back up")
            return None

        directory = self.category_dir(category)
        now = datetime.now()

        if self.dry_run:
            self._info(f"[DRY-RUN] Would back up {', '.join(str(s) for s in sources)} to {directory}")
            return None

        try:
            directory.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise BackupError(f"Cannot create backup directory {directory}: {e}")

        archive_path = self._archive_path(directory, prefix, now)
        self._info(f"Creating backup archive: {archive_path}")

        try:
            # Create with owner-only permissions from the start
            fd = os.open(str(archive_path), os.O_WRONLY | os.O_CREAT | os.O_EXCL, ARCHIVE_MODE)
            with os.fdopen(fd, 'wb') as raw:
                with tarfile.open(fileobj=raw, mode='w:gz') as tar:
                    for source in sources:
                        tar.add(str(source), arcname=self._arcname(source))
            os.chmod(str(archive_path), ARCHIVE_MODE)
        except (OSError, tarfile.TarError) as e:
            self._discard(archive_path)
            raise BackupError(f"Backup archive creation failed: {e}")

        archive = BackupArchive(
            path=archive_path,
            created_at=now,
            source_paths=frozenset(str(s) for s in sources)
        )
        self.verify(archive, sources)
        return archive

    @staticmethod
    def _arcname(source: Path) -> str:
        """Store absolute paths relative to / like tar does"""
        return str(source.resolve()).lstrip(os.sep)

    def verify(self, archive: BackupArchive, sources: List[Path]) -> BackupArchive:
        """Read the archive back: every member must be listed and readable"""
        expected = {self._arcname(s) for s in sources}

        try:
            with tarfile.open(str(archive.path), 'r:gz') as tar:
                members = tar.getmembers()
                names = {m.name for m in members}
                missing = expected - names
                if missing:
                    raise BackupError(f"Archive is missing sources: {', '.join(sorted(missing))}")

                for member in members:
                    if member.isfile():
                        extracted = tar.extractfile(member)
                        if extracted is None:
                            raise BackupError(f"Archive member unreadable: {member.name}")
                        with extracted:
                            while extracted.read(65536):
                                pass
        except (OSError, tarfile.TarError, EOFError) as e:
            self._discard(archive.path)
            raise BackupError(f"Backup archive verification failed for {archive.path}: {e}")
        except BackupError:
            self._discard(archive.path)
            raise

        archive.verified_readable = True
        archive.member_count = len(members)
        archive.size_bytes = archive.path.stat().st_size
        self._info(f"Backup archive verified: {archive.path} ({archive.member_count} entries, {archive.size_bytes} bytes)")
        return archive

    def _discard(self, path: Path):
        """Remove an archive that must not count as a backup"""
        try:
            path.unlink()
            self.logger.warning(f"Removed unverified archive: {path}")
        except FileNotFoundError:
            pass
        except OSError as e:
            self.logger.error(f"Could not remove unverified archive {path}: {e}")

    def backup_config_tree(self, config_dir: str, category: str = 'dns',
                           prefix: str = 'dns_backup') -> Optional[BackupArchive]:
        """Back up a whole configuration tree such as /etc/bind; a missing tree is an error"""
        path = Path(config_dir)
        if not path.is_dir():
            raise BackupError(f"Configuration directory not found: {config_dir}")
        self._info(f"Including full configuration tree ({config_dir})")
        return self.backup([str(path)], category=category, prefix=prefix)

    def apply_retention(self, directory: str, max_age_days: int, now: float = None,
                        prefix: str = 'dns_backup') -> int:
        """Delete this manager's archives older than max_age_days; returns how many were removed"""
        directory = Path(directory)
        now = time.time() if now is None else now
        cutoff = now - max_age_days * SECONDS_PER_DAY

        self._info(f"Applying retention policy ({max_age_days} days) to {directory}")
        if not directory.is_dir():
            return 0

        removed = 0
        for archive in sorted(directory.glob(f"{prefix}_*{ARCHIVE_SUFFIX}")):
            if not archive.is_file():
                continue
            if archive.stat().st_mtime >= cutoff:
                continue

            if self.dry_run:
                self._info(f"[DRY-RUN] Would delete old backup: {archive}")
                removed += 1
                continue

            try:
                archive.unlink()
            except OSError as e:
                raise BackupError(f"Failed to delete old backup {archive}: {e}")
            self._info(f"Deleted old backup: {archive}")
            removed += 1

        if removed:
            self._info(f"Removed {removed} old backup(s)")
        else:
            self._info("No old backups to remove")
        return removed
