#!/usr/bin/env python3
"""
Atomic Zone Deployer

Promotes validated, staged zone files to their live paths. The sequence is
fixed: back up the currently live files, rename each staged file onto its
live path, then ask the name server to reload. A rename within one
filesystem is the only replace a concurrent reader can never observe half
done, so live zone files are never written in place.

Forward and reverse zones are two separate renames. Both files are staged and
validated before the first rename and the renames run back to back, but a
reader can still see the new forward zone with the old reverse zone for that
brief window. If the second rename fails, DeployError is raised with
partial=True and the verified backup holds the previous pair.
"""

import logging
import os
import shutil
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Sequence

from backup_manager import BackupArchive, BackupManager
from run_report import RunReport
from zone_errors import BackupError, DeployError
from zone_renderer import StagedZones


@dataclass
class ReloadOutcome:
    """Result of signalling the name server"""
    succeeded: bool
    output: str = ""


@dataclass
class DeployOutcome:
    """What a deployment did"""
    dry_run: bool
    backup: Optional[BackupArchive] = None
    deployed: List[Path] = field(default_factory=list)
    reload: Optional[ReloadOutcome] = None


class ServiceController:
    """Interface for reloading the name server"""

    def reload(self) -> ReloadOutcome:
        raise NotImplementedError


class CommandServiceController(ServiceController):
    """Reloads the name server by running a command such as `systemctl restart bind9`"""

    def __init__(self, command: Sequence[str] = ('systemctl', 'restart', 'bind9'),
                 timeout: float = 60, logger: logging.Logger = None):
        self.command = list(command)
        self.timeout = timeout
        self.logger = logger or logging.getLogger('zone_manager.deployer')

    def reload(self) -> ReloadOutcome:
        self.logger.debug(f"Running: {' '.join(self.command)}")
        try:
            result = subprocess.run(self.command, capture_output=True, text=True, timeout=self.timeout)
        except FileNotFoundError:
            return ReloadOutcome(False, f"Reload command not found: {self.command[0]}")
        except subprocess.TimeoutExpired:
            return ReloadOutcome(False, f"Reload command timed out after {self.timeout}s")
        except OSError as e:
            return ReloadOutcome(False, f"Reload command could not be run: {e}")

        output = (result.stdout + result.stderr).strip()
        if result.returncode != 0:
            return ReloadOutcome(False, output or f"exit status {result.returncode}")
        return ReloadOutcome(True, output)


class AtomicDeployer:
    """Sole writer of live zone files"""

    def __init__(self, backup_manager: BackupManager, service: ServiceController,
                 report: RunReport = None, logger: logging.Logger = None,
                 file_mode: int = 0o640, owner: Optional[str] = None, group: Optional[str] = None,
                 backup_category: str = 'dns'):
        self.backup_manager = backup_manager
        self.service = service
        self.report = report or RunReport('deploy')
        self.logger = logger or logging.getLogger('zone_manager.deployer')
        self.file_mode = file_mode
        self.owner = owner
        self.group = group
        self.backup_category = backup_category

    def _apply_permissions(self, path: Path):
        """Set mode, and ownership when running as root, on a staged file"""
        os.chmod(str(path), self.file_mode)
        if (self.owner or self.group) and hasattr(os, 'geteuid') and os.geteuid() == 0:
            shutil.chown(str(path), user=self.owner, group=self.group)
        elif self.owner or self.group:
            self.logger.debug(f"Not running as root; leaving ownership of {path} unchanged")

    def deploy(self, staged: StagedZones, dry_run: bool = False) -> DeployOutcome:
        """Back up, replace and reload

        On failure the staged files are removed. A dry run returns without
        touching them; the caller keeps or removes them.
        """
        outcome = DeployOutcome(dry_run=dry_run)

        if dry_run:
            self.report.info("Dry-run enabled: zones generated and validated but not deployed")
            self.report.set_fact('deployed', 'skipped (dry-run)')
            return outcome

        pairs = list(staged.pairs())

        # Backup: fail closed
        live_paths = [str(live) for _, _, live in pairs]
        try:
            outcome.backup = self.backup_manager.backup(live_paths, category=self.backup_category)
        except BackupError:
            staged.cleanup()
            self.report.error("Backup of live zone files failed; deployment aborted, live zones untouched")
            raise

        if outcome.backup is not None:
            self.report.set_fact('backup', str(outcome.backup.path))
        else:
            self.report.set_fact('backup', 'none (no live zone files yet)')

        try:
            for _, staged_path, _ in pairs:
                self._apply_permissions(staged_path)
        except (OSError, LookupError) as e:
            staged.cleanup()
            raise DeployError(f"Could not set permissions on staged zone files: {e}")

        # Replace: one rename per zone, back to back
        for origin, staged_path, live_path in pairs:
            try:
                os.replace(str(staged_path), str(live_path))
            except OSError as e:
                staged.cleanup()
                if outcome.deployed:
                    swapped = ', '.join(str(p) for p in outcome.deployed)
                    message = (f"Replacing {live_path} failed after {swapped} was already deployed; "
                               f"forward and reverse zones are inconsistent: {e}")
                    self.report.error(message)
                    raise DeployError(message, partial=True)
                message = f"Replacing {live_path} failed; live zones untouched: {e}"
                self.report.error(message)
                raise DeployError(message)

            outcome.deployed.append(live_path)
            self.report.info(f"Deployed zone {origin} to {live_path}")

        self.report.set_fact('deployed', [str(p) for p in outcome.deployed])

        # Reload: files are already valid and live, so a failure is an alert only
        outcome.reload = self.service.reload()
        if outcome.reload.succeeded:
            self.report.info("Name server reloaded")
            self.report.set_fact('reload', 'ok')
        else:
            self.report.warn(f"Name server reload failed; new zone files remain deployed: {outcome.reload.output}")
            self.report.set_fact('reload', 'failed')

        return outcome
