#!/usr/bin/env python3
"""
Tests for atomic zone deployment
"""

import os
import stat
import tempfile
from pathlib import Path

import pytest

from backup_manager import BackupManager
from run_report import RunReport
from zone_deployer import AtomicDeployer, CommandServiceController, ReloadOutcome, ServiceController
from zone_errors import BackupError, DeployError
from zone_renderer import RenderedZones, stage_zones

OLD_FORWARD = "; old forward zone\n"
OLD_REVERSE = "; old reverse zone\n"
NEW_FORWARD = "; new forward zone\n"
NEW_REVERSE = "; new reverse zone\n"


class FakeService(ServiceController):
    """Records reload calls instead of touching a real name server"""

    def __init__(self, succeeded=True):
        self.succeeded = succeeded
        self.calls = 0

    def reload(self):
        self.calls += 1
        return ReloadOutcome(self.succeeded, "" if self.succeeded else "bind9 failed to start")


class FailingBackupManager(BackupManager):
    def backup(self, source_paths, category='dns', prefix='dns_backup'):
        raise BackupError("disk full")


def setup_zones(temp_dir):
    """Create live zone files and stage replacements beside them"""
    zone_dir = Path(temp_dir) / 'zones'
    zone_dir.mkdir()
    forward_live = zone_dir / 'db.devops.lab'
    reverse_live = zone_dir / 'db.192.168.1'
    forward_live.write_text(OLD_FORWARD)
    reverse_live.write_text(OLD_REVERSE)

    rendered = RenderedZones('devops.lab', '1.168.192.in-addr.arpa', NEW_FORWARD, NEW_REVERSE, 2024031502)
    staged = stage_zones(rendered, forward_live, reverse_live)
    return zone_dir, staged


def make_deployer(temp_dir, service=None, manager_class=BackupManager, report=None):
    manager = manager_class(Path(temp_dir) / 'backup')
    return AtomicDeployer(manager, service or FakeService(), report=report or RunReport('deploy'),
                          file_mode=0o640, owner=None, group=None)


def test_successful_deploy_replaces_backs_up_and_reloads():
    with tempfile.TemporaryDirectory() as temp_dir:
        zone_dir, staged = setup_zones(temp_dir)
        service = FakeService()
        report = RunReport('deploy')

        outcome = make_deployer(temp_dir, service, report=report).deploy(staged)

        assert staged.forward_live.read_text() == NEW_FORWARD
        assert staged.reverse_live.read_text() == NEW_REVERSE
        assert stat.S_IMODE(staged.forward_live.stat().st_mode) == 0o640
        assert outcome.backup.verified_readable
        assert outcome.deployed == [staged.forward_live, staged.reverse_live]
        assert outcome.reload.succeeded
        assert service.calls == 1
        assert report.facts['reload'] == 'ok'
        # No staged files left behind
        assert sorted(p.name for p in zone_dir.iterdir()) == ['db.192.168.1', 'db.devops.lab']


def test_dry_run_leaves_live_files_alone():
    with tempfile.TemporaryDirectory() as temp_dir:
        _, staged = setup_zones(temp_dir)
        service = FakeService()

        outcome = make_deployer(temp_dir, service).deploy(staged, dry_run=True)

        assert outcome.dry_run
        assert staged.forward_live.read_text() == OLD_FORWARD
        assert service.calls == 0
        assert not (Path(temp_dir) / 'backup').exists()
        staged.cleanup()


def test_backup_failure_blocks_deploy():
    with tempfile.TemporaryDirectory() as temp_dir:
        _, staged = setup_zones(temp_dir)
        service = FakeService()

        with pytest.raises(BackupError):
            make_deployer(temp_dir, service, FailingBackupManager).deploy(staged)

        assert staged.forward_live.read_text() == OLD_FORWARD
        assert staged.reverse_live.read_text() == OLD_REVERSE
        assert not staged.forward_staged.exists()
        assert service.calls == 0


def test_crash_before_rename_leaves_live_file_intact(monkeypatch):
    """A failure before any rename leaves the old zone byte-identical"""
    with tempfile.TemporaryDirectory() as temp_dir:
        _, staged = setup_zones(temp_dir)
        before = staged.forward_live.read_bytes()

        def failing_replace(src, dst):
            raise OSError("simulated crash")

        monkeypatch.setattr(os, 'replace', failing_replace)
        with pytest.raises(DeployError) as exc_info:
            make_deployer(temp_dir).deploy(staged)

        assert not exc_info.value.partial
        assert staged.forward_live.read_bytes() == before
        assert staged.reverse_live.read_text() == OLD_REVERSE


def test_failure_after_first_rename_is_partial(monkeypatch):
    with tempfile.TemporaryDirectory() as temp_dir:
        _, staged = setup_zones(temp_dir)
        real_replace = os.replace

        def replace_once(src, dst):
            if str(dst) == str(staged.reverse_live):
                raise OSError("simulated crash")
            real_replace(src, dst)

        monkeypatch.setattr(os, 'replace', replace_once)
        with pytest.raises(DeployError) as exc_info:
            make_deployer(temp_dir).deploy(staged)

        assert exc_info.value.partial
        # Each file is either wholly old or wholly new
        assert staged.forward_live.read_text() == NEW_FORWARD
        assert staged.reverse_live.read_text() == OLD_REVERSE
        assert not staged.reverse_staged.exists()


def test_reload_failure_is_a_warning():
    with tempfile.TemporaryDirectory() as temp_dir:
        _, staged = setup_zones(temp_dir)
        report = RunReport('deploy')

        outcome = make_deployer(temp_dir, FakeService(succeeded=False), report=report).deploy(staged)

        assert not outcome.reload.succeeded
        assert staged.forward_live.read_text() == NEW_FORWARD
        assert report.count('WARN') == 1
        assert report.facts['reload'] == 'failed'


def test_first_deploy_without_live_files():
    with tempfile.TemporaryDirectory() as temp_dir:
        zone_dir, staged = setup_zones(temp_dir)
        os.unlink(str(staged.forward_live))
        os.unlink(str(staged.reverse_live))

        outcome = make_deployer(temp_dir).deploy(staged)

        assert outcome.backup is None
        assert staged.forward_live.read_text() == NEW_FORWARD


def test_missing_reload_command():
    controller = CommandServiceController(['definitely-not-a-real-reload-command'])
    outcome = controller.reload()

    assert not outcome.succeeded
    assert 'not found' in outcome.output


def test_unrunnable_reload_command_is_a_warning():
    with tempfile.TemporaryDirectory() as temp_dir:
        _, staged = setup_zones(temp_dir)
        not_executable = Path(temp_dir) / 'reload-bind'
        not_executable.write_text("#!/bin/sh\nexit 0\n")
        not_executable.chmod(0o644)
        report = RunReport('deploy')

        outcome = make_deployer(temp_dir, CommandServiceController([str(not_executable)]),
                                report=report).deploy(staged)

        assert not outcome.reload.succeeded
        assert 'could not be run' in outcome.reload.output
        assert staged.forward_live.read_text() == NEW_FORWARD
        assert report.facts['reload'] == 'failed'
        assert report.count('WARN') == 1
