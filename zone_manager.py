#!/usr/bin/env python3
"""
BIND Zone Lifecycle Manager

Generates forward and reverse BIND zone files from a CSV host inventory,
validates them, backs up the live zones, deploys atomically and reloads the
name server. Also backs up the BIND configuration tree and monitors deployed
zones against a live resolver.

Phases of a deployment always run in this order, and none is skipped:
generate -> validate -> backup -> atomic replace -> reload.
"""

import argparse
import logging
import os
import shutil
import sys
import tempfile
from pathlib import Path
from typing import Any, Dict, List, Optional

import dns.exception

from backup_manager import BackupManager
from dns_monitor import DnspythonResolver, HealthMonitor, Resolver, result_rows, summarize
from inventory_parser import parse_inventory
from run_report import RunReport, UserOutput, setup_logging
from soa_serial import allocate_serial
from zone_config import load_config, zone_file_paths
from zone_deployer import AtomicDeployer, CommandServiceController, DeployOutcome, ServiceController
from zone_errors import (
    EXIT_ERROR,
    EXIT_MONITOR_FAILURES,
    EXIT_SUCCESS,
    MonitorError,
    SerialError,
    ZoneManagerError,
)
from zone_file import read_serial, read_zone
from zone_renderer import StagedZones, ZoneDocument, render_zones, stage_zones, write_staged
from zone_validation import ZoneChecker, build_checker, validate_staged


class ZoneLifecycle:
    """Runs the generate, deploy, backup and monitor operations"""

    def __init__(self, config: Dict[str, Any], report: RunReport,
                 checker: ZoneChecker = None, service: ServiceController = None,
                 logger: logging.Logger = None):
        self.config = config
        self.report = report
        self.logger = logger or logging.getLogger('zone_manager')
        self.checker = checker or build_checker(config, self.logger)
        self.service = service or CommandServiceController(
            config['reload_command'], config['reload_timeout'], self.logger
        )
        self.paths = zone_file_paths(config)

    def _backup_manager(self, dry_run: bool = False) -> BackupManager:
        return BackupManager(self.config['backup_root'], self.report, self.logger, dry_run=dry_run)

    def _deployer(self) -> AtomicDeployer:
        return AtomicDeployer(
            self._backup_manager(),
            self.service,
            report=self.report,
            logger=self.logger,
            file_mode=self.config['zone_file_mode'],
            owner=self.config.get('zone_owner'),
            group=self.config.get('zone_group'),
            backup_category=self.config['dns_backup_category']
        )

    def _live_serial(self) -> str:
        """Serial of the deployed forward zone, '' if none is deployed"""
        forward_live = self.paths['forward']
        try:
            return read_serial(str(forward_live), self.config['forward_zone'], self.logger)
        except (dns.exception.DNSException, OSError) as e:
            raise SerialError(f"Cannot read SOA serial from live zone {forward_live}: {e}")

    def _server_serial(self, resolver: Optional[Resolver]) -> Optional[int]:
        if resolver is None:
            return None
        try:
            return resolver.query_soa_serial(self.config['forward_zone'])
        except MonitorError as e:
            self.report.warn(f"Could not read SOA serial from name server: {e}")
            return None

    def _validate_and_deploy(self, staged: StagedZones, dry_run: bool) -> DeployOutcome:
        try:
            validate_staged(self.checker, staged, self.report, self.logger)
        except ZoneManagerError:
            staged.cleanup()
            self.report.set_fact('validation', 'failed')
            self.report.set_fact('deployed', 'skipped (validation failed)')
            raise
        except BaseException:
            staged.cleanup()
            raise
        self.report.set_fact('validation', f"passed ({self.checker.name})")

        try:
            return self._deployer().deploy(staged, dry_run=dry_run)
        except BaseException:
            # Files already renamed into place are gone from the staging path
            staged.cleanup()
            raise

    def generate(self, inventory: str, dry_run: bool = False, output_dir: str = None,
                 resolver: Resolver = None) -> DeployOutcome:
        """Generate zones from an inventory and deploy them unless dry_run"""
        config = self.config
        self.report.info("Zone generation started")
        self.report.set_fact('inventory', inventory)

        records = parse_inventory(inventory, self.logger)
        aliases = len([r for r in records if r.alias])
        self.report.info(f"Parsed {len(records)} hosts ({aliases} aliases) from {inventory}")
        self.report.set_fact('hosts', len(records))

        old_serial = self._live_serial()
        new_serial = allocate_serial(old_serial, self._server_serial(resolver), logger=self.logger)
        self.report.info(f"SOA serial: {old_serial or 'none'} -> {new_serial}")
        self.report.set_fact('old_serial', old_serial or 'none')
        self.report.set_fact('new_serial', new_serial)

        document = ZoneDocument(
            origin=config['forward_zone'],
            serial=new_serial,
            ttl=config['default_ttl'],
            primary_ns=config['primary_ns'],
            admin_contact=config['admin_contact'],
            records=records
        )
        rendered = render_zones(document, config['reverse_zone'], self.report, self.logger)
        self.report.add_table(
            'Generated Records',
            ['Hostname', 'IP', 'Alias', 'PTR'],
            [[r.hostname, str(r.ipv4), r.alias or '-', r.last_octet] for r in records]
        )

        staging_dir = None
        scratch_dir = None
        if dry_run:
            # Dry runs never write next to the live zones
            staging_dir = output_dir or tempfile.mkdtemp(prefix='zone_manager_')
            scratch_dir = None if output_dir else staging_dir

        staged = stage_zones(rendered, self.paths['forward'], self.paths['reverse'],
                             staging_dir=staging_dir, logger=self.logger)
        try:
            outcome = self._validate_and_deploy(staged, dry_run)
            if dry_run and output_dir:
                self._keep_output(staged, Path(output_dir))
            elif dry_run:
                staged.cleanup()
        finally:
            if scratch_dir:
                shutil.rmtree(scratch_dir, ignore_errors=True)

        self.report.info(f"Zone generation completed with serial {new_serial}")
        return outcome

    def _keep_output(self, staged: StagedZones, output_dir: Path):
        """Rename dry-run output to its final file names for inspection"""
        written = []
        for _, staged_path, live_path in staged.pairs():
            target = output_dir / live_path.name
            os.replace(str(staged_path), str(target))
            written.append(str(target))
        self.report.info(f"Dry-run output written to {', '.join(written)}")
        self.report.set_fact('output_files', written)

    def deploy_files(self, forward_file: str, reverse_file: str, dry_run: bool = False) -> DeployOutcome:
        """Validate and deploy zone files rendered earlier"""
        self.report.info("Zone deployment started")

        texts = []
        for path in (forward_file, reverse_file):
            if not os.path.isfile(path):
                raise ZoneManagerError(f"Zone file not found: {path}")
            with open(path, 'r', encoding='utf-8') as f:
                texts.append(f.read())

        old_serial = self._live_serial()
        try:
            new_serial = read_zone(forward_file, self.config['forward_zone'], self.logger).serial
        except (dns.exception.DNSException, OSError) as e:
            raise SerialError(f"Cannot read SOA serial from {forward_file}: {e}")
        if new_serial is None:
            raise SerialError(f"{forward_file} has no SOA record")
        if old_serial and new_serial <= int(old_serial):
            raise SerialError(
                f"Serial {new_serial} in {forward_file} is not greater than the deployed serial {old_serial}"
            )
        self.report.info(f"SOA serial: {old_serial or 'none'} -> {new_serial}")
        self.report.set_fact('old_serial', old_serial or 'none')
        self.report.set_fact('new_serial', new_serial)

        if dry_run:
            scratch_dir = tempfile.mkdtemp(prefix='zone_manager_')
        else:
            scratch_dir = None

        forward_staged = write_staged(texts[0], self.paths['forward'], scratch_dir)
        try:
            reverse_staged = write_staged(texts[1], self.paths['reverse'], scratch_dir)
        except OSError:
            forward_staged.unlink()
            raise
        staged = StagedZones(
            forward_origin=self.config['forward_zone'].rstrip('.'),
            reverse_origin=self.config['reverse_zone'].rstrip('.'),
            forward_staged=forward_staged,
            reverse_staged=reverse_staged,
            forward_live=self.paths['forward'],
            reverse_live=self.paths['reverse'],
            serial=new_serial
        )

        try:
            outcome = self._validate_and_deploy(staged, dry_run)
            if dry_run:
                staged.cleanup()
        finally:
            if scratch_dir:
                shutil.rmtree(scratch_dir, ignore_errors=True)

        self.report.info("Zone deployment completed")
        return outcome

    def backup(self, dry_run: bool = False) -> int:
        """Back up the BIND configuration tree and apply retention"""
        self.report.info("DNS backup started")
        manager = self._backup_manager(dry_run=dry_run)
        category = self.config['dns_backup_category']

        archive = manager.backup_config_tree(self.config['bind_config_dir'], category=category)
        if archive is not None:
            self.report.set_fact('backup', str(archive.path))
        else:
            self.report.set_fact('backup', 'skipped (dry-run)')

        removed = manager.apply_retention(str(manager.category_dir(category)),
                                          self.config['dns_retention_days'])
        self.report.set_fact('expired_backups_removed', removed)
        self.report.info("DNS backup completed successfully")
        return removed

    def monitor(self, zone_file: str, resolver: Resolver) -> int:
        """Monitor a deployed forward zone; returns the number of failed hosts"""
        config = self.config
        self.report.info("DNS monitoring started")
        self.report.set_fact('dns_server', config['dns_server'])
        self.report.set_fact('zone_file', zone_file)
        self.report.set_fact('latency_threshold', f"{config['latency_threshold_ms']}ms")

        if not os.path.isfile(zone_file):
            raise ZoneManagerError(f"Forward zone file not found: {zone_file}")

        monitor = HealthMonitor(resolver, config['forward_zone'], config['latency_threshold_ms'],
                                report=self.report, logger=self.logger)
        try:
            results = monitor.run(zone_file)
        except dns.exception.DNSException as e:
            raise ZoneManagerError(f"Cannot parse zone file {zone_file}: {e}")

        table = result_rows(results)
        self.report.add_table('Monitoring Results', table['headers'], table['rows'])

        summary = summarize(results)
        self.report.set_fact('hosts', summary.total_hosts)
        self.report.set_fact('passed', summary.passed)
        self.report.set_fact('warned', summary.warned)
        self.report.set_fact('failed', summary.failed)
        self.report.info("DNS monitoring completed")
        return summary.failed


def add_common_arguments(parser: argparse.ArgumentParser):
    parser.add_argument("-c", "--config", help="Configuration file (YAML or JSON)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable verbose output")
    parser.add_argument("--log-file", help="Append logs to this file (default from config)")
    parser.add_argument("--report", help="Write a run report to this file")
    parser.add_argument("-f", "--format", choices=["text", "json"], default="text",
                        help="Report format (default: text)")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Generate, deploy, back up and monitor BIND zone files",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Generate zones from an inventory and deploy them
  python zone_manager.py generate --inventory hosts.csv --forward-zone devops.lab \\
      --reverse-zone 1.168.192.in-addr.arpa

  # Generate and validate only, keeping the output for review
  python zone_manager.py generate --inventory hosts.csv --dry-run --output-dir out/

  # Deploy zone files reviewed earlier
  python zone_manager.py deploy --forward-file out/db.devops.lab --reverse-file out/db.192.168.1

  # Back up the BIND configuration and expire old archives
  python zone_manager.py backup

  # Check live resolution of every host in the deployed zone
  python zone_manager.py monitor --server 127.0.0.1 --zone-file /etc/bind/zones/db.devops.lab

Exit codes:
  0 success, 1 error, 2 inventory error, 3 zone validation error,
  4 backup error, 5 deploy error, 6 monitoring found failures
        """
    )
    subparsers = parser.add_subparsers(dest="command", metavar="COMMAND")
    subparsers.required = True

    generate = subparsers.add_parser("generate", help="Generate and deploy zones from an inventory")
    add_common_arguments(generate)
    generate.add_argument("-i", "--inventory", default="hosts.csv",
                          help="CSV inventory file (default: hosts.csv)")
    generate.add_argument("--forward-zone", help="Forward zone name")
    generate.add_argument("--reverse-zone", help="Reverse zone name")
    generate.add_argument("--zone-dir", help="Directory holding the live zone files")
    generate.add_argument("--checker", choices=["named-checkzone", "dnspython"],
                          help="Zone checker to validate with")
    generate.add_argument("-n", "--dry-run", action="store_true",
                          help="Generate and validate zones but do not deploy")
    generate.add_argument("-o", "--output-dir",
                          help="With --dry-run, keep the generated zone files in this directory")
    generate.add_argument("-s", "--server",
                          help="Also read the current SOA serial from this name server")

    deploy = subparsers.add_parser("deploy", help="Validate and deploy existing zone files")
    add_common_arguments(deploy)
    deploy.add_argument("--forward-file", required=True, help="Rendered forward zone file")
    deploy.add_argument("--reverse-file", required=True, help="Rendered reverse zone file")
    deploy.add_argument("--forward-zone", help="Forward zone name")
    deploy.add_argument("--reverse-zone", help="Reverse zone name")
    deploy.add_argument("--zone-dir", help="Directory holding the live zone files")
    deploy.add_argument("--checker", choices=["named-checkzone", "dnspython"],
                        help="Zone checker to validate with")
    deploy.add_argument("-n", "--dry-run", action="store_true",
                        help="Validate but do not deploy")

    backup = subparsers.add_parser("backup", help="Back up the BIND configuration tree")
    add_common_arguments(backup)
    backup.add_argument("--bind-dir", help="BIND configuration directory (default: /etc/bind)")
    backup.add_argument("--backup-root", help="Backup root directory (default: /backup)")
    backup.add_argument("--retention-days", type=int, help="Delete archives older than this")
    backup.add_argument("-n", "--dry-run", action="store_true",
                        help="Show what would be backed up and deleted")

    monitor = subparsers.add_parser("monitor", help="Check live DNS answers for a deployed zone")
    add_common_arguments(monitor)
    monitor.add_argument("-s", "--server", help="DNS server to query (default: 127.0.0.1)")
    monitor.add_argument("-z", "--zone-file", help="Deployed forward zone file")
    monitor.add_argument("--forward-zone", help="Forward zone name")
    monitor.add_argument("-l", "--latency-threshold-ms", type=int,
                         help="Latency warning threshold in ms (default: 100)")
    monitor.add_argument("--timeout", type=float, help="Per-query timeout in seconds (default: 2)")

    return parser


# Command line option -> config key
OVERRIDES = {
    'forward_zone': 'forward_zone',
    'reverse_zone': 'reverse_zone',
    'zone_dir': 'zone_dir',
    'checker': 'checker',
    'bind_dir': 'bind_config_dir',
    'backup_root': 'backup_root',
    'retention_days': 'dns_retention_days',
    'server': 'dns_server',
    'latency_threshold_ms': 'latency_threshold_ms',
    'timeout': 'query_timeout',
    'log_file': 'log_file',
}


def apply_overrides(config: Dict[str, Any], args: argparse.Namespace) -> Dict[str, Any]:
    """Override config with command line arguments"""
    for option, key in OVERRIDES.items():
        value = getattr(args, option, None)
        if value is not None:
            config[key] = value

    # Zone file names follow the zone names given on the command line
    if getattr(args, 'forward_zone', None) or getattr(args, 'zone_dir', None):
        config['forward_zone_file'] = None
    if getattr(args, 'reverse_zone', None) or getattr(args, 'zone_dir', None):
        config['reverse_zone_file'] = None
    return config


def run_command(args: argparse.Namespace, lifecycle: ZoneLifecycle, user_output: UserOutput) -> int:
    """Dispatch one subcommand and return its exit code"""
    config = lifecycle.config

    if args.command == "generate":
        resolver = None
        if args.server:
            resolver = DnspythonResolver(config['dns_server'], config['query_timeout'], lifecycle.logger)
        outcome = lifecycle.generate(args.inventory, args.dry_run, args.output_dir, resolver)
        _print_deploy_outcome(outcome, user_output)
        return EXIT_SUCCESS

    if args.command == "deploy":
        outcome = lifecycle.deploy_files(args.forward_file, args.reverse_file, args.dry_run)
        _print_deploy_outcome(outcome, user_output)
        return EXIT_SUCCESS

    if args.command == "backup":
        removed = lifecycle.backup(args.dry_run)
        user_output.success(f"DNS backup completed ({removed} expired archive(s) removed)")
        return EXIT_SUCCESS

    if args.command == "monitor":
        zone_file = args.zone_file or str(lifecycle.paths['forward'])
        resolver = DnspythonResolver(config['dns_server'], config['query_timeout'], lifecycle.logger)
        failed = lifecycle.monitor(zone_file, resolver)
        if failed:
            user_output.error(f"DNS monitoring found {failed} failing host(s)")
            return EXIT_MONITOR_FAILURES
        user_output.success("DNS monitoring passed")
        return EXIT_SUCCESS

    raise ZoneManagerError(f"Unknown command: {args.command}")


def _print_deploy_outcome(outcome: DeployOutcome, user_output: UserOutput):
    if outcome.dry_run:
        user_output.success("Zones generated and validated (dry-run, nothing deployed)")
        return
    for path in outcome.deployed:
        user_output.success(f"Deployed {path}")
    if outcome.reload is not None and not outcome.reload.succeeded:
        user_output.warning(f"Name server reload failed: {outcome.reload.output}")


def main(argv: Optional[List[str]] = None) -> int:
    """Main function"""
    parser = build_parser()
    args = parser.parse_args(argv)
    user_output = UserOutput(args.verbose)

    try:
        config = apply_overrides(load_config(args.config), args)
    except ZoneManagerError as e:
        user_output.error(str(e))
        return e.exit_code

    logger = setup_logging(args.verbose, config.get('log_file'))
    logger.info(f"Zone manager started: {args.command}")
    logger.debug(f"Command line args: {' '.join(argv if argv is not None else sys.argv[1:])}")

    report = RunReport(args.command, logger=logger)
    exit_code = EXIT_ERROR
    try:
        lifecycle = ZoneLifecycle(config, report, logger=logger)
        exit_code = run_command(args, lifecycle, user_output)
    except ZoneManagerError as e:
        report.error(str(e))
        if getattr(e, 'output', ''):
            logger.error(e.output)
            user_output.error(e.output)
        user_output.error(str(e))
        exit_code = e.exit_code
    except KeyboardInterrupt:
        report.error("Cancelled by user")
        user_output.info("\nCancelled by user")
        exit_code = EXIT_ERROR
    except Exception as e:
        logger.error(f"Unexpected error: {e}", exc_info=True)
        report.error(f"Unexpected error: {e}")
        user_output.error(f"Unexpected error: {e}")
        exit_code = EXIT_ERROR
    finally:
        report.set_fact('exit_code', exit_code)
        if args.report:
            report.write(args.report, args.format)
            user_output.info(f"Report saved to: {args.report}")
        elif args.verbose:
            user_output.verbose_info("\n" + report.render_text())

    logger.info(f"Zone manager finished: {args.command} (exit code {exit_code})")
    return exit_code


if __name__ == "__main__":
    sys.exit(main())
