#!/usr/bin/env python3
"""
Staged Zone Validation

Runs a zone-syntax checker against staged (not yet deployed) zone files. This
is a hard gate: if either the forward or the reverse file fails, the
deployment stops before any live file is touched.

Two checkers are available:
  - NamedCheckzone: the external BIND checker (`named-checkzone <origin> <file>`)
  - DnspythonZoneChecker: an in-process parse with dnspython, for hosts
    without the BIND utilities installed
"""

import logging
import subprocess
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

import dns.exception
import dns.zone

from run_report import RunReport
from zone_errors import ValidationError


@dataclass
class CheckOutcome:
    """Result of checking one zone file"""
    origin: str
    path: str
    passed: bool
    output: str = ""


class ZoneChecker:
    """Interface for zone syntax checkers"""

    name = "checker"

    def check(self, origin: str, path: str) -> CheckOutcome:
        raise NotImplementedError


class NamedCheckzone(ZoneChecker):
    """Validates zone files with the external named-checkzone tool"""

    name = "named-checkzone"

    def __init__(self, command: Sequence[str] = ('named-checkzone',), timeout: float = 30,
                 logger: logging.Logger = None):
        self.command = list(command)
        self.timeout = timeout
        self.logger = logger or logging.getLogger('zone_manager.validation')

    def check(self, origin: str, path: str) -> CheckOutcome:
        cmd = self.command + [origin.rstrip('.'), str(path)]
        self.logger.debug(f"Running: {' '.join(cmd)}")

        try:
            result = subprocess.run(cmd, capture_output=True, text=True, timeout=self.timeout)
        except FileNotFoundError:
            return CheckOutcome(origin, str(path), False,
                                f"Zone checker not found: {self.command[0]}")
        except subprocess.TimeoutExpired:
            return CheckOutcome(origin, str(path), False,
                                f"Zone checker timed out after {self.timeout}s")
        except OSError as e:
            return CheckOutcome(origin, str(path), False, f"Zone checker could not be run: {e}")

        output = (result.stdout + result.stderr).strip()
        return CheckOutcome(origin, str(path), result.returncode == 0, output)


class DnspythonZoneChecker(ZoneChecker):
    """Validates zone files by parsing them with dnspython"""

    name = "dnspython"

    def __init__(self, logger: logging.Logger = None):
        self.logger = logger or logging.getLogger('zone_manager.validation')

    def check(self, origin: str, path: str) -> CheckOutcome:
        origin = origin.rstrip('.')
        try:
            zone = dns.zone.from_file(str(path), origin=origin + '.', relativize=True, check_origin=True)
        except dns.zone.NoSOA:
            return CheckOutcome(origin, str(path), False, "Zone file missing SOA record")
        except dns.zone.NoNS:
            return CheckOutcome(origin, str(path), False, "Zone file missing NS record at origin")
        except dns.exception.SyntaxError as e:
            return CheckOutcome(origin, str(path), False, f"Zone file syntax error: {e}")
        except (dns.exception.DNSException, OSError) as e:
            return CheckOutcome(origin, str(path), False, f"Zone file parsing error: {e}")

        record_count = sum(len(rdataset) for node in zone.nodes.values() for rdataset in node.rdatasets)
        soa = zone.get_rdataset('@', 'SOA')
        serial = soa[0].serial if soa else None
        return CheckOutcome(origin, str(path), True,
                            f"zone {origin}/IN: loaded serial {serial} ({record_count} records)")


def build_checker(config: Dict, logger: logging.Logger = None) -> ZoneChecker:
    """Create the checker named in the configuration"""
    if config.get('checker') == 'dnspython':
        return DnspythonZoneChecker(logger)
    return NamedCheckzone(config.get('checkzone_command', ['named-checkzone']),
                          config.get('checker_timeout', 30), logger)


def validate_staged(checker: ZoneChecker, staged, report: Optional[RunReport] = None,
                    logger: logging.Logger = None) -> List[CheckOutcome]:
    """Check each staged zone file independently

    Both files are always checked so the report shows every failure; a
    ValidationError is raised afterwards if any of them failed.
    """
    logger = logger or logging.getLogger('zone_manager.validation')
    outcomes = []

    for origin, staged_path, _ in staged.pairs():
        outcome = checker.check(origin, str(staged_path))
        outcomes.append(outcome)

        if outcome.passed:
            message = f"Zone {origin} passed {checker.name} validation"
            if report:
                report.pass_(message)
            else:
                logger.info(message)
        else:
            message = f"Zone {origin} failed {checker.name} validation: {outcome.output or 'no output'}"
            if report:
                report.fail(message)
            else:
                logger.error(message)

    failed = [o for o in outcomes if not o.passed]
    if failed:
        details = "\n".join(f"{o.origin}: {o.output}" for o in failed)
        raise ValidationError(
            f"{len(failed)} zone file(s) failed validation: {', '.join(o.origin for o in failed)}",
            output=details
        )
    return outcomes
