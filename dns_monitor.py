#!/usr/bin/env python3
"""
DNS Health Monitor

Checks every A record of the deployed forward zone against a live resolver:

1. Forward lookup of hostname.origin must return exactly the expected address
2. Reverse lookup of the expected address must return exactly hostname.origin.
3. A query for the FQDN must complete within the latency threshold

The zone file and the resolver are two independent sources of truth. A
timeout or resolver error for one host is recorded as a result for that host
and never stops the run.
"""

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional

import dns.exception
import dns.rdatatype
import dns.resolver
import dns.reversename

from run_report import RunReport
from zone_errors import MonitorError, ResolverError
from zone_file import DeployedHost, normalize_origin, read_deployed_hosts


class MonitorStatus(Enum):
    """Monitoring status for a check"""
    PASS = "PASS"
    WARN = "WARN"
    FAIL = "FAIL"


STATUS_RANK = {MonitorStatus.PASS: 0, MonitorStatus.WARN: 1, MonitorStatus.FAIL: 2}


@dataclass
class CheckResult:
    """Result of one check for one host"""
    check: str
    status: MonitorStatus
    expected: Optional[str] = None
    observed: Optional[str] = None
    message: str = ""


@dataclass
class MonitoringResult:
    """All checks for one host"""
    host: str
    expected_ip: str
    observed_forward: Optional[str] = None
    observed_reverse: Optional[str] = None
    latency_ms: Optional[float] = None
    checks: List[CheckResult] = field(default_factory=list)

    @property
    def status(self) -> MonitorStatus:
        if not self.checks:
            return MonitorStatus.FAIL
        return max((c.status for c in self.checks), key=STATUS_RANK.get)


@dataclass
class MonitorSummary:
    """Summary of a monitoring run"""
    total_hosts: int
    passed: int
    warned: int
    failed: int


class Resolver:
    """Interface for live DNS lookups"""

    def query_forward(self, name: str) -> List[str]:
        raise NotImplementedError

    def query_reverse(self, address: str) -> List[str]:
        raise NotImplementedError

    def query_soa_serial(self, zone: str) -> Optional[int]:
        raise NotImplementedError


class DnspythonResolver(Resolver):
    """Queries one DNS server with dnspython"""

    def __init__(self, server: str, timeout: float = 2.0, logger: logging.Logger = None):
        self.server = server
        self.timeout = timeout
        self.logger = logger or logging.getLogger('zone_manager.monitor')

        self.resolver = dns.resolver.Resolver(configure=False)
        self.resolver.nameservers = [server]
        self.resolver.timeout = timeout
        self.resolver.lifetime = timeout

    def _query(self, name, rdtype) -> List[str]:
        try:
            answer = self.resolver.resolve(name, rdtype)
        except (dns.resolver.NXDOMAIN, dns.resolver.NoAnswer):
            self.logger.debug(f"No {dns.rdatatype.to_text(rdtype)} answer for {name} from {self.server}")
            return []
        except dns.exception.Timeout:
            raise ResolverError(f"Timeout querying {name} on {self.server} after {self.timeout}s")
        except dns.exception.DNSException as e:
            raise ResolverError(f"Error querying {name} on {self.server}: {e}")
        return [rdata.to_text() for rdata in answer]

    def query_forward(self, name: str) -> List[str]:
        return self._query(name, dns.rdatatype.A)

    def query_reverse(self, address: str) -> List[str]:
        try:
            reverse_name = dns.reversename.from_address(address)
        except (dns.exception.SyntaxError, ValueError) as e:
            raise ResolverError(f"Cannot build reverse name for {address}: {e}")
        return self._query(reverse_name, dns.rdatatype.PTR)

    def query_soa_serial(self, zone: str) -> Optional[int]:
        try:
            answer = self.resolver.resolve(zone.rstrip('.') + '.', dns.rdatatype.SOA)
        except (dns.resolver.NXDOMAIN, dns.resolver.NoAnswer):
            return None
        except dns.exception.DNSException as e:
            raise ResolverError(f"Error querying SOA for {zone} on {self.server}: {e}")
        return int(answer[0].serial)


def _format_answer(values: List[str]) -> str:
    return ', '.join(values) if values else 'NONE'


class HealthMonitor:
    """Runs forward, reverse and latency checks for every deployed host"""

    def __init__(self, resolver: Resolver, origin: str, latency_threshold_ms: float = 100,
                 report: RunReport = None, logger: logging.Logger = None,
                 clock: Callable[[], float] = time.perf_counter):
        self.resolver = resolver
        self.origin = normalize_origin(origin)
        self.latency_threshold_ms = latency_threshold_ms
        self.report = report or RunReport('monitor')
        self.logger = logger or logging.getLogger('zone_manager.monitor')
        self.clock = clock

    def _record(self, result: CheckResult):
        if result.status == MonitorStatus.PASS:
            self.report.pass_(result.message)
        elif result.status == MonitorStatus.WARN:
            self.report.warn(result.message)
        else:
            self.report.fail(result.message)

    def check_forward(self, host: DeployedHost, result: MonitoringResult) -> CheckResult:
        """Forward lookup must return exactly the expected address"""
        try:
            answers = self.resolver.query_forward(host.fqdn)
        except MonitorError as e:
            return CheckResult('forward', MonitorStatus.FAIL, host.address, None,
                               f"Forward lookup FAILED: {host.hostname} ({e})")

        result.observed_forward = _format_answer(answers)
        if answers == [host.address]:
            return CheckResult('forward', MonitorStatus.PASS, host.address, result.observed_forward,
                               f"Forward lookup OK: {host.hostname} -> {host.address}")
        return CheckResult('forward', MonitorStatus.FAIL, host.address, result.observed_forward,
                           f"Forward lookup FAILED: {host.hostname} (expected {host.address}, "
                           f"got {result.observed_forward})")

    def check_reverse(self, host: DeployedHost, result: MonitoringResult) -> CheckResult:
        """Reverse lookup must return exactly the trailing-dot FQDN"""
        try:
            answers = self.resolver.query_reverse(host.address)
        except MonitorError as e:
            return CheckResult('reverse', MonitorStatus.FAIL, host.fqdn, None,
                               f"Reverse lookup FAILED: {host.address} ({e})")

        result.observed_reverse = _format_answer(answers)
        if answers == [host.fqdn]:
            return CheckResult('reverse', MonitorStatus.PASS, host.fqdn, result.observed_reverse,
                               f"Reverse lookup OK: {host.address} -> {host.fqdn}")
        return CheckResult('reverse', MonitorStatus.FAIL, host.fqdn, result.observed_reverse,
                           f"Reverse lookup FAILED: {host.address} (expected {host.fqdn}, "
                           f"got {result.observed_reverse})")

    def check_latency(self, host: DeployedHost, result: MonitoringResult) -> CheckResult:
        """Time a query for the FQDN against the threshold"""
        threshold = f"{self.latency_threshold_ms:g}ms"
        start = self.clock()
        try:
            self.resolver.query_forward(host.fqdn)
        except MonitorError as e:
            return CheckResult('latency', MonitorStatus.FAIL, threshold, None,
                               f"DNS query failed for {host.fqdn}: {e}")
        elapsed_ms = (self.clock() - start) * 1000
        result.latency_ms = round(elapsed_ms, 1)

        observed = f"{result.latency_ms:g}ms"
        if elapsed_ms > self.latency_threshold_ms:
            return CheckResult('latency', MonitorStatus.WARN, threshold, observed,
                               f"High DNS latency for {host.fqdn}: {observed}")
        return CheckResult('latency', MonitorStatus.PASS, threshold, observed,
                           f"DNS latency OK for {host.fqdn}: {observed}")

    def check_host(self, host: DeployedHost) -> MonitoringResult:
        """Run all three checks; each is attempted regardless of the others"""
        result = MonitoringResult(host=host.hostname, expected_ip=host.address)
        for check in (self.check_forward, self.check_reverse, self.check_latency):
            check_result = check(host, result)
            result.checks.append(check_result)
            self._record(check_result)
        return result

    def run_hosts(self, hosts: List[DeployedHost]) -> List[MonitoringResult]:
        """Monitor the given hosts"""
        results = []
        for i, host in enumerate(hosts, 1):
            self.logger.debug(f"Checking host {i}/{len(hosts)}: {host.fqdn}")
            results.append(self.check_host(host))
        return results

    def run(self, zone_file: str) -> List[MonitoringResult]:
        """Monitor every A record of a deployed forward zone"""
        hosts = read_deployed_hosts(zone_file, self.origin, self.logger)
        self.report.info(f"Monitoring {len(hosts)} hosts from {zone_file}")
        return self.run_hosts(hosts)


def summarize(results: List[MonitoringResult]) -> MonitorSummary:
    """Calculate monitoring summary statistics"""
    return MonitorSummary(
        total_hosts=len(results),
        passed=len([r for r in results if r.status == MonitorStatus.PASS]),
        warned=len([r for r in results if r.status == MonitorStatus.WARN]),
        failed=len([r for r in results if r.status == MonitorStatus.FAIL]),
    )


def result_rows(results: List[MonitoringResult]) -> Dict[str, list]:
    """Build the monitoring results table for the run report"""
    headers = ['Host', 'Expected IP', 'Forward', 'Reverse', 'Latency (ms)', 'Status']
    rows = []
    for r in results:
        rows.append([
            r.host,
            r.expected_ip,
            r.observed_forward or '-',
            r.observed_reverse or '-',
            r.latency_ms if r.latency_ms is not None else '-',
            r.status.value,
        ])
    return {'headers': headers, 'rows': rows}
