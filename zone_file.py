#!/usr/bin/env python3
"""
Deployed Zone File Reader

Reads a live BIND zone file with dnspython and extracts the two things the
rest of the lifecycle needs from it: the SOA serial currently deployed, and
the (hostname, address) pairs of its A records, which are the ground truth
for health monitoring.
"""

import logging
import os
from dataclasses import dataclass, field
from typing import List, Optional

import dns.name
import dns.rdatatype
import dns.zone


@dataclass(frozen=True)
class DeployedHost:
    """An A record read back from a deployed forward zone"""
    hostname: str
    address: str
    fqdn: str


@dataclass
class DeployedZone:
    """Information about a deployed zone file"""
    origin: str
    path: str
    serial: Optional[int] = None
    hosts: List[DeployedHost] = field(default_factory=list)
    total_records: int = 0


def normalize_origin(origin: str) -> str:
    """Return the origin without a trailing dot"""
    return origin.rstrip('.').lower()


def read_zone(file_path: str, origin: str, logger: logging.Logger = None) -> DeployedZone:
    """Parse a deployed zone file

    Raises dns.exception.DNSException (or OSError) when the file cannot be parsed.
    """
    logger = logger or logging.getLogger('zone_manager.zone_file')
    origin = normalize_origin(origin)
    logger.debug(f"Parsing zone file: {file_path} with origin: {origin}")

    zone = dns.zone.from_file(str(file_path), origin=origin + '.', relativize=True, check_origin=False)
    info = DeployedZone(origin=origin, path=str(file_path))

    soa = zone.get_rdataset('@', dns.rdatatype.SOA)
    if soa is not None and len(soa) > 0:
        info.serial = int(soa[0].serial)

    for name, node in zone.nodes.items():
        for rdataset in node.rdatasets:
            info.total_records += len(rdataset)
            if rdataset.rdtype != dns.rdatatype.A:
                continue

            relative = name.to_text()
            if name == dns.name.empty:
                relative = '@'
                fqdn = origin + '.'
            else:
                fqdn = f"{relative}.{origin}."

            for rdata in rdataset:
                info.hosts.append(DeployedHost(hostname=relative, address=rdata.address, fqdn=fqdn))

    logger.debug(f"Zone {origin}: serial {info.serial}, {len(info.hosts)} A records")
    return info


def read_deployed_hosts(file_path: str, origin: str, logger: logging.Logger = None) -> List[DeployedHost]:
    """Extract every A record of a deployed forward zone"""
    return read_zone(file_path, origin, logger).hosts


def read_serial(file_path: str, origin: str, logger: logging.Logger = None) -> str:
    """Return the deployed SOA serial as a string, or '' if no zone exists yet"""
    logger = logger or logging.getLogger('zone_manager.zone_file')

    if not os.path.exists(file_path):
        logger.info(f"No deployed zone at {file_path}; starting a new serial sequence")
        return ""

    info = read_zone(file_path, origin, logger)
    if info.serial is None:
        logger.warning(f"Deployed zone {file_path} has no SOA record")
        return ""
    return str(info.serial)
