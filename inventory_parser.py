#!/usr/bin/env python3
"""
Host Inventory Parser

Reads the comma-delimited host inventory (header `hostname,ip,type,alias`) and
turns every row into a typed HostRecord. Any malformed row fails the whole
parse: a dropped DNS record is a silent outage, so the renderer must never
receive a partially valid record set.
"""

import csv
import ipaddress
import logging
import re
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional

from zone_errors import (
    DuplicateHostError,
    InvalidAddressError,
    InventoryError,
    MalformedInventory,
)

INVENTORY_HEADER = ['hostname', 'ip', 'type', 'alias']

# Syntactic shape only; octet values are checked separately
IPV4_PATTERN = re.compile(r'^([0-9]{1,3}\.){3}[0-9]{1,3}$')

LABEL_PATTERN = re.compile(r'^[A-Za-z0-9_]([A-Za-z0-9_-]{0,61}[A-Za-z0-9])?$')


class RecordType(Enum):
    """Record types an inventory row may declare"""
    A = "A"


@dataclass(frozen=True)
class HostRecord:
    """One validated inventory row"""
    hostname: str
    ipv4: ipaddress.IPv4Address
    record_type: RecordType = RecordType.A
    alias: Optional[str] = None
    line_number: int = 0

    @property
    def last_octet(self) -> int:
        return int(str(self.ipv4).split('.')[-1])


def _clean(value: Optional[str]) -> str:
    """Trim whitespace and carriage-return artifacts from a field"""
    if value is None:
        return ""
    return value.strip().strip('\r').strip()


def is_valid_relative_name(name: str) -> bool:
    """Check a relative owner name such as 'web' or 'db.internal'"""
    if not name or len(name) > 253 or name.endswith('.'):
        return False
    return all(LABEL_PATTERN.match(label) for label in name.split('.'))


def parse_ipv4(value: str, line_number: int) -> ipaddress.IPv4Address:
    """Validate dotted-quad syntax and return a typed address"""
    if not IPV4_PATTERN.match(value):
        raise InvalidAddressError(f"Invalid IP address '{value}'", line_number, 'ip')

    octets = value.split('.')
    if any(int(octet) > 255 for octet in octets):
        raise InvalidAddressError(f"Invalid IP address '{value}': octet out of range", line_number, 'ip')

    # Normalise leading zeros (010 -> 10) before handing to ipaddress
    return ipaddress.IPv4Address('.'.join(str(int(octet)) for octet in octets))


class InventoryParser:
    """Parser for host inventory CSV files"""

    def __init__(self, logger: logging.Logger = None):
        self.logger = logger or logging.getLogger('zone_manager.inventory')

    def parse_file(self, file_path: str) -> List[HostRecord]:
        """Parse an inventory file and return host records in file order"""
        path = Path(file_path)
        if not path.is_file():
            raise InventoryError(f"Inventory file not found: {file_path}")

        self.logger.info(f"Starting to parse inventory file: {file_path}")

        try:
            with open(path, 'r', encoding='utf-8', newline='') as f:
                rows = list(csv.reader(f))
        except UnicodeDecodeError as e:
            raise MalformedInventory(f"Inventory file is not valid UTF-8: {e}")
        except csv.Error as e:
            raise MalformedInventory(f"Inventory file is not valid CSV: {e}")

        records = self.parse_rows(rows)
        self.logger.info(f"Successfully parsed {len(records)} host records from inventory")
        return records

    def parse_rows(self, rows: List[List[str]]) -> List[HostRecord]:
        """Validate the header and every data row"""
        if not rows:
            raise MalformedInventory("Inventory is empty; expected header " + ','.join(INVENTORY_HEADER), 1)

        header = [_clean(column) for column in rows[0]]
        if header != INVENTORY_HEADER:
            raise MalformedInventory(
                f"Invalid header '{','.join(header)}', expected '{','.join(INVENTORY_HEADER)}'", 1
            )

        records: List[HostRecord] = []
        # Lower-cased owner name -> line that claimed it
        seen_names: Dict[str, int] = {}

        for line_number, row in enumerate(rows[1:], 2):
            fields = [_clean(value) for value in row]

            # Skip blank lines
            if not any(fields):
                self.logger.debug(f"Line {line_number}: Skipping blank line")
                continue

            record = self._parse_row(fields, line_number)

            for name, field_name in ((record.hostname, 'hostname'), (record.alias, 'alias')):
                if not name:
                    continue
                key = name.lower()
                if key in seen_names:
                    raise DuplicateHostError(
                        f"Duplicate name '{name}' (first defined on line {seen_names[key]})",
                        line_number, field_name
                    )
                seen_names[key] = line_number

            records.append(record)
            self.logger.debug(f"Line {line_number}: Parsed {record.hostname} -> {record.ipv4}")

        return records

    def _parse_row(self, fields: List[str], line_number: int) -> HostRecord:
        """Turn one trimmed row into a HostRecord"""
        if len(fields) < 3 or len(fields) > len(INVENTORY_HEADER):
            raise MalformedInventory(
                f"Expected {len(INVENTORY_HEADER)} fields, found {len(fields)}: '{','.join(fields)}'",
                line_number
            )

        # The alias column may be omitted entirely
        hostname, ip, record_type = fields[:3]
        alias = fields[3] if len(fields) > 3 else ""

        for value, field_name in ((hostname, 'hostname'), (ip, 'ip'), (record_type, 'type')):
            if not value:
                raise MalformedInventory(f"Empty {field_name} in row '{','.join(fields)}'", line_number, field_name)

        if not is_valid_relative_name(hostname):
            raise MalformedInventory(f"Invalid hostname '{hostname}'", line_number, 'hostname')

        address = parse_ipv4(ip, line_number)

        try:
            parsed_type = RecordType(record_type.upper())
        except ValueError:
            raise MalformedInventory(
                f"Unsupported record type '{record_type}' (supported: {', '.join(t.value for t in RecordType)})",
                line_number, 'type'
            )

        if alias and not is_valid_relative_name(alias):
            raise MalformedInventory(f"Invalid alias '{alias}'", line_number, 'alias')

        return HostRecord(
            hostname=hostname,
            ipv4=address,
            record_type=parsed_type,
            alias=alias or None,
            line_number=line_number
        )


def parse_inventory(file_path: str, logger: logging.Logger = None) -> List[HostRecord]:
    """Parse an inventory file into host records"""
    return InventoryParser(logger).parse_file(file_path)
