#!/usr/bin/env python3
"""
Zone Manager Error Types

Exception hierarchy shared by every stage of the zone lifecycle. Each class
carries the process exit code the command-line interface uses when the error
ends a run, so calling automation can branch on the failure class.
"""

from typing import Optional

EXIT_SUCCESS = 0
EXIT_ERROR = 1
EXIT_INVENTORY_ERROR = 2
EXIT_ZONE_ERROR = 3
EXIT_BACKUP_ERROR = 4
EXIT_DEPLOY_ERROR = 5
EXIT_MONITOR_FAILURES = 6


class ZoneManagerError(Exception):
    """Base class for all zone manager errors"""
    exit_code = EXIT_ERROR


class ConfigError(ZoneManagerError):
    """Configuration file could not be loaded or contains invalid values"""


class InventoryError(ZoneManagerError):
    """The host inventory could not be turned into host records"""
    exit_code = EXIT_INVENTORY_ERROR

    def __init__(self, message: str, line_number: Optional[int] = None,
                 field: Optional[str] = None):
        self.line_number = line_number
        self.field = field
        location = ""
        if line_number is not None:
            location += f"line {line_number}"
        if field:
            location += f"{', ' if location else ''}field '{field}'"
        super().__init__(f"{message} ({location})" if location else message)


class MalformedInventory(InventoryError):
    """Header or row does not have the expected shape"""


class InvalidAddressError(InventoryError):
    """The ip field is not an IPv4 dotted quad"""


class DuplicateHostError(InventoryError):
    """A hostname or alias appears more than once"""


class SerialError(ZoneManagerError):
    """No valid next SOA serial can be allocated"""


class ValidationError(ZoneManagerError):
    """The zone checker rejected a staged zone file"""
    exit_code = EXIT_ZONE_ERROR

    def __init__(self, message: str, output: str = ""):
        self.output = output
        super().__init__(message)


class BackupError(ZoneManagerError):
    """Archive creation or verification failed"""
    exit_code = EXIT_BACKUP_ERROR


class DeployError(ZoneManagerError):
    """Replacing live zone files failed"""
    exit_code = EXIT_DEPLOY_ERROR

    def __init__(self, message: str, partial: bool = False):
        # partial: at least one live file was already replaced
        self.partial = partial
        super().__init__(message)


class MonitorError(ZoneManagerError):
    """A monitoring check could not be completed for one host"""


class ResolverError(MonitorError):
    """The resolver timed out or returned an error"""
