#!/usr/bin/env python3
"""
SOA Serial Allocator

Computes the next SOA serial using the date-versioning rule YYYYMMDDnn:
a regeneration on the same calendar date increments the existing serial,
the first regeneration of a new date starts at today followed by 01.
Secondary servers only transfer a zone whose serial went up, so the
allocator refuses to produce a serial that is not strictly greater than the
one deployed.
"""

import logging
from datetime import datetime
from typing import Optional

from zone_errors import SerialError

SEQUENCE_WIDTH = 2
FIRST_SEQUENCE = 1
MAX_SEQUENCE = 10 ** SEQUENCE_WIDTH - 1
MAX_SERIAL = 2 ** 32 - 1


def today_stamp(now: datetime = None) -> str:
    """Return the local calendar date as YYYYMMDD"""
    return (now or datetime.now()).strftime('%Y%m%d')


def next_serial(existing: str, today: str) -> int:
    """Compute the serial following `existing` for the date `today`"""
    existing = (existing or "").strip()

    if len(today) != 8 or not today.isdigit():
        raise SerialError(f"Date stamp must be 8 digits (YYYYMMDD), got '{today}'")

    if existing and not existing.isdigit():
        raise SerialError(f"Existing SOA serial is not numeric: '{existing}'")

    if existing.startswith(today):
        # Same-day regeneration: bump the sequence, keeping the date prefix
        sequence = existing[len(today):]
        if len(sequence) != SEQUENCE_WIDTH:
            raise SerialError(
                f"Existing serial {existing} does not follow the YYYYMMDDnn format"
            )
        if int(sequence) >= MAX_SEQUENCE:
            raise SerialError(
                f"Serial {existing} already used all {MAX_SEQUENCE} regenerations for {today}; "
                f"refusing to overflow into the next day's range"
            )
        candidate = str(int(existing) + 1).zfill(len(existing))
    else:
        candidate = f"{today}{FIRST_SEQUENCE:0{SEQUENCE_WIDTH}d}"

    new_serial = int(candidate)
    if existing and new_serial <= int(existing):
        raise SerialError(
            f"Existing serial {existing} is ahead of today's date {today}; "
            f"new serial {new_serial} would not increase"
        )
    if new_serial > MAX_SERIAL:
        raise SerialError(f"Serial {new_serial} does not fit in 32 bits")

    return new_serial


def pick_baseline(disk_serial: str, server_serial: Optional[int] = None,
                  logger: logging.Logger = None) -> str:
    """Choose the larger of the serial on disk and the serial the server reports"""
    logger = logger or logging.getLogger('zone_manager.serial')
    if server_serial is None:
        return disk_serial

    disk_value = int(disk_serial) if disk_serial.isdigit() else -1
    if server_serial > disk_value:
        logger.warning(
            f"Name server reports serial {server_serial}, newer than the file on disk "
            f"({disk_serial or 'none'}); using the server serial as baseline"
        )
        return str(server_serial)
    return disk_serial


def allocate_serial(disk_serial: str, server_serial: Optional[int] = None,
                    now: datetime = None, logger: logging.Logger = None) -> int:
    """Allocate the next serial from the deployed state and the current date"""
    logger = logger or logging.getLogger('zone_manager.serial')
    baseline = pick_baseline(disk_serial, server_serial, logger)
    serial = next_serial(baseline, today_stamp(now))
    logger.debug(f"Allocated SOA serial {serial} (previous: {baseline or 'none'})")
    return serial
