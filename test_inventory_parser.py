#!/usr/bin/env python3
"""
Tests for the host inventory parser
"""

import ipaddress
import os
import tempfile

import pytest

from inventory_parser import InventoryParser, RecordType, parse_inventory, parse_ipv4
from zone_errors import (
    DuplicateHostError,
    InvalidAddressError,
    InventoryError,
    MalformedInventory,
)


def write_inventory(content):
    """Write inventory text to a temporary file and return its path"""
    with tempfile.NamedTemporaryFile(mode='w', suffix='.csv', delete=False, newline='') as f:
        f.write(content)
        return f.name


def parse_text(content):
    path = write_inventory(content)
    try:
        return parse_inventory(path)
    finally:
        os.unlink(path)


def test_valid_inventory():
    """Rows come back typed and in file order"""
    records = parse_text(
        "hostname,ip,type,alias\n"
        "web,192.168.1.10,A,www\n"
        "db,192.168.1.20,A,\n"
        "mail,192.168.1.30,a,smtp\n"
    )

    assert [r.hostname for r in records] == ['web', 'db', 'mail']
    assert records[0].ipv4 == ipaddress.IPv4Address('192.168.1.10')
    assert records[0].alias == 'www'
    assert records[1].alias is None
    assert records[2].record_type == RecordType.A
    assert records[0].last_octet == 10
    assert records[0].line_number == 2


def test_out_of_range_octet_rejected():
    """999.1.1.1 has the right shape but is not an address"""
    with pytest.raises(InvalidAddressError) as exc_info:
        parse_text("hostname,ip,type,alias\nweb,999.1.1.1,A,\n")

    assert exc_info.value.line_number == 2
    assert exc_info.value.field == 'ip'
    assert "line 2" in str(exc_info.value)


def test_bad_address_shapes_rejected():
    for value in ('192.168.1', '192.168.1.1.1', 'abc', '192.168.1.x', ''):
        with pytest.raises(InvalidAddressError):
            parse_ipv4(value, 5)


def test_leading_zeros_normalised():
    assert parse_ipv4('192.168.001.010', 2) == ipaddress.IPv4Address('192.168.1.10')


def test_empty_hostname_rejected():
    with pytest.raises(MalformedInventory) as exc_info:
        parse_text("hostname,ip,type,alias\n,192.168.1.10,A,www\n")

    assert exc_info.value.field == 'hostname'


def test_invalid_hostname_rejected():
    with pytest.raises(MalformedInventory):
        parse_text("hostname,ip,type,alias\nweb server,192.168.1.10,A,\n")


def test_unsupported_type_rejected():
    with pytest.raises(MalformedInventory) as exc_info:
        parse_text("hostname,ip,type,alias\nweb,192.168.1.10,MX,\n")

    assert exc_info.value.field == 'type'


def test_duplicate_hostname_rejected():
    with pytest.raises(DuplicateHostError) as exc_info:
        parse_text(
            "hostname,ip,type,alias\n"
            "web,192.168.1.10,A,\n"
            "WEB,192.168.1.11,A,\n"
        )

    assert exc_info.value.line_number == 3


def test_alias_colliding_with_hostname_rejected():
    with pytest.raises(DuplicateHostError) as exc_info:
        parse_text(
            "hostname,ip,type,alias\n"
            "web,192.168.1.10,A,www\n"
            "www,192.168.1.11,A,\n"
        )

    assert exc_info.value.field == 'hostname'


def test_wrong_header_rejected():
    with pytest.raises(MalformedInventory) as exc_info:
        parse_text("host,address,type,alias\nweb,192.168.1.10,A,\n")

    assert exc_info.value.line_number == 1


def test_empty_file_rejected():
    with pytest.raises(MalformedInventory):
        parse_text("")


def test_too_many_fields_rejected():
    with pytest.raises(MalformedInventory):
        parse_text("hostname,ip,type,alias\nweb,192.168.1.10,A,www,extra\n")


def test_three_field_row_accepted():
    records = parse_text("hostname,ip,type,alias\nweb,192.168.1.10,A\n")

    assert len(records) == 1
    assert records[0].alias is None


def test_carriage_returns_and_blank_lines():
    """Windows line endings and blank lines do not leak into records"""
    records = parse_text(
        "hostname,ip,type,alias\r\n"
        "web , 192.168.1.10 ,A, www\r\n"
        "\r\n"
        "db,192.168.1.20,A,\r\n"
    )

    assert [r.hostname for r in records] == ['web', 'db']
    assert records[0].alias == 'www'
    assert records[1].line_number == 4


def test_missing_file():
    with pytest.raises(InventoryError):
        parse_inventory('/nonexistent/hosts.csv')


def test_parse_rows_without_file():
    records = InventoryParser().parse_rows([
        ['hostname', 'ip', 'type', 'alias'],
        ['web', '10.0.0.1', 'A', ''],
    ])

    assert records[0].hostname == 'web'
    assert str(records[0].ipv4) == '10.0.0.1'
