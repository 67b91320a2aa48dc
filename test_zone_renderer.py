#!/usr/bin/env python3
"""
Tests for zone rendering and staging
"""

import ipaddress
import tempfile
from pathlib import Path

from inventory_parser import HostRecord
from run_report import RunReport
from zone_renderer import (
    ZoneDocument,
    render_forward,
    render_reverse,
    render_zones,
    reverse_network,
    stage_zones,
)


def make_records():
    return [
        HostRecord('web', ipaddress.IPv4Address('192.168.1.10'), alias='www', line_number=2),
        HostRecord('db', ipaddress.IPv4Address('192.168.1.20'), line_number=3),
        HostRecord('mail', ipaddress.IPv4Address('192.168.1.30'), alias='smtp', line_number=4),
    ]


def make_document(records=None):
    return ZoneDocument(
        origin='devops.lab',
        serial=2024031501,
        ttl=86400,
        primary_ns='ns1.devops.lab.',
        admin_contact='admin.devops.lab.',
        records=make_records() if records is None else records
    )


def record_lines(text, record_type):
    return [line.split() for line in text.splitlines() if f" {record_type} " in f" {line} "
            and not line.startswith('@')]


def test_forward_zone_counts():
    """One A per row and one CNAME per non-empty alias"""
    text = render_forward(make_document())

    assert len(record_lines(text, 'A')) == 3
    assert len(record_lines(text, 'CNAME')) == 2
    assert "2024031501" in text
    assert "$TTL 86400" in text
    assert "SOA ns1.devops.lab. admin.devops.lab." in text


def test_cname_follows_its_a_record():
    lines = [line.split() for line in render_forward(make_document()).splitlines()]
    owners = [fields[0] for fields in lines if len(fields) >= 4 and fields[2] in ('A', 'CNAME')]

    assert owners == ['web', 'www', 'db', 'mail', 'smtp']
    assert ['www', 'IN', 'CNAME', 'web'] in lines


def test_reverse_zone_ptr_records():
    text = render_reverse(make_document())
    ptrs = record_lines(text, 'PTR')

    assert ['10', 'IN', 'PTR', 'web.devops.lab.'] in ptrs
    assert ['20', 'IN', 'PTR', 'db.devops.lab.'] in ptrs
    assert len(ptrs) == 3


def test_empty_inventory_renders_header_only():
    text = render_forward(make_document(records=[]))

    assert "SOA" in text
    assert "NS" in text
    assert record_lines(text, 'A') == []


def test_reverse_network():
    assert reverse_network('1.168.192.in-addr.arpa') == ipaddress.IPv4Network('192.168.1.0/24')
    assert reverse_network('1.168.192.in-addr.arpa.') == ipaddress.IPv4Network('192.168.1.0/24')
    assert reverse_network('168.192.in-addr.arpa') is None
    assert reverse_network('devops.lab') is None


def test_host_outside_reverse_zone_warns():
    records = make_records() + [HostRecord('far', ipaddress.IPv4Address('10.0.0.5'), line_number=5)]
    report = RunReport('generate')

    render_zones(make_document(records), '1.168.192.in-addr.arpa', report)

    assert report.count('WARN') == 1
    assert 'far' in report.entries[0].message


def test_staging_never_writes_live_path():
    with tempfile.TemporaryDirectory() as temp_dir:
        zone_dir = Path(temp_dir)
        forward_live = zone_dir / 'db.devops.lab'
        reverse_live = zone_dir / 'db.192.168.1'
        forward_live.write_text("old forward\n")

        rendered = render_zones(make_document(), '1.168.192.in-addr.arpa')
        staged = stage_zones(rendered, forward_live, reverse_live)

        assert staged.forward_staged != forward_live
        assert staged.forward_staged.parent == zone_dir
        assert staged.forward_staged.read_text() == rendered.forward_text
        assert staged.reverse_staged.read_text() == rendered.reverse_text
        assert forward_live.read_text() == "old forward\n"
        assert not reverse_live.exists()

        staged.cleanup()
        assert not staged.forward_staged.exists()
        assert not staged.reverse_staged.exists()


def test_staging_into_separate_directory():
    with tempfile.TemporaryDirectory() as zone_dir, tempfile.TemporaryDirectory() as staging_dir:
        rendered = render_zones(make_document(), '1.168.192.in-addr.arpa')
        staged = stage_zones(rendered, Path(zone_dir) / 'db.devops.lab',
                             Path(zone_dir) / 'db.192.168.1', staging_dir=staging_dir)

        assert staged.forward_staged.parent == Path(staging_dir)
        assert list(Path(zone_dir).iterdir()) == []
