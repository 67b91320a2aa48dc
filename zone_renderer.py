#!/usr/bin/env python3
"""
Zone Renderer

Renders forward and reverse BIND zone text from host records, then stages the
text into temporary files next to the live zone files. Rendering is pure text
generation; staging never touches a live path, so a half-written zone file is
never visible to the name server.
"""

import ipaddress
import logging
import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from inventory_parser import HostRecord
from run_report import RunReport

# SOA timers are fixed policy, not inputs
SOA_REFRESH = 604800
SOA_RETRY = 86400
SOA_EXPIRE = 2419200
SOA_NEGATIVE_TTL = 300

NAME_COLUMN_WIDTH = 16


@dataclass
class ZoneDocument:
    """A zone generation ready to render"""
    origin: str
    serial: int
    ttl: int
    primary_ns: str
    admin_contact: str
    records: List[HostRecord] = field(default_factory=list)


@dataclass
class RenderedZones:
    """Forward and reverse zone text for one generation"""
    forward_origin: str
    reverse_origin: str
    forward_text: str
    reverse_text: str
    serial: int


@dataclass
class StagedZones:
    """Rendered zones written to temporary files, paired with live destinations"""
    forward_origin: str
    reverse_origin: str
    forward_staged: Path
    reverse_staged: Path
    forward_live: Path
    reverse_live: Path
    serial: Optional[int] = None

    def pairs(self):
        """Yield (origin, staged path, live path) for both zones"""
        yield self.forward_origin, self.forward_staged, self.forward_live
        yield self.reverse_origin, self.reverse_staged, self.reverse_live

    def cleanup(self):
        """Remove staged files that were not promoted"""
        for _, staged, _ in self.pairs():
            try:
                staged.unlink()
            except FileNotFoundError:
                pass


def _fqdn(name: str) -> str:
    return name if name.endswith('.') else name + '.'


def _record_line(owner: str, record_type: str, rdata: str) -> str:
    return f"{owner:<{NAME_COLUMN_WIDTH}} IN  {record_type:<6}{rdata}"


def render_header(doc: ZoneDocument) -> List[str]:
    """Render the $TTL directive, SOA block and NS record"""
    primary_ns = _fqdn(doc.primary_ns)
    return [
        f"$TTL {doc.ttl}",
        f"@   IN  SOA {primary_ns} {_fqdn(doc.admin_contact)} (",
        f"        {doc.serial:<12}; Serial",
        f"        {SOA_REFRESH:<12}; Refresh",
        f"        {SOA_RETRY:<12}; Retry",
        f"        {SOA_EXPIRE:<12}; Expire",
        f"        {SOA_NEGATIVE_TTL:<12}; Negative Cache TTL",
        ")",
        "",
        _record_line('@', 'NS', primary_ns),
        "",
    ]


def render_forward(doc: ZoneDocument) -> str:
    """Render the forward zone: one A per host, its CNAME right after"""
    lines = render_header(doc)
    for record in doc.records:
        lines.append(_record_line(record.hostname, record.record_type.value, str(record.ipv4)))
        if record.alias:
            lines.append(_record_line(record.alias, 'CNAME', record.hostname))
    return "\n".join(lines) + "\n"


def render_reverse(doc: ZoneDocument) -> str:
    """Render the reverse zone: one PTR per host keyed by the last octet"""
    origin = doc.origin.rstrip('.')
    lines = render_header(doc)
    for record in doc.records:
        lines.append(_record_line(str(record.last_octet), 'PTR', f"{record.hostname}.{origin}."))
    return "\n".join(lines) + "\n"


def reverse_network(reverse_origin: str) -> Optional[ipaddress.IPv4Network]:
    """Return the /24 network a reverse zone like 1.168.192.in-addr.arpa covers"""
    name = reverse_origin.rstrip('.').lower()
    suffix = '.in-addr.arpa'
    if not name.endswith(suffix):
        return None
    octets = list(reversed(name[:-len(suffix)].split('.')))
    if len(octets) != 3:
        return None
    try:
        return ipaddress.IPv4Network('.'.join(octets) + '.0/24')
    except ValueError:
        return None


def render_zones(doc: ZoneDocument, reverse_origin: str, report: RunReport = None,
                 logger: logging.Logger = None) -> RenderedZones:
    """Render both zone documents for one generation"""
    logger = logger or logging.getLogger('zone_manager.renderer')

    network = reverse_network(reverse_origin)
    if network is None:
        logger.debug(f"Reverse zone {reverse_origin} is not a /24 in-addr.arpa zone; skipping network check")
    else:
        for record in doc.records:
            if record.ipv4 not in network:
                message = (f"Host {record.hostname} ({record.ipv4}) is outside reverse zone "
                           f"{reverse_origin} ({network}); PTR {record.last_octet} will not match it")
                if report:
                    report.warn(message)
                else:
                    logger.warning(message)

    rendered = RenderedZones(
        forward_origin=doc.origin.rstrip('.'),
        reverse_origin=reverse_origin.rstrip('.'),
        forward_text=render_forward(doc),
        reverse_text=render_reverse(doc),
        serial=doc.serial
    )

    aliases = len([r for r in doc.records if r.alias])
    logger.info(f"Rendered zone {rendered.forward_origin}: {len(doc.records)} A, {aliases} CNAME records")
    logger.info(f"Rendered zone {rendered.reverse_origin}: {len(doc.records)} PTR records")
    return rendered


def write_staged(text: str, live_path: Path, staging_dir: Optional[Path] = None) -> Path:
    """Write text to a new temporary file; never to the live path itself"""
    live_path = Path(live_path)
    directory = Path(staging_dir) if staging_dir else live_path.parent
    directory.mkdir(parents=True, exist_ok=True)

    fd, name = tempfile.mkstemp(prefix=f".{live_path.name}.", suffix='.tmp', dir=str(directory))
    try:
        with os.fdopen(fd, 'w', encoding='utf-8') as f:
            f.write(text)
            f.flush()
            os.fsync(f.fileno())
    except OSError:
        os.unlink(name)
        raise
    return Path(name)


def stage_zones(rendered: RenderedZones, forward_live: Path, reverse_live: Path,
                staging_dir: Path = None, logger: logging.Logger = None) -> StagedZones:
    """Write rendered zones to temporary files

    By default the files are created in the live directory so that the later
    rename stays on one filesystem and is atomic.
    """
    logger = logger or logging.getLogger('zone_manager.renderer')
    forward_live = Path(forward_live)
    reverse_live = Path(reverse_live)

    forward_staged = write_staged(rendered.forward_text, forward_live, staging_dir)
    try:
        reverse_staged = write_staged(rendered.reverse_text, reverse_live, staging_dir)
    except OSError:
        forward_staged.unlink()
        raise

    logger.debug(f"Staged forward zone at {forward_staged}")
    logger.debug(f"Staged reverse zone at {reverse_staged}")

    return StagedZones(
        forward_origin=rendered.forward_origin,
        reverse_origin=rendered.reverse_origin,
        forward_staged=forward_staged,
        reverse_staged=reverse_staged,
        forward_live=forward_live,
        reverse_live=reverse_live,
        serial=rendered.serial
    )
