#!/usr/bin/env python3
"""
Zone Manager Logging and Run Reports

Logging setup, user-facing console output, and the RunReport context object
that every lifecycle stage appends to. A RunReport collects timestamped,
severity-tagged entries for one run and renders them as a text or JSON
summary of what changed, what was validated, what was backed up and what was
deployed or skipped.
"""

import json
import logging
import sys
from dataclasses import dataclass, asdict, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from tabulate import tabulate

# Custom severities used by validation and monitoring results
PASS = 25
FAIL = 35

logging.addLevelName(PASS, 'PASS')
logging.addLevelName(FAIL, 'FAIL')

LOG_FORMAT = '[%(asctime)s] [%(levelname)s] %(message)s'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'

# Level names shown in log lines where they differ from logging's
LEVEL_TAGS = {logging.WARNING: 'WARN'}

SEVERITY_LEVELS = {
    'DEBUG': logging.DEBUG,
    'INFO': logging.INFO,
    'PASS': PASS,
    'WARN': logging.WARNING,
    'FAIL': FAIL,
    'ERROR': logging.ERROR,
}


class LevelTagFormatter(logging.Formatter):
    """Formatter that prints WARNING records as WARN"""

    def format(self, record: logging.LogRecord) -> str:
        tag = LEVEL_TAGS.get(record.levelno)
        if tag is None:
            return super().format(record)
        original = record.levelname
        record.levelname = tag
        try:
            return super().format(record)
        finally:
            record.levelname = original


def setup_logging(verbose: bool = False, log_file: str = None) -> logging.Logger:
    """Setup logging configuration"""
    logger = logging.getLogger('zone_manager')
    logger.setLevel(logging.DEBUG)

    # Clear any existing handlers
    for handler in list(logger.handlers):
        handler.close()
    logger.handlers.clear()

    formatter = LevelTagFormatter(LOG_FORMAT, datefmt=DATE_FORMAT)

    # Console handler (only in verbose mode)
    if verbose:
        console_handler = logging.StreamHandler()
        console_handler.setLevel(logging.DEBUG)
        console_handler.setFormatter(formatter)
        logger.addHandler(console_handler)

    # File handler is append-only so successive runs build one history
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, mode='a', encoding='utf-8')
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    if not logger.handlers:
        logger.addHandler(logging.NullHandler())

    return logger


class UserOutput:
    """Handle user-facing output separate from logging"""

    def __init__(self, verbose: bool = False):
        self.verbose = verbose

    def info(self, message: str):
        """Print informational message to user"""
        print(message)

    def success(self, message: str):
        """Print success message to user"""
        print(message)

    def warning(self, message: str):
        """Print warning message to user"""
        print(f"WARNING: {message}")

    def error(self, message: str):
        """Print error message to user"""
        print(f"ERROR: {message}", file=sys.stderr)

    def verbose_info(self, message: str):
        """Print verbose information if verbose mode is enabled"""
        if self.verbose:
            print(f"[VERBOSE] {message}")


@dataclass
class ReportEntry:
    """One severity-tagged line of a run report"""
    timestamp: str
    severity: str
    message: str


@dataclass
class RunReport:
    """Reporting context passed explicitly into each lifecycle stage"""
    operation: str
    logger: Optional[logging.Logger] = None
    started_at: datetime = field(default_factory=datetime.now)
    entries: List[ReportEntry] = field(default_factory=list)
    facts: Dict[str, Any] = field(default_factory=dict)
    tables: Dict[str, Dict[str, Any]] = field(default_factory=dict)

    def __post_init__(self):
        if self.logger is None:
            self.logger = logging.getLogger('zone_manager.report')

    def add(self, severity: str, message: str) -> ReportEntry:
        """Append an entry and mirror it to the log at the matching level"""
        severity = severity.upper()
        if severity not in SEVERITY_LEVELS:
            raise ValueError(f"Unknown report severity: {severity}")

        entry = ReportEntry(
            timestamp=datetime.now().strftime(DATE_FORMAT),
            severity=severity,
            message=message
        )
        self.entries.append(entry)
        self.logger.log(SEVERITY_LEVELS[severity], message)
        return entry

    def info(self, message: str) -> ReportEntry:
        return self.add('INFO', message)

    def pass_(self, message: str) -> ReportEntry:
        return self.add('PASS', message)

    def warn(self, message: str) -> ReportEntry:
        return self.add('WARN', message)

    def fail(self, message: str) -> ReportEntry:
        return self.add('FAIL', message)

    def error(self, message: str) -> ReportEntry:
        return self.add('ERROR', message)

    def set_fact(self, key: str, value: Any):
        """Record a named outcome such as the old and new serial"""
        self.facts[key] = value

    def add_table(self, name: str, headers: List[str], rows: List[List[Any]]):
        """Attach a result table rendered in the text report"""
        self.tables[name] = {'headers': headers, 'rows': rows}

    def count(self, severity: str) -> int:
        return len([e for e in self.entries if e.severity == severity.upper()])

    def render_text(self) -> str:
        """Generate a text report"""
        report_lines = []
        report_lines.append(f"Zone Manager Report: {self.operation}")
        report_lines.append("=" * 50)
        report_lines.append(f"Generated on: {datetime.now().strftime(DATE_FORMAT)}")
        report_lines.append(f"Run started: {self.started_at.strftime(DATE_FORMAT)}")
        report_lines.append("")

        if self.facts:
            report_lines.append("Summary:")
            for key, value in self.facts.items():
                label = key.replace('_', ' ').capitalize()
                if isinstance(value, (list, tuple)):
                    value = ', '.join(str(v) for v in value) or '-'
                report_lines.append(f"  {label}: {value}")
            report_lines.append("")

        for name, table in self.tables.items():
            report_lines.append(f"{name}:")
            report_lines.append(tabulate(table['rows'], headers=table['headers'], tablefmt="github"))
            report_lines.append("")

        report_lines.append("Events:")
        for entry in self.entries:
            report_lines.append(f"  [{entry.timestamp}] [{entry.severity}] {entry.message}")
        report_lines.append("")

        report_lines.append(
            f"Totals: {self.count('PASS')} pass, {self.count('WARN')} warn, "
            f"{self.count('FAIL')} fail, {self.count('ERROR')} error"
        )
        return "\n".join(report_lines)

    def render_json(self) -> str:
        """Generate a JSON report"""
        report_data = {
            "operation": self.operation,
            "started_at": self.started_at.isoformat(),
            "facts": self.facts,
            "tables": self.tables,
            "entries": [asdict(entry) for entry in self.entries],
            "totals": {
                severity.lower(): self.count(severity)
                for severity in ('PASS', 'WARN', 'FAIL', 'ERROR')
            }
        }
        return json.dumps(report_data, indent=2, default=str)

    def write(self, output_file: str, output_format: str = "text"):
        """Write the rendered report to a file"""
        content = self.render_json() if output_format == "json" else self.render_text()
        Path(output_file).parent.mkdir(parents=True, exist_ok=True)
        with open(output_file, 'w', encoding='utf-8') as f:
            f.write(content + "\n")
