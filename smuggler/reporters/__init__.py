"""
SMUGGLER Reporters

Output sinks for scan reports: rich console and JSON lines.
"""

from .console import ConsoleReporter
from .jsonl import JSONLinesWriter

__all__ = ["ConsoleReporter", "JSONLinesWriter"]
