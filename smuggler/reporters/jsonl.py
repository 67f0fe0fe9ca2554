"""
SMUGGLER JSON-Lines Writer

One JSON object per verdict, then one per report, each on its own line.
"""

import json
from typing import IO

from smuggler.core.types import ScanReport


class JSONLinesWriter:
    """Streams scan results as JSON lines"""

    def __init__(self, stream: IO[str]):
        self.stream = stream

    def write_record(self, record: dict) -> None:
        self.stream.write(json.dumps(record, sort_keys=True) + "\n")
        self.stream.flush()

    def write_report(self, report: ScanReport) -> None:
        for verdict in report.verdicts:
            record = verdict.to_dict()
            record["type"] = "verdict"
            record["target"] = report.target
            self.write_record(record)

        summary = report.to_dict()
        summary.pop("verdicts")
        summary["type"] = "report"
        self.write_record(summary)
