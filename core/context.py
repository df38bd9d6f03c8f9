"""
Target and run state management.
Holds domain, options, and the report produced for the analysis session.
"""
from dataclasses import dataclass, field
import logging
from typing import Any, Optional

from core import constants

logger = logging.getLogger("mailposture.context")

CHECKS = ("all", "spf", "dkim", "dmarc", "mx")


@dataclass
class AnalysisContext:
    """Holds target domain, run configuration and the resulting report."""

    target_domain: str
    dkim_selector: str = constants.DEFAULT_DKIM_SELECTOR
    # Which analysis to run: all (aggregate) or a single protocol
    check: str = "all"
    verbose: bool = False

    # Resolver: upstream servers and per-query timeout (None = constants defaults)
    nameservers: Optional[list[str]] = None
    dns_timeout: Optional[float] = None
    # Overall run timeout in seconds (None = unbounded)
    scan_timeout_seconds: Optional[float] = None

    # Output: directory for reports, format (json | markdown | all | none), JSON to stdout
    output_dir: Optional[str] = None
    output_format: str = "json"
    print_json: bool = False

    # Quiet: only final summary; log_file: optional path for log output
    quiet: bool = False
    log_file: Optional[str] = None

    # Populated by the scanner: AggregateReport (check=all) or a single ProtocolReport
    report: dict[str, Any] = field(default_factory=dict)
    report_paths: list[str] = field(default_factory=list)

    # Step errors (step name -> error message) when a step fails; run continues
    step_errors: list[dict[str, str]] = field(default_factory=list)

    def add_step_error(self, step: str, error: str) -> None:
        """Record a step failure; run continues."""
        self.step_errors.append({"step": step, "error": error})

    @property
    def is_aggregate(self) -> bool:
        return self.check == "all"
