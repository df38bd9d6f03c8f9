#!/usr/bin/env python3
"""
MailPosture: email-authentication posture analysis for a single domain.
Reads public DNS only (SPF, DKIM, DMARC, MX) and scores each protocol plus an overall 0-10 score.
"""
import argparse
import os
import sys

# Ensure project root is on path when run as script
_PROJECT_ROOT = os.path.dirname(os.path.abspath(__file__))
if _PROJECT_ROOT not in sys.path:
    sys.path.insert(0, _PROJECT_ROOT)

from core import constants
from core.config import OUTPUT_FORMATS, load_env_config, load_file_config, merge_config
from core.context import CHECKS, AnalysisContext
from core.requirements_check import check_requirements
from core.scanner import main_scan
from core.utils import normalize_domain, validate_domain

# Exit codes: 0 = success, 1 = validation/deps error, 2 = analysis failure (step errors)
EXIT_SUCCESS = 0
EXIT_VALIDATION = 1
EXIT_SCAN_FAILURE = 2


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mailposture",
        description="Email authentication posture: SPF, DKIM, DMARC and MX analysis with scoring and recommendations.",
    )
    parser.add_argument("--target", required=True, metavar="DOMAIN", help="Domain to analyze (e.g. example.com; scheme, www. and path are stripped)")
    parser.add_argument("--selector", metavar="NAME", help=f"DKIM selector (default: {constants.DEFAULT_DKIM_SELECTOR})")
    parser.add_argument("--check", choices=CHECKS, default="all", help="Run all analyses (aggregate) or a single protocol (default: all)")
    parser.add_argument("--nameserver", action="append", metavar="IP", dest="nameservers", help="Upstream DNS server; repeat for several (default: 8.8.8.8, 1.1.1.1)")
    parser.add_argument("--output-dir", "-o", metavar="DIR", help="Output directory for reports (default: reports/)")
    parser.add_argument("--format", choices=OUTPUT_FORMATS, help="Report format (default: json)")
    parser.add_argument("--print", action="store_true", dest="print_json", help="Print the report as JSON to stdout")
    parser.add_argument("--verbose", action="store_true", help="Verbose (debug) logging")
    parser.add_argument("--quiet", action="store_true", help="Only warnings and errors")
    parser.add_argument("--log-file", metavar="FILE", help="Append logs to file")
    parser.add_argument("--timeout", type=float, metavar="SEC", help="Overall analysis timeout in seconds")
    parser.add_argument("--dns-timeout", type=float, metavar="SEC", help="DNS query timeout in seconds")
    parser.add_argument("--config", metavar="FILE", help="Path to JSON config file (overridden by CLI)")
    return parser


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    return _build_parser().parse_args(argv)


def validate_target_domain(value: str) -> str:
    """Normalize and validate the target domain; exit with non-zero if invalid."""
    domain = normalize_domain(value)
    try:
        validate_domain(domain)
    except ValueError as e:
        print(f"mailposture: --target: {e}", file=sys.stderr)
        sys.exit(EXIT_VALIDATION)
    return domain


def validate_selector(value: str) -> str:
    selector = (value or "").strip().lower()
    try:
        validate_domain(selector)
    except ValueError as e:
        print(f"mailposture: --selector: {e}", file=sys.stderr)
        sys.exit(EXIT_VALIDATION)
    return selector


def build_context(args: argparse.Namespace) -> AnalysisContext:
    """Merge env, config file and CLI into an AnalysisContext."""
    target_domain = validate_target_domain(args.target)

    env_cfg = load_env_config()
    file_cfg = load_file_config(args.config or "")
    cli_cfg = {
        "verbose": args.verbose if args.verbose else None,
        "output_dir": (args.output_dir or "").strip() or None,
        "output_format": args.format,
        "quiet": args.quiet if args.quiet else None,
        "log_file": (args.log_file or "").strip() or None,
        "scan_timeout_seconds": args.timeout,
        "dns_timeout": args.dns_timeout,
        "nameservers": args.nameservers or None,
        "dkim_selector": (args.selector or "").strip() or None,
    }
    cli_cfg = {k: v for k, v in cli_cfg.items() if v is not None}
    merged = merge_config(env_cfg, file_cfg, cli_cfg)

    output_format = merged.get("output_format") or "json"
    if output_format not in OUTPUT_FORMATS:
        print(f"mailposture: unsupported report format {output_format!r}; use one of {', '.join(OUTPUT_FORMATS)}.", file=sys.stderr)
        sys.exit(EXIT_VALIDATION)

    return AnalysisContext(
        target_domain=target_domain,
        dkim_selector=validate_selector(merged.get("dkim_selector") or constants.DEFAULT_DKIM_SELECTOR),
        check=args.check,
        verbose=merged.get("verbose", False),
        nameservers=merged.get("nameservers"),
        dns_timeout=merged.get("dns_timeout"),
        scan_timeout_seconds=merged.get("scan_timeout_seconds"),
        output_dir=merged.get("output_dir"),
        output_format=output_format,
        print_json=args.print_json,
        quiet=merged.get("quiet", False),
        log_file=merged.get("log_file"),
    )


def main(argv: list[str] | None = None) -> None:
    args = parse_args(argv)
    check_requirements()
    ctx = build_context(args)
    main_scan(ctx)
    if ctx.step_errors:
        sys.exit(EXIT_SCAN_FAILURE)
    sys.exit(EXIT_SUCCESS)


if __name__ == "__main__":
    main()
