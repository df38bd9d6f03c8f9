"""
Pre-flight check: dnspython 2.x (for dns.asyncresolver) and cryptography (DKIM key
loading) must be importable. If one is missing or too old, print what to install and
exit with non-zero.
"""
import sys
from importlib import metadata

MIN_DNSPYTHON_MAJOR = 2


def dnspython_problem() -> str | None:
    """None when a usable dnspython is installed, otherwise a one-line install hint."""
    try:
        version = metadata.version("dnspython")
    except metadata.PackageNotFoundError:
        return "dnspython is not installed (pip install 'dnspython>=2')"
    major = version.split(".", 1)[0]
    if not major.isdigit() or int(major) < MIN_DNSPYTHON_MAJOR:
        return f"dnspython {version} has no asyncio resolver (pip install -U 'dnspython>=2')"
    return None


def cryptography_problem() -> str | None:
    try:
        metadata.version("cryptography")
    except metadata.PackageNotFoundError:
        return "cryptography is not installed (pip install cryptography)"
    return None


def check_requirements() -> None:
    """Exit with 1 and an install hint when a required dependency is unusable."""
    problems = [
        ("Async DNS resolution", dnspython_problem()),
        ("DKIM public key parsing", cryptography_problem()),
    ]
    problems = [(label, problem) for label, problem in problems if problem]
    if not problems:
        return
    print("mailposture: missing required package.\n", file=sys.stderr)
    for label, problem in problems:
        print(f"  [X] {label}: {problem}", file=sys.stderr)
    print("\nAfter installing, run mailposture again.", file=sys.stderr)
    sys.exit(1)
