#!/usr/bin/env python3
"""Gate G2: Security & PII check for source files.

Fails if:
- print( found in runtime code (src/**)
- A logger call mentions owner data, gateway credentials or payment
  artifacts without going through safe_log_context/redact_*

Logger calls are checked as a whole (they usually span several lines).

Usage:
    python scripts/gate_security_pii.py
"""

import re
import sys
from pathlib import Path

# Names that must not reach a logger call without redaction
SENSITIVE_KEYWORDS = (
    "owner_name",
    "owner_phone",
    "owner_tax_id",
    "tax_id",
    "cpfcnpj",
    "mobilephone",
    "api_key",
    "access_token",
    "encoded_image",
    "payload",
    "response.json",
)

PRINT_PATTERN = re.compile(r"\bprint\s*\(")

LOGGER_CALL_PATTERN = re.compile(
    r"logger\.(debug|info|warning|error|critical|exception)\s*\("
)

REDACTION_PATTERNS = (
    "safe_log_context",
    "redact_value",
    "redact_string",
)


def _logger_calls(lines: list[str]) -> list[tuple[int, str]]:
    """(first line number, full call text) for every logger call."""
    calls = []
    lineno = 0
    while lineno < len(lines):
        line = lines[lineno]
        match = LOGGER_CALL_PATTERN.search(line)
        if not match:
            lineno += 1
            continue

        start = lineno
        text = line[match.start():]
        depth = text.count("(") - text.count(")")
        while depth > 0 and lineno + 1 < len(lines):
            lineno += 1
            text += "\n" + lines[lineno]
            depth += lines[lineno].count("(") - lines[lineno].count(")")
        calls.append((start + 1, text))
        lineno += 1
    return calls


def check_source(content: str, label: str = "<source>") -> list[str]:
    """Check source text for violations. Returns list of error messages."""
    errors = []
    lines = content.splitlines()

    for lineno, line in enumerate(lines, start=1):
        code_part = line.split("#")[0]
        if PRINT_PATTERN.search(code_part):
            errors.append(f"{label}:{lineno}: print() not allowed in runtime code")

    for lineno, call in _logger_calls(lines):
        call_lower = call.lower()
        has_redaction = any(rp in call for rp in REDACTION_PATTERNS)
        for keyword in SENSITIVE_KEYWORDS:
            if keyword in call_lower and not has_redaction:
                errors.append(
                    f"{label}:{lineno}: logger call with '{keyword}' "
                    "must use redaction (safe_log_context/redact_value)"
                )

    return errors


def check_file(filepath: Path) -> list[str]:
    try:
        content = filepath.read_text(encoding="utf-8")
    except UnicodeDecodeError:
        return []
    return check_source(content, str(filepath))


def main() -> int:
    """Run gate check on src directory."""
    src_dir = Path("src")
    if not src_dir.exists():
        src_dir = Path(__file__).parent.parent / "src"

    if not src_dir.exists():
        sys.stderr.write("Error: src directory not found\n")
        return 1

    all_errors: list[str] = []
    for pyfile in sorted(src_dir.rglob("*.py")):
        all_errors.extend(check_file(pyfile))

    if all_errors:
        sys.stderr.write("Gate G2 FAILED - Security/PII violations found:\n")
        for err in all_errors:
            sys.stderr.write(f"  {err}\n")
        return 1

    sys.stdout.write("Gate G2 PASSED - No security/PII violations found\n")
    return 0


if __name__ == "__main__":
    sys.exit(main())
