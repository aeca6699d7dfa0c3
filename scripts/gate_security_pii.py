#!/usr/bin/env python3
"""Gate: Security & PII check for source files.

Fails if:
- print( found in runtime code (src/**)
- A logger call passes a sensitive value (payload, message text, phone,
  e-mail, channel identifier) that is not wrapped in a redaction helper

Message strings are not inspected; only the values handed to the logger are.

Usage:
    python scripts/gate_security_pii.py
"""

import ast
import sys
from pathlib import Path

# Name fragments that mark a value as customer data
SENSITIVE_NAMES = (
    "payload",
    "body",
    "text",
    "content",
    "phone",
    "email",
    "identifier",
    "raw",
)

# Calls whose result is safe to log whatever their arguments are
REDACTION_CALLS = (
    "safe_log_context",
    "redact_value",
    "redact_string",
    "hash_identifier",
    "len",
    "type",
)

LOGGER_METHODS = ("debug", "info", "warning", "error", "critical", "exception")


def _dotted(node: ast.AST) -> str:
    if isinstance(node, ast.Name):
        return node.id
    if isinstance(node, ast.Attribute):
        return f"{_dotted(node.value)}.{node.attr}"
    return ""


def _is_logger_call(node: ast.Call) -> bool:
    func = node.func
    return (
        isinstance(func, ast.Attribute)
        and func.attr in LOGGER_METHODS
        and _dotted(func.value).split(".")[-1] == "logger"
    )


def _unredacted_names(node: ast.AST) -> list[str]:
    """Sensitive names reachable from `node` without passing a redaction call."""
    if isinstance(node, ast.Call) and _dotted(node.func).split(".")[-1] in REDACTION_CALLS:
        return []
    if isinstance(node, (ast.Name, ast.Attribute)):
        name = _dotted(node)
        if any(fragment in name.lower() for fragment in SENSITIVE_NAMES):
            return [name]
        return []
    found: list[str] = []
    for child in ast.iter_child_nodes(node):
        found.extend(_unredacted_names(child))
    return found


def check_file(filepath: Path) -> list[str]:
    """Check a single file for violations. Returns list of error messages."""
    try:
        tree = ast.parse(filepath.read_text(encoding="utf-8"), filename=str(filepath))
    except (UnicodeDecodeError, SyntaxError) as e:
        return [f"{filepath}: cannot parse ({type(e).__name__})"]

    errors = []
    for node in ast.walk(tree):
        if not isinstance(node, ast.Call):
            continue
        if isinstance(node.func, ast.Name) and node.func.id == "print":
            errors.append(f"{filepath}:{node.lineno}: print() not allowed in runtime code")
            continue
        if not _is_logger_call(node):
            continue
        # The first positional argument is the message; only values are checked
        values = list(node.args[1:]) + [kw.value for kw in node.keywords]
        for value in values:
            for name in _unredacted_names(value):
                errors.append(
                    f"{filepath}:{node.lineno}: logger call passes '{name}' "
                    "without redaction (safe_log_context/hash_identifier)"
                )
    return errors


def main() -> int:
    """Run gate check on src directory."""
    src_dir = Path("src")

    if not src_dir.exists():
        # Try from project root
        src_dir = Path(__file__).parent.parent / "src"

    if not src_dir.exists():
        sys.stderr.write("Error: src directory not found\n")
        return 1

    all_errors: list[str] = []
    for pyfile in sorted(src_dir.rglob("*.py")):
        all_errors.extend(check_file(pyfile))

    if all_errors:
        sys.stderr.write("PII gate FAILED - violations found:\n")
        for err in all_errors:
            sys.stderr.write(f"  {err}\n")
        return 1

    sys.stdout.write("PII gate PASSED - no violations found\n")
    return 0


if __name__ == "__main__":
    sys.exit(main())
