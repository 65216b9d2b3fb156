"""Security — sanitization and validation of generated analysis code.

Generated code is free text from a language model.  Before it is wrapped in
the execution harness it goes through two passes:

1. :func:`sanitize_generated_code` — extract the first fenced block and
   neutralize every line matching the denylist (non-approved imports,
   process/OS/network access, file opening, eval-style calls, dataset
   re-reads).  Offending statements become ``pass  # removed: <reason>`` at
   the same indentation; a denied block header becomes a header that never
   runs (``if False:``) so its body and the surrounding blocks still parse.
2. :func:`validate_code` — AST pass that reports what is left: syntax
   errors, blocked imports and risk warnings.  Findings are logged; the
   container limits are the actual enforcement.
"""

from __future__ import annotations

import ast
import logging
import re
from dataclasses import dataclass
from typing import List, Optional, Tuple

from datachat.services.code_execution.sandbox_env import APPROVED_MODULES

logger = logging.getLogger(__name__)


# ── Fences ────────────────────────────────────────────────────

_PYTHON_FENCE_RE = re.compile(r"```(?:python|py|python3)[ \t]*\n(.*?)```", re.DOTALL | re.IGNORECASE)
_ANY_FENCE_RE = re.compile(r"```[\w+-]*[ \t]*\n(.*?)```", re.DOTALL)
_STRAY_FENCE_RE = re.compile(r"^\s*```.*$", re.MULTILINE)


# ── Denylist ──────────────────────────────────────────────────

_IMPORT_RE = re.compile(r"^\s*import\s+(.+)$")
_FROM_IMPORT_RE = re.compile(r"^\s*from\s+([\w.]+)\s+import\b")

# (pattern, reason); calls match bare names only, not attributes like ``df.eval(``
_FORBIDDEN_LINE_PATTERNS: List[Tuple[re.Pattern, str]] = [
    (re.compile(r"\b__import__\b"), "__import__ is forbidden"),
    (re.compile(r"(?<![\w.])exec\s*\("), "exec() is forbidden"),
    (re.compile(r"(?<![\w.])eval\s*\("), "eval() is forbidden"),
    (re.compile(r"(?<![\w.])compile\s*\("), "compile() is forbidden"),
    (re.compile(r"(?<![\w.])open\s*\("), "open() is forbidden"),
    (re.compile(r"(?<![\w.])file\s*\("), "file() is forbidden"),
    (re.compile(r"(?<![\w.])input\s*\("), "input() is forbidden"),
    (re.compile(r"(?<![\w.])breakpoint\s*\("), "breakpoint() is forbidden"),
    (re.compile(r"\b(?:pd|pandas)\s*\.\s*read_\w+\s*\("), "dataset is pre-loaded as df"),
    (re.compile(r"(?<![\w.])(?:os|sys|subprocess|shutil|socket|ctypes)\s*\.\s*\w+"), "system access is forbidden"),
    (re.compile(r"(?<![\w.])(?:globals|locals|vars)\s*\(\s*\)"), "namespace introspection is forbidden"),
]


@dataclass
class ValidationResult:
    """Result of code validation."""
    is_safe: bool
    violations: List[str]
    warnings: List[str]


def extract_code_block(text: str) -> str:
    """Return the first fenced code block in *text*, or *text* without fences.

    A ``python`` fence is preferred over any other fence.
    """
    if not text:
        return ""
    match = _PYTHON_FENCE_RE.search(text) or _ANY_FENCE_RE.search(text)
    if match:
        return match.group(1).strip()
    return _STRAY_FENCE_RE.sub("", text).strip()


def _module_root(name: str) -> str:
    return name.strip().split(".")[0]


def _unapproved_import(line: str) -> Optional[str]:
    """Return the first non-approved module imported on *line*, if any."""
    m = _FROM_IMPORT_RE.match(line)
    if m:
        root = _module_root(m.group(1))
        return None if root in APPROVED_MODULES else root

    m = _IMPORT_RE.match(line)
    if m:
        for part in m.group(1).split("#", 1)[0].split(","):
            name = part.strip().split(" as ")[0]
            root = _module_root(name)
            if root and root not in APPROVED_MODULES:
                return root
    return None


def line_violation(line: str) -> Optional[str]:
    """Reason the *line* is denied, or None if it may stay."""
    if line.lstrip().startswith("#"):
        return None
    module = _unapproved_import(line)
    if module:
        return f"import of '{module}' is not allowed"
    for pattern, reason in _FORBIDDEN_LINE_PATTERNS:
        if pattern.search(line):
            return reason
    return None


_STRING_RE = re.compile(r"'(?:\\.|[^'\\])*'|\"(?:\\.|[^\"\\])*\"")
_OPENERS = "([{"
_CLOSERS = ")]}"
_PLACEHOLDER_RE = re.compile(r"^(?:pass|if False:|elif False:|except \(\):)\s+# removed: ")


def _code_part(line: str) -> str:
    """*line* with string literals and the trailing comment removed."""
    return _STRING_RE.sub("''", line).split("#", 1)[0]


def _bracket_depth(line: str) -> int:
    part = _code_part(line)
    return sum(part.count(c) for c in _OPENERS) - sum(part.count(c) for c in _CLOSERS)


def _placeholder(first: str, last: str, indent: str, reason: str) -> str:
    """Statement that takes the place of a denied one without breaking blocks.

    A denied block header keeps a header of the same kind so its body still
    parses; the body then never runs.
    """
    tag = f"# removed: {reason}"
    if not _code_part(last).rstrip().endswith(":"):
        return f"{indent}pass  {tag}"
    keyword = re.split(r"[\s(:]", first.lstrip(), maxsplit=1)[0]
    if keyword == "elif":
        return f"{indent}elif False:  {tag}"
    if keyword == "except":
        return f"{indent}except ():  {tag}"
    return f"{indent}if False:  {tag}"


def strip_denied_lines(code: str) -> Tuple[str, List[str]]:
    """Neutralize denied statements; return the new code and the removal reasons.

    A statement continued over several lines (open brackets) is replaced as a
    whole: its first line becomes the placeholder, the continuation lines are
    blanked so line numbers stay put.
    """
    lines = code.replace("\r\n", "\n").split("\n")
    kept: List[str] = []
    removed: List[str] = []
    i = 0
    while i < len(lines):
        line = lines[i]
        reason = line_violation(line)
        if reason is None:
            kept.append(line)
            i += 1
            continue

        end = i
        depth = _bracket_depth(line)
        while depth > 0 and end + 1 < len(lines):
            end += 1
            depth += _bracket_depth(lines[end])

        indent = line[: len(line) - len(line.lstrip())]
        kept.append(_placeholder(line, lines[end], indent, reason))
        kept.extend("" for _ in range(end - i))
        removed.append(reason)
        i = end + 1
    return "\n".join(kept), removed


def sanitize_generated_code(text: str) -> str:
    """Turn a model reply into analysis code that is safe to wrap.

    Returns an empty string when nothing usable remains.
    """
    code = extract_code_block(text)
    code, removed = strip_denied_lines(code)
    if removed:
        logger.warning("Sanitizer removed %d line(s): %s", len(removed), "; ".join(removed))

    meaningful = [
        l for l in code.split("\n")
        if l.strip() and not l.strip().startswith("#") and not _PLACEHOLDER_RE.match(l.strip())
    ]
    return code.strip() if meaningful else ""


# ── AST validation ────────────────────────────────────────────


def validate_code(code: str) -> ValidationResult:
    """Validate sanitized analysis code.

    Checks:
    1. Syntax
    2. Imports outside the approved module set
    3. Risk heuristics (``while True``, deep loop nesting)
    """
    violations: List[str] = []
    warnings: List[str] = []

    if not code or not code.strip():
        return ValidationResult(is_safe=False, violations=["Empty code"], warnings=[])

    if len(code) > 50_000:
        violations.append("Code exceeds maximum length of 50,000 characters")
        return ValidationResult(is_safe=False, violations=violations, warnings=warnings)

    try:
        tree = ast.parse(code)
    except SyntaxError as e:
        violations.append(f"Syntax error: {e}")
    else:
        _check_ast(tree, violations, warnings)

    is_safe = len(violations) == 0
    if not is_safe:
        logger.warning("Code validation failed: %s", violations)
    elif warnings:
        logger.info("Code validation passed with warnings: %s", warnings)

    return ValidationResult(is_safe=is_safe, violations=violations, warnings=warnings)


def _check_ast(tree: ast.AST, violations: List[str], warnings: List[str]) -> None:
    for node in ast.walk(tree):
        if isinstance(node, ast.Import):
            for alias in node.names:
                if _module_root(alias.name) not in APPROVED_MODULES:
                    violations.append(f"Importing '{alias.name}' is forbidden")

        elif isinstance(node, ast.ImportFrom):
            if node.module and _module_root(node.module) not in APPROVED_MODULES:
                violations.append(f"Importing from '{node.module}' is forbidden")

        elif isinstance(node, ast.While):
            if isinstance(node.test, ast.Constant) and node.test.value is True:
                warnings.append("Detected `while True` loop — may timeout")

        if isinstance(node, (ast.For, ast.While)):
            depth = _get_nesting_depth(node)
            if depth > 5:
                warnings.append(f"Deep nesting detected ({depth} levels) — may be slow")


def _get_nesting_depth(node: ast.AST, current: int = 0) -> int:
    """Nesting depth of loops/conditionals below *node*."""
    max_depth = current
    for child in ast.iter_child_nodes(node):
        if isinstance(child, (ast.For, ast.While, ast.If)):
            max_depth = max(max_depth, _get_nesting_depth(child, current + 1))
    return max_depth
