"""
Codepage validation

Provides:
- Heuristic JavaScript syntax scan (brackets, strings, comments)
- Regex security and API rules loaded from rules/*.yaml
- validate_codepage() returning a ValidationResult
"""
import logging
import re
from dataclasses import asdict, dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

logger = logging.getLogger(__name__)

RULES_PATH = Path(__file__).parent / "rules"
LEVELS = ("error", "warning", "suggestion")

SCRIPT_RE = re.compile(r"<script[^>]*>([\s\S]*?)</script>", re.IGNORECASE)

OPENERS = {"(": ")", "[": "]", "{": "}"}
CLOSERS = {")": "(", "]": "[", "}": "{"}
# A '/' after one of these starts a regex literal rather than a division
REGEX_PRECEDERS = set("(,=:[!&|?{};+-*%<>~^")
# ...and after these keywords
REGEX_KEYWORDS = {
    "return", "typeof", "instanceof", "in", "of", "new", "delete",
    "void", "throw", "case", "do", "else", "yield", "await",
}


@dataclass
class ValidationResult:
    is_valid: bool = True
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    security_issues: List[str] = field(default_factory=list)
    suggestions: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def add_error(self, message: str) -> None:
        self.errors.append(message)
        self.is_valid = False


@dataclass
class Rule:
    id: str
    category: str
    pattern: re.Pattern
    level: str
    message: str
    match: str = "present"
    unless: Optional[re.Pattern] = None

    @classmethod
    def from_dict(cls, category: str, data: Dict[str, Any]) -> "Rule":
        flags = re.IGNORECASE if data.get("ignore_case") else 0
        level = data.get("level", "warning")
        if level not in LEVELS:
            raise ValueError(f"Rule {data.get('id')}: unknown level {level}")
        return cls(
            id=data["id"],
            category=category,
            pattern=re.compile(data["pattern"], flags),
            level=level,
            message=data["message"],
            match=data.get("match", "present"),
            unless=re.compile(data["unless"], flags) if data.get("unless") else None,
        )

    def fires(self, code: str) -> bool:
        if self.unless is not None and self.unless.search(code):
            return False
        found = self.pattern.search(code) is not None
        return found if self.match == "present" else not found


# =============================================================================
# SYNTAX
# =============================================================================

def is_html_document(code: str) -> bool:
    return code.lstrip().startswith("<")


def extract_script(code: str) -> str:
    """JavaScript of a codepage: inline <script> bodies for HTML, else the code itself."""
    if not is_html_document(code):
        return code
    return "\n".join(SCRIPT_RE.findall(code))


def scan_syntax(js: str) -> List[str]:
    """Scan for unbalanced brackets, unterminated strings and block comments."""
    errors: List[str] = []
    stack = []
    n = len(js)
    i = 0
    line = 1
    prev = ""

    while i < n:
        ch = js[i]
        nxt = js[i + 1] if i + 1 < n else ""

        if ch == "\n":
            line += 1
            i += 1
            continue
        if ch.isspace():
            i += 1
            continue

        if ch == "/" and nxt == "/":
            end = js.find("\n", i)
            i = n if end == -1 else end
            continue

        if ch == "/" and nxt == "*":
            end = js.find("*/", i + 2)
            if end == -1:
                errors.append(f"Syntax: unterminated block comment starting at line {line}")
                return errors
            line += js.count("\n", i, end)
            i = end + 2
            continue

        if ch in "'\"`":
            start_line = line
            j = i + 1
            closed = False
            while j < n:
                c = js[j]
                if c == "\\":
                    if js[j + 1:j + 2] == "\n":
                        line += 1
                    j += 2
                    continue
                if c == "\n":
                    if ch != "`":
                        break
                    line += 1
                if c == ch:
                    closed = True
                    break
                j += 1
            if not closed:
                errors.append(f"Syntax: unterminated string starting at line {start_line}")
                if ch == "`":
                    return errors
            i = j + 1 if closed else j
            prev = ch
            continue

        if ch.isalpha() or ch in "_$":
            j = i + 1
            while j < n and (js[j].isalnum() or js[j] in "_$"):
                j += 1
            prev = js[i:j]
            i = j
            continue

        if ch == "/" and (not prev or prev in REGEX_PRECEDERS or prev in REGEX_KEYWORDS):
            j = i + 1
            in_class = False
            while j < n and js[j] != "\n":
                c = js[j]
                if c == "\\":
                    j += 2
                    continue
                if c == "[":
                    in_class = True
                elif c == "]":
                    in_class = False
                elif c == "/" and not in_class:
                    break
                j += 1
            if j < n and js[j] == "/":
                i = j + 1
                prev = "/"
                continue

        if ch in OPENERS:
            stack.append((ch, line))
        elif ch in CLOSERS:
            if not stack or stack[-1][0] != CLOSERS[ch]:
                errors.append(f"Syntax: unexpected '{ch}' at line {line}")
                return errors
            stack.pop()

        prev = ch
        i += 1

    for opener, opened_at in stack:
        errors.append(f"Syntax: unclosed '{opener}' opened at line {opened_at}")
    return errors


# =============================================================================
# VALIDATOR
# =============================================================================

class CodepageValidator:
    """Applies the syntax scan and the YAML rule sets to codepage source."""

    def __init__(self, rules_path: Path = None):
        self.rules_path = rules_path or RULES_PATH
        self.rules: Dict[str, List[Rule]] = {}
        self._load_rules()

    def _load_rules(self):
        for f in sorted(self.rules_path.glob("*.yaml")):
            with open(f) as fp:
                data = yaml.safe_load(fp) or {}
            for category, entries in data.items():
                self.rules.setdefault(category, []).extend(
                    Rule.from_dict(category, entry) for entry in entries or []
                )
        logger.info(f"Loaded {sum(len(r) for r in self.rules.values())} codepage rules")

    def validate(
        self,
        code: str,
        check_syntax: bool = True,
        check_apis: bool = True,
        check_security: bool = True,
    ) -> ValidationResult:
        result = ValidationResult()
        if not code or not code.strip():
            result.add_error("Code is empty")
            return result

        if check_syntax:
            script = extract_script(code)
            if script.strip():
                for error in scan_syntax(script):
                    result.add_error(error)

        if check_security:
            for rule in self.rules.get("security", []):
                if rule.fires(code):
                    self._record(result, rule, prefix="Security: ")
                    result.security_issues.append(rule.message)

        if check_apis:
            for rule in self.rules.get("api", []):
                if rule.fires(code):
                    self._record(result, rule)

        return result

    @staticmethod
    def _record(result: ValidationResult, rule: Rule, prefix: str = "") -> None:
        message = f"{prefix}{rule.message}"
        if rule.level == "error":
            result.add_error(message)
        elif rule.level == "warning":
            result.warnings.append(message)
        else:
            result.suggestions.append(message)


@lru_cache(maxsize=1)
def get_validator() -> CodepageValidator:
    return CodepageValidator()


def validate_codepage(
    code: str,
    check_syntax: bool = True,
    check_apis: bool = True,
    check_security: bool = True,
) -> ValidationResult:
    return get_validator().validate(
        code, check_syntax=check_syntax, check_apis=check_apis, check_security=check_security
    )
