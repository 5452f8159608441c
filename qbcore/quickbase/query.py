"""
QuickBase query filter builders

QuickBase filters are plain strings such as {6.CT.'pricing'}OR{8.CT.'pricing'}.
These helpers only concatenate; QuickBase does the evaluation.
"""
import re
from typing import Any, Iterable

RECORD_ID_FIELD = 3
# OR/AND between two clauses, e.g. }OR{ or )AND{
JOIN_RE = re.compile(r"[})](?:OR|AND)[{(]")
QUOTED_RE = re.compile(r"'(?:[^'\\]|\\.)*'")

# Common comparison operators
EX = "EX"    # equals
XEX = "XEX"  # not equal
CT = "CT"    # contains
XCT = "XCT"  # does not contain
SW = "SW"    # starts with
GT = "GT"
GTE = "GTE"
LT = "LT"
LTE = "LTE"


def quote_value(value: Any) -> str:
    """Render a value for a filter clause."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    text = str(value).replace("\\", "\\\\").replace("'", "\\'")
    return f"'{text}'"


def condition(field_id: int, op: str, value: Any) -> str:
    return f"{{{int(field_id)}.{op}.{quote_value(value)}}}"


def _group(clause: str) -> str:
    # Compound clauses get parentheses so AND/OR precedence stays explicit
    if JOIN_RE.search(QUOTED_RE.sub("''", clause)):
        return f"({clause})"
    return clause


def any_of(clauses: Iterable[str]) -> str:
    parts = [c for c in clauses if c]
    if len(parts) == 1:
        return parts[0]
    return "OR".join(_group(c) for c in parts)


def all_of(clauses: Iterable[str]) -> str:
    parts = [c for c in clauses if c]
    if len(parts) == 1:
        return parts[0]
    return "AND".join(_group(c) for c in parts)


def record_id_clause(record_ids: Iterable[int]) -> str:
    """{3.EX.1}OR{3.EX.2}..."""
    return any_of(condition(RECORD_ID_FIELD, EX, int(rid)) for rid in record_ids)
