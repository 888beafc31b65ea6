"""Filter, ordering and paging validation for record store queries.

A filter is a small boolean expression over a table's declared columns with
``?`` placeholders for every value, e.g. ``"title LIKE ? AND location IS NOT NULL"``.
Literals are rejected outright; values only ever travel as bound parameters.
"""
import re
from typing import Any, List, Optional, Sequence, Tuple, Union

from recall_db.errors import ValidationError
from recall_db.models.tables import TableSpec

KEYWORDS = {"AND", "OR", "NOT", "IS", "NULL", "LIKE", "GLOB", "IN", "BETWEEN"}
COMPARISONS = {"=", "<", ">", "<=", ">=", "<>", "!=", "LIKE", "GLOB", "IS"}
CONNECTIVES = {"AND", "OR"}
NEGATABLE = {"LIKE", "GLOB", "IN", "BETWEEN"}

TOKEN_RE = re.compile(
    r"\s*(?:"
    r"(?P<placeholder>\?)"
    r"|(?P<op><=|>=|<>|!=|=|<|>)"
    r"|(?P<punct>[(),])"
    r"|(?P<word>[A-Za-z_][A-Za-z0-9_]*)"
    r")"
)


def quote(identifier: str) -> str:
    """Quote an identifier that has already been validated."""
    return f'"{identifier}"'


def _check_params(params) -> Tuple[Any, ...]:
    if params is None:
        return ()
    if isinstance(params, (str, bytes)) or not isinstance(params, (list, tuple)):
        raise ValidationError(f"Bound params must be a list or tuple, got {type(params).__name__}")
    return tuple(params)


def _is_operand(token: str) -> bool:
    return token == "?" or token == "NULL" or token.startswith('"')


def _check_grammar(tokens: List[str]) -> None:
    """Check that compiled tokens alternate operand and operator.

    ``tokens`` is the compiled token list: quoted columns, ``?``, upper-cased
    keywords, operators and punctuation. Parentheses group sub-expressions
    except directly after ``IN``, where they hold a comma-separated list.
    """
    expect_operand = True
    groups: List[bool] = []      # True for an IN list
    between: List[int] = []      # group depth of each BETWEEN awaiting its AND
    after_in = False
    negated = False

    for token in tokens:
        if after_in:
            if token != "(":
                raise ValidationError("IN must be followed by a parenthesized list")
            after_in = False
            groups.append(True)
            continue
        if negated and token not in NEGATABLE:
            raise ValidationError(f"NOT must precede LIKE, GLOB, IN or BETWEEN, got {token!r}")
        negated = False

        if expect_operand:
            if _is_operand(token):
                expect_operand = False
            elif token == "(":
                groups.append(False)
            elif token != "NOT":
                raise ValidationError(f"Expected a column or ? in filter, got {token!r}")
            continue

        if token == "NOT":
            negated = True
        elif token == "AND" and between and between[-1] == len(groups):
            between.pop()
            expect_operand = True
        elif token == "BETWEEN":
            between.append(len(groups))
            expect_operand = True
        elif token == "IN":
            after_in = True
            expect_operand = True
        elif token in COMPARISONS or token in CONNECTIVES:
            if token == "OR" and between and between[-1] == len(groups):
                raise ValidationError("BETWEEN is missing its AND")
            expect_operand = True
        elif token == ")":
            if between and between[-1] == len(groups):
                raise ValidationError("BETWEEN is missing its AND")
            groups.pop()
        elif token == "," and groups and groups[-1]:
            expect_operand = True
        else:
            raise ValidationError(f"Expected an operator in filter, got {token!r}")

    if expect_operand or negated or after_in or between:
        raise ValidationError("Filter expression is incomplete")


def compile_filter(
    expression: Optional[str], params: Sequence[Any], spec: TableSpec
) -> Tuple[str, Tuple[Any, ...]]:
    """Validate a filter expression and return (sql, params).

    The returned SQL has every column quoted. An empty expression returns an
    empty string, which callers treat as "no WHERE clause".
    """
    params = _check_params(params)
    if expression is not None and not isinstance(expression, str):
        raise ValidationError("Filter expression must be a string")
    if expression is None or not expression.strip():
        if params:
            raise ValidationError("Bound params given without a filter expression")
        return "", ()

    parts: List[str] = []
    placeholders = 0
    depth = 0
    pos = 0
    end = len(expression.rstrip())
    while pos < end:
        match = TOKEN_RE.match(expression, pos)
        if match is None or match.end() == pos:
            raise ValidationError(
                f"Unsupported syntax in filter at position {pos}: {expression[pos:pos + 20]!r}"
            )
        pos = match.end()
        kind = match.lastgroup
        token = match.group(kind)
        if kind == "placeholder":
            placeholders += 1
            parts.append("?")
        elif kind == "op":
            parts.append(token)
        elif kind == "punct":
            if token == "(":
                depth += 1
            elif token == ")":
                depth -= 1
                if depth < 0:
                    raise ValidationError("Unbalanced parentheses in filter")
            parts.append(token)
        else:
            upper = token.upper()
            if upper in KEYWORDS:
                parts.append(upper)
            elif spec.has_column(token):
                parts.append(quote(token))
            else:
                raise ValidationError(f"Unknown column {token!r} in filter for table {spec.name!r}")

    if depth != 0:
        raise ValidationError("Unbalanced parentheses in filter")
    if placeholders != len(params):
        raise ValidationError(
            f"Filter has {placeholders} placeholder(s) but {len(params)} param(s) were given"
        )
    _check_grammar(parts)
    return " ".join(parts), params


def compile_order_by(order_by: Union[None, str, Sequence[str]], spec: TableSpec) -> str:
    """Build an ORDER BY clause ending with the key column as tiebreaker."""
    if order_by is None:
        order_by = []
    elif isinstance(order_by, str):
        order_by = [order_by]

    terms = []
    seen = set()
    for item in order_by:
        if not isinstance(item, str):
            raise ValidationError(f"Invalid order_by entry: {item!r}")
        pieces = item.split()
        if len(pieces) not in (1, 2):
            raise ValidationError(f"Invalid order_by entry: {item!r}")
        column = pieces[0]
        direction = pieces[1].upper() if len(pieces) == 2 else "ASC"
        if direction not in ("ASC", "DESC"):
            raise ValidationError(f"Invalid sort direction in {item!r}")
        spec.check_columns([column])
        if column in seen:
            continue
        seen.add(column)
        terms.append(f"{quote(column)} {direction}")

    if spec.key not in seen:
        terms.append(f"{quote(spec.key)} ASC")
    return ", ".join(terms)


def validate_page(limit: Optional[int], offset: Optional[int]) -> Tuple[Optional[int], Optional[int]]:
    """Check that limit and offset are non-negative integers (or None)."""
    for name, value in (("limit", limit), ("offset", offset)):
        if value is None:
            continue
        if isinstance(value, bool) or not isinstance(value, int) or value < 0:
            raise ValidationError(f"{name} must be a non-negative integer, got {value!r}")
    return limit, offset
