"""S-expression reader and printer for relmod source."""

from __future__ import annotations

import re
from typing import Any

from .core import Symbol, Vector

_CLOSERS = {"(": ")", "[": "]"}

TOKEN_PATTERN = re.compile(
    r"""
    (?P<ws>[\s,]+)
  | (?P<comment>;[^\n]*)
  | (?P<string>"(?:[^"\\]|\\.)*")
  | (?P<open>[(\[])
  | (?P<close>[)\]])
  | (?P<quote>')
  | (?P<atom>[^\s,;()\[\]'"]+)
  | (?P<bad>.)
    """,
    re.VERBOSE | re.DOTALL,
)

INT_PATTERN = re.compile(r"^[+-]?\d+$")
FLOAT_PATTERN = re.compile(r"^[+-]?(\d+\.\d*|\.\d+|\d+)([eE][+-]?\d+)?$")

_ESCAPES = {"n": "\n", "t": "\t", "r": "\r", '"': '"', "\\": "\\"}


def _tokenize(text):
    for match in TOKEN_PATTERN.finditer(text):
        kind = match.lastgroup
        if kind in ("ws", "comment"):
            continue
        if kind == "bad":
            raise ValueError(
                f"Unterminated string literal at offset {match.start()}"
            )
        yield kind, match.group(), match.start()


def _unescape(body):
    out = []
    chars = iter(body)
    for ch in chars:
        if ch != "\\":
            out.append(ch)
            continue
        nxt = next(chars, "")
        if nxt not in _ESCAPES:
            raise ValueError(f"Unsupported escape sequence: \\{nxt}")
        out.append(_ESCAPES[nxt])
    return "".join(out)


def _atom(token):
    if token == "nil":
        return None
    if token == "true":
        return True
    if token == "false":
        return False
    if INT_PATTERN.match(token):
        return int(token)
    if FLOAT_PATTERN.match(token):
        return float(token)
    return Symbol(token)


def read_forms(text: str) -> list[Any]:
    """Read every top-level form in ``text``."""

    forms: list[Any] = []
    # (items, opener, offset); quotes holds pending quote counts per depth
    stack: list[tuple[list, str, int]] = []
    quotes: list[int] = [0]

    def emit(value):
        while quotes[-1]:
            quotes[-1] -= 1
            value = [Symbol("quote"), value]
        if stack:
            stack[-1][0].append(value)
        else:
            forms.append(value)

    for kind, token, offset in _tokenize(text):
        if kind == "open":
            stack.append(([], token, offset))
            quotes.append(0)
        elif kind == "close":
            if not stack:
                raise ValueError(f"Unmatched closing '{token}' at offset {offset}")
            items, opener, start = stack.pop()
            if quotes.pop():
                raise ValueError(f"Quote without a form before offset {offset}")
            if _CLOSERS[opener] != token:
                raise ValueError(
                    f"Mismatched delimiter: opened with '{opener}' at offset {start} "
                    f"but closed with '{token}'"
                )
            emit(items if opener == "(" else Vector(items))
        elif kind == "quote":
            quotes[-1] += 1
        elif kind == "string":
            emit(_unescape(token[1:-1]))
        else:
            emit(_atom(token))

    if stack:
        _, opener, start = stack[-1]
        raise ValueError(f"Unclosed '{opener}' opened at offset {start}")
    if quotes[-1]:
        raise ValueError("Quote without a form at end of input")
    return forms


def read_form(text: str) -> Any:
    """Read exactly one form."""

    forms = read_forms(text)
    if len(forms) != 1:
        raise ValueError(f"Expected exactly one form, found {len(forms)}")
    return forms[0]


def format_form(form: Any) -> str:
    """Print ``form`` back as readable source."""

    if form is None:
        return "nil"
    if form is True:
        return "true"
    if form is False:
        return "false"
    if isinstance(form, Symbol):
        return str(form)
    if isinstance(form, str):
        escaped = form.replace("\\", "\\\\").replace('"', '\\"').replace("\n", "\\n")
        return f'"{escaped}"'
    if isinstance(form, Vector):
        return "[" + " ".join(format_form(item) for item in form) + "]"
    if isinstance(form, list):
        return "(" + " ".join(format_form(item) for item in form) + ")"
    return repr(form)


__all__ = [
    "format_form",
    "read_form",
    "read_forms",
]
