"""Matching of URIs against RFC 6570 URI templates."""

from __future__ import annotations

import re
from dataclasses import dataclass
from urllib.parse import unquote

_UNRESERVED = r"[A-Za-z0-9\-._~%]"
_RESERVED = r"[A-Za-z0-9\-._~%:/?#\[\]@!$&'()*+;=]"

# operator -> (prefix, separator, named, allow reserved)
_OPERATORS = {
    "": ("", ",", False, False),
    "+": ("", ",", False, True),
    "#": ("#", ",", False, True),
    ".": (".", ".", False, False),
    "/": ("/", "/", False, False),
    ";": (";", ";", True, False),
    "?": ("?", "&", True, False),
    "&": ("&", "&", True, False),
}

_VARSPEC = re.compile(r"^([A-Za-z0-9_.%]+)(\*|:\d+)?$")
_EXPRESSION = re.compile(r"\{([^{}]*)\}")


@dataclass(frozen=True)
class _Variable:
    name: str
    group: str
    operator: str
    explode: bool


class URITemplate:
    """A compiled URI template that can test and decompose URIs."""

    def __init__(self, raw: str) -> None:
        self.raw = raw
        self._variables: list[_Variable] = []
        parts: list[str] = []
        pos = 0
        for found in _EXPRESSION.finditer(raw):
            parts.append(self._literal(raw[pos:found.start()]))
            parts.append(self._expression(found.group(1)))
            pos = found.end()
        parts.append(self._literal(raw[pos:]))
        self._regex = re.compile("".join(parts))

    def __str__(self) -> str:
        return self.raw

    def __repr__(self) -> str:
        return f"URITemplate({self.raw!r})"

    def __eq__(self, other: object) -> bool:
        return isinstance(other, URITemplate) and other.raw == self.raw

    def __hash__(self) -> int:
        return hash(self.raw)

    @staticmethod
    def _literal(text: str) -> str:
        if "{" in text or "}" in text:
            raise ValueError(f"malformed URI template: unbalanced brace in {text!r}")
        return re.escape(text)

    def _expression(self, body: str) -> str:
        operator = body[:1] if body[:1] in _OPERATORS and body[:1] != "" else ""
        specs = body[len(operator):]
        if not specs:
            raise ValueError("malformed URI template: empty expression")
        prefix, sep, named, reserved = _OPERATORS[operator]
        chars = _RESERVED if reserved else _UNRESERVED
        esc_sep = re.escape(sep)
        pieces = []
        for spec in specs.split(","):
            match = _VARSPEC.match(spec)
            if not match:
                raise ValueError(f"malformed URI template: bad variable {spec!r}")
            name, modifier = match.groups()
            explode = modifier == "*"
            variable = _Variable(name, f"g{len(self._variables)}", operator, explode)
            self._variables.append(variable)
            if named:
                esc_name = re.escape(name)
                if explode:
                    value = f"(?:{esc_name}=)?{chars}*(?:{esc_sep}(?:{esc_name}=)?{chars}*)*"
                else:
                    value = f"{esc_name}(?:={chars}*(?:,{chars}*)*)?"
            elif explode:
                value = f"{chars}*(?:{esc_sep}{chars}*)*"
            else:
                value = f"{chars}*(?:,{chars}*)*"
            pieces.append(f"(?P<{variable.group}>{value})")
        body_regex = pieces[0] + "".join(f"(?:{esc_sep}{p})?" for p in pieces[1:])
        return f"(?:{re.escape(prefix)}{body_regex})?"

    def matches(self, uri: str) -> bool:
        """Whether the whole URI fits the template."""
        return self._regex.fullmatch(uri) is not None

    def match(self, uri: str) -> dict[str, list[str]] | None:
        """Values of the template's variables in the URI, or None if it does not fit."""
        found = self._regex.fullmatch(uri)
        if found is None:
            return None
        values: dict[str, list[str]] = {}
        for variable in self._variables:
            text = found.group(variable.group)
            if text is None:
                continue
            _, sep, named, _ = _OPERATORS[variable.operator]
            if variable.explode:
                items = text.split(sep)
                if named:
                    items = [_strip_name(item, variable.name) for item in items]
            else:
                if named:
                    text = _strip_name(text, variable.name)
                items = text.split(",")
            values[variable.name] = [unquote(item) for item in items]
        return values


def _strip_name(text: str, name: str) -> str:
    if text.startswith(name + "="):
        return text[len(name) + 1:]
    if text == name:
        return ""
    return text