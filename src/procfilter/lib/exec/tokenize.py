"""Command template tokenizer.

Templates look like ``git-lfs clean -- %f``. Every ``%f`` is replaced by the
file path first, then the result is split on unquoted spaces and tabs.
Double and single quotes group words and are dropped from the output. There
is no backslash escaping, so a path containing spaces must be quoted by the
template author (``tool "%f"``).
"""

from __future__ import annotations

from procfilter.lib.domain import ParsedCommand

PATH_PLACEHOLDER = "%f"
_SEPARATORS = frozenset({" ", "\t"})


def split_command(command: str) -> list[str]:
    """Split one already-substituted command line into tokens."""

    tokens: list[str] = []
    current: list[str] = []
    quote: str | None = None

    for char in command:
        if quote is not None:
            if char == quote:
                quote = None
            else:
                current.append(char)
            continue

        if char in {'"', "'"}:
            quote = char
        elif char in _SEPARATORS:
            if current:
                tokens.append("".join(current))
                current = []
        else:
            current.append(char)

    # An unterminated quote simply runs to the end of the string.
    if current:
        tokens.append("".join(current))
    return tokens


def parse_command(template: str, substitution_path: str) -> ParsedCommand:
    """Substitute the path placeholder and split into program + args."""

    tokens = split_command(template.replace(PATH_PLACEHOLDER, substitution_path))
    if not tokens:
        return ParsedCommand(program="")
    return ParsedCommand(program=tokens[0], args=tuple(tokens[1:]))
