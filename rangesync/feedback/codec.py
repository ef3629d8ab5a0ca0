"""Escaping for free-form strings embedded in comma separated records."""

from ..exceptions import MalformedRepresentationError

_ESCAPES = {
    "$": "$$",
    ",": "$k",
    "\n": "$n",
    "\r": "$r",
    " ": "$s",
}
_UNESCAPES = {escaped[1]: char for char, escaped in _ESCAPES.items()}


def encode(value: str) -> str:
    """Escape characters that would break a record line apart."""
    return "".join(_ESCAPES.get(char, char) for char in value)


def decode(value: str) -> str:
    """Reverse :func:`encode`.

    Raises:
        MalformedRepresentationError: On a dangling ``$`` or an unknown escape.
    """
    result = []
    chars = iter(value)
    for char in chars:
        if char != "$":
            result.append(char)
            continue
        code = next(chars, None)
        if code is None or code not in _UNESCAPES:
            raise MalformedRepresentationError("escaped string", value, "bad escape sequence")
        result.append(_UNESCAPES[code])
    return "".join(result)
