from typing import Iterable, Iterator, Union

from ..errors import InvalidAccountIdentifier


def normalize_identifier(value) -> str:
    if not isinstance(value, str):
        raise InvalidAccountIdentifier(f"Account identifier must be a string, got {type(value).__name__}")
    identifier = value.strip()
    if not identifier:
        raise InvalidAccountIdentifier("Account identifier must not be empty")
    return identifier


def iter_identifiers(value: Union[str, Iterable[str]]) -> Iterator[str]:
    """Yield identifiers from a single value, a list or a lazy stream.

    Nothing is materialized, so a generator or an open file is consumed one
    identifier at a time.
    """
    if isinstance(value, str):
        yield normalize_identifier(value)
        return
    for item in value:
        yield normalize_identifier(item)


def iter_stream_lines(lines: Iterable[str]) -> Iterator[str]:
    """Identifiers from line-oriented input (stdin, files). Blank lines and # comments are skipped."""
    for line in lines:
        text = line.strip()
        if not text or text.startswith('#'):
            continue
        yield text
