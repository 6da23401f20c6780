import getpass
import sys
from typing import TextIO

from lockbox.exceptions import BadCredential, BadField
from lockbox.utils.Entity import Field


def is_pipe(stream: TextIO = sys.stdin) -> bool:
    """True when input is not an interactive terminal."""
    return not stream.isatty()


def confirm(prompt: str, stream: TextIO = sys.stdin, writer: TextIO = sys.stdout) -> bool:
    """
    Ask a yes/no question.

    Returns:
        True only for an answer of `y` or `yes`.
    """
    writer.write(f"{prompt}? (y/n): ")
    writer.flush()
    answer = stream.readline()
    return answer.strip().lower() in ("y", "yes")


def read_value(field: Field, stream: TextIO = sys.stdin, writer: TextIO = sys.stdout) -> str:
    """
    Read a field value from the user or a pipe.

    Piped input is read until EOF and stripped. On a terminal notes are
    read line by line until EOF (CTRL+D), every other field is read
    without echo.

    Args:
        field: The field being set, decides multi-line handling.
        stream: Input stream, stdin by default.
        writer: Where prompts go.

    Returns:
        The entered value.

    Raises:
        BadField: If the value is empty.
    """
    if is_pipe(stream):
        value = stream.read().strip()
    elif field.allows_multiline:
        writer.write(f"{field.name_lower} (CTRL+D to finish):\n")
        writer.flush()
        value = stream.read().strip()
    else:
        value = getpass.getpass(f"{field.name_lower}: ", stream=writer).strip()

    if not value:
        raise BadField("empty secrets not allowed")
    return value


def read_new_password(stream: TextIO = sys.stdin, writer: TextIO = sys.stdout) -> str:
    """
    Read a new store password, prompting twice on a terminal.

    Returns:
        The password, may be empty when piped input is empty.

    Raises:
        BadCredential: If the two entries differ.

    Security Notes:
        - Terminal entry is never echoed.
    """
    if is_pipe(stream):
        return stream.read().strip()
    first = getpass.getpass("new password: ", stream=writer)
    second = getpass.getpass("confirm password: ", stream=writer)
    if first != second:
        raise BadCredential("passwords do NOT match")
    return first.strip()
