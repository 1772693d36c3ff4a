"""
Bounded yes/no prompt.

A single blocking read with a deadline. Non-interactive input, a timeout,
end of input and unrecognised answers all yield the default.
"""

import select
import sys
from typing import Optional, TextIO


YES_ANSWERS = frozenset({"y", "yes"})
NO_ANSWERS = frozenset({"n", "no"})


def ask_yes_no(
    question: str,
    timeout: float,
    default: bool = False,
    input_stream: Optional[TextIO] = None,
    output_stream: Optional[TextIO] = None,
) -> bool:
    """
    Ask a yes/no question and wait at most ``timeout`` seconds for an answer.

    Args:
        question: Text shown to the operator
        timeout: Seconds to wait before falling back to ``default``
        default: Answer used on timeout or without a terminal
        input_stream: Defaults to sys.stdin
        output_stream: Defaults to sys.stderr

    Returns:
        True for yes, False for no
    """
    input_stream = input_stream or sys.stdin
    output_stream = output_stream or sys.stderr

    if not input_stream.isatty():
        return default

    hint = "Y/n" if default else "y/N"
    output_stream.write(f"{question} ({hint}, {timeout:g}s): ")
    output_stream.flush()

    rlist, _, _ = select.select([input_stream], [], [], timeout)
    if not rlist:
        output_stream.write("\n")
        return default

    answer = input_stream.readline().strip().lower()
    if answer in YES_ANSWERS:
        return True
    if answer in NO_ANSWERS:
        return False
    return default
