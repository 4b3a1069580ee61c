"""Stable naming of per-replica storage claims."""

import re
from typing import List, Sequence

_TRAILING_NUMBER = re.compile(r"^(.*?)(\d+)$")


def next_in_sequence(name: str) -> str:
    """
    Get the name that follows ``name`` in a claim sequence.

    The trailing run of digits is incremented and keeps its width unless the
    increment carries into a new digit, so ``data-9`` becomes ``data-10`` and
    ``pvc-09`` becomes ``pvc-10``. A name without a trailing number starts a
    new sequence: ``data`` becomes ``data-1``.
    """
    match = _TRAILING_NUMBER.match(name)
    if not match:
        return f"{name}-1"
    prefix, digits = match.groups()
    return f"{prefix}{str(int(digits) + 1).zfill(len(digits))}"


def ensure_claim_names(existing: Sequence[str], desired_count: int, first_name: str) -> List[str]:
    """
    Grow or shrink a claim name list to ``desired_count`` entries.

    Already assigned names are never renamed: new names are successors of the
    last existing one and surplus names are dropped from the tail.

    Args:
        existing: Claim names currently recorded for the component
        desired_count: Replica count the list must match
        first_name: Name of the first claim when nothing is recorded yet

    Returns:
        The new list of claim names
    """
    if desired_count <= 0:
        return []

    names = list(existing)
    if not names:
        names.append(first_name)

    while len(names) < desired_count:
        names.append(next_in_sequence(names[-1]))

    return names[:desired_count]
