"""Structural comparison of observed objects against desired manifests."""

from typing import Any, List


def _is_empty(value: Any) -> bool:
    # 0 and False are real values
    return value is None or value == "" or value == {} or value == []


def compare_ignore_target_empties(observed: Any, desired: Any, path: str = "") -> List[str]:
    """
    List the paths where ``observed`` does not match ``desired``.

    Only fields set in ``desired`` are compared, so defaults filled in by the
    API server never count as drift. Empty desired values (None, "", {}, [])
    are skipped. Lists are compared element by element with the same rules
    and must have the same length.
    """
    if _is_empty(desired):
        return []

    if isinstance(desired, dict):
        if not isinstance(observed, dict):
            return [path or "."]
        diffs = []
        for key, value in desired.items():
            diffs.extend(
                compare_ignore_target_empties(observed.get(key), value, f"{path}.{key}")
            )
        return diffs

    if isinstance(desired, list):
        if not isinstance(observed, list) or len(observed) != len(desired):
            return [path or "."]
        diffs = []
        for index, (have, want) in enumerate(zip(observed, desired)):
            diffs.extend(compare_ignore_target_empties(have, want, f"{path}[{index}]"))
        return diffs

    if observed != desired:
        return [path or "."]
    return []
