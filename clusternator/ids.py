"""
Resource identifier (RID) utilities.

RID format: clusternator-typeA-valueA--typeB-valueB
"""

from typing import Dict, Mapping, Optional

from .errors import PreconditionError

CLUSTERNATOR_PREFIX = "clusternator"
SEGMENT_SEPARATOR = "--"
VALID_ID_TYPES = ("pr", "sha", "time", "ttl", "pid", "deployment")


def generate_rid(segments: Mapping[str, str]) -> str:
    """
    Generate a resource identifier from typed segments.

    Segments whose type is not whitelisted are dropped. Order follows the
    iteration order of ``segments``.

    Args:
        segments: Mapping of segment type to value

    Returns:
        str: RID, or an empty string if no segment survived filtering
    """
    pieces = [
        f"{seg_type}-{value}"
        for seg_type, value in segments.items()
        if seg_type in VALID_ID_TYPES
    ]

    if not pieces:
        return ""

    return f"{CLUSTERNATOR_PREFIX}-" + SEGMENT_SEPARATOR.join(pieces)


def parse_rid(rid: str) -> Optional[Dict[str, str]]:
    """
    Parse a resource identifier back into its segments.

    Args:
        rid: RID string

    Returns:
        Mapping of segment type to value, or None if ``rid`` is not ours
    """
    if not rid.startswith(CLUSTERNATOR_PREFIX):
        return None

    body = rid[len(CLUSTERNATOR_PREFIX) + 1:]

    result: Dict[str, str] = {}
    for piece in body.split(SEGMENT_SEPARATOR):
        # a piece without a dash is kept whole under the empty type
        idx = piece.find("-")
        if idx < 0:
            result[""] = piece
        else:
            result[piece[:idx]] = piece[idx + 1:]

    return result


def generate_pr_subdomain(project_id: str, pr: str) -> str:
    """Subdomain label for a pull request environment."""
    if not project_id or not pr:
        raise PreconditionError("generate_pr_subdomain requires a project_id, and pr")
    return f"{project_id}-pr-{pr}"


def generate_subdomain(project_id: str, label: str) -> str:
    """Subdomain label for a named deployment."""
    if not project_id or not label:
        raise PreconditionError("generate_subdomain requires a project_id, and label")
    return f"{project_id}-{label}"
