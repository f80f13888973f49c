"""
Repeated-tool-call detection

One predicate serves both live classification (``agent_stuck``) and
post-hoc eval scoring (``no_loops``), so the two can never disagree about
what counts as a loop.

The heuristic is coarse: legitimate polling (e.g. repeated health checks)
also trips it.
"""

from typing import List, Optional, Sequence, Tuple

DEFAULT_LOOP_THRESHOLD = 3


def find_tool_loops(
    tool_names: Sequence[str],
    threshold: int = DEFAULT_LOOP_THRESHOLD
) -> List[Tuple[str, int, int]]:
    """
    Find runs of identical consecutive tool names

    Args:
        tool_names: Tool names in call order
        threshold: Minimum run length that counts as a loop

    Returns:
        ``(tool_name, start_index, run_length)`` for every run of at least
        ``threshold`` identical names, in order of appearance
    """
    if threshold < 2:
        raise ValueError(f"threshold must be >= 2, got {threshold}")

    loops: List[Tuple[str, int, int]] = []
    run_start = 0
    for index in range(1, len(tool_names) + 1):
        if index < len(tool_names) and tool_names[index] == tool_names[run_start]:
            continue
        run_length = index - run_start
        if run_length >= threshold:
            loops.append((tool_names[run_start], run_start, run_length))
        run_start = index
    return loops


def detect_tool_loop(
    tool_names: Sequence[str],
    threshold: int = DEFAULT_LOOP_THRESHOLD
) -> bool:
    """Return True when some tool name repeats ``threshold``+ times in a row"""
    return bool(find_tool_loops(tool_names, threshold))


def first_tool_loop(
    tool_names: Sequence[str],
    threshold: int = DEFAULT_LOOP_THRESHOLD
) -> Optional[Tuple[str, int, int]]:
    """Return the first detected loop or None"""
    loops = find_tool_loops(tool_names, threshold)
    return loops[0] if loops else None


__all__ = [
    "DEFAULT_LOOP_THRESHOLD",
    "find_tool_loops",
    "detect_tool_loop",
    "first_tool_loop",
]
