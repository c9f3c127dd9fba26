"""Structural invariants of a BuildState.

These hold after every committed mutation. A violation means some caller
bypassed the SelectionManager (or the manager has a bug), so the check
reports problems rather than repairing them.
"""

from collections import Counter

from buildsmith.engine.selection_store import BuildState
from buildsmith.graph.unlock_index import UnlockIndex


def find_violations(state: BuildState, index: UnlockIndex) -> list[str]:
    """Return a description of every broken invariant (empty if none)."""
    problems: list[str] = []

    if state.target_level < 1:
        problems.append(f"target level {state.target_level} is below 1")

    # Cross-source exclusivity.
    counts = Counter(sel.id for sel in state.selections)
    for item_id, count in sorted(counts.items()):
        if count > 1:
            problems.append(f"item {item_id!r} is selected {count} times")

    # Group cardinality. Committed selections are exempt.
    group_counts: Counter[tuple[str, str]] = Counter()
    for sel in state.selections:
        if sel.group_id is None or sel.locked:
            continue
        group_counts[(sel.source.name, sel.group_id)] += 1
    for (source, group_id), count in sorted(group_counts.items()):
        ref = index.find_group(source, group_id)
        limit = ref.max_choices if ref is not None else None
        if limit is not None and count > limit:
            problems.append(
                f"group {group_id!r} in {source!r} holds {count} of max {limit}"
            )

    # Nested cardinality.
    for sel in state.selections:
        if sel.locked:
            continue
        item = index.tree.item(sel.id)
        if item is None or not item.max_choices or item.max_choices <= 0:
            continue
        if len(sel.selections) > item.max_choices:
            problems.append(
                f"item {sel.id!r} has {len(sel.selections)} options of max {item.max_choices}"
            )

    return problems
