"""Completion evaluator: which requirements does a page still miss?

A page is either a source name or one of the fixed pages ("attributes",
"info"). Only unlocks at levels <= target_level count; in continuation
mode everything at or below original_level is treated as settled and is
neither checked nor reported.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass
from typing import assert_never

from buildsmith.engine.build_config import BuildConfig
from buildsmith.engine.point_pool import point_pool_summary
from buildsmith.engine.selection_store import BuildState
from buildsmith.graph.unlock_index import UnlockIndex
from buildsmith.models.constants import ATTRIBUTES_PAGE, FIXED_PAGES, INFO_PAGE
from buildsmith.models.definition import (
    ChoiceUnlock,
    PointBuyUnlock,
    RewardUnlock,
    Unlock,
)
from buildsmith.models.selection import Selection

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class CompletionIssue:
    """One unmet requirement."""
    page: str
    level: int | None
    category: str       # choice / options / points / attributes / info
    message: str


class CompletionEvaluator:
    """Evaluates pages of a BuildState for completeness."""

    __slots__ = ("_index", "_config")

    def __init__(self, index: UnlockIndex, config: BuildConfig | None = None) -> None:
        self._index = index
        self._config = config or BuildConfig()

    # --- Pages ---------------------------------------------------------------

    def active_unlocks(self, state: BuildState, source: str) -> list[tuple[int, Unlock]]:
        """Unlocks of *source* that still need evaluating."""
        above = state.original_level if state.is_continuation else None
        return self._index.unlocks(source, max_level=state.target_level, above_level=above)

    def relevant_pages(self, state: BuildState) -> list[str]:
        """Pages with something left to decide at the current level."""
        pages = [
            name for name in self._index.source_names()
            if self.active_unlocks(state, name)
        ]
        if not state.is_continuation:
            pages.extend(FIXED_PAGES)
        return pages

    def issues(self, state: BuildState, page: str) -> list[CompletionIssue]:
        if page == ATTRIBUTES_PAGE:
            return self._attribute_issues(state)
        if page == INFO_PAGE:
            return self._info_issues(state)
        if self._index.source(page) is None:
            logger.warning("Unknown page %r; nothing to evaluate", page)
            return []
        return self._source_issues(state, page)

    def is_complete(self, state: BuildState, page: str) -> bool:
        return not self.issues(state, page)

    def completion_error(self, state: BuildState, page: str) -> str:
        """One line per unmet requirement; empty when complete."""
        return "\n".join(issue.message for issue in self.issues(state, page))

    # --- Whole build ---------------------------------------------------------

    def validate(self, state: BuildState) -> list[CompletionIssue]:
        out: list[CompletionIssue] = []
        for page in self.relevant_pages(state):
            out.extend(self.issues(state, page))
        return out

    def completion_report(self, state: BuildState) -> str:
        """Per-page errors separated by blank lines."""
        blocks = []
        for page in self.relevant_pages(state):
            error = self.completion_error(state, page)
            if error:
                blocks.append(error)
        return "\n\n".join(blocks)

    # --- Source pages --------------------------------------------------------

    def _source_issues(self, state: BuildState, source: str) -> list[CompletionIssue]:
        key = self._index.source_key(source)
        selections = state.selections_from(key)
        issues: list[CompletionIssue] = []

        for level, unlock in self.active_unlocks(state, source):
            if isinstance(unlock, RewardUnlock):
                continue
            if isinstance(unlock, ChoiceUnlock):
                issue = self._choice_issue(source, level, unlock, selections)
                if issue is not None:
                    issues.append(issue)
            elif isinstance(unlock, PointBuyUnlock):
                summary = point_pool_summary(unlock, selections, self._index.tree.items)
                if summary.current < 0:
                    issues.append(CompletionIssue(
                        page=source,
                        level=level,
                        category="points",
                        message=f"You have overspent {summary.name} by {summary.overspent:g} point(s).",
                    ))
            else:
                assert_never(unlock)

        issues.extend(self._option_issues(state, source, selections))
        return issues

    def _choice_issue(
        self,
        source: str,
        level: int,
        unlock: ChoiceUnlock,
        selections: list[Selection],
    ) -> CompletionIssue | None:
        if unlock.max_choices is None or unlock.max_choices <= 0:
            return None
        # Items missing from the catalog cannot be chosen, so they do not count.
        available = sum(1 for item_id in unlock.items if self._index.tree.item(item_id) is not None)
        needed = min(unlock.max_choices, available)
        chosen = sum(1 for sel in selections if sel.group_id == unlock.id)
        if chosen >= needed:
            return None
        return CompletionIssue(
            page=source,
            level=level,
            category="choice",
            message=f'From "{unlock.name}" (Lvl {level}) you must choose {needed - chosen} more item(s).',
        )

    def _option_issues(
        self,
        state: BuildState,
        source: str,
        selections: list[Selection],
    ) -> list[CompletionIssue]:
        issues = []
        for sel in selections:
            if sel.locked:
                continue
            level = self._index.group_level(source, sel.group_id)
            if level is not None and (level > state.target_level or state.is_locked_level(level)):
                continue
            item = self._index.tree.item(sel.id)
            if item is None:
                continue
            missing = item.required_options - len(sel.selections)
            if missing > 0:
                issues.append(CompletionIssue(
                    page=source,
                    level=level,
                    category="options",
                    message=f'"{item.name or item.id}" needs {missing} more option(s) chosen.',
                ))
        return issues

    # --- Fixed pages ---------------------------------------------------------

    def _attribute_issues(self, state: BuildState) -> list[CompletionIssue]:
        if state.is_continuation or not self._config.attribute_names:
            return []
        names = self._config.attribute_names
        issues = []
        missing = [name for name in names if name not in state.attributes]
        if missing:
            issues.append(CompletionIssue(
                page=ATTRIBUTES_PAGE,
                level=None,
                category="attributes",
                message=f"Assign a value to every attribute (missing: {', '.join(missing)}).",
            ))
        if self._config.attribute_values:
            pool = Counter(self._config.attribute_values)
            used = Counter(state.attributes[name] for name in names if name in state.attributes)
            extra = used - pool
            if extra:
                values = ", ".join(str(v) for v in sorted(extra.elements()))
                issues.append(CompletionIssue(
                    page=ATTRIBUTES_PAGE,
                    level=None,
                    category="attributes",
                    message=f"Attribute values are not available to assign: {values}.",
                ))
        return issues

    def _info_issues(self, state: BuildState) -> list[CompletionIssue]:
        if state.is_continuation or not self._config.require_name:
            return []
        if str(state.info.get("name", "")).strip():
            return []
        return [CompletionIssue(
            page=INFO_PAGE,
            level=None,
            category="info",
            message="Please enter a name.",
        )]
