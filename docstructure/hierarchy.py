"""
Hierarchy Builder
=================
Turns the flat section list into a tree with a level stack.
"""

from __future__ import annotations

import logging

from .models import DocumentSection

logger = logging.getLogger(__name__)


class HierarchyBuilder:
    """
    Stack-based tree construction.

    For each section in document order, pop open sections whose level is
    greater than or equal to the current one; the remaining top becomes
    the parent. Headers of equal level are always siblings.
    """

    def build(self, sections: list[DocumentSection]) -> list[DocumentSection]:
        """
        Args:
            sections: Flat sections. Not modified.

        Returns:
            Root-level sections with nested subsections.
        """
        ordered = sorted(sections, key=lambda s: s.start_position)
        roots: list[DocumentSection] = []
        stack: list[DocumentSection] = []

        for section in ordered:
            node = section.model_copy(update={"subsections": []})

            while stack and stack[-1].level >= node.level:
                stack.pop()

            if stack:
                stack[-1].subsections.append(node)
            else:
                roots.append(node)

            stack.append(node)

        logger.debug(
            f"Built hierarchy: {len(ordered)} sections, {len(roots)} roots, "
            f"depth {max_depth(roots)}"
        )
        return roots


def max_depth(sections: list[DocumentSection]) -> int:
    """Depth of the deepest branch; 0 for an empty forest."""
    if not sections:
        return 0
    return 1 + max(max_depth(s.subsections) for s in sections)
