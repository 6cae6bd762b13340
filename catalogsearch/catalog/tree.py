"""Nested category menu built from a flat category list and facet counts."""

from typing import Mapping

from ..model import Category, WireModel


class CategoryNode(WireModel):
    id: str
    name: str
    handle: str | None = None
    level: int = 0
    count: int = 0
    total_count: int = 0
    children: list["CategoryNode"] = []


def build_category_tree(
    categories: list[Category], counts: Mapping[str, int]
) -> list[CategoryNode]:
    """Build the category forest with product counts.

    ``counts`` is a ``category_names`` facet (category name -> products).
    ``total_count`` adds up a node and all of its descendants. Categories
    whose parent is unknown become roots. Siblings are ordered by
    ``total_count`` descending, then by name.
    """
    by_id = {c.id: c for c in categories}
    children: dict[str | None, list[Category]] = {}
    for category in categories:
        parent = category.parent_id if category.parent_id in by_id else None
        children.setdefault(parent, []).append(category)

    visited: set[str] = set()

    def build(category: Category, level: int) -> CategoryNode:
        visited.add(category.id)
        nodes = [
            build(child, level + 1)
            for child in children.get(category.id, [])
            if child.id not in visited
        ]
        count = int(counts.get(category.name, 0))
        return CategoryNode(
            id=category.id,
            name=category.name,
            handle=category.handle,
            level=level,
            count=count,
            total_count=count + sum(n.total_count for n in nodes),
            children=_ordered(nodes),
        )

    return _ordered([build(root, 0) for root in children.get(None, [])])


def _ordered(nodes: list[CategoryNode]) -> list[CategoryNode]:
    return sorted(nodes, key=lambda n: (-n.total_count, n.name.casefold()))
