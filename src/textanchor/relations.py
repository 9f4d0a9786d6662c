"""Structural relationship between two annotations.

Both annotations are resolved against the same live container, turned into
``[start, end)`` intervals over its flattened text, and compared:

    contains     start_a <= start_b and end_a >= end_b
    contained    start_b <= start_a and end_b >= end_a
    intersect    overlapping, neither contains the other
    independent  no overlap (touching intervals do not overlap)

An annotation that fails to resolve yields no relation at all: a
resolution failure is not evidence of non-overlap.
"""
from __future__ import annotations

from textanchor.anchor_types import Annotation, Relation, RelationRecord
from textanchor.offsets import span_interval
from textanchor.resolver import AnchorResolver
from textanchor.tree import Node, TreeQuery


def classify_intervals(a: tuple[int, int], b: tuple[int, int]) -> Relation:
    """Classify ``a`` against ``b``.

    Equal intervals report ``contains`` in both directions, so the same text
    highlighted twice is never ``contained``.
    """
    start_a, end_a = a
    start_b, end_b = b
    if start_a <= start_b and end_a >= end_b:
        return Relation.CONTAINS
    if start_b <= start_a and end_b >= end_a:
        return Relation.CONTAINED
    if start_a < end_b and start_b < end_a:
        return Relation.INTERSECT
    return Relation.INDEPENDENT


class RelationDetector:
    def __init__(self, tree: TreeQuery, resolver: AnchorResolver, *, candidate_limit: int = 10) -> None:
        self.tree = tree
        self.resolver = resolver
        self.candidate_limit = candidate_limit

    def interval_of(self, annotation: Annotation, container: Node) -> tuple[int, int] | None:
        span = self.resolver.resolve_annotation(annotation, container)
        if span is None:
            return None
        return span_interval(self.tree, container, span)

    def classify(self, a: Annotation, b: Annotation, container: Node) -> Relation | None:
        ia = self.interval_of(a, container)
        if ia is None:
            return None
        ib = self.interval_of(b, container)
        if ib is None:
            return None
        return classify_intervals(ia, ib)

    def classify_against(
        self,
        annotation: Annotation,
        existing: list[Annotation],
        container: Node,
    ) -> list[RelationRecord]:
        """Relations of *annotation* to the nearest ``candidate_limit`` others.

        Candidates are ranked by distance between their recorded
        ``text_offset`` values; only they are resolved. Unresolvable
        candidates are skipped.
        """
        own = self.interval_of(annotation, container)
        if own is None:
            return []
        anchor = annotation.position.text_offset
        others = [o for o in existing if o.id != annotation.id]
        others.sort(key=lambda o: abs(o.position.text_offset - anchor))
        records: list[RelationRecord] = []
        for other in others[:self.candidate_limit]:
            interval = self.interval_of(other, container)
            if interval is None:
                continue
            records.append(RelationRecord(classify_intervals(own, interval), other.id))
        return records
