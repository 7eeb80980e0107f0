"""
Tests for citation aggregation and lazy name resolution.
"""

from docqa.generation.citations import CitationAggregator
from docqa.generation.events import Annotation


def _ann(source_id: str, name: str | None = None) -> Annotation:
    return Annotation(source_id=source_id, display_name=name)


def _pairs(summary):
    return [(c.source_id, c.count) for c in summary]


class TestSummary:
    """Counting and ordering."""

    def test_counts_sorted_descending(self):
        agg = CitationAggregator().extend([_ann("A"), _ann("B"), _ann("A"), _ann("A")])
        assert _pairs(agg.summary()) == [("A", 3), ("B", 1)]

    def test_ties_keep_first_seen_order(self):
        agg = CitationAggregator().extend([_ann("B"), _ann("A"), _ann("C"), _ann("A"), _ann("B")])
        assert _pairs(agg.summary()) == [("B", 2), ("A", 2), ("C", 1)]

    def test_empty(self):
        agg = CitationAggregator()
        assert agg.summary() == []
        assert len(agg) == 0

    def test_display_name_used_as_filename(self):
        agg = CitationAggregator().extend([_ann("file-1"), _ann("file-1", "contract.pdf")])

        (item,) = agg.summary()
        assert item.filename == "contract.pdf"
        assert agg.unresolved() == []

    def test_raw_id_when_no_name(self):
        (item,) = CitationAggregator().extend([_ann("file-9")]).summary()
        assert item.filename == "file-9"


class TestFinalize:
    """Concurrent lookup of missing names."""

    async def test_resolves_only_unnamed_sources(self):
        looked_up = []

        async def resolver(source_id):
            looked_up.append(source_id)
            return f"{source_id}.pdf"

        agg = CitationAggregator().extend([_ann("f1"), _ann("f2", "named.txt"), _ann("f1")])
        summary = await agg.finalize(resolver)

        assert looked_up == ["f1"]
        assert [(c.filename, c.count) for c in summary] == [("f1.pdf", 2), ("named.txt", 1)]

    async def test_failed_lookup_falls_back_to_id(self):
        async def resolver(source_id):
            if source_id == "broken":
                raise RuntimeError("404")
            return "ok.txt"

        agg = CitationAggregator().extend([_ann("broken"), _ann("fine")])
        summary = await agg.finalize(resolver)

        assert [c.filename for c in summary] == ["broken", "ok.txt"]

    async def test_without_resolver(self):
        summary = await CitationAggregator().extend([_ann("x")]).finalize()
        assert summary[0].filename == "x"
