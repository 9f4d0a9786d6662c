"""Tests for textanchor.painter and the SoupTree edit host."""
import pytest
from bs4 import BeautifulSoup, NavigableString, Tag

from textanchor.anchor_types import Boundary, Span
from textanchor.edit_script import MarkerSpec, WrapRange
from textanchor.painter import SpanPainter
from textanchor.soup_tree import SoupTree

HTML = (
    '<div><p class="lead">The quick brown fox</p>'
    '<p id="second">jumps over the lazy dog</p></div>'
)


def _setup(html: str = HTML, tree: SoupTree | None = None) -> tuple[BeautifulSoup, SoupTree, SpanPainter]:
    soup = BeautifulSoup(html, "html.parser")
    tree = tree or SoupTree()
    return soup, tree, SpanPainter(tree)


def _blocks(container: Tag) -> list[tuple[str, dict]]:
    return [(c.name, dict(c.attrs)) for c in container.find_all(recursive=False)]


class TestSoupTree:
    def test_is_text_excludes_comments_and_scripts(self) -> None:
        soup = BeautifulSoup("<div>a<!-- c --><script>x</script></div>", "html.parser")
        tree = SoupTree()
        a, comment, script = soup.div.contents
        assert tree.is_text(a)
        assert not tree.is_text(comment)
        assert not tree.is_text(script.contents[0])

    def test_split_text_bounds(self) -> None:
        soup = BeautifulSoup("<p>abc</p>", "html.parser")
        tree = SoupTree()
        with pytest.raises(ValueError):
            tree.split_text(soup.p.contents[0], 0)
        with pytest.raises(ValueError):
            tree.split_text(soup.p.contents[0], 3)
        left, right = tree.split_text(soup.p.contents[0], 1)
        assert (str(left), str(right)) == ("a", "bc")
        assert soup.p.contents == [left, right]

    def test_wrap_range_requires_shared_parent(self) -> None:
        soup = BeautifulSoup("<div><p>a</p><p>b</p></div>", "html.parser")
        tree = SoupTree()
        first, second = (p.contents[0] for p in soup.find_all("p"))
        with pytest.raises(ValueError):
            tree.wrap_range(first, second, MarkerSpec("a1", "yellow"))

    def test_marker_attributes(self) -> None:
        soup = BeautifulSoup("<p>abc</p>", "html.parser")
        tree = SoupTree()
        text = soup.p.contents[0]
        marker = tree.wrap_range(text, text, MarkerSpec("a1", "green", note_count=3))
        assert marker.name == "span"
        assert tree.is_marker(marker)
        assert tree.marker_id(marker) == "a1"
        assert marker["data-style"] == "green"
        assert marker["data-note-count"] == "3"

    def test_unwrap_merges_text(self) -> None:
        soup = BeautifulSoup("<p>abcdef</p>", "html.parser")
        tree = SoupTree()
        left, right = tree.split_text(soup.p.contents[0], 3)
        tree.wrap_range(right, right, MarkerSpec("a1", "yellow"))
        assert tree.unwrap_markers(soup.p, "a1") == 1
        assert len(soup.p.contents) == 1
        assert str(soup.p) == "<p>abcdef</p>"


class TestPlan:
    def test_single_node(self) -> None:
        soup, _, painter = _setup()
        text = soup.p.contents[0]
        script = painter.plan(Span(Boundary(text, 4), Boundary(text, 9)), soup.div, "a1", "yellow")
        assert script.wrap_count == 1

    def test_degenerate(self) -> None:
        soup, _, painter = _setup()
        text = soup.p.contents[0]
        assert painter.plan(Span(Boundary(text, 4), Boundary(text, 4)), soup.div, "a1", "yellow") is None

    def test_note_count_flags_last_marker(self) -> None:
        soup, _, painter = _setup()
        first, second = (p.contents[0] for p in soup.find_all("p"))
        script = painter.plan(
            Span(Boundary(first, 10), Boundary(second, 5)), soup.div, "a1", "yellow", note_count=2,
        )
        wraps = [op for op in script.ops if isinstance(op, WrapRange)]
        assert [w.marker.note_count for w in wraps] == [0, 2]


class TestPaint:
    def test_single_run(self) -> None:
        soup, _, painter = _setup()
        text = soup.p.contents[0]
        handle = painter.paint(Span(Boundary(text, 4), Boundary(text, 9)), soup.div, "a1", "yellow")
        assert len(handle.markers) == 1
        assert handle.markers[0].get_text() == "quick"
        assert not handle.cross_block
        assert soup.p.get_text() == "The quick brown fox"

    def test_single_run_spans_inline_siblings(self) -> None:
        soup, _, painter = _setup("<div><p>The <em>quick</em> brown</p></div>")
        start = soup.p.contents[0]
        end = soup.p.contents[2]
        handle = painter.paint(Span(Boundary(start, 0), Boundary(end, 3)), soup.div, "a1", "yellow")
        assert len(handle.markers) == 1
        marker = handle.markers[0]
        assert marker.get_text() == "The quick b"
        assert marker.find("em") is not None

    def test_inline_to_outer_text_is_segmented(self) -> None:
        soup, _, painter = _setup("<div><p>The <em>quick</em> brown</p></div>")
        start = soup.em.contents[0]
        end = soup.p.contents[2]
        handle = painter.paint(Span(Boundary(start, 2), Boundary(end, 3)), soup.div, "a1", "yellow")
        assert [m.get_text() for m in handle.markers] == ["ick", " br"]

    def test_idempotent(self) -> None:
        soup, tree, painter = _setup()
        text = soup.p.contents[0]
        span = Span(Boundary(text, 4), Boundary(text, 9))
        painter.paint(span, soup.div, "a1", "yellow")
        again = painter.paint(span, soup.div, "a1", "yellow")
        assert again.reused
        assert len(tree.find_markers(soup.div, "a1")) == 1

    def test_unpaint_restores_text(self) -> None:
        soup, tree, painter = _setup()
        original = soup.div.get_text()
        first, second = (p.contents[0] for p in soup.find_all("p"))
        painter.paint(Span(Boundary(first, 10), Boundary(second, 5)), soup.div, "a1", "yellow")
        assert painter.unpaint("a1", soup.div) == 2
        assert soup.div.get_text() == original
        assert tree.find_markers(soup.div) == []
        assert str(soup) == HTML

    def test_cross_paragraph_keeps_blocks(self) -> None:
        soup, _, painter = _setup()
        before = _blocks(soup.div)
        first, second = (p.contents[0] for p in soup.find_all("p"))
        handle = painter.paint(Span(Boundary(first, 10), Boundary(second, 5)), soup.div, "a1", "yellow")
        assert handle.cross_block
        assert [m.get_text() for m in handle.markers] == ["brown fox", "jumps"]
        assert _blocks(soup.div) == before
        assert all(m.parent.name == "p" for m in handle.markers)

    def test_whitespace_between_blocks_not_wrapped(self) -> None:
        soup, _, painter = _setup("<div><p>one two</p>\n<p>three four</p></div>")
        first, second = (p.contents[0] for p in soup.find_all("p"))
        handle = painter.paint(Span(Boundary(first, 4), Boundary(second, 5)), soup.div, "a1", "yellow")
        assert [m.get_text() for m in handle.markers] == ["two", "three"]

    def test_overlapping_annotations(self) -> None:
        soup, tree, painter = _setup()
        text = soup.p.contents[0]
        painter.paint(Span(Boundary(text, 4), Boundary(text, 15)), soup.div, "a1", "yellow")
        inner = tree.find_markers(soup.div, "a1")[0].contents[0]
        assert str(inner) == "quick brown"
        painter.paint(Span(Boundary(inner, 6), Boundary(inner, 11)), soup.div, "a2", "blue")
        assert tree.find_markers(soup.div, "a2")[0].get_text() == "brown"
        assert soup.p.get_text() == "The quick brown fox"
        painter.unpaint("a1", soup.div)
        painter.unpaint("a2", soup.div)
        assert str(soup) == HTML

    def test_host_failure_leaves_tree_clean(self) -> None:
        class FlakyTree(SoupTree):
            def __init__(self) -> None:
                super().__init__()
                self.wraps = 0

            def wrap_range(self, first, last, marker):
                self.wraps += 1
                if self.wraps == 2:
                    raise RuntimeError("host failure")
                return super().wrap_range(first, last, marker)

        soup, tree, painter = _setup(tree=FlakyTree())
        first, second = (p.contents[0] for p in soup.find_all("p"))
        handle = painter.paint(Span(Boundary(first, 10), Boundary(second, 5)), soup.div, "a1", "yellow")
        assert handle is None
        assert tree.find_markers(soup.div) == []
        assert soup.div.get_text() == "The quick brown foxjumps over the lazy dog"

    def test_empty_text_node_is_not_wrapped(self) -> None:
        soup, tree, painter = _setup("<div><p>abc</p><p>def</p></div>")
        soup.find_all("p")[1].insert(0, NavigableString(""))
        first = soup.p.contents[0]
        last = soup.find_all("p")[1].contents[1]
        handle = painter.paint(Span(Boundary(first, 1), Boundary(last, 2)), soup.div, "a1", "yellow")
        assert [m.get_text() for m in handle.markers] == ["bc", "de"]
