"""Tests for textanchor.renderer module."""
import pytest
from bs4 import BeautifulSoup

from textanchor.anchor_types import Annotation, Boundary, PathPoint, Position, Span
from textanchor.config import EngineConfig
from textanchor.painter import SpanPainter
from textanchor.path_codec import parse_path
from textanchor.renderer import VirtualAnnotationRenderer, Viewport
from textanchor.resolver import AnchorResolver
from textanchor.scheduling import ManualFrameScheduler
from textanchor.soup_tree import SoupTree
from textanchor.span_codec import SpanCodec
from textanchor.status import EngineState, ReentrantCallError
from textanchor.text_match import TextFallbackMatcher

PARAGRAPHS = 40


class RefusingPainter(SpanPainter):
    """Painter that reports the engine as already painting."""

    def __init__(self, tree: SoupTree) -> None:
        super().__init__(tree)
        self.calls = 0

    def paint(self, *args: object, **kwargs: object) -> None:
        self.calls += 1
        raise ReentrantCallError(EngineState.PAINTING, EngineState.PAINTING)


def _document() -> BeautifulSoup:
    # Every paragraph is exactly 50 characters, i.e. one estimated line.
    body = "".join(f"<p>{'x' * 45} p{i:03d}</p>" for i in range(PARAGRAPHS))
    return BeautifulSoup(f"<div>{body}</div>", "html.parser")


def _setup(
    config: EngineConfig,
    scheduler: ManualFrameScheduler | None = None,
) -> tuple[BeautifulSoup, SoupTree, VirtualAnnotationRenderer, list[Annotation]]:
    soup = _document()
    tree = SoupTree(config)
    codec = SpanCodec(tree)
    resolver = AnchorResolver(codec, TextFallbackMatcher(tree))
    annotations: list[Annotation] = []
    for i, p in enumerate(soup.div.find_all("p")):
        text = p.contents[0]
        position = codec.serialize(Span(Boundary(text, 46), Boundary(text, 50)), soup.div)
        annotations.append(Annotation(id=f"a{i:03d}", position=position, text=f"p{i:03d}"))
    renderer = VirtualAnnotationRenderer(
        soup.div,
        resolver=resolver,
        painter=SpanPainter(tree),
        scheduler=scheduler or ManualFrameScheduler(),
        config=config,
    )
    renderer.set_annotations(annotations)
    return soup, tree, renderer, annotations


def _ids(*indexes: int) -> frozenset[str]:
    return frozenset(f"a{i:03d}" for i in indexes)


def _synthetic(count: int, spacing: int) -> list[Annotation]:
    path = parse_path("/p[1]/text()[1]")
    return [
        Annotation(
            id=f"s{i}",
            position=Position(start=PathPoint(path, 0), end=PathPoint(path, 1), text_offset=i * spacing),
            text="x",
        )
        for i in range(count)
    ]


class TestVisibleRange:
    def test_range_within_buffered_viewport(self) -> None:
        config = EngineConfig(buffer_factor=5.0)
        renderer = VirtualAnnotationRenderer(
            None,
            resolver=None,
            painter=None,
            scheduler=ManualFrameScheduler(),
            config=config,
        )
        annotations = _synthetic(100, 500)
        renderer.set_annotations(list(reversed(annotations)))
        viewport = Viewport(scroll_top=2800.0, viewport_height=280.0)
        visible = renderer.compute_visible_range(viewport)
        # estimate(i) = (i * 500 // 50) * 28 = 280 * i; window is [1400, 4480]
        assert (visible.start_index, visible.end_index) == (5, 17)
        assert len(visible) == 12
        low, high = 2800.0 - 1400.0, 2800.0 + 280.0 + 1400.0
        for i in range(visible.start_index, visible.end_index):
            assert low <= renderer.estimate_position(annotations[i]) <= high
        assert renderer.estimate_position(annotations[4]) < low
        assert renderer.estimate_position(annotations[17]) > high

    def test_top_of_document(self) -> None:
        renderer = VirtualAnnotationRenderer(
            None, resolver=None, painter=None, scheduler=ManualFrameScheduler(),
            config=EngineConfig(buffer_factor=1.0),
        )
        renderer.set_annotations(_synthetic(10, 500))
        visible = renderer.compute_visible_range(Viewport(scroll_top=0.0, viewport_height=280.0))
        assert visible.start_index == 0
        assert visible.end_index == 3

    def test_empty(self) -> None:
        renderer = VirtualAnnotationRenderer(
            None, resolver=None, painter=None, scheduler=ManualFrameScheduler(),
        )
        assert len(renderer.compute_visible_range(Viewport(0.0, 500.0))) == 0


class TestRender:
    def test_paints_visible_on_next_frame(self) -> None:
        config = EngineConfig(buffer_factor=1.0, throttle_ms=0.0)
        soup, tree, renderer, _ = _setup(config)
        scheduler = renderer.scheduler
        renderer.render(Viewport(scroll_top=280.0, viewport_height=28.0))
        assert renderer.painted_ids == frozenset()
        assert len(renderer.queued_ids) == 4
        scheduler.run_frame()
        assert renderer.painted_ids == _ids(9, 10, 11, 12)
        assert len(tree.find_markers(soup.div)) == 4
        assert tree.find_markers(soup.div, "a010")[0].get_text() == "p010"

    def test_scroll_evicts_and_paints_delta(self) -> None:
        config = EngineConfig(buffer_factor=1.0, throttle_ms=0.0)
        soup, tree, renderer, _ = _setup(config)
        renderer.render(Viewport(scroll_top=280.0, viewport_height=28.0))
        renderer.scheduler.run_frame()
        renderer.render(Viewport(scroll_top=308.0, viewport_height=28.0))
        # 9 leaves the window immediately; 13 is queued.
        assert renderer.painted_ids == _ids(10, 11, 12)
        assert renderer.queued_ids == ("a013",)
        renderer.scheduler.run_frame()
        assert renderer.painted_ids == _ids(10, 11, 12, 13)
        assert {tree.marker_id(m) for m in tree.find_markers(soup.div)} == set(_ids(10, 11, 12, 13))

    def test_batch_size_spreads_work(self) -> None:
        config = EngineConfig(buffer_factor=1.0, throttle_ms=0.0, batch_size=3)
        _, _, renderer, _ = _setup(config)
        renderer.render(Viewport(scroll_top=280.0, viewport_height=28.0))
        renderer.scheduler.run_frame()
        assert len(renderer.painted_ids) == 3
        assert renderer.stats().queued == 1
        renderer.scheduler.run_frame()
        assert len(renderer.painted_ids) == 4

    def test_frame_budget_spreads_work(self) -> None:
        config = EngineConfig(buffer_factor=1.0, throttle_ms=0.0, frame_budget_ms=8.0)
        scheduler = ManualFrameScheduler(step_ms=5.0)
        _, _, renderer, _ = _setup(config, scheduler)
        renderer.render(Viewport(scroll_top=280.0, viewport_height=28.0))
        scheduler.run_frame()
        assert len(renderer.painted_ids) == 2
        assert scheduler.drain() == 1
        assert len(renderer.painted_ids) == 4

    def test_budget_always_allows_one_paint(self) -> None:
        config = EngineConfig(buffer_factor=1.0, throttle_ms=0.0, frame_budget_ms=1.0)
        scheduler = ManualFrameScheduler(step_ms=50.0)
        _, _, renderer, _ = _setup(config, scheduler)
        renderer.render(Viewport(scroll_top=280.0, viewport_height=28.0))
        scheduler.run_frame()
        assert len(renderer.painted_ids) == 1

    def test_throttle_coalesces_to_latest_viewport(self) -> None:
        config = EngineConfig(buffer_factor=0.0, throttle_ms=16.0)
        _, _, renderer, _ = _setup(config)
        scheduler = renderer.scheduler
        renderer.render(Viewport(scroll_top=0.0, viewport_height=28.0))
        renderer.render(Viewport(scroll_top=280.0, viewport_height=28.0))
        renderer.render(Viewport(scroll_top=560.0, viewport_height=28.0))
        scheduler.drain()
        assert renderer.painted_ids == _ids(20, 21)
        assert all(f"a{i:03d}" not in renderer.painted_ids for i in (9, 10, 11))

    def test_immediate_render_drops_stale_deferred_viewport(self) -> None:
        config = EngineConfig(buffer_factor=0.0, throttle_ms=16.0)
        _, _, renderer, _ = _setup(config)
        scheduler = renderer.scheduler
        renderer.render(Viewport(scroll_top=0.0, viewport_height=28.0))
        renderer.render(Viewport(scroll_top=280.0, viewport_height=28.0))
        scheduler.advance(20.0)
        renderer.render(Viewport(scroll_top=560.0, viewport_height=28.0))
        scheduler.drain()
        assert renderer.painted_ids == _ids(20, 21)

    def test_refused_paint_waits_for_next_frame(self) -> None:
        config = EngineConfig(buffer_factor=1.0, throttle_ms=0.0)
        _, tree, renderer, _ = _setup(config)
        refusing = RefusingPainter(tree)
        working, renderer.painter = renderer.painter, refusing
        renderer.render(Viewport(scroll_top=280.0, viewport_height=28.0))
        renderer.scheduler.run_frame()
        assert refusing.calls == 1
        assert renderer.queued_ids == tuple(sorted(_ids(9, 10, 11, 12)))
        assert renderer.scheduler.pending == 1
        renderer.painter = working
        renderer.scheduler.run_frame()
        assert renderer.painted_ids == _ids(9, 10, 11, 12)

    def test_busy_engine_defers_batch(self) -> None:
        config = EngineConfig(buffer_factor=1.0, throttle_ms=0.0)
        _, _, renderer, _ = _setup(config)
        renderer.render(Viewport(scroll_top=280.0, viewport_height=28.0))
        with renderer.status.activity(EngineState.RESOLVING):
            renderer.scheduler.run_frame()
        assert renderer.painted_ids == frozenset()
        assert renderer.scheduler.pending == 1
        renderer.scheduler.run_frame()
        assert len(renderer.painted_ids) == 4

    def test_viewport_source(self) -> None:
        config = EngineConfig(buffer_factor=1.0, throttle_ms=0.0)
        _, _, renderer, _ = _setup(config)
        with pytest.raises(ValueError):
            renderer.render()
        renderer.viewport_source = lambda: Viewport(scroll_top=280.0, viewport_height=28.0)
        renderer.render()
        renderer.scheduler.run_frame()
        assert len(renderer.painted_ids) == 4


class TestFailuresAndLifecycle:
    def test_unresolvable_marked_failed_until_invalidate(self) -> None:
        config = EngineConfig(buffer_factor=1.0, throttle_ms=0.0)
        _, _, renderer, annotations = _setup(config)
        broken = Annotation(
            id="broken",
            position=Position(
                start=PathPoint(parse_path("/p[99]/text()[1]"), 0),
                end=PathPoint(parse_path("/p[99]/text()[1]"), 2),
                text_offset=10 * 50,
            ),
            text="no such text",
        )
        renderer.set_annotations([*annotations, broken])
        viewport = Viewport(scroll_top=280.0, viewport_height=28.0)
        renderer.render(viewport)
        renderer.scheduler.drain()
        assert renderer.stats().failed == 1
        assert "broken" not in renderer.painted_ids
        renderer.render(viewport)
        assert "broken" not in renderer.queued_ids
        renderer.invalidate()
        renderer.render(viewport)
        assert "broken" in renderer.queued_ids

    def test_set_annotations_unpaints_removed(self) -> None:
        config = EngineConfig(buffer_factor=1.0, throttle_ms=0.0)
        soup, tree, renderer, annotations = _setup(config)
        renderer.render(Viewport(scroll_top=280.0, viewport_height=28.0))
        renderer.scheduler.run_frame()
        renderer.set_annotations([a for a in annotations if a.id != "a010"])
        assert "a010" not in renderer.painted_ids
        assert tree.find_markers(soup.div, "a010") == []

    def test_stats(self) -> None:
        config = EngineConfig(buffer_factor=1.0, throttle_ms=0.0)
        _, _, renderer, _ = _setup(config)
        renderer.render(Viewport(scroll_top=280.0, viewport_height=28.0))
        stats = renderer.stats()
        assert stats.total == PARAGRAPHS
        assert stats.queued == 4
        assert stats.painted == 0

    def test_destroy(self) -> None:
        config = EngineConfig(buffer_factor=1.0, throttle_ms=16.0)
        soup, tree, renderer, _ = _setup(config)
        html_before = str(soup)
        scheduler = renderer.scheduler
        renderer.render(Viewport(scroll_top=280.0, viewport_height=28.0))
        scheduler.run_frame()
        renderer.render(Viewport(scroll_top=280.0, viewport_height=28.0))
        renderer.render(Viewport(scroll_top=560.0, viewport_height=28.0))
        assert scheduler.pending == 1
        assert len(tree.find_markers(soup.div)) == 4
        renderer.destroy()
        assert scheduler.pending == 0
        assert tree.find_markers(soup.div) == []
        assert str(soup) == html_before
        assert renderer.container is None
        renderer.render(Viewport(scroll_top=0.0, viewport_height=28.0))
        assert scheduler.pending == 0
