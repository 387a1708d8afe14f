"""Tests for post-upload analysis and its work queue."""
import threading

import pytest
from sqlmodel import select

from analysis import (
    AnalysisJob,
    AnalysisQueue,
    AnalysisResult,
    analyze_svg,
    make_tagging_handler,
)
from database import get_session, insert_icon
from models import STATUS_PENDING, STATUS_PUBLISHED, Icon, IconTagLink, Tag

SVG = '<svg><title>Shopping cart</title><desc>Add item to basket</desc></svg>'


def make_icon(engine, name="cart", digest="0" * 32) -> int:
    with get_session(engine) as s:
        icon = insert_icon(
            s, Icon(name=name, file_name=f"{name}.svg", content_hash=digest, shard_id=0, status=STATUS_PENDING)
        )
        return icon.id


class TestAnalyzeSvg:
    def test_tags_from_name_and_text(self):
        result = analyze_svg("cart-icon_2", SVG)
        assert result.tags == ["cart", "shopping", "add", "item", "basket"]
        assert result.category == "commerce"

    def test_defaults_to_general(self):
        result = analyze_svg("zigzag", "<svg></svg>")
        assert result.tags == ["zigzag"]
        assert result.category == "general"

    def test_tag_limit(self):
        name = " ".join(f"word{chr(97 + i)}" for i in range(20))
        assert len(analyze_svg(name, "<svg/>").tags) == 10


class TestTaggingHandler:
    def test_applies_tags_and_publishes(self, engine):
        icon_id = make_icon(engine)
        handler = make_tagging_handler(engine)
        handler(AnalysisJob(icon_id, SVG))
        handler(AnalysisJob(icon_id, SVG))

        with get_session(engine) as s:
            icon = s.get(Icon, icon_id)
            assert icon.status == STATUS_PUBLISHED
            assert icon.ai_category == "commerce"
            names = s.exec(
                select(Tag.name).join(IconTagLink, Tag.id == IconTagLink.tag_id).where(IconTagLink.icon_id == icon_id)
            ).all()
            assert set(names) == {"cart", "shopping", "add", "item", "basket"}
            cart = s.exec(select(Tag).where(Tag.name == "cart")).one()
            assert cart.usage_count == 1

    def test_analyzer_failure_still_publishes(self, engine):
        icon_id = make_icon(engine)

        def broken(name, svg):
            raise RuntimeError("provider down")

        handler = make_tagging_handler(engine, analyzer=broken)
        with pytest.raises(RuntimeError):
            handler(AnalysisJob(icon_id, SVG))

        with get_session(engine) as s:
            assert s.get(Icon, icon_id).status == STATUS_PUBLISHED

    def test_missing_icon_is_ignored(self, engine):
        make_tagging_handler(engine)(AnalysisJob(9999, SVG))


class TestAnalysisQueue:
    def test_processes_jobs(self):
        seen = []
        q = AnalysisQueue(lambda job: seen.append(job.icon_id), workers=2)
        q.start()
        try:
            for i in range(10):
                q.submit(AnalysisJob(i, "<svg/>"))
            q.join()
        finally:
            q.stop()
        assert sorted(seen) == list(range(10))
        assert not q.running

    def test_retries_until_attempts_exhausted(self):
        calls = []

        def failing(job):
            calls.append(job.attempt)
            raise RuntimeError("nope")

        q = AnalysisQueue(failing, attempts=3)
        q.start()
        q.submit(AnalysisJob(1, "<svg/>"))
        q.join()
        q.stop()
        assert calls == [0, 1, 2]

    def test_retry_succeeds(self):
        lock = threading.Lock()
        calls = []

        def flaky(job):
            with lock:
                calls.append(job.attempt)
            if job.attempt == 0:
                raise RuntimeError("transient")

        q = AnalysisQueue(flaky, attempts=3)
        q.start()
        q.submit(AnalysisJob(1, "<svg/>"))
        q.join()
        q.stop()
        assert calls == [0, 1]

    def test_jobs_submitted_before_start_are_kept(self):
        seen = []
        q = AnalysisQueue(lambda job: seen.append(job.icon_id))
        q.submit(AnalysisJob(7, "<svg/>"))
        assert q.pending == 1
        q.start()
        q.join()
        q.stop()
        assert seen == [7]

    def test_rejects_bad_sizes(self):
        with pytest.raises(ValueError):
            AnalysisQueue(lambda job: None, workers=0)

    def test_result_defaults(self):
        assert AnalysisResult().tags == []
