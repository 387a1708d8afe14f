"""Post-upload icon analysis.

Uploads hand an ``AnalysisJob`` to an ``AnalysisQueue`` and return
immediately; worker threads derive tags for the icon and publish it. The
outcome of analysis never affects whether the upload itself succeeded.
"""
import logging
import queue
import re
import threading
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from sqlalchemy.engine import Engine
from sqlmodel import Session, select

from database import get_session
from models import STATUS_PUBLISHED, Icon, IconTagLink, Tag, utcnow

logger = logging.getLogger(__name__)

# Configuration
MAX_TAGS = 10
EXCLUDED_WORDS = {"icon", "icons", "svg", "img", "the", "and", "for", "with", "of", "to", "in", "on"}
CATEGORY_KEYWORDS = {
    "navigation": {"arrow", "chevron", "caret", "menu", "home", "back", "forward"},
    "people": {"user", "users", "person", "people", "avatar", "account", "profile"},
    "files": {"file", "files", "folder", "document", "doc", "archive", "download", "upload"},
    "communication": {"mail", "email", "message", "chat", "phone", "call", "bell", "notification"},
    "media": {"play", "pause", "stop", "video", "music", "camera", "image", "photo", "volume"},
    "commerce": {"cart", "shop", "shopping", "bag", "money", "wallet", "card", "price"},
    "weather": {"sun", "cloud", "rain", "snow", "wind", "storm", "moon"},
}
DEFAULT_CATEGORY = "general"

_TEXT_ELEMENT_RE = re.compile(r"<(title|desc)[^>]*>(.*?)</\1\s*>", re.IGNORECASE | re.DOTALL)
_WORD_SPLIT_RE = re.compile(r"[^a-z0-9]+")


@dataclass
class AnalysisJob:
    icon_id: int
    svg_content: str
    attempt: int = 0


@dataclass
class AnalysisResult:
    tags: List[str] = field(default_factory=list)
    category: Optional[str] = None


def extract_words(text: str) -> List[str]:
    """Split free text into lowercase tag candidates."""
    words = []
    for word in _WORD_SPLIT_RE.split(text.lower()):
        if len(word) > 1 and not word.isdigit() and word not in EXCLUDED_WORDS:
            words.append(word)
    return words


def analyze_svg(name: str, svg_content: str) -> AnalysisResult:
    """Derive tags and a category from the icon name and its <title>/<desc> text."""
    sources = [name]
    sources.extend(m.group(2) for m in _TEXT_ELEMENT_RE.finditer(svg_content))

    tags: List[str] = []
    for source in sources:
        for word in extract_words(source):
            if word not in tags:
                tags.append(word)
    tags = tags[:MAX_TAGS]

    category = DEFAULT_CATEGORY
    for candidate, keywords in CATEGORY_KEYWORDS.items():
        if keywords.intersection(tags):
            category = candidate
            break
    return AnalysisResult(tags=tags, category=category)


def get_or_create_tag(session: Session, tag_name: str) -> Tag:
    """Get existing tag or create new one."""
    tag = session.exec(select(Tag).where(Tag.name == tag_name)).first()
    if not tag:
        tag = Tag(name=tag_name)
        session.add(tag)
        session.commit()
        session.refresh(tag)
    return tag


def apply_result(session: Session, icon: Icon, result: AnalysisResult) -> None:
    """Link result tags to the icon and publish it."""
    for tag_name in result.tags:
        tag = get_or_create_tag(session, tag_name)
        if not session.get(IconTagLink, (icon.id, tag.id)):
            session.add(IconTagLink(icon_id=icon.id, tag_id=tag.id))
            tag.usage_count += 1
    icon.ai_category = result.category
    icon.status = STATUS_PUBLISHED
    icon.updated_at = utcnow()
    session.commit()


def make_tagging_handler(
    engine: Engine, analyzer: Callable[[str, str], AnalysisResult] = analyze_svg
) -> Callable[[AnalysisJob], None]:
    """Build a queue handler that analyzes an icon and stores the result."""

    def handle(job: AnalysisJob) -> None:
        with get_session(engine) as s:
            icon = s.get(Icon, job.icon_id)
            if not icon:
                logger.warning(f"Icon {job.icon_id} vanished before analysis")
                return
            try:
                result = analyzer(icon.name, job.svg_content)
            except Exception:
                # Still publish, just without analysis data
                icon.status = STATUS_PUBLISHED
                icon.updated_at = utcnow()
                s.commit()
                raise
            apply_result(s, icon, result)
            logger.info(f"Analysis completed for icon {job.icon_id}: {result.tags}")

    return handle


class AnalysisQueue:
    """In-process work queue served by a fixed pool of daemon threads."""

    def __init__(
        self,
        handler: Callable[[AnalysisJob], None],
        workers: int = 1,
        attempts: int = 3,
    ):
        if workers <= 0 or attempts <= 0:
            raise ValueError("workers and attempts must be positive")
        self.handler = handler
        self.workers = workers
        self.attempts = attempts
        self._queue: "queue.Queue[Optional[AnalysisJob]]" = queue.Queue()
        self._threads: List[threading.Thread] = []

    @property
    def running(self) -> bool:
        return any(t.is_alive() for t in self._threads)

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def start(self) -> None:
        if self.running:
            return
        self._threads = [
            threading.Thread(target=self._work, name=f"analysis-{i}", daemon=True)
            for i in range(self.workers)
        ]
        for t in self._threads:
            t.start()
        logger.info(f"Analysis queue started with {self.workers} worker(s)")

    def submit(self, job: AnalysisJob) -> None:
        self._queue.put(job)
        logger.debug(f"Icon {job.icon_id} queued for analysis")

    def join(self) -> None:
        """Block until every submitted job, including retries, has been handled."""
        self._queue.join()

    def stop(self, timeout: float = 5.0) -> None:
        for _ in self._threads:
            self._queue.put(None)
        for t in self._threads:
            t.join(timeout)
        self._threads = []
        logger.info("Analysis queue stopped")

    def _work(self) -> None:
        while True:
            job = self._queue.get()
            try:
                if job is None:
                    return
                self._run(job)
            finally:
                self._queue.task_done()

    def _run(self, job: AnalysisJob) -> None:
        try:
            self.handler(job)
        except Exception as e:
            if job.attempt + 1 < self.attempts:
                logger.warning(
                    f"Analysis failed for icon {job.icon_id} (attempt {job.attempt + 1}): {e}"
                )
                self._queue.put(
                    AnalysisJob(job.icon_id, job.svg_content, attempt=job.attempt + 1)
                )
            else:
                logger.exception(f"Analysis failed for icon {job.icon_id}, giving up")
