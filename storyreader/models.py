"""
Article Model

Immutable article, page and time-coded word records.
Parses the article JSON served by the content API and writes it back
with the same field names.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import urljoin

from storyreader.exceptions import ArticleLoadError
from storyreader.utils import logger


def resolve_asset(ref: Optional[str], base_url: Optional[str]) -> Optional[str]:
    """Resolve a relative asset path against the asset host or directory.

    ``base_url`` is either an http(s) host or a local directory (articles
    loaded from disk). Absolute URLs and absolute paths pass through
    unchanged; empty values become None.
    """
    if ref is None:
        return None
    ref = str(ref).strip()
    if not ref:
        return None
    if _is_url(ref) or not base_url:
        return ref
    if _is_url(base_url):
        if not base_url.endswith("/"):
            base_url += "/"
        return urljoin(base_url, ref.lstrip("/"))
    if Path(ref).is_absolute():
        return ref
    return str(Path(base_url) / ref)


def _is_url(value: str) -> bool:
    return value.startswith(("http://", "https://"))


@dataclass(frozen=True)
class Word:
    """A transcript token with its offsets into the page audio."""

    text: str
    start_ms: int
    end_ms: int

    def to_dict(self) -> Dict[str, Any]:
        return {"word": self.text, "wb": self.start_ms, "we": self.end_ms}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Word":
        if not isinstance(data, dict):
            raise ArticleLoadError(f"Malformed word entry {data!r}: expected an object")
        try:
            return cls(
                text=str(data.get("word", "")),
                start_ms=int(data["wb"]),
                end_ms=int(data["we"]),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise ArticleLoadError(f"Malformed word entry {data!r}: {e}") from e


@dataclass(frozen=True)
class Page:
    """One illustrated page with its transcript and optional narration."""

    index: int
    image_ref: Optional[str]
    audio_ref: Optional[str]
    transcript: str
    words: Tuple[Word, ...] = ()
    declared_duration_ms: Optional[int] = None  # From the API, informative only
    page_number: Optional[int] = None

    @property
    def has_audio(self) -> bool:
        return bool(self.audio_ref)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON export."""
        duration = None
        if self.declared_duration_ms is not None:
            duration = round(self.declared_duration_ms / 1000)
        return {
            "pageNum": self.page_number if self.page_number is not None else self.index + 1,
            "imgUrl": self.image_ref or "",
            "audioUrl": self.audio_ref or "",
            "audioDuration": duration,
            "sentence": self.transcript,
            "sentenceByXFList": [w.to_dict() for w in self.words],
        }

    @classmethod
    def from_dict(
        cls,
        data: Dict[str, Any],
        index: int,
        asset_base_url: Optional[str] = None,
    ) -> "Page":
        if not isinstance(data, dict):
            raise ArticleLoadError(f"Malformed page {index + 1}: expected an object, got {data!r}")
        entries = data.get("sentenceByXFList") or []
        if not isinstance(entries, list):
            raise ArticleLoadError(f"Page {index + 1}: sentenceByXFList must be a list")
        words = tuple(Word.from_dict(w) for w in entries)

        inverted = [w for w in words if w.start_ms > w.end_ms]
        if inverted:
            logger.warning(
                f"Page {index + 1}: {len(inverted)} word(s) end before they start; "
                "they will never be highlighted"
            )

        duration = data.get("audioDuration")
        declared_ms = None
        if duration not in (None, ""):
            try:
                declared_ms = int(float(duration) * 1000)
            except (TypeError, ValueError):
                declared_ms = None

        return cls(
            index=index,
            image_ref=resolve_asset(data.get("imgUrl"), asset_base_url),
            audio_ref=resolve_asset(data.get("audioUrl"), asset_base_url),
            transcript=str(data.get("sentence") or ""),
            words=words,
            declared_duration_ms=declared_ms if declared_ms and declared_ms > 0 else None,
            page_number=data.get("pageNum"),
        )


@dataclass(frozen=True)
class Article:
    """A complete article. Replaced wholesale on every load."""

    title: str
    pages: Tuple[Page, ...] = field(default_factory=tuple)
    article_id: Optional[int] = None
    cover_ref: Optional[str] = None

    def __len__(self) -> int:
        return len(self.pages)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON export."""
        return {
            "id": self.article_id,
            "title": self.title,
            "cover": self.cover_ref or "",
            "contentList": [p.to_dict() for p in self.pages],
        }

    @classmethod
    def from_dict(
        cls,
        data: Dict[str, Any],
        asset_base_url: Optional[str] = None,
    ) -> "Article":
        """Build an article from API JSON.

        Accepts either the bare article object or the API envelope
        ``{"code": 0, "msg": ..., "data": {...}}``.
        """
        if not isinstance(data, dict):
            raise ArticleLoadError("Article JSON must be an object")

        if "code" in data and "contentList" not in data:
            if data.get("code") != 0:
                raise ArticleLoadError(str(data.get("msg") or f"Server returned code {data.get('code')}"))
            data = data.get("data")
            if not isinstance(data, dict):
                raise ArticleLoadError("Article response has no data")

        content: List[Dict[str, Any]] = data.get("contentList") or []
        if not isinstance(content, list):
            raise ArticleLoadError("contentList must be a list")

        pages = tuple(
            Page.from_dict(item, index, asset_base_url)
            for index, item in enumerate(content)
        )

        return cls(
            title=str(data.get("title") or "Untitled"),
            pages=pages,
            article_id=data.get("id"),
            cover_ref=resolve_asset(data.get("cover"), asset_base_url),
        )
