"""
Display callbacks for the playback coordinator.

Subclass ``PlaybackListener`` and override the hooks you need; the
defaults do nothing.
"""

from typing import Optional, Tuple

from storyreader.models import Article, Page


class PlaybackListener:
    """Receives state changes from a ``PagePlaybackCoordinator``."""

    def on_article_loaded(self, article: Article) -> None:
        pass

    def on_progress(self, current_page_number: int, total_pages: int) -> None:
        """The active page changed. Page numbers are 1-based."""
        pass

    def on_highlight(
        self,
        page: Page,
        word_index: Optional[int],
        span: Optional[Tuple[int, int]],
    ) -> None:
        """
        The highlighted word changed.

        ``span`` is the word's character range in ``page.transcript``, or
        None when nothing should be highlighted (including pages whose
        words do not line up with the transcript).
        """
        pass

    def on_playback_state(self, page_index: int, state) -> None:
        pass

    def on_overlay(self, visible_page_index: Optional[int]) -> None:
        pass

    def on_volume(self, volume: float) -> None:
        pass

    def on_message(self, text: str) -> None:
        """A one-shot message for the user (load or playback failure)."""
        pass
