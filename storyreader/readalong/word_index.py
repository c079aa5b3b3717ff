"""
Word Index Module

Maps a playback position to the word being spoken, and a word to its
character span in the page transcript.
"""

from bisect import bisect_left, bisect_right
from typing import List, Optional, Sequence, Tuple

from storyreader.models import Word
from storyreader.utils import logger


def resolve_word(words: Sequence[Word], position_ms: int) -> Optional[int]:
    """
    Return the index of the first word whose interval contains the position.

    Intervals are inclusive on both ends. Gaps between words and positions
    past the last word resolve to None; the nearest word is never
    substituted.

    Args:
        words: Words in transcript order (overlaps allowed)
        position_ms: Playback offset in milliseconds

    Returns:
        Word index, or None when no word is being spoken
    """
    for i, word in enumerate(words):
        if word.start_ms <= position_ms <= word.end_ms:
            return i
    return None


class WordIndex:
    """
    Search structure over one page's time-coded words.

    Built once per page and shared read-only. ``resolve`` runs on every
    poll tick, so it is a pair of binary searches over precomputed keys:
    word starts, and the running maximum of word ends. The first word
    with ``end >= p`` is the first index where that running maximum
    reaches ``p``; it matches if it also started at or before ``p``.
    """

    def __init__(self, words: Sequence[Word], transcript: str = ""):
        self.words: Tuple[Word, ...] = tuple(words)
        self.transcript = transcript or ""

        self._starts: List[int] = [w.start_ms for w in self.words]
        self._sorted = all(
            a <= b for a, b in zip(self._starts, self._starts[1:])
        )
        if not self._sorted:
            logger.warning(
                "Word timings are not ordered by start time; "
                "falling back to a linear scan"
            )

        self._max_ends: List[int] = []
        running = None
        for word in self.words:
            running = word.end_ms if running is None else max(running, word.end_ms)
            self._max_ends.append(running)

        self._spans = self._align_spans()

    def __len__(self) -> int:
        return len(self.words)

    @property
    def aligned(self) -> bool:
        """True when every word could be located in the transcript."""
        return self._spans is not None

    def resolve(self, position_ms: int) -> Optional[int]:
        """Return the index of the word spoken at ``position_ms``, if any."""
        if not self.words:
            return None
        if not self._sorted:
            return resolve_word(self.words, position_ms)

        # Words that started at or before the position are [0, started)
        started = bisect_right(self._starts, position_ms)
        if started == 0:
            return None
        first_open = bisect_left(self._max_ends, position_ms)
        if first_open < started:
            return first_open
        return None

    def span(self, word_index: Optional[int]) -> Optional[Tuple[int, int]]:
        """
        Character span ``(start, end)`` of a word inside the transcript.

        Returns None when nothing is highlighted, the index is out of
        range, or the words do not line up with the transcript text.
        """
        if word_index is None or self._spans is None:
            return None
        if not 0 <= word_index < len(self._spans):
            return None
        return self._spans[word_index]

    def render_segments(self, word_index: Optional[int]) -> Tuple[str, str, str]:
        """Split the transcript into ``(before, highlighted, after)``."""
        span = self.span(word_index)
        if span is None:
            return self.transcript, "", ""
        start, end = span
        text = self.transcript
        return text[:start], text[start:end], text[end:]

    def _align_spans(self) -> Optional[List[Tuple[int, int]]]:
        """
        Locate each word in the transcript, left to right.

        Anything between two words (spaces, punctuation the tokenizer
        dropped) is skipped. If a word cannot be found after the previous
        one the page is treated as unaligned.
        """
        if not self.words:
            return []

        spans: List[Tuple[int, int]] = []
        cursor = 0
        for i, word in enumerate(self.words):
            token = word.text
            if not token:
                spans.append((cursor, cursor))
                continue
            found = self.transcript.find(token, cursor)
            if found < 0:
                logger.debug(
                    f"Word {i} ({token!r}) not found in transcript after "
                    f"offset {cursor}; highlighting disabled for this page"
                )
                return None
            spans.append((found, found + len(token)))
            cursor = found + len(token)
        return spans
