import random

from storyreader.models import Word
from storyreader.readalong.word_index import WordIndex, resolve_word


HELLO_WORLD = [Word("Hello", 0, 499), Word("world", 500, 999)]


def test_resolve_hello_world_examples() -> None:
    index = WordIndex(HELLO_WORLD, "Hello world")
    assert index.resolve(250) == 0
    assert index.resolve(500) == 1
    assert index.resolve(1000) is None


def test_resolve_bounds_are_inclusive() -> None:
    index = WordIndex(HELLO_WORLD, "Hello world")
    assert index.resolve(0) == 0
    assert index.resolve(499) == 0
    assert index.resolve(999) == 1


def test_gap_between_words_resolves_to_none() -> None:
    words = [Word("one", 0, 100), Word("two", 300, 400)]
    index = WordIndex(words, "one two")
    for position in (101, 200, 299):
        assert index.resolve(position) is None
        assert resolve_word(words, position) is None


def test_position_before_first_word_is_none() -> None:
    index = WordIndex([Word("late", 500, 900)], "late")
    assert index.resolve(0) is None
    assert index.resolve(499) is None


def test_overlap_resolves_to_earliest_starting_word() -> None:
    words = [Word("a", 0, 600), Word("b", 400, 900), Word("c", 800, 1000)]
    index = WordIndex(words, "a b c")
    assert index.resolve(500) == 0
    assert index.resolve(700) == 1
    assert index.resolve(850) == 1
    assert index.resolve(950) == 2


def test_long_word_spanning_later_words_wins() -> None:
    words = [Word("long", 0, 1000), Word("x", 100, 200), Word("y", 300, 400)]
    index = WordIndex(words, "long x y")
    assert index.resolve(350) == 0


def test_resolve_is_deterministic() -> None:
    index = WordIndex(HELLO_WORLD, "Hello world")
    results = {index.resolve(742) for _ in range(10)}
    assert results == {1}


def test_binary_search_matches_linear_scan() -> None:
    rng = random.Random(7)
    words = []
    start = 0
    for i in range(60):
        start += rng.randint(0, 120)
        words.append(Word(f"w{i}", start, start + rng.randint(-20, 300)))
    index = WordIndex(words, "")
    for position in range(-10, start + 400, 7):
        assert index.resolve(position) == resolve_word(words, position)


def test_unsorted_words_fall_back_to_linear_scan() -> None:
    words = [Word("b", 500, 900), Word("a", 0, 400)]
    index = WordIndex(words, "b a")
    assert index.resolve(100) == 1
    assert index.resolve(600) == 0


def test_inverted_word_never_matches() -> None:
    words = [Word("bad", 500, 100), Word("ok", 600, 700)]
    index = WordIndex(words, "bad ok")
    assert index.resolve(300) is None
    assert index.resolve(650) == 1


def test_empty_word_list() -> None:
    index = WordIndex([], "No words here")
    assert index.resolve(0) is None
    assert index.span(0) is None
    assert index.render_segments(None) == ("No words here", "", "")


def test_spans_skip_spaces_and_punctuation() -> None:
    text = "Hello, world! Again."
    words = [Word("Hello", 0, 1), Word("world", 2, 3), Word("Again", 4, 5)]
    index = WordIndex(words, text)
    assert index.aligned
    assert index.span(0) == (0, 5)
    assert index.span(1) == (7, 12)
    assert index.span(2) == (14, 19)
    assert index.render_segments(1) == ("Hello, ", "world", "! Again.")


def test_repeated_words_map_to_successive_occurrences() -> None:
    words = [Word("la", 0, 1), Word("la", 2, 3)]
    index = WordIndex(words, "la la")
    assert index.span(0) == (0, 2)
    assert index.span(1) == (3, 5)


def test_mismatched_transcript_disables_highlighting() -> None:
    words = [Word("Hello", 0, 499), Word("planet", 500, 999)]
    index = WordIndex(words, "Hello world")
    assert not index.aligned
    assert index.resolve(600) == 1
    assert index.span(1) is None
    assert index.render_segments(1) == ("Hello world", "", "")


def test_span_out_of_range_is_none() -> None:
    index = WordIndex(HELLO_WORLD, "Hello world")
    assert index.span(None) is None
    assert index.span(5) is None
    assert index.span(-1) is None
