"""Tests for stop-sequence detection across fragment boundaries."""

from docent_llm.core.stop_sequences import StopSequenceMatcher


def test_match_split_across_fragments():
    """"ab", "ST", "OP" matches STOP on the third fragment."""
    matcher = StopSequenceMatcher(["STOP"])

    assert matcher.feed("ab") is False
    assert matcher.feed("ST") is False
    assert matcher.feed("OP") is True
    assert matcher.matched == "STOP"


def test_match_inside_single_fragment():
    matcher = StopSequenceMatcher(["<|im_end|>"])

    assert matcher.feed("done<|im_end|>tail") is True


def test_no_match():
    matcher = StopSequenceMatcher(["<|im_start|>", "<|im_end|>"])

    for fragment in ["The", " painting", " is", " blue", "."]:
        assert matcher.feed(fragment) is False
    assert matcher.matched is None


def test_tail_is_bounded():
    matcher = StopSequenceMatcher(["STOP"], window=8)

    matcher.feed("0123456789")
    matcher.feed("abcdef")

    assert matcher.tail == "89abcdef"


def test_window_never_smaller_than_longest_stop():
    matcher = StopSequenceMatcher(["<|im_start|>"], window=2)

    assert matcher.window == len("<|im_start|>")
    for char in "<|im_start|>":
        matched = matcher.feed(char)
    assert matched is True


def test_match_is_sticky_until_reset():
    matcher = StopSequenceMatcher(["STOP"])
    matcher.feed("STOP")

    assert matcher.feed("more") is True

    matcher.reset()
    assert matcher.matched is None
    assert matcher.tail == ""
    assert matcher.feed("more") is False


def test_empty_stop_sequences_ignored():
    matcher = StopSequenceMatcher(["", "END"])

    assert matcher.stop_sequences == ("END",)
    assert matcher.feed("anything") is False
