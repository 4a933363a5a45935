import pytest

from roadmapper.cancellation import PAUSE_REASON, CancellationToken, GenerationInterrupted


def test_hard_stop_replaces_a_pause() -> None:
    token = CancellationToken()
    token.cancel(PAUSE_REASON)
    assert token.paused_only is True

    token.cancel("removed")

    assert token.reason == "removed"
    assert token.paused_only is False
    with pytest.raises(GenerationInterrupted, match="removed"):
        token.raise_if_cancelled()


def test_pause_never_softens_a_hard_stop() -> None:
    token = CancellationToken()
    token.cancel("cleared")
    token.cancel(PAUSE_REASON)

    assert token.reason == "cleared"
    assert token.paused_only is False


def test_clear_resets_the_token() -> None:
    token = CancellationToken()
    assert token.paused_only is False
    token.cancel(PAUSE_REASON)
    token.clear()

    assert token.cancelled is False
    assert token.reason is None
    token.raise_if_cancelled()
