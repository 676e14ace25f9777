from datetime import datetime, timedelta, timezone

from dm_core.conversation.selection import message_tokens, select_context, trim_history
from dm_core.conversation.tokens import CharRatioEstimator
from dm_core.domain.conversation import ConversationMessage


T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


def _msg(i, role="user", tokens=20, content=None, offset=None):
    return ConversationMessage(
        id=f"m{i}",
        role=role,
        content=content if content is not None else f"message {i}",
        timestamp=T0 + timedelta(seconds=i if offset is None else offset),
        tokens=tokens,
    )


def test_select_context_keeps_system_and_newest_within_budget():
    msgs = [_msg(0, role="system", tokens=10)] + [_msg(i) for i in range(1, 6)]
    selected, used = select_context(msgs, 60)
    assert [m.id for m in selected] == ["m0", "m4", "m5"]
    assert used == 50


def test_select_context_stops_at_first_message_that_does_not_fit():
    # m3 放不下之后，即使 m1 只有 1 个 token 也不会被回填
    msgs = [_msg(1, tokens=1), _msg(2, tokens=50), _msg(3, tokens=20), _msg(4, tokens=20)]
    selected, used = select_context(msgs, 45)
    assert [m.id for m in selected] == ["m3", "m4"]
    assert used == 40


def test_select_context_skips_oversized_system_message():
    msgs = [
        _msg(0, role="system", tokens=1000),
        _msg(1, role="system", tokens=5),
        _msg(2, tokens=10),
    ]
    selected, used = select_context(msgs, 20)
    assert [m.id for m in selected] == ["m1", "m2"]
    assert used == 15


def test_select_context_never_exceeds_budget_and_keeps_order():
    msgs = [_msg(i, tokens=7) for i in range(10)]
    for budget in (0, 6, 7, 20, 70, 100):
        selected, used = select_context(msgs, budget)
        assert used <= budget
        assert used == sum(m.tokens for m in selected)
        assert [m.timestamp for m in selected] == sorted(m.timestamp for m in selected)


def test_select_context_estimates_unknown_tokens():
    est = CharRatioEstimator()
    msgs = [_msg(1, tokens=None, content="x" * 9), _msg(2, tokens=None, content="y" * 8)]
    assert message_tokens(msgs[0], est) == 3
    selected, used = select_context(msgs, 4, est)
    assert [m.id for m in selected] == ["m2"]
    assert used == 2


def test_select_context_equal_timestamps_keep_insertion_order():
    msgs = [_msg(i, tokens=1, offset=0) for i in range(4)]
    selected, _ = select_context(msgs, 10)
    assert [m.id for m in selected] == ["m0", "m1", "m2", "m3"]


def test_select_context_does_not_mutate_input():
    msgs = [_msg(i) for i in range(3)]
    snapshot = list(msgs)
    select_context(msgs, 30)
    assert msgs == snapshot


def test_trim_history_keeps_system_and_most_recent():
    msgs = [_msg(0, role="system")] + [_msg(i) for i in range(1, 9)]
    trimmed = trim_history(msgs, 5)
    assert [m.id for m in trimmed] == ["m0", "m5", "m6", "m7", "m8"]


def test_trim_history_under_limit_is_noop():
    msgs = [_msg(i) for i in range(3)]
    assert trim_history(msgs, 5) == msgs


def test_trim_history_system_messages_may_exceed_limit():
    msgs = [_msg(i, role="system") for i in range(4)] + [_msg(10), _msg(11)]
    trimmed = trim_history(msgs, 3)
    assert [m.id for m in trimmed] == ["m0", "m1", "m2", "m3"]


def test_char_ratio_estimator_rounds_up():
    est = CharRatioEstimator()
    assert est.estimate("") == 0
    assert est.estimate("abcd") == 1
    assert est.estimate("abcde") == 2
