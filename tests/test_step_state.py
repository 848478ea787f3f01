"""
Tests for the settlement step lifecycle.
"""

from core.step_state import StepStateMachine, StepStatus


def test_happy_path_counts_attempts():
    steps = StepStateMachine()
    steps.register(0, "approve", 10)

    assert steps.transition(0, StepStatus.RUNNING)
    assert steps.transition(0, StepStatus.QUEUED, error="timeout")
    assert steps.transition(0, StepStatus.RUNNING)
    assert steps.transition(0, StepStatus.SETTLED)

    record = steps.get(0)
    assert record.attempts == 2
    assert record.last_error == "timeout"
    assert record.completed_at is not None


def test_terminal_states_are_final():
    steps = StepStateMachine()
    steps.register(0, "deposit", 10)
    steps.transition(0, StepStatus.DROPPED)
    assert not steps.transition(0, StepStatus.RUNNING)
    assert steps.get(0).status == StepStatus.DROPPED.value


def test_cannot_settle_without_running():
    steps = StepStateMachine()
    steps.register(0, "swap", 10)
    assert not steps.transition(0, StepStatus.SETTLED)
    assert not steps.transition(99, StepStatus.RUNNING)


def test_follow_ups_link_to_parent():
    steps = StepStateMachine()
    steps.register(3, "swap", 10)
    steps.register(4, "withdraw", 9, parent_key=3)
    assert steps.get(3).follow_up_keys == [4]
    assert steps.register(4, "withdraw", 1).amount == 9


def test_only_terminal_records_are_evicted():
    steps = StepStateMachine(keep_last_n=2)
    for key in range(4):
        steps.register(key, "approve", 1)
    for key in range(3):
        steps.transition(key, StepStatus.RUNNING)
        steps.transition(key, StepStatus.SETTLED)

    assert sorted(steps.steps) == [1, 2, 3]
    assert steps.get_summary()["status_breakdown"]["queued"] == 1
