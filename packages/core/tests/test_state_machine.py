"""状态机流转单元测试

测试内容：
1. 合法流转通过
2. 非法流转被拒绝
3. 终态不可再流转
"""

import pytest
from taskweave.core.models.enums import (
    TERMINAL_STATES,
    VALID_TRANSITIONS,
    InvalidTransitionError,
    TaskStatus,
    validate_transition,
)


class TestStateMachineTransitions:
    """状态机流转验证"""

    @pytest.mark.parametrize(
        "from_status,to_status",
        [
            (TaskStatus.PENDING, TaskStatus.RUNNING),
            (TaskStatus.PENDING, TaskStatus.FAILED),
            (TaskStatus.RUNNING, TaskStatus.COMPLETED),
            (TaskStatus.RUNNING, TaskStatus.FAILED),
        ],
    )
    def test_valid_transition(self, from_status: TaskStatus, to_status: TaskStatus):
        """合法流转应通过验证"""
        assert validate_transition(from_status, to_status) is True

    @pytest.mark.parametrize(
        "from_status,to_status",
        [
            (TaskStatus.PENDING, TaskStatus.COMPLETED),
            (TaskStatus.PENDING, TaskStatus.PENDING),
            (TaskStatus.RUNNING, TaskStatus.PENDING),
            (TaskStatus.RUNNING, TaskStatus.RUNNING),
        ],
    )
    def test_invalid_transition(self, from_status: TaskStatus, to_status: TaskStatus):
        """非法流转应被拒绝"""
        assert validate_transition(from_status, to_status) is False

    def test_all_terminal_states_cannot_transition(self):
        """所有终态都不能再流转"""
        for terminal in TERMINAL_STATES:
            for target in TaskStatus:
                assert validate_transition(terminal, target) is False, (
                    f"终态 {terminal} 不应能流转到 {target}"
                )

    def test_transitions_cover_every_status(self):
        """VALID_TRANSITIONS 覆盖所有状态"""
        assert set(VALID_TRANSITIONS) == set(TaskStatus)

    def test_invalid_transition_error_message(self):
        err = InvalidTransitionError(TaskStatus.COMPLETED, TaskStatus.RUNNING)
        assert "COMPLETED" in str(err)
        assert "RUNNING" in str(err)
        assert isinstance(err, ValueError)
