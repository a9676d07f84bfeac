"""WorkflowRegistry 单元测试"""

import pytest
from taskweave.core.models import TaskType, WorkflowResult
from taskweave.worker.errors import (
    RegistryFrozenError,
    WorkflowAlreadyRegisteredError,
    WorkflowNotRegisteredError,
)


async def _noop(task):
    return WorkflowResult.completed()


class TestWorkflowRegistry:
    def test_register_and_get(self, registry):
        registry.register(TaskType.ENTRY_TAGGING, _noop)
        assert registry.get_workflow(TaskType.ENTRY_TAGGING) is _noop
        assert registry.get_workflow("ENTRY_TAGGING") is _noop
        assert registry.has_workflow("ENTRY_TAGGING") is True

    def test_missing_raises(self, registry):
        with pytest.raises(WorkflowNotRegisteredError) as exc_info:
            registry.get_workflow(TaskType.ENTRY_ENRICHMENT)
        assert str(exc_info.value) == "No workflow registered for task type: ENTRY_ENRICHMENT"

    def test_unknown_type_lookup(self, registry):
        assert registry.has_workflow("NOT_A_TYPE") is False
        with pytest.raises(WorkflowNotRegisteredError):
            registry.get_workflow("NOT_A_TYPE")

    def test_unknown_type_register_rejected(self, registry):
        with pytest.raises(ValueError):
            registry.register("NOT_A_TYPE", _noop)

    def test_duplicate_rejected(self, registry):
        registry.register(TaskType.SYNC, _noop)
        with pytest.raises(WorkflowAlreadyRegisteredError):
            registry.register(TaskType.SYNC, _noop)

    def test_frozen(self, registry):
        registry.register(TaskType.SYNC, _noop)
        registry.freeze()
        assert registry.frozen is True
        with pytest.raises(RegistryFrozenError):
            registry.register(TaskType.TAGGING, _noop)
        # 冻结后仍可查询
        assert registry.get_workflow(TaskType.SYNC) is _noop

    def test_missing_types(self, registry):
        registry.register(TaskType.SYNC, _noop)
        missing = registry.missing_types()
        assert TaskType.SYNC not in missing
        assert len(missing) == len(TaskType) - 1
        assert registry.registered_types() == {TaskType.SYNC}
