from datetime import date

import pytest
from pydantic import ValidationError

from board_recurrence.domain.task import FireResult, GeneratedInstanceSpec, TaskRecord
from board_recurrence.errors import RecursionNotAllowedError


@pytest.fixture(scope="function")
def template() -> TaskRecord:
    return TaskRecord(
        title="Pay rent",
        description="Transfer to landlord",
        due_date=date(2024, 1, 31),
        is_recurring=True,
        recurrence_rule='{"frequency":"monthly","interval":1,"dayOfMonth":31,"endType":"never"}',
        meta={"assignee_id": "usr_1", "label_ids": ["lbl_bills"]},
    )


def test_task_defaults() -> None:
    task = TaskRecord(title="Plain task")
    assert task.id.startswith("tsk_")
    assert task.is_recurring is False
    assert task.recurrence_count == 0
    assert task.created_at.tzinfo is not None
    assert not task.is_template
    assert not task.is_instance


def test_instance_cannot_be_recurring() -> None:
    with pytest.raises(ValidationError, match="cannot itself be recurring"):
        TaskRecord(title="Child", parent_recurring_id="tsk_parent", is_recurring=True)


def test_instance_cannot_be_switched_to_recurring() -> None:
    instance = TaskRecord(title="Child", parent_recurring_id="tsk_parent")
    with pytest.raises(ValidationError, match="cannot itself be recurring"):
        instance.is_recurring = True


def test_assignment_is_validated(template: TaskRecord) -> None:
    with pytest.raises(ValidationError):
        template.recurrence_count = -1


def test_enable_recurrence_on_instance_is_rejected() -> None:
    instance = TaskRecord(title="Child", parent_recurring_id="tsk_parent")
    with pytest.raises(RecursionNotAllowedError):
        instance.enable_recurrence('{"frequency":"daily","interval":1,"endType":"never"}')
    assert instance.is_recurring is False


def test_enable_recurrence_resets_bookkeeping(template: TaskRecord) -> None:
    template.last_recurrence = date(2024, 2, 29)
    template.recurrence_count = 2

    template.enable_recurrence('{"frequency":"daily","interval":1,"endType":"never"}')
    assert template.is_template
    assert template.last_recurrence is None
    assert template.recurrence_count == 0


def test_generated_instance_spec_builds_non_recurring_task(template: TaskRecord) -> None:
    instance_spec = GeneratedInstanceSpec.for_template(template, date(2024, 2, 29))
    assert instance_spec.title == "Pay rent"
    assert instance_spec.description == "Transfer to landlord"
    assert instance_spec.parent_recurring_id == template.id

    task = instance_spec.to_task(meta=template.meta)
    assert task.due_date == date(2024, 2, 29)
    assert task.is_recurring is False
    assert task.is_instance
    assert task.meta == template.meta
    assert task.meta is not template.meta
    assert task.id != template.id


def test_fire_result_fired_flag(template: TaskRecord) -> None:
    instance_spec = GeneratedInstanceSpec.for_template(template, date(2024, 2, 29))
    assert FireResult(created=instance_spec).fired
    assert not FireResult(terminated=True).fired
    assert not FireResult().fired
