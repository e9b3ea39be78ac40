from datetime import date
from typing import Optional

import pytest
import pytest_asyncio

from board_recurrence import codec
from board_recurrence.config import RecurrenceSettings
from board_recurrence.controller import SeriesController, plan_firing
from board_recurrence.domain.rule import RecurrenceRule
from board_recurrence.domain.task import SeriesState, TaskRecord, TerminationReason
from board_recurrence.errors import RecursionNotAllowedError, TemplateNotFoundError
from board_recurrence.storages.sqlalchemy import InMemoryStorage

TODAY = date(2024, 1, 1)


def make_template(rule: Optional[RecurrenceRule], due_date: Optional[date] = TODAY, **kwargs) -> TaskRecord:
    fields = {"title": "Recurring task", "due_date": due_date, "is_recurring": True}
    if rule is not None:
        fields["recurrence_rule"] = codec.stringify(rule)
    fields.update(kwargs)
    return TaskRecord(**fields)


@pytest_asyncio.fixture(scope="function")
async def storage():
    storage = InMemoryStorage()
    await storage.create_tables()
    yield storage
    await storage.dispose()


@pytest.fixture(scope="function")
def controller(storage: InMemoryStorage) -> SeriesController:
    return SeriesController(storage, clock=lambda: TODAY)


def test_plan_firing_active() -> None:
    template = make_template(RecurrenceRule.build("daily"), due_date=date(2024, 1, 31))
    plan = plan_firing(template, today=TODAY)
    assert plan.state == SeriesState.ACTIVE
    assert plan.next_occurrence == date(2024, 2, 1)
    assert plan.reason is None


def test_plan_firing_terminations() -> None:
    not_recurring = TaskRecord(title="Plain", due_date=TODAY)
    assert plan_firing(not_recurring, today=TODAY).reason == TerminationReason.NOT_RECURRING

    bad_rule = make_template(None, recurrence_rule="{not json")
    assert plan_firing(bad_rule, today=TODAY).reason == TerminationReason.INVALID_RULE

    exhausted = make_template(
        RecurrenceRule.build("daily", end_type="count", end_count=2),
        recurrence_count=2,
    )
    assert plan_firing(exhausted, today=TODAY).reason == TerminationReason.COUNT_EXHAUSTED

    past_end = make_template(
        RecurrenceRule.build("daily", interval=5, end_type="date", end_date=date(2024, 6, 1)),
        due_date=date(2024, 5, 31),
    )
    plan = plan_firing(past_end, today=TODAY)
    assert plan.state == SeriesState.TERMINATED
    assert plan.reason == TerminationReason.END_DATE_PASSED


def test_plan_firing_allows_occurrence_on_end_date() -> None:
    template = make_template(
        RecurrenceRule.build("daily", end_type="date", end_date=date(2024, 6, 1)),
        due_date=date(2024, 5, 31),
    )
    assert plan_firing(template, today=TODAY).next_occurrence == date(2024, 6, 1)


@pytest.mark.asyncio
async def test_fire_creates_instance_and_updates_template(storage: InMemoryStorage, controller: SeriesController) -> None:
    template = make_template(
        RecurrenceRule.build("weekly", days_of_week=[1, 3]),
        description="Stand-up notes",
        meta={"column_id": "col_todo", "assignee_id": "usr_1"},
    )
    await storage.create_task(template)

    result = await controller.fire(template.id)
    assert result.fired
    assert not result.terminated
    assert result.created.due_date == date(2024, 1, 3)
    assert result.created.parent_recurring_id == template.id
    assert result.created.title == template.title
    assert result.created.description == "Stand-up notes"

    stored = await storage.get_task(template.id)
    assert stored.last_recurrence == date(2024, 1, 3)
    assert stored.recurrence_count == 1
    assert stored.is_recurring

    instance = await storage.get_task(result.instance_id)
    assert instance.parent_recurring_id == template.id
    assert instance.is_recurring is False
    assert instance.meta == {"column_id": "col_todo", "assignee_id": "usr_1"}

    second = await controller.fire(template.id)
    assert second.created.due_date == date(2024, 1, 8)


@pytest.mark.asyncio
async def test_fire_terminates_after_count(storage: InMemoryStorage, controller: SeriesController) -> None:
    template = make_template(RecurrenceRule.build("daily", end_type="count", end_count=3))
    await storage.create_task(template)

    for _ in range(3):
        result = await controller.fire(template.id)
        assert result.fired

    fourth = await controller.fire(template.id)
    assert fourth.terminated is True
    assert fourth.created is None
    assert fourth.reason == TerminationReason.COUNT_EXHAUSTED

    instances = await controller.list_instances(template.id)
    assert [i.due_date for i in instances] == [date(2024, 1, 2), date(2024, 1, 3), date(2024, 1, 4)]
    assert all(not i.is_recurring for i in instances)

    stored = await storage.get_task(template.id)
    assert stored.is_recurring is False
    assert stored.last_recurrence == date(2024, 1, 4)

    fifth = await controller.fire(template.id)
    assert fifth.terminated is True
    assert fifth.created is None
    assert len(await controller.list_instances(template.id)) == 3


@pytest.mark.asyncio
async def test_fire_terminates_past_end_date(storage: InMemoryStorage, controller: SeriesController) -> None:
    template = make_template(
        RecurrenceRule.build("daily", interval=5, end_type="date", end_date=date(2024, 6, 1)),
        due_date=date(2024, 5, 31),
    )
    await storage.create_task(template)

    result = await controller.fire(template.id)
    assert result.terminated is True
    assert result.created is None
    assert result.reason == TerminationReason.END_DATE_PASSED
    assert await controller.list_instances(template.id) == []


@pytest.mark.asyncio
async def test_fire_with_unreadable_rule_degrades_silently(storage: InMemoryStorage, controller: SeriesController) -> None:
    template = make_template(None, recurrence_rule='{"frequency":"weekly","daysOfWeek":[]}')
    await storage.create_task(template)

    result = await controller.fire(template.id)
    assert result.terminated is True
    assert result.reason == TerminationReason.INVALID_RULE

    stored = await storage.get_task(template.id)
    assert stored.is_recurring is True
    assert stored.recurrence_rule == template.recurrence_rule


@pytest.mark.asyncio
async def test_fire_unknown_template(controller: SeriesController) -> None:
    with pytest.raises(TemplateNotFoundError, match="tsk_missing"):
        await controller.fire("tsk_missing")


@pytest.mark.asyncio
async def test_fire_on_generated_instance_is_noop(storage: InMemoryStorage, controller: SeriesController) -> None:
    template = make_template(RecurrenceRule.build("daily"))
    await storage.create_task(template)
    result = await controller.fire(template.id)

    instance_result = await controller.fire(result.instance_id)
    assert instance_result.terminated is True
    assert instance_result.reason == TerminationReason.NOT_RECURRING
    assert await controller.list_instances(result.instance_id) == []


@pytest.mark.asyncio
async def test_stale_firing_loses_compare_and_set(
    storage: InMemoryStorage, controller: SeriesController, monkeypatch: pytest.MonkeyPatch
) -> None:
    template = make_template(RecurrenceRule.build("daily"))
    await storage.create_task(template)
    stale = await storage.get_task(template.id)

    first = await controller.fire(template.id)
    assert first.fired

    async def get_stale_task(task_id: str):
        return stale.model_copy()

    monkeypatch.setattr(storage, "get_task", get_stale_task)
    second = await controller.fire(template.id)
    assert second.created is None
    assert second.terminated is False

    assert len(await storage.list_instances(template.id)) == 1


@pytest.mark.asyncio
async def test_fire_without_due_date_uses_clock(storage: InMemoryStorage, controller: SeriesController) -> None:
    template = make_template(RecurrenceRule.build("weekly", days_of_week=[1]), due_date=None)
    await storage.create_task(template)

    result = await controller.fire(template.id)
    assert result.created.due_date == date(2024, 1, 8)


@pytest.mark.asyncio
async def test_fire_with_catch_up(storage: InMemoryStorage) -> None:
    controller = SeriesController(storage, RecurrenceSettings(catch_up_missed=True), clock=lambda: TODAY)
    template = make_template(RecurrenceRule.build("daily"), due_date=date(2024, 1, 1))
    await storage.create_task(template)

    result = await controller.fire(template.id, today=date(2024, 1, 10))
    assert result.created.due_date == date(2024, 1, 10)


@pytest.mark.asyncio
async def test_generate_due(storage: InMemoryStorage, controller: SeriesController) -> None:
    soon = make_template(RecurrenceRule.build("daily"), title="Soon")
    later = make_template(RecurrenceRule.build("monthly", day_of_month=1), title="Later")
    exhausted = make_template(
        RecurrenceRule.build("daily", end_type="count", end_count=1),
        title="Exhausted",
        recurrence_count=1,
    )
    plain = TaskRecord(title="Plain", due_date=TODAY)
    for task in (soon, later, exhausted, plain):
        await storage.create_task(task)

    results = await controller.generate_due(today=TODAY)

    fired = [r for r in results if r.fired]
    terminated = [r for r in results if r.terminated]
    assert [r.created.parent_recurring_id for r in fired] == [soon.id]
    assert fired[0].created.due_date == date(2024, 1, 2)
    assert [r.reason for r in terminated] == [TerminationReason.COUNT_EXHAUSTED]

    assert await storage.list_instances(later.id) == []
    assert (await storage.get_task(exhausted.id)).is_recurring is False


@pytest.mark.asyncio
async def test_generate_due_respects_lookahead(storage: InMemoryStorage) -> None:
    controller = SeriesController(storage, RecurrenceSettings(lookahead_days=0), clock=lambda: TODAY)
    template = make_template(RecurrenceRule.build("daily"))
    await storage.create_task(template)

    assert await controller.generate_due() == []
    results = await controller.generate_due(today=date(2024, 1, 2))
    assert len(results) == 1


@pytest.mark.asyncio
async def test_generate_due_skips_existing_instance(storage: InMemoryStorage, controller: SeriesController) -> None:
    template = make_template(RecurrenceRule.build("daily"))
    await storage.create_task(template)
    await storage.create_task(TaskRecord(title=template.title, due_date=date(2024, 1, 2), parent_recurring_id=template.id))

    results = await controller.generate_due(today=TODAY)
    assert results == []
    assert len(await storage.list_instances(template.id)) == 1
    assert (await storage.get_task(template.id)).recurrence_count == 0


@pytest.mark.asyncio
async def test_enable_recurrence_with_default_rule(storage: InMemoryStorage, controller: SeriesController) -> None:
    task = TaskRecord(title="Review", due_date=date(2024, 1, 3))
    await storage.create_task(task)

    rule = await controller.enable_recurrence(task.id)
    assert rule == RecurrenceRule.build("weekly", days_of_week=[3])

    stored = await storage.get_task(task.id)
    assert stored.is_template
    assert codec.parse(stored.recurrence_rule) == rule
    assert stored.last_recurrence is None


@pytest.mark.asyncio
async def test_enable_recurrence_on_instance(storage: InMemoryStorage, controller: SeriesController) -> None:
    instance = TaskRecord(title="Child", parent_recurring_id="tsk_parent")
    await storage.create_task(instance)

    with pytest.raises(RecursionNotAllowedError):
        await controller.enable_recurrence(instance.id, RecurrenceRule.build("daily"))
    assert (await storage.get_task(instance.id)).is_recurring is False


@pytest.mark.asyncio
async def test_update_rule_replaces_rule_and_keeps_bookkeeping(storage: InMemoryStorage, controller: SeriesController) -> None:
    template = make_template(RecurrenceRule.build("daily"))
    await storage.create_task(template)
    await controller.fire(template.id)

    new_rule = RecurrenceRule.build("monthly", week_of_month=5, days_of_week=[5])
    await controller.update_rule(template.id, new_rule)

    stored = await storage.get_task(template.id)
    assert codec.parse(stored.recurrence_rule) == new_rule
    assert stored.last_recurrence == date(2024, 1, 2)
    assert stored.recurrence_count == 1


@pytest.mark.asyncio
async def test_disable_recurrence_clears_series(storage: InMemoryStorage, controller: SeriesController) -> None:
    template = make_template(RecurrenceRule.build("daily"))
    await storage.create_task(template)
    await controller.fire(template.id)

    await controller.disable_recurrence(template.id)

    stored = await storage.get_task(template.id)
    assert stored.is_recurring is False
    assert stored.recurrence_rule is None
    assert stored.last_recurrence is None
    result = await controller.fire(template.id)
    assert result.terminated is True


@pytest.mark.asyncio
async def test_generate_due_terminates_series_past_last_date(storage: InMemoryStorage, controller: SeriesController) -> None:
    runaway = make_template(RecurrenceRule.build("daily", interval=5_000_000), title="Runaway")
    healthy = make_template(RecurrenceRule.build("daily"), title="Healthy")
    await storage.create_task(runaway)
    await storage.create_task(healthy)

    results = await controller.generate_due(today=TODAY)

    assert [r.reason for r in results if r.terminated] == [TerminationReason.NO_NEXT_OCCURRENCE]
    assert [r.created.parent_recurring_id for r in results if r.fired] == [healthy.id]
    assert (await storage.get_task(runaway.id)).is_recurring is False
    assert await storage.list_instances(runaway.id) == []
    assert len(await storage.list_instances(healthy.id)) == 1


@pytest.mark.asyncio
async def test_generate_due_continues_after_failing_series(
    storage: InMemoryStorage, controller: SeriesController, monkeypatch: pytest.MonkeyPatch
) -> None:
    broken = make_template(RecurrenceRule.build("daily"), title="Broken")
    healthy = make_template(RecurrenceRule.build("daily"), title="Healthy")
    await storage.create_task(broken)
    await storage.create_task(healthy)

    find_instance = storage.find_instance

    async def failing_find_instance(template_id: str, due_date: date):
        if template_id == broken.id:
            raise RuntimeError("database hiccup")
        return await find_instance(template_id, due_date)

    monkeypatch.setattr(storage, "find_instance", failing_find_instance)
    results = await controller.generate_due(today=TODAY)

    assert [r.created.parent_recurring_id for r in results] == [healthy.id]
    assert (await storage.get_task(broken.id)).recurrence_count == 0


@pytest.mark.asyncio
async def test_update_rule_keeps_firing_that_lands_mid_edit(
    storage: InMemoryStorage, controller: SeriesController, monkeypatch: pytest.MonkeyPatch
) -> None:
    template = make_template(RecurrenceRule.build("daily"))
    await storage.create_task(template)

    get_task = storage.get_task
    reads = []
    fired = []

    async def get_task_then_fire(task_id: str):
        task = await get_task(task_id)
        reads.append(task_id)
        if len(reads) == 1:
            fired.append(await controller.fire(task_id))
        return task

    monkeypatch.setattr(storage, "get_task", get_task_then_fire)
    new_rule = RecurrenceRule.build("daily", interval=2)
    await controller.update_rule(template.id, new_rule)
    monkeypatch.undo()

    assert fired[0].created.due_date == date(2024, 1, 2)
    stored = await storage.get_task(template.id)
    assert codec.parse(stored.recurrence_rule) == new_rule
    assert stored.last_recurrence == date(2024, 1, 2)
    assert stored.recurrence_count == 1

    result = await controller.fire(template.id)
    assert result.created.due_date == date(2024, 1, 4)


@pytest.mark.asyncio
async def test_disable_recurrence_on_instance_writes_nothing(storage: InMemoryStorage, controller: SeriesController) -> None:
    template = make_template(RecurrenceRule.build("daily"))
    await storage.create_task(template)
    result = await controller.fire(template.id)

    await controller.disable_recurrence(result.instance_id)
    instance = await storage.get_task(result.instance_id)
    assert instance.is_recurring is False
    assert instance.recurrence_rule is None
    assert (await storage.get_task(template.id)).is_template
