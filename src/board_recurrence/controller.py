import logging
from datetime import date, timedelta
from typing import Callable, List, Optional

from pydantic import BaseModel

from board_recurrence import codec
from board_recurrence.calculator import next_occurrence, next_occurrence_on_or_after
from board_recurrence.config import RecurrenceSettings
from board_recurrence.domain.rule import RecurrenceRule
from board_recurrence.domain.task import (
    FireResult,
    GeneratedInstanceSpec,
    SeriesState,
    TaskRecord,
    TerminationReason,
)
from board_recurrence.errors import TemplateNotFoundError
from board_recurrence.storages.protocol import TaskStore

logger = logging.getLogger(__name__)

# Reasons that end a live series and are written back to the template.
_PERSISTED_TERMINATIONS = {
    TerminationReason.COUNT_EXHAUSTED,
    TerminationReason.END_DATE_PASSED,
    TerminationReason.NO_NEXT_OCCURRENCE,
}


class FirePlan(BaseModel):
    """
    Decision for one firing attempt, computed without touching storage.
    """
    state: SeriesState
    next_occurrence: Optional[date] = None
    reason: Optional[TerminationReason] = None

    @classmethod
    def terminated(cls, reason: TerminationReason) -> "FirePlan":
        return cls(state=SeriesState.TERMINATED, reason=reason)


def plan_firing(template: TaskRecord, *, today: date, catch_up: bool = False) -> FirePlan:
    """
    Decide whether a template fires and, if so, for which date.

    Args:
        template: The template task with its current bookkeeping.
        today: Current date, used as the anchor when the template has no dates
            and as the lower bound when catching up.
        catch_up: Skip occurrences that fall before today.

    Returns:
        An ACTIVE plan carrying the next occurrence, or a TERMINATED plan with the reason.
    """
    if not template.is_template:
        return FirePlan.terminated(TerminationReason.NOT_RECURRING)

    rule = codec.parse(template.recurrence_rule)
    if rule is None:
        return FirePlan.terminated(TerminationReason.INVALID_RULE)

    end_count = rule.end_count
    if end_count is not None and template.recurrence_count >= end_count:
        return FirePlan.terminated(TerminationReason.COUNT_EXHAUSTED)

    if catch_up:
        upcoming = next_occurrence_on_or_after(rule, template.due_date, template.last_recurrence, today)
    else:
        upcoming = next_occurrence(rule, template.due_date, template.last_recurrence, today=today)
    if upcoming is None:
        return FirePlan.terminated(TerminationReason.NO_NEXT_OCCURRENCE)

    end_date = rule.end_date
    if end_date is not None and upcoming > end_date:
        return FirePlan.terminated(TerminationReason.END_DATE_PASSED)

    return FirePlan(state=SeriesState.ACTIVE, next_occurrence=upcoming)


class SeriesController:
    """
    Fires recurring templates and keeps their bookkeeping.

    Firing bookkeeping is only written through the task store's compare-and-set
    `record_firing`, so two concurrent firings of the same template create at
    most one instance for an occurrence. Rule edits write the rule column alone.
    """

    def __init__(
        self,
        storage: TaskStore,
        settings: Optional[RecurrenceSettings] = None,
        clock: Callable[[], date] = date.today,
    ):
        self.storage: TaskStore = storage
        self.settings: RecurrenceSettings = settings or RecurrenceSettings()
        self.clock: Callable[[], date] = clock

    async def _get_task_or_raise(self, task_id: str) -> TaskRecord:
        task = await self.storage.get_task(task_id)
        if task is None:
            raise TemplateNotFoundError(task_id)
        return task

    async def fire(self, template_id: str, today: Optional[date] = None) -> FireResult:
        """
        Fire a template once: create the next instance or report the series as terminated.

        Raises:
            TemplateNotFoundError: If no task has the given ID.
        """
        template = await self._get_task_or_raise(template_id)
        today = today or self.clock()
        plan = plan_firing(template, today=today, catch_up=self.settings.catch_up_missed)
        return await self._apply(template, plan)

    async def _apply(self, template: TaskRecord, plan: FirePlan) -> FireResult:
        if plan.state == SeriesState.TERMINATED:
            if plan.reason == TerminationReason.INVALID_RULE:
                logger.warning("Task %s has an unreadable recurrence rule; treating it as not recurring", template.id)
            elif plan.reason in _PERSISTED_TERMINATIONS:
                await self.storage.terminate_series(template.id)
                logger.info("Series %s terminated: %s", template.id, plan.reason.value)
            return FireResult(terminated=True, reason=plan.reason)

        instance_spec = GeneratedInstanceSpec.for_template(template, plan.next_occurrence)
        instance = instance_spec.to_task(meta=template.meta)
        recorded = await self.storage.record_firing(
            template.id,
            expected_last_recurrence=template.last_recurrence,
            expected_count=template.recurrence_count,
            instance=instance,
        )
        if not recorded:
            logger.warning("Series %s was fired concurrently; skipping %s", template.id, instance_spec.due_date)
            return FireResult()

        template.last_recurrence = instance_spec.due_date
        template.recurrence_count += 1
        logger.info("Series %s fired: instance %s due %s", template.id, instance.id, instance_spec.due_date)
        return FireResult(created=instance_spec, instance_id=instance.id)

    async def generate_due(self, today: Optional[date] = None, batch_size: int = 100) -> List[FireResult]:
        """
        Sweep all recurring templates and fire those whose next occurrence falls
        within the lookahead window.

        Returns:
            Results for every instance created and every series terminated.
        """
        today = today or self.clock()
        horizon = today + timedelta(days=self.settings.lookahead_days)
        results: List[FireResult] = []

        templates: List[TaskRecord] = []
        offset = 0
        while True:
            batch = await self.storage.list_recurring_templates(limit=batch_size, offset=offset)
            templates.extend(batch)
            if len(batch) < batch_size:
                break
            offset += batch_size

        for template in templates:
            try:
                result = await self._generate_for(template, today, horizon)
            except Exception:
                # Failures are per series; the sweep moves on to the next template.
                logger.exception("Failed to generate instances for series %s", template.id)
                continue
            if result is not None and (result.fired or result.terminated):
                results.append(result)

        logger.info("Recurrence sweep for %s created %d instance(s)", today, sum(1 for r in results if r.fired))
        return results

    async def _generate_for(self, template: TaskRecord, today: date, horizon: date) -> Optional[FireResult]:
        plan = plan_firing(template, today=today, catch_up=self.settings.catch_up_missed)
        logger.debug("Planned series %s: %s %s", template.id, plan.state.value, plan.next_occurrence or plan.reason)
        if plan.state == SeriesState.ACTIVE:
            if plan.next_occurrence > horizon:
                return None
            if await self.storage.find_instance(template.id, plan.next_occurrence):
                logger.warning(
                    "Series %s already has an instance for %s; skipping",
                    template.id, plan.next_occurrence,
                )
                return None
        return await self._apply(template, plan)

    async def enable_recurrence(
        self, task_id: str, rule: Optional[RecurrenceRule] = None, today: Optional[date] = None
    ) -> RecurrenceRule:
        """
        Turn a task into a recurring template. Without a rule, the default weekly
        rule on the task's due date weekday is used.

        Raises:
            TemplateNotFoundError: If no task has the given ID.
            RecursionNotAllowedError: If the task is a generated instance.
        """
        task = await self._get_task_or_raise(task_id)
        if rule is None:
            rule = codec.create_default(task.due_date, today=today or self.clock())
        serialized = codec.stringify(rule)
        task.enable_recurrence(serialized)
        await self.storage.set_recurrence(task_id, serialized)
        return rule

    async def update_rule(self, task_id: str, rule: RecurrenceRule) -> None:
        """
        Replace a template's rule wholesale. A task that is not recurring yet is
        enabled with the new rule.

        Only the rule column is written for an active template, so a firing that
        lands between the read and the write keeps its bookkeeping.
        """
        task = await self._get_task_or_raise(task_id)
        serialized = codec.stringify(rule)
        if task.is_recurring and await self.storage.replace_rule(task_id, serialized):
            return
        task.enable_recurrence(serialized)
        await self.storage.set_recurrence(task_id, serialized)

    async def disable_recurrence(self, task_id: str) -> None:
        await self._get_task_or_raise(task_id)
        await self.storage.set_recurrence(task_id, None)

    async def list_instances(self, template_id: str, limit: int = 100) -> List[TaskRecord]:
        return await self.storage.list_instances(template_id, limit)
