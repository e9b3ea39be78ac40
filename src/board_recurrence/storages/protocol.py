from datetime import date
from typing import List, Optional, Protocol

from board_recurrence.domain.task import TaskRecord


class TaskStore(Protocol):
    async def create_task(self, task: TaskRecord) -> str:
        """Create a new task and return its ID."""
        ...

    async def get_task(self, task_id: str) -> Optional[TaskRecord]:
        """Retrieve a task by its ID."""
        ...

    async def update_task(self, task: TaskRecord) -> bool:
        """Update an existing task. Return True if successful, False otherwise."""
        ...

    async def delete_task(self, task_id: str) -> bool:
        """Delete a task by its ID. Return True if successful, False otherwise."""
        ...

    async def list_recurring_templates(self, limit: int = 100, offset: int = 0) -> List[TaskRecord]:
        """List tasks that are active recurring templates, with pagination."""
        ...

    async def list_instances(self, template_id: str, limit: int = 100) -> List[TaskRecord]:
        """List instances generated from a template, ordered by due date."""
        ...

    async def find_instance(self, template_id: str, due_date: date) -> Optional[TaskRecord]:
        """Find the instance generated from a template for a given due date."""
        ...

    async def record_firing(
        self,
        template_id: str,
        expected_last_recurrence: Optional[date],
        expected_count: int,
        instance: TaskRecord,
    ) -> bool:
        """
        Atomically advance a template's bookkeeping and insert the generated instance.

        The template's last_recurrence and recurrence_count are compared with the
        expected values and, only if both still match, set to the instance's due
        date and expected_count + 1 in the same transaction that inserts the
        instance. Return False without writing anything if the comparison fails.
        """
        ...

    async def replace_rule(self, template_id: str, serialized_rule: str) -> bool:
        """
        Overwrite the stored rule of an active template, leaving its firing
        bookkeeping untouched. Return False if no active template has the ID.
        """
        ...

    async def set_recurrence(self, task_id: str, serialized_rule: Optional[str]) -> bool:
        """
        Start a new series with the given rule, or end it when the rule is None.

        Either way last_recurrence and recurrence_count are reset. Generated
        instances are never matched. Return True if the task was updated.
        """
        ...

    async def terminate_series(self, template_id: str) -> bool:
        """Clear is_recurring on a template. Return True if the template existed."""
        ...
