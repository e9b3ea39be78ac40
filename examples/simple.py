import asyncio
import logging
from datetime import date

from board_recurrence import RecurrenceRule, SeriesController, TaskRecord, describe
from board_recurrence.storages.sqlalchemy import InMemoryStorage

logging.basicConfig(level=logging.INFO)


async def main():
    storage = InMemoryStorage()
    await storage.create_tables()
    controller = SeriesController(storage)

    task = TaskRecord(title="Water the plants", due_date=date(2024, 1, 1), meta={"column_id": "col_todo"})
    await storage.create_task(task)

    rule = RecurrenceRule.build("weekly", days_of_week=[1, 3], end_type="count", end_count=4)
    await controller.enable_recurrence(task.id, rule)
    print(f"Task '{task.title}' repeats: {describe(rule)}")

    while True:
        result = await controller.fire(task.id)
        if result.terminated:
            print(f"Series ended ({result.reason.value})")
            break
        print(f"Created instance due {result.created.due_date:%a %Y-%m-%d}")

    await storage.dispose()

if __name__ == "__main__":
    asyncio.run(main())
