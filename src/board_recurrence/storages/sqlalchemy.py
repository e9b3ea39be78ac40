import logging
from datetime import date
from typing import Any, List, Optional

from sqlalchemy import JSON, Boolean, Column, Date, DateTime, ForeignKey, Integer, String, UniqueConstraint, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.future import select
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from board_recurrence.domain.task import TaskRecord
from board_recurrence.storages.protocol import TaskStore

logger = logging.getLogger(__name__)

Base = declarative_base()


class TaskModel(Base):
    __tablename__ = 'tasks'
    # One instance per template and date, so a repeated firing cannot duplicate an occurrence.
    __table_args__ = (
        UniqueConstraint('parent_recurring_id', 'due_date', name='uq_tasks_parent_due_date'),
    )

    id = Column(String, primary_key=True)
    title = Column(String, nullable=False)
    description = Column(String)
    due_date = Column(Date)
    is_recurring = Column(Boolean, nullable=False, default=False)
    recurrence_rule = Column(String)
    last_recurrence = Column(Date)
    recurrence_count = Column(Integer, nullable=False, default=0)
    parent_recurring_id = Column(String, ForeignKey('tasks.id'), index=True)
    created_at = Column(DateTime(timezone=True), nullable=False)
    meta = Column(JSON)


class SqlAlchemyStorage(TaskStore):
    def __init__(self, db_url: str, **engine_kwargs: Any):
        self.engine = create_async_engine(db_url, **engine_kwargs)
        self.async_session = sessionmaker(
            self.engine, class_=AsyncSession, expire_on_commit=False
        )

    async def create_tables(self):
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def dispose(self):
        await self.engine.dispose()

    async def create_task(self, task: TaskRecord) -> str:
        async with self.async_session() as session:
            session.add(self._task_to_db(task))
            await session.commit()
            return task.id

    async def get_task(self, task_id: str) -> Optional[TaskRecord]:
        async with self.async_session() as session:
            result = await session.execute(select(TaskModel).filter_by(id=task_id))
            db_task = result.scalar_one_or_none()
            if db_task:
                return self._db_to_task(db_task)
            return None

    async def update_task(self, task: TaskRecord) -> bool:
        async with self.async_session() as session:
            result = await session.execute(select(TaskModel).filter_by(id=task.id))
            db_task = result.scalar_one_or_none()
            if db_task:
                db_task.title = task.title
                db_task.description = task.description
                db_task.due_date = task.due_date
                db_task.is_recurring = task.is_recurring and task.parent_recurring_id is None
                db_task.recurrence_rule = task.recurrence_rule
                db_task.last_recurrence = task.last_recurrence
                db_task.recurrence_count = task.recurrence_count
                db_task.parent_recurring_id = task.parent_recurring_id
                db_task.meta = task.meta
                await session.commit()
                return True
            return False

    async def delete_task(self, task_id: str) -> bool:
        async with self.async_session() as session:
            result = await session.execute(select(TaskModel).filter_by(id=task_id))
            db_task = result.scalar_one_or_none()
            if db_task:
                await session.delete(db_task)
                await session.commit()
                return True
            return False

    async def list_recurring_templates(self, limit: int = 100, offset: int = 0) -> List[TaskRecord]:
        async with self.async_session() as session:
            result = await session.execute(
                select(TaskModel)
                .filter_by(is_recurring=True, parent_recurring_id=None)
                .order_by(TaskModel.created_at.asc(), TaskModel.id.asc())
                .offset(offset)
                .limit(limit)
            )
            return [self._db_to_task(db_task) for db_task in result.scalars()]

    async def list_instances(self, template_id: str, limit: int = 100) -> List[TaskRecord]:
        async with self.async_session() as session:
            result = await session.execute(
                select(TaskModel)
                .filter_by(parent_recurring_id=template_id)
                .order_by(TaskModel.due_date.asc())
                .limit(limit)
            )
            return [self._db_to_task(db_task) for db_task in result.scalars()]

    async def find_instance(self, template_id: str, due_date: date) -> Optional[TaskRecord]:
        async with self.async_session() as session:
            result = await session.execute(
                select(TaskModel).filter_by(parent_recurring_id=template_id, due_date=due_date)
            )
            db_task = result.scalars().first()
            if db_task:
                return self._db_to_task(db_task)
            return None

    async def record_firing(
        self,
        template_id: str,
        expected_last_recurrence: Optional[date],
        expected_count: int,
        instance: TaskRecord,
    ) -> bool:
        if instance.parent_recurring_id != template_id:
            raise ValueError(f"Instance {instance.id} does not belong to template {template_id}")

        stmt = (
            update(TaskModel)
            .where(
                TaskModel.id == template_id,
                TaskModel.is_recurring.is_(True),
                TaskModel.recurrence_count == expected_count,
            )
            .values(last_recurrence=instance.due_date, recurrence_count=expected_count + 1)
            .execution_options(synchronize_session=False)
        )
        if expected_last_recurrence is None:
            stmt = stmt.where(TaskModel.last_recurrence.is_(None))
        else:
            stmt = stmt.where(TaskModel.last_recurrence == expected_last_recurrence)

        async with self.async_session() as session:
            result = await session.execute(stmt)
            if result.rowcount != 1:
                await session.rollback()
                return False
            db_instance = self._task_to_db(instance)
            db_instance.is_recurring = False
            session.add(db_instance)
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                logger.warning(
                    "Instance of template %s for %s already exists",
                    template_id, instance.due_date,
                )
                return False
            return True

    async def replace_rule(self, template_id: str, serialized_rule: str) -> bool:
        async with self.async_session() as session:
            result = await session.execute(
                update(TaskModel)
                .where(TaskModel.id == template_id, TaskModel.is_recurring.is_(True))
                .values(recurrence_rule=serialized_rule)
                .execution_options(synchronize_session=False)
            )
            await session.commit()
            return result.rowcount == 1

    async def set_recurrence(self, task_id: str, serialized_rule: Optional[str]) -> bool:
        async with self.async_session() as session:
            result = await session.execute(
                update(TaskModel)
                .where(TaskModel.id == task_id, TaskModel.parent_recurring_id.is_(None))
                .values(
                    is_recurring=serialized_rule is not None,
                    recurrence_rule=serialized_rule,
                    last_recurrence=None,
                    recurrence_count=0,
                )
                .execution_options(synchronize_session=False)
            )
            await session.commit()
            return result.rowcount == 1

    async def terminate_series(self, template_id: str) -> bool:
        async with self.async_session() as session:
            result = await session.execute(
                update(TaskModel)
                .where(TaskModel.id == template_id)
                .values(is_recurring=False)
                .execution_options(synchronize_session=False)
            )
            await session.commit()
            return result.rowcount == 1

    def _task_to_db(self, task: TaskRecord) -> TaskModel:
        return TaskModel(
            id=task.id,
            title=task.title,
            description=task.description,
            due_date=task.due_date,
            is_recurring=task.is_recurring,
            recurrence_rule=task.recurrence_rule,
            last_recurrence=task.last_recurrence,
            recurrence_count=task.recurrence_count,
            parent_recurring_id=task.parent_recurring_id,
            created_at=task.created_at,
            meta=task.meta,
        )

    def _db_to_task(self, db_task: TaskModel) -> TaskRecord:
        return TaskRecord(
            id=db_task.id,
            title=db_task.title,
            description=db_task.description,
            due_date=db_task.due_date,
            is_recurring=db_task.is_recurring,
            recurrence_rule=db_task.recurrence_rule,
            last_recurrence=db_task.last_recurrence,
            recurrence_count=db_task.recurrence_count or 0,
            parent_recurring_id=db_task.parent_recurring_id,
            created_at=db_task.created_at,
            meta=db_task.meta or {},
        )


class InMemoryStorage(SqlAlchemyStorage):
    def __init__(self):
        super().__init__(
            "sqlite+aiosqlite:///:memory:",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
