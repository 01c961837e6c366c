"""
Persistence collaborator used by the ingestion pipeline and the routes.

Every function opens its own short session, so callers in async code
wrap them with ``run_in_threadpool``.
"""
import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Iterable, Optional

from sqlalchemy import case, func, select

from agentdesk.db.base import SessionLocal
from agentdesk.db.models import Agent, Task, Upload

logger = logging.getLogger(__name__)

TASK_STATUSES = ("pending", "in-progress", "completed")
UPLOAD_STATUSES = ("processing", "success", "failed")

def _now() -> datetime:
    return datetime.now(timezone.utc)

# ─── Serializers ─────────────────────────────────────────────────────────────

def agent_to_dict(agent: Agent) -> dict[str, Any]:
    return {
        "id": agent.id,
        "name": agent.name,
        "email": agent.email,
        "mobile": agent.mobile,
        "status": agent.status,
    }

def task_to_dict(task: Task) -> dict[str, Any]:
    return {
        "id": task.id,
        "first_name": task.first_name,
        "phone": task.phone,
        "notes": task.notes,
        "agent_id": task.agent_id,
        "upload_id": task.upload_id,
        "status": task.status,
        "completed_at": task.completed_at,
        "category": task.category,
        "category_source": task.category_source,
        "categorized_at": task.categorized_at,
        "category_confidence": task.category_confidence,
        "created_at": task.created_at,
    }

def upload_to_dict(upload: Upload) -> dict[str, Any]:
    return {
        "id": upload.id,
        "filename": upload.filename,
        "file_size": upload.file_size,
        "mime_type": upload.mime_type,
        "uploaded_by": upload.uploaded_by,
        "status": upload.status,
        "row_count": upload.row_count,
        "tasks_created": upload.tasks_created,
        "error_message": upload.error_message,
        "processing_time_ms": upload.processing_time_ms,
        "created_at": upload.created_at,
        "updated_at": upload.updated_at,
    }


class Repository:
    """Find / insert / update surface over Agent, Task and Upload rows."""

    def __init__(self, session_factory=SessionLocal):
        self._session_factory = session_factory

    @contextmanager
    def session(self):
        db = self._session_factory()
        try:
            yield db
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    # ─── Agents ──────────────────────────────────────────────────────────

    def list_agents(self) -> list[Agent]:
        # Ordered by id so round-robin distribution is reproducible
        with self.session() as db:
            return list(db.scalars(select(Agent).order_by(Agent.id)))

    def get_agent_by_email(self, email: str) -> Optional[Agent]:
        with self.session() as db:
            return db.scalars(select(Agent).where(Agent.email == email.lower().strip())).first()

    def create_agent(self, name: str, email: str, mobile: str, status: Optional[str] = None) -> Agent:
        with self.session() as db:
            agent = Agent(name=name, email=email.lower().strip(), mobile=mobile, status=status)
            db.add(agent)
            db.flush()
            return agent

    # ─── Tasks ───────────────────────────────────────────────────────────

    def insert_tasks(self, rows: Iterable[dict[str, Any]]) -> list[int]:
        """Bulk insert. Returns new task ids in input order."""
        with self.session() as db:
            tasks = [Task(**row) for row in rows]
            db.add_all(tasks)
            db.flush()
            return [t.id for t in tasks]

    def get_task(self, task_id: int) -> Optional[Task]:
        with self.session() as db:
            return db.get(Task, task_id)

    def get_tasks(self, task_ids: Iterable[int]) -> list[Task]:
        ids = list(task_ids)
        if not ids:
            return []
        with self.session() as db:
            return list(db.scalars(select(Task).where(Task.id.in_(ids)).order_by(Task.id)))

    def list_tasks(
        self,
        agent_id: Optional[int] = None,
        status: Optional[str] = None,
        category: Optional[str] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[Task]:
        stmt = select(Task)
        if agent_id is not None:
            stmt = stmt.where(Task.agent_id == agent_id)
        if status:
            stmt = stmt.where(Task.status == status)
        if category:
            stmt = stmt.where(Task.category == category)
        stmt = stmt.order_by(Task.id).offset(offset).limit(limit)
        with self.session() as db:
            return list(db.scalars(stmt))

    def update_task_status(self, task_id: int, status: str) -> Optional[Task]:
        if status not in TASK_STATUSES:
            raise ValueError(f"Invalid status '{status}'. Must be one of: {', '.join(TASK_STATUSES)}")
        with self.session() as db:
            task = db.get(Task, task_id)
            if task is None:
                return None
            if status == "completed":
                if task.completed_at is None:
                    task.completed_at = _now()
            else:
                task.completed_at = None
            task.status = status
            db.flush()
            return task

    def set_task_category(
        self,
        task_id: int,
        category: str,
        source: str,
        confidence: Optional[float] = None,
    ) -> Optional[Task]:
        with self.session() as db:
            task = db.get(Task, task_id)
            if task is None:
                return None
            task.category = category
            task.category_source = source
            task.category_confidence = confidence
            task.categorized_at = _now() if source in ("ai", "manual") else None
            db.flush()
            return task

    def set_category_for_tasks(self, task_ids: Iterable[int], category: str) -> int:
        """Manual label for many tasks. Returns the number of rows touched."""
        ids = list(task_ids)
        if not ids:
            return 0
        with self.session() as db:
            tasks = list(db.scalars(select(Task).where(Task.id.in_(ids))))
            now = _now()
            for task in tasks:
                task.category = category
                task.category_source = "manual"
                task.category_confidence = None
                task.categorized_at = now
            return len(tasks)

    def apply_categories(self, updates: Iterable[tuple[int, str, str, Optional[float]]]) -> int:
        """Write ``(task_id, category, source, confidence)`` results in one transaction."""
        by_id = {task_id: rest for task_id, *rest in updates}
        if not by_id:
            return 0
        with self.session() as db:
            tasks = list(db.scalars(select(Task).where(Task.id.in_(list(by_id)))))
            now = _now()
            for task in tasks:
                category, source, confidence = by_id[task.id]
                task.category = category
                task.category_source = source
                task.category_confidence = confidence
                task.categorized_at = now if source in ("ai", "manual") else None
            return len(tasks)

    def category_stats(self, agent_id: Optional[int] = None) -> list[dict[str, Any]]:
        stmt = select(
            Task.category,
            func.count(Task.id),
            func.sum(case((Task.status == "completed", 1), else_=0)),
            func.sum(case((Task.status == "pending", 1), else_=0)),
            func.sum(case((Task.status == "in-progress", 1), else_=0)),
        ).group_by(Task.category)
        if agent_id is not None:
            stmt = stmt.where(Task.agent_id == agent_id)
        with self.session() as db:
            rows = db.execute(stmt).all()
        stats = [
            {
                "category": category,
                "count": int(count or 0),
                "completed": int(completed or 0),
                "pending": int(pending or 0),
                "in_progress": int(in_progress or 0),
            }
            for category, count, completed, pending, in_progress in rows
        ]
        stats.sort(key=lambda s: s["count"], reverse=True)
        return stats

    # ─── Uploads ─────────────────────────────────────────────────────────

    def create_upload(
        self,
        filename: str,
        file_size: int,
        uploaded_by: str,
        mime_type: Optional[str] = None,
    ) -> Upload:
        with self.session() as db:
            upload = Upload(
                filename=filename,
                file_size=file_size,
                mime_type=mime_type,
                uploaded_by=uploaded_by,
                status="processing",
            )
            db.add(upload)
            db.flush()
            return upload

    def update_upload(self, upload_id: int, **fields: Any) -> Optional[Upload]:
        with self.session() as db:
            upload = db.get(Upload, upload_id)
            if upload is None:
                logger.warning(f"Upload {upload_id} not found for update")
                return None
            for key, value in fields.items():
                setattr(upload, key, value)
            db.flush()
            return upload

    def list_uploads(self, uploaded_by: Optional[str] = None, limit: int = 50) -> list[Upload]:
        stmt = select(Upload)
        if uploaded_by:
            stmt = stmt.where(Upload.uploaded_by == uploaded_by)
        stmt = stmt.order_by(Upload.id.desc()).limit(limit)
        with self.session() as db:
            return list(db.scalars(stmt))
