"""
Record store for DevPulse.
Holds users, projects, tasks and analytics records behind one contract,
with three interchangeable backends:

- MemoryRecordStore: process-local dictionaries
- GistRecordStore: a single JSON document inside a private GitHub Gist
- SqlRecordStore: SQLAlchemy tables
"""

import json
import logging
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, TypeVar

import requests
from pydantic import BaseModel
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from devpulse.config import STORE_BACKENDS, Settings
from devpulse.database import create_session_factory
from devpulse.exceptions import GitHubAPIError, StoreConflictError
from devpulse.models import AnalyticsRow, ProjectRow, TaskRow, UserRow
from devpulse.schemas import AnalyticsRecord, Project, StoreDocument, Task, User, utcnow

logger = logging.getLogger(__name__)

EntityT = TypeVar("EntityT", bound=BaseModel)

# Keys an update may never overwrite
PROTECTED_FIELDS = frozenset({"id", "created_at"})


def merge_fields(entity: EntityT, fields: Dict[str, Any]) -> EntityT:
    """
    Shallow-merge fields onto entity and refresh updated_at.

    Only overlapping keys are replaced; everything else is carried over
    unchanged. Returns a new, validated instance.
    """
    merged = entity.model_dump()
    merged.update({key: value for key, value in fields.items() if key not in PROTECTED_FIELDS})
    merged["updated_at"] = utcnow()
    return type(entity).model_validate(merged)


class RecordStore(ABC):
    """
    Persistence contract for the four entity kinds.

    Every call is atomic with respect to other calls on the same store and
    returns fresh copies; mutating a returned entity never changes stored
    state. Updates of unknown ids return None instead of creating records.
    """

    backend = "abstract"

    # Users
    @abstractmethod
    def save_user(self, user: User) -> User:
        """Create the user, or overwrite the stored user with the same id."""

    @abstractmethod
    def get_user(self, user_id: str) -> Optional[User]:
        ...

    # Projects
    @abstractmethod
    def add_project(self, project: Project) -> Project:
        ...

    @abstractmethod
    def get_project(self, project_id: str) -> Optional[Project]:
        ...

    @abstractmethod
    def list_projects(self, owner_id: str) -> List[Project]:
        ...

    @abstractmethod
    def update_project(self, project_id: str, fields: Dict[str, Any]) -> Optional[Project]:
        ...

    @abstractmethod
    def delete_project(self, project_id: str) -> bool:
        """Delete the project and every task that belongs to it."""

    # Tasks
    @abstractmethod
    def add_task(self, task: Task) -> Task:
        ...

    @abstractmethod
    def get_task(self, task_id: str) -> Optional[Task]:
        ...

    @abstractmethod
    def list_tasks(self, project_id: str) -> List[Task]:
        ...

    @abstractmethod
    def update_task(self, task_id: str, fields: Dict[str, Any]) -> Optional[Task]:
        ...

    @abstractmethod
    def delete_task(self, task_id: str) -> bool:
        ...

    # Analytics
    @abstractmethod
    def add_analytics(self, record: AnalyticsRecord) -> AnalyticsRecord:
        ...

    @abstractmethod
    def list_analytics(self, project_id: str) -> List[AnalyticsRecord]:
        ...

    @abstractmethod
    def snapshot(self) -> StoreDocument:
        """The complete contents of the store."""


# ---------------------------------------------------------------------------
# In-memory backend
# ---------------------------------------------------------------------------

class MemoryRecordStore(RecordStore):
    """Dictionaries keyed by id. Data lives as long as the process."""

    backend = "memory"

    def __init__(self):
        self._lock = threading.Lock()
        self._users: Dict[str, User] = {}
        self._projects: Dict[str, Project] = {}
        self._tasks: Dict[str, Task] = {}
        self._analytics: Dict[str, AnalyticsRecord] = {}
        logger.info("Using in-memory record store (data will reset on server restart)")

    @staticmethod
    def _insert(collection: Dict[str, EntityT], entity: EntityT) -> EntityT:
        if entity.id in collection:
            raise ValueError(f"Duplicate id: {entity.id}")
        collection[entity.id] = entity.model_copy(deep=True)
        return entity.model_copy(deep=True)

    @staticmethod
    def _fetch(collection: Dict[str, EntityT], entity_id: str) -> Optional[EntityT]:
        entity = collection.get(entity_id)
        return entity.model_copy(deep=True) if entity else None

    @staticmethod
    def _merge(collection: Dict[str, EntityT], entity_id: str, fields: Dict[str, Any]) -> Optional[EntityT]:
        entity = collection.get(entity_id)
        if entity is None:
            return None
        collection[entity_id] = merge_fields(entity, fields)
        return collection[entity_id].model_copy(deep=True)

    def save_user(self, user: User) -> User:
        with self._lock:
            self._users[user.id] = user.model_copy(deep=True)
        logger.info("User saved: %s", user.username)
        return user.model_copy(deep=True)

    def get_user(self, user_id: str) -> Optional[User]:
        with self._lock:
            return self._fetch(self._users, user_id)

    def add_project(self, project: Project) -> Project:
        with self._lock:
            stored = self._insert(self._projects, project)
        logger.info("Project added: %s", project.name)
        return stored

    def get_project(self, project_id: str) -> Optional[Project]:
        with self._lock:
            return self._fetch(self._projects, project_id)

    def list_projects(self, owner_id: str) -> List[Project]:
        with self._lock:
            return [p.model_copy(deep=True) for p in self._projects.values() if p.owner_id == owner_id]

    def update_project(self, project_id: str, fields: Dict[str, Any]) -> Optional[Project]:
        with self._lock:
            return self._merge(self._projects, project_id, fields)

    def delete_project(self, project_id: str) -> bool:
        with self._lock:
            if self._projects.pop(project_id, None) is None:
                return False
            self._tasks = {tid: t for tid, t in self._tasks.items() if t.project_id != project_id}
            return True

    def add_task(self, task: Task) -> Task:
        with self._lock:
            return self._insert(self._tasks, task)

    def get_task(self, task_id: str) -> Optional[Task]:
        with self._lock:
            return self._fetch(self._tasks, task_id)

    def list_tasks(self, project_id: str) -> List[Task]:
        with self._lock:
            return [t.model_copy(deep=True) for t in self._tasks.values() if t.project_id == project_id]

    def update_task(self, task_id: str, fields: Dict[str, Any]) -> Optional[Task]:
        with self._lock:
            return self._merge(self._tasks, task_id, fields)

    def delete_task(self, task_id: str) -> bool:
        with self._lock:
            return self._tasks.pop(task_id, None) is not None

    def add_analytics(self, record: AnalyticsRecord) -> AnalyticsRecord:
        with self._lock:
            return self._insert(self._analytics, record)

    def list_analytics(self, project_id: str) -> List[AnalyticsRecord]:
        with self._lock:
            return [a.model_copy(deep=True) for a in self._analytics.values() if a.project_id == project_id]

    def snapshot(self) -> StoreDocument:
        with self._lock:
            return StoreDocument(
                projects=list(self._projects.values()),
                tasks=list(self._tasks.values()),
                users=list(self._users.values()),
                analytics=list(self._analytics.values()),
            ).model_copy(deep=True)


# ---------------------------------------------------------------------------
# Gist backend
# ---------------------------------------------------------------------------

class GistRecordStore(RecordStore):
    """
    All four collections in one JSON file of a private Gist.

    Every call downloads and parses the whole document; every write
    uploads it again. The document carries a version counter: a write
    re-reads the version just before uploading and raises
    StoreConflictError if another writer got there first. GitHub has no
    conditional Gist update, so a write landing between that check and
    the upload can still be lost; the backend assumes a single writer.
    """

    backend = "gist"

    DESCRIPTION = "DevPulse Database"
    FILENAME = "devpulse-data.json"

    def __init__(self, token: str, gist_id: Optional[str] = None, session: Optional[requests.Session] = None):
        if not token:
            raise ValueError("GITHUB_GIST_TOKEN environment variable is required for the gist store.")
        self.gist_id = gist_id
        self.base_url = "https://api.github.com"
        self.session = session or requests.Session()
        self.headers = {
            "Authorization": f"token {token}",
            "Accept": "application/vnd.github.v3+json"
        }
        self.timeout = 30  # seconds
        self._init_lock = threading.Lock()

    def _request(self, method: str, url: str, **kwargs) -> requests.Response:
        try:
            response = self.session.request(method, url, headers=self.headers, timeout=self.timeout, **kwargs)
            response.raise_for_status()
        except requests.exceptions.HTTPError as exc:
            raise GitHubAPIError(f"Gist request failed: {exc}", exc.response.status_code if exc.response is not None else None) from exc
        except requests.exceptions.RequestException as exc:
            raise GitHubAPIError(f"Gist request failed: {exc}") from exc
        return response

    def _ensure_gist(self) -> str:
        """Find the DevPulse gist by description, creating it if absent."""
        with self._init_lock:
            if self.gist_id:
                return self.gist_id

            gists = self._request("GET", f"{self.base_url}/gists").json()
            existing = next((g for g in gists if g.get("description") == self.DESCRIPTION), None)
            if existing:
                self.gist_id = existing["id"]
                logger.info("Connected to existing DevPulse gist %s", self.gist_id)
            else:
                created = self._request("POST", f"{self.base_url}/gists", json={
                    "description": self.DESCRIPTION,
                    "public": False,
                    "files": {self.FILENAME: {"content": self._serialize(StoreDocument())}},
                }).json()
                self.gist_id = created["id"]
                logger.info("Created new DevPulse gist %s", self.gist_id)
            return self.gist_id

    @staticmethod
    def _serialize(document: StoreDocument) -> str:
        return json.dumps(document.model_dump(mode="json", by_alias=True), indent=2)

    def _load(self) -> StoreDocument:
        gist_id = self._ensure_gist()
        gist = self._request("GET", f"{self.base_url}/gists/{gist_id}").json()
        file = gist["files"][self.FILENAME]
        content = file.get("content", "")
        if file.get("truncated"):
            # Files above 1 MB are only available in full from raw_url
            content = self._request("GET", file["raw_url"]).text
        return StoreDocument.model_validate(json.loads(content))

    def _save(self, document: StoreDocument) -> None:
        current = self._load().version
        if current != document.version:
            raise StoreConflictError(document.version, current)
        document.version += 1
        self._request("PATCH", f"{self.base_url}/gists/{self.gist_id}", json={
            "files": {self.FILENAME: {"content": self._serialize(document)}},
        })

    def _insert(self, collection_name: str, entity: EntityT) -> EntityT:
        document = self._load()
        collection = getattr(document, collection_name)
        if any(item.id == entity.id for item in collection):
            raise ValueError(f"Duplicate id: {entity.id}")
        collection.append(entity.model_copy(deep=True))
        self._save(document)
        return entity.model_copy(deep=True)

    def _merge(self, collection_name: str, entity_id: str, fields: Dict[str, Any]):
        document = self._load()
        collection = getattr(document, collection_name)
        for index, item in enumerate(collection):
            if item.id == entity_id:
                collection[index] = merge_fields(item, fields)
                self._save(document)
                return collection[index]
        return None

    def save_user(self, user: User) -> User:
        document = self._load()
        document.users = [u for u in document.users if u.id != user.id] + [user.model_copy(deep=True)]
        self._save(document)
        logger.info("User saved: %s", user.username)
        return user.model_copy(deep=True)

    def get_user(self, user_id: str) -> Optional[User]:
        return next((u for u in self._load().users if u.id == user_id), None)

    def add_project(self, project: Project) -> Project:
        return self._insert("projects", project)

    def get_project(self, project_id: str) -> Optional[Project]:
        return next((p for p in self._load().projects if p.id == project_id), None)

    def list_projects(self, owner_id: str) -> List[Project]:
        return [p for p in self._load().projects if p.owner_id == owner_id]

    def update_project(self, project_id: str, fields: Dict[str, Any]) -> Optional[Project]:
        return self._merge("projects", project_id, fields)

    def delete_project(self, project_id: str) -> bool:
        document = self._load()
        if not any(p.id == project_id for p in document.projects):
            return False
        document.projects = [p for p in document.projects if p.id != project_id]
        document.tasks = [t for t in document.tasks if t.project_id != project_id]
        self._save(document)
        return True

    def add_task(self, task: Task) -> Task:
        return self._insert("tasks", task)

    def get_task(self, task_id: str) -> Optional[Task]:
        return next((t for t in self._load().tasks if t.id == task_id), None)

    def list_tasks(self, project_id: str) -> List[Task]:
        return [t for t in self._load().tasks if t.project_id == project_id]

    def update_task(self, task_id: str, fields: Dict[str, Any]) -> Optional[Task]:
        return self._merge("tasks", task_id, fields)

    def delete_task(self, task_id: str) -> bool:
        document = self._load()
        remaining = [t for t in document.tasks if t.id != task_id]
        if len(remaining) == len(document.tasks):
            return False
        document.tasks = remaining
        self._save(document)
        return True

    def add_analytics(self, record: AnalyticsRecord) -> AnalyticsRecord:
        return self._insert("analytics", record)

    def list_analytics(self, project_id: str) -> List[AnalyticsRecord]:
        return [a for a in self._load().analytics if a.project_id == project_id]

    def snapshot(self) -> StoreDocument:
        return self._load()


# ---------------------------------------------------------------------------
# SQL backend
# ---------------------------------------------------------------------------

def _as_utc(entity: EntityT) -> EntityT:
    """SQLite hands back naive datetimes; they were stored as UTC."""
    for name, value in entity:
        if isinstance(value, datetime) and value.tzinfo is None:
            setattr(entity, name, value.replace(tzinfo=timezone.utc))
    return entity


class SqlRecordStore(RecordStore):
    """Entities in SQLAlchemy tables, one session per call."""

    backend = "sql"

    def __init__(self, database_url: Optional[str] = None, session_factory: Optional[sessionmaker] = None):
        if session_factory is None:
            if not database_url:
                raise ValueError("DATABASE_URL is required for the sql store.")
            session_factory = create_session_factory(database_url)
        self.SessionLocal = session_factory

    @contextmanager
    def _session(self):
        db = self.SessionLocal()
        try:
            yield db
            db.commit()
        except IntegrityError as exc:
            db.rollback()
            raise ValueError(f"Integrity error: {exc.orig}") from exc
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    @staticmethod
    def _to_entity(model, row) -> Any:
        return _as_utc(model.model_validate(row, from_attributes=True))

    def _update(self, row_type, model, entity_id: str, fields: Dict[str, Any]):
        with self._session() as db:
            row = db.get(row_type, entity_id)
            if row is None:
                return None
            merged = merge_fields(self._to_entity(model, row), fields)
            for key, value in merged.model_dump().items():
                setattr(row, key, value)
            return merged

    def save_user(self, user: User) -> User:
        with self._session() as db:
            db.merge(UserRow(**user.model_dump()))
        logger.info("User saved: %s", user.username)
        return user.model_copy(deep=True)

    def get_user(self, user_id: str) -> Optional[User]:
        with self._session() as db:
            row = db.get(UserRow, user_id)
            return self._to_entity(User, row) if row else None

    def add_project(self, project: Project) -> Project:
        with self._session() as db:
            db.add(ProjectRow(**project.model_dump()))
        logger.info("Project added: %s", project.name)
        return project.model_copy(deep=True)

    def get_project(self, project_id: str) -> Optional[Project]:
        with self._session() as db:
            row = db.get(ProjectRow, project_id)
            return self._to_entity(Project, row) if row else None

    def list_projects(self, owner_id: str) -> List[Project]:
        with self._session() as db:
            rows = db.query(ProjectRow).filter(ProjectRow.owner_id == owner_id).order_by(ProjectRow.created_at).all()
            return [self._to_entity(Project, row) for row in rows]

    def update_project(self, project_id: str, fields: Dict[str, Any]) -> Optional[Project]:
        return self._update(ProjectRow, Project, project_id, fields)

    def delete_project(self, project_id: str) -> bool:
        with self._session() as db:
            row = db.get(ProjectRow, project_id)
            if row is None:
                return False
            db.delete(row)  # tasks go with it (delete-orphan cascade)
            return True

    def add_task(self, task: Task) -> Task:
        with self._session() as db:
            db.add(TaskRow(**task.model_dump()))
        return task.model_copy(deep=True)

    def get_task(self, task_id: str) -> Optional[Task]:
        with self._session() as db:
            row = db.get(TaskRow, task_id)
            return self._to_entity(Task, row) if row else None

    def list_tasks(self, project_id: str) -> List[Task]:
        with self._session() as db:
            rows = db.query(TaskRow).filter(TaskRow.project_id == project_id).order_by(TaskRow.created_at).all()
            return [self._to_entity(Task, row) for row in rows]

    def update_task(self, task_id: str, fields: Dict[str, Any]) -> Optional[Task]:
        return self._update(TaskRow, Task, task_id, fields)

    def delete_task(self, task_id: str) -> bool:
        with self._session() as db:
            return db.query(TaskRow).filter(TaskRow.id == task_id).delete() > 0

    def add_analytics(self, record: AnalyticsRecord) -> AnalyticsRecord:
        with self._session() as db:
            db.add(AnalyticsRow(**record.model_dump()))
        return record.model_copy(deep=True)

    def list_analytics(self, project_id: str) -> List[AnalyticsRecord]:
        with self._session() as db:
            rows = db.query(AnalyticsRow).filter(AnalyticsRow.project_id == project_id).order_by(AnalyticsRow.created_at).all()
            return [self._to_entity(AnalyticsRecord, row) for row in rows]

    def snapshot(self) -> StoreDocument:
        with self._session() as db:
            return StoreDocument(
                projects=[self._to_entity(Project, row) for row in db.query(ProjectRow).all()],
                tasks=[self._to_entity(Task, row) for row in db.query(TaskRow).all()],
                users=[self._to_entity(User, row) for row in db.query(UserRow).all()],
                analytics=[self._to_entity(AnalyticsRecord, row) for row in db.query(AnalyticsRow).all()],
            )


def create_store(settings: Settings) -> RecordStore:
    """Build the record store selected by STORE_BACKEND."""
    if settings.store_backend not in STORE_BACKENDS:
        raise ValueError(
            f"Unknown STORE_BACKEND '{settings.store_backend}'. "
            f"Expected one of: {', '.join(STORE_BACKENDS)}"
        )
    if settings.store_backend == "gist":
        return GistRecordStore(token=settings.gist_token)
    if settings.store_backend == "sql":
        return SqlRecordStore(database_url=settings.database_url)
    return MemoryRecordStore()
