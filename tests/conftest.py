import uuid
from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator, Optional

import pytest
from httpx import ASGITransport, AsyncClient
from jose import jwt
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from app.core.config import Settings, get_settings
from app.core.models import Assignment, ClassSection, Enrollment, Grade, Submission, User
from app.db.session import Base, create_sessionmaker, get_db, transaction
from app.main import create_app

TEST_JWT_SECRET = "test-secret"


@pytest.fixture()
def settings(tmp_path) -> Settings:
    return Settings(
        DATABASE_URL=f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        JWT_SECRET_KEY=TEST_JWT_SECRET,
    )


@pytest.fixture()
async def engine(settings: Settings) -> AsyncGenerator[AsyncEngine, None]:
    """File-backed SQLite so several sessions see the same data.

    Transactions start with BEGIN IMMEDIATE: concurrent writers queue on the
    database lock the way they would queue on a row lock in Postgres.
    """
    engine = create_async_engine(settings.database_url, echo=False)

    @event.listens_for(engine.sync_engine, "connect")
    def _disable_pysqlite_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture()
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return create_sessionmaker(engine)


@pytest.fixture()
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


class Seeder:
    """Inserts fixtures in committed transactions and hands back plain ids."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self.session_factory = session_factory
        self._counter = 0

    def _next(self) -> int:
        self._counter += 1
        return self._counter

    async def _add(self, obj) -> uuid.UUID:
        async with self.session_factory() as session:
            async with transaction(session):
                session.add(obj)
                await session.flush()
                return obj.id

    async def user(self, role: str = "STUDENT", status: str = "ACTIVE", name: Optional[str] = None) -> uuid.UUID:
        n = self._next()
        return await self._add(
            User(
                full_name=name or f"{role.title()} {n:03d}",
                email=f"{role.lower()}{n}@school.test",
                role=role,
                status=status,
            )
        )

    async def student(self, **kwargs) -> uuid.UUID:
        return await self.user(role="STUDENT", **kwargs)

    async def teacher(self, **kwargs) -> uuid.UUID:
        return await self.user(role="TEACHER", **kwargs)

    async def school_class(
        self,
        teacher_id: Optional[uuid.UUID] = None,
        capacity: int = 30,
        status: str = "ACTIVE",
        academic_year: str = "2024-2025",
        name: Optional[str] = None,
    ) -> uuid.UUID:
        n = self._next()
        return await self._add(
            ClassSection(
                name=name or f"Class {n:03d}",
                code=f"CLS-{n:03d}",
                teacher_id=teacher_id,
                academic_year=academic_year,
                capacity=capacity,
                status=status,
            )
        )

    async def enrollment(self, student_id: uuid.UUID, class_id: uuid.UUID, status: str = "ACTIVE") -> uuid.UUID:
        return await self._add(Enrollment(student_id=student_id, class_id=class_id, status=status))

    async def assignment(
        self,
        class_id: uuid.UUID,
        points_possible: float = 100.0,
        assignment_type: str = "ASSIGNMENT",
    ) -> uuid.UUID:
        n = self._next()
        return await self._add(
            Assignment(
                class_id=class_id,
                title=f"Assignment {n:03d}",
                assignment_type=assignment_type,
                points_possible=points_possible,
                due_date=datetime.now(timezone.utc) + timedelta(days=7),
            )
        )

    async def submission(self, assignment_id: uuid.UUID, student_id: uuid.UUID) -> uuid.UUID:
        return await self._add(Submission(assignment_id=assignment_id, student_id=student_id, content="answer"))

    async def grade(
        self,
        submission_id: uuid.UUID,
        student_id: uuid.UUID,
        assignment_id: uuid.UUID,
        class_id: uuid.UUID,
        points_earned: float,
        percentage: float,
        letter_grade: str,
        graded_at: Optional[datetime] = None,
        points_possible: float = 100.0,
    ) -> uuid.UUID:
        return await self._add(
            Grade(
                submission_id=submission_id,
                student_id=student_id,
                assignment_id=assignment_id,
                class_id=class_id,
                points_earned=points_earned,
                points_possible=points_possible,
                percentage=percentage,
                letter_grade=letter_grade,
                graded_at=graded_at or datetime.now(timezone.utc),
            )
        )


@pytest.fixture()
def seed(session_factory) -> Seeder:
    return Seeder(session_factory)


def make_token(user_id: uuid.UUID, role: str) -> str:
    return jwt.encode({"sub": str(user_id), "role": role}, TEST_JWT_SECRET, algorithm="HS256")


def _auth_headers(user_id: uuid.UUID, role: str = "TEACHER") -> dict:
    return {"Authorization": f"Bearer {make_token(user_id, role)}"}


@pytest.fixture()
def auth_headers():
    return _auth_headers


@pytest.fixture()
async def client(settings: Settings, session_factory) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client bound to a fresh app wired to the test database."""
    app = create_app(settings)

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_settings] = lambda: settings

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
