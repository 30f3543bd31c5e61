import os
from typing import AsyncGenerator, Dict, List

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key")

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from app.main import app
from app.auth.models import TeacherSubject, User
from app.auth.security import create_access_token
from app.core.enums import UserRole
from app.core.models import Subject, Unit
from app.db.session import Base, get_db


TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest.fixture()
async def engine() -> AsyncGenerator[AsyncEngine, None]:
    """Fresh in-memory database per test. StaticPool keeps every session on one connection."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        future=True,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture()
async def db_session(engine: AsyncEngine) -> AsyncGenerator[AsyncSession, None]:
    """Provide a database session for a test and override FastAPI dependency."""
    async_session = async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )

    async with async_session() as session:

        async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
            yield session

        app.dependency_overrides[get_db] = override_get_db
        yield session

    app.dependency_overrides.pop(get_db, None)


@pytest.fixture()
async def client(db_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client bound to the FastAPI app."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


async def _make_user(db: AsyncSession, name: str, role: UserRole) -> User:
    user = User(full_name=name, email=f"{name.lower().replace(' ', '.')}@example.com", role=role.value)
    db.add(user)
    await db.flush()
    return user


@pytest.fixture()
async def teacher(db_session: AsyncSession) -> User:
    user = await _make_user(db_session, "Asha Teacher", UserRole.TEACHER)
    await db_session.commit()
    return user


@pytest.fixture()
async def other_teacher(db_session: AsyncSession) -> User:
    user = await _make_user(db_session, "Ravi Teacher", UserRole.TEACHER)
    await db_session.commit()
    return user


@pytest.fixture()
async def verifier(db_session: AsyncSession) -> User:
    user = await _make_user(db_session, "Vera Verifier", UserRole.VERIFIER)
    await db_session.commit()
    return user


@pytest.fixture()
async def admin(db_session: AsyncSession) -> User:
    user = await _make_user(db_session, "Adam Admin", UserRole.ADMIN)
    await db_session.commit()
    return user


@pytest.fixture()
async def subject(db_session: AsyncSession, teacher: User) -> Subject:
    """Math, owned by `teacher`."""
    subject = Subject(name="Math", teacher_id=teacher.id)
    db_session.add(subject)
    await db_session.flush()
    db_session.add(TeacherSubject(teacher_id=teacher.id, subject_id=subject.id))
    await db_session.commit()
    return subject


@pytest.fixture()
async def units(db_session: AsyncSession, subject: Subject) -> List[Unit]:
    created = [
        Unit(subject_id=subject.id, name=name, order=i)
        for i, name in enumerate(["Algebra", "Geometry", "Calculus"], start=1)
    ]
    db_session.add_all(created)
    await db_session.commit()
    return created


def auth_headers(user: User) -> Dict[str, str]:
    token = create_access_token(subject={"sub": str(user.id), "role": user.role})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture()
def headers():
    """headers(user) -> Authorization header for that user."""
    return auth_headers
