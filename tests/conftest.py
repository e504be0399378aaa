from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any, Callable, Optional
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from braincoach.core.rate_limiter import ai_rate_limiter, auth_rate_limiter
from braincoach.core.security import encrypt_api_key, get_password_hash
from braincoach.db.models import DailyCheckIn, User, UserAIConfig
from braincoach.db.session import SessionLocal, configure_database, create_tables
from braincoach.services.generators import Generators, get_generators

DEFAULT_SCORES = {"calmIndex": 75, "productivityIndex": 80}
DEFAULT_PERSONALIZED = {"recommendations": ["Practice mindfulness", "Take breaks"]}
DEFAULT_HABIT_TOOLS = {"recommendations": ["Deep breathing", "Exercise"]}
DEFAULT_GUIDANCE = {"answer": "Try a short walk after lunch."}


class FakeGenerators:
    """Scripted generator set; a value that is an exception instance is raised instead of returned."""

    def __init__(
        self,
        scores: Any = None,
        personalized: Any = None,
        habit_tools: Any = None,
        guidance: Any = None,
    ) -> None:
        self.replies = {
            "score": DEFAULT_SCORES if scores is None else scores,
            "personalized_recommendations": DEFAULT_PERSONALIZED if personalized is None else personalized,
            "habit_tools": DEFAULT_HABIT_TOOLS if habit_tools is None else habit_tools,
            "guidance": DEFAULT_GUIDANCE if guidance is None else guidance,
        }
        self.calls: list[tuple[str, tuple]] = []

    def _reply(self, name: str, args: tuple) -> Any:
        self.calls.append((name, args))
        reply = self.replies[name]
        if isinstance(reply, Exception):
            raise reply
        return reply

    def called(self, name: str) -> list[tuple]:
        return [args for call_name, args in self.calls if call_name == name]

    def as_generators(self) -> Generators:
        return Generators(
            score=lambda *args: self._reply("score", args),
            personalized_recommendations=lambda *args: self._reply("personalized_recommendations", args),
            habit_tools=lambda *args: self._reply("habit_tools", args),
            guidance=lambda *args: self._reply("guidance", args),
        )


@pytest.fixture(scope="session")
def test_db_path(tmp_path_factory: pytest.TempPathFactory) -> Path:
    db_path = tmp_path_factory.mktemp("db") / "braincoach_test.db"
    configure_database(str(db_path))
    create_tables()
    return db_path


@pytest.fixture(scope="session")
def app(test_db_path: Path):
    from braincoach.main import app as fastapi_app

    return fastapi_app


@pytest.fixture(autouse=True)
def reset_rate_limits():
    auth_rate_limiter.reset()
    ai_rate_limiter.reset()
    yield
    auth_rate_limiter.reset()
    ai_rate_limiter.reset()


@pytest.fixture
def client(app):
    app.dependency_overrides = {}
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides = {}


@pytest.fixture
def db_session(test_db_path: Path):
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def create_user(db_session: Session) -> Callable[..., User]:
    def _create_user(with_ai_config: bool = True, retention_days: int = 90) -> User:
        email = f"user_{uuid4().hex[:10]}@test.com"
        user = User(
            email=email,
            password_hash=get_password_hash("StrongPass123"),
            data_retention_days=retention_days,
        )
        db_session.add(user)
        db_session.flush()
        if with_ai_config:
            cfg = UserAIConfig(
                user_id=user.id,
                ai_provider="openai",
                ai_model="gpt-4.1",
                ai_utility_model="gpt-4.1-mini",
                encrypted_api_key=encrypt_api_key("sk-test-12345678"),
            )
            db_session.add(cfg)
        db_session.commit()
        db_session.refresh(user)
        return user

    return _create_user


@pytest.fixture
def seed_checkin(db_session: Session) -> Callable[..., DailyCheckIn]:
    def _seed(
        user_id: int,
        checkin_date: date,
        calm_index: float = 70,
        productivity_index: float = 72,
        mood: int = 7,
        sleep: float = 7.5,
        diet: str = "Balanced meals",
    ) -> DailyCheckIn:
        row = DailyCheckIn(
            user_id=user_id,
            checkin_date=checkin_date,
            mood=mood,
            sleep=sleep,
            diet=diet,
            exercise="Morning run",
            stressors="Deadlines",
            user_goals="Sleep better",
            calm_index=calm_index,
            productivity_index=productivity_index,
            personalized_json='["Plan tomorrow tonight"]',
            habit_tools_json='["Box breathing"]',
            updated_at=datetime.now(timezone.utc),
        )
        db_session.add(row)
        db_session.commit()
        db_session.refresh(row)
        return row

    return _seed


def signup_and_login(client: TestClient, email: Optional[str] = None, password: str = "StrongPass123") -> str:
    email = email or f"auth_{uuid4().hex[:10]}@test.com"
    signup = client.post(
        "/auth/signup",
        json={
            "email": email,
            "password": password,
            "ai_config": {
                "ai_provider": "openai",
                "ai_model": "gpt-4.1",
                "ai_utility_model": "gpt-4.1-mini",
                "ai_api_key": "sk-test-12345678",
            },
        },
    )
    assert signup.status_code == 201
    login = client.post("/auth/login", data={"username": email, "password": password})
    assert login.status_code == 200
    return login.json()["access_token"]


@pytest.fixture
def auth_token(client: TestClient) -> str:
    return signup_and_login(client)


@pytest.fixture
def auth_headers(auth_token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {auth_token}"}


@pytest.fixture
def fake_generators_factory() -> Callable[..., FakeGenerators]:
    def _factory(**replies: Any) -> FakeGenerators:
        return FakeGenerators(**replies)

    return _factory


@pytest.fixture
def override_generators(app, fake_generators_factory):
    def _override(**replies: Any) -> FakeGenerators:
        fake = fake_generators_factory(**replies)
        app.dependency_overrides[get_generators] = fake.as_generators
        return fake

    return _override
