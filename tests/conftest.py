"""
Pytest configuration and fixtures
"""
import base64
import json
import os
from datetime import datetime, timezone

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# Set test environment variables before importing
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["JWT_SECRET"] = "test-secret-key-for-tests-only"
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_test_secret"
os.environ["GEMINI_API_KEY"] = "test-gemini-key"
os.environ["USAGE_PERIOD"] = "monthly"
os.environ["LOG_LEVEL"] = "WARNING"  # Reduce log noise in tests

# Import after setting env vars
from app.main import app
from app.core.clock import FixedClock, get_clock
from app.db.base import Base
from app.db.session import get_db
from app.models.user import User
from app.services.gemini_client import get_analyzer
from app.utils.auth import create_access_token, hash_password

# Mid-October 2026 so the period is "2026-10" and resets on November 1
DEFAULT_NOW = datetime(2026, 10, 15, 12, 0, 0, tzinfo=timezone.utc)

SAMPLE_ANALYSIS = {
    "overallScore": 78,
    "summary": "Buena presentación con un ritmo adecuado.",
    "fillerWords": [{"word": "eh", "count": 4}],
    "pacing": {"status": "Normal", "wpm": 142, "feedback": "Ritmo constante."},
    "emotions": [{"name": "Confianza", "percentage": 60}, {"name": "Nerviosismo", "percentage": 40}],
    "bodyLanguage": {"eyeContact": "Bueno", "posture": "Erguida", "gestures": "Naturales", "feedback": "Bien."},
    "speechAnalysis": {"clarity": "Alta", "coherence": "Alta", "persuasion": "Media", "feedback": "Claro."},
    "improvementTips": ["Reduce las muletillas."],
    "actionPlan": {"exercises": ["Respiración"], "dynamics": ["Grabarse"], "resources": ["Talk Like TED"]},
    "vocalAnalysis": {"toneVariety": "Media", "volumeControl": "Buena", "articulation": "Clara", "feedback": "Ok."},
    "imageAnalysis": {"attire": "Formal", "hair": "Ordenado", "face": "Expresiva", "feedback": "Ok."},
}


class FakeAnalyzer:
    """Stands in for GeminiAnalyzer; records every call."""

    def __init__(self, response=None, error=None):
        self.response = response if response is not None else json.dumps(SAMPLE_ANALYSIS)
        self.error = error
        self.configured = True
        self.calls = []

    def analyze(self, **kwargs):
        self.calls.append(kwargs)
        if self.error is not None:
            raise self.error
        return self.response


@pytest.fixture(scope="function")
def test_engine():
    """Fresh in-memory database per test"""
    engine = create_engine(
        "sqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False}
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture(scope="function")
def db_session(test_engine):
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)
    session = TestingSessionLocal()
    yield session
    session.close()


@pytest.fixture
def clock():
    return FixedClock(DEFAULT_NOW)


@pytest.fixture
def analyzer():
    return FakeAnalyzer()


@pytest.fixture
def client(test_engine, clock, analyzer):
    """TestClient with the database, clock and model client overridden"""
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)

    def override_get_db():
        db = TestingSessionLocal()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_clock] = lambda: clock
    app.dependency_overrides[get_analyzer] = lambda: analyzer

    yield TestClient(app)

    app.dependency_overrides.clear()


@pytest.fixture
def make_user(db_session):
    """Create a user and return (user, bearer headers)."""
    counter = {"n": 0}

    def _make_user(tier="free", email=None, password="secret123", is_active=True):
        counter["n"] += 1
        user = User(
            email=email or f"speaker{counter['n']}@oratoria.app",
            hashed_password=hash_password(password),
            name=f"Speaker {counter['n']}",
            plan_tier=tier,
            is_active=is_active,
        )
        db_session.add(user)
        db_session.commit()
        db_session.refresh(user)
        token = create_access_token({"sub": str(user.id), "email": user.email})
        return user, {"Authorization": f"Bearer {token}"}

    return _make_user


def video_payload(data: bytes = b"fake-webm-video-bytes", duration=30, **overrides):
    payload = {
        "videoBase64": base64.b64encode(data).decode(),
        "mimeType": "video/webm",
        "language": "es",
        "videoDuration": duration,
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def make_video():
    return video_payload


@pytest.fixture
def sample_analysis():
    return json.loads(json.dumps(SAMPLE_ANALYSIS))
