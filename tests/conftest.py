import asyncio
import copy
import uuid

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import productsense.models  # noqa: F401
from productsense.db.base import Base
from productsense.models import User
from productsense.services.seeding import seed_catalog
from productsense.services.session_service import SessionLifecycleManager


VALID_STEPS = {
    1: {
        "objective": "RETENTION",
        "goal_sentence": "Increase 30-day retention of new creators by 15% within two quarters.",
    },
    2: {
        "mission_alignment": "Helping new creators succeed quickly inspires more creativity "
                             "and brings joy to the viewers who discover them.",
    },
    3: {
        "segments": [
            {"name": "New creators", "description": "Creators in their first week on the platform"},
            {"name": "Lapsed creators", "description": "Creators who have not posted for 30 days or more"},
        ],
    },
    4: {
        "problems": [
            {
                "title": "Unclear first steps",
                "description": "New creators do not know what to post first and give up after one try.",
                "affected_segments": ["New creators"],
            },
        ],
    },
    5: {
        "solutions": [
            {
                "version": "V0",
                "title": "Posting checklist",
                "description": "A guided checklist that walks new creators through their first three posts.",
                "features": ["Three-step checklist card", "Progress badge after each post"],
            },
            {
                "version": "V1",
                "title": "Creator mentor match",
                "description": "Pair each new creator with an established creator in the same niche for a week.",
                "features": ["Niche-based matching", "In-app mentor chat thread"],
            },
            {
                "version": "V2",
                "title": "Audience seeding",
                "description": "Guarantee early views for first posts by seeding them to interested viewers.",
                "features": ["Interest-based seed audience", "First-post view guarantee"],
            },
        ],
    },
    6: {
        "primary_metric": {
            "name": "30-day creator retention",
            "description": "Share of new creators who post again within 30 days",
            "target": "+15% by end of Q3",
        },
        "guardrails": [{"name": "Viewer watch time", "threshold": "No drop beyond 1%"}],
    },
    7: {
        "tradeoffs": [
            {
                "title": "Feed quality dilution",
                "description": "Seeding first posts may show viewers lower quality content in their feed.",
                "impact": "MEDIUM",
                "mitigation": "Cap seeded impressions per viewer and monitor skip rate daily.",
            },
            {
                "title": "Mentor fatigue",
                "description": "Established creators may tire of mentoring and disengage from the program.",
                "impact": "LOW",
                "mitigation": "Rotate mentors weekly and reward them with profile visibility boosts.",
            },
        ],
    },
    8: {
        "reflection": "Starting from the retention goal kept the solutions focused. Splitting new and "
                      "lapsed creators showed that the first week matters far more than reactivation.",
        "learnings": ["Anchor every solution to a single segment", "Guardrails need explicit thresholds"],
    },
}


class FakeJudge:
    """Scores every step with a fixed value."""

    def __init__(self, score=85, overall=None):
        self.score = score
        self.overall = overall
        self.calls = 0

    async def evaluate(self, prompt, steps):
        self.calls += 1
        result = {
            "stepScores": [
                {
                    "stepName": step["step_name"],
                    "score": self.score,
                    "feedback": f"Feedback for {step['step_name']}",
                    "strengths": [f"{step['step_name']} strength"],
                    "improvements": [f"{step['step_name']} improvement"],
                }
                for step in steps
            ]
        }
        if self.overall is not None:
            result["overallScore"] = self.overall
        return result


class FailingJudge:
    async def evaluate(self, prompt, steps):
        raise RuntimeError("judge unavailable")


class SlowJudge:
    async def evaluate(self, prompt, steps):
        await asyncio.sleep(5)
        return {}


class MalformedJudge:
    async def evaluate(self, prompt, steps):
        return {"stepScores": [{"stepName": "goal", "score": 150}]}


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db(engine):
    TestingSession = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = TestingSession()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def catalog(db):
    seed_catalog(db)
    return db


def make_user(db, email="pm@example.com", **kwargs):
    user = User(id=uuid.uuid4(), email=email, display_name=email.split("@")[0], **kwargs)
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def user(db):
    return make_user(db)


@pytest.fixture
def valid_steps():
    return copy.deepcopy(VALID_STEPS)


@pytest.fixture
def completed_session(catalog, user, valid_steps):
    """A session with all eight steps saved and marked COMPLETED."""
    manager = SessionLifecycleManager(catalog)
    session = manager.start(user.id).session
    for number in range(1, 9):
        manager.save_step(session.id, user.id, number, valid_steps[number])
    return manager.complete(session.id, user.id)
