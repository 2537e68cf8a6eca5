import os
os.environ["TESTING"] = "1"
os.environ.pop("SOP_STRICT_EDIT_LOCK", None)
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

import sys
from pathlib import Path

sys.path.append(str(Path(__file__).resolve().parents[2]))

from labsop.main import app
from labsop.database import Base, get_db, enable_sqlite_foreign_keys
from labsop import schemas
from labsop.services import sop_editor

SQLALCHEMY_DATABASE_URL = "sqlite:///./test_labsop.db"
engine = create_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args={"check_same_thread": False, "timeout": 30},
)
enable_sqlite_foreign_keys(engine)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base.metadata.drop_all(bind=engine)
Base.metadata.create_all(bind=engine)

ACTOR = "zhang.san"


def override_get_db():
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()

app.dependency_overrides[get_db] = override_get_db


@pytest.fixture
def client():
    with TestClient(app) as c:
        yield c


@pytest.fixture
def db():
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture
def actor_headers():
    return {"X-Actor": ACTOR}


def seed_template(
    session,
    *,
    name: str = "DNA extraction",
    steps: tuple[tuple[str, int], ...] = (),
    actor: str = ACTOR,
):
    """
    purpose: create a versionable template (description and projects populated) with optional steps
    outputs: committed SOPTemplate
    """

    template = sop_editor.create_template(
        session,
        schemas.SOPTemplateCreate(
            name=name,
            description="Standard extraction workflow",
            applicable_projects=["WGS", "WES"],
        ),
        actor=actor,
    )
    for step_name, minutes in steps:
        sop_editor.add_step(
            session,
            template,
            schemas.SOPStepCreate(name=step_name, estimated_minutes=minutes),
            actor=actor,
        )
    session.commit()
    session.refresh(template)
    return template
