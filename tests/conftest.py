import os

# Must be set before database.config builds the module-level engine
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["AUTO_CREATE_TABLES"] = "false"

from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from database.config import build_engine, get_db, init_db
from database.models import User, UserType
from database.marketplace_models import Campaign
from auth.dependencies import get_current_user
from server import app

BRAND_ID = "brand-1"
OTHER_BRAND_ID = "brand-2"
INFLUENCER_ID = "influencer-1"
OTHER_INFLUENCER_ID = "influencer-2"
ADMIN_ID = "admin-1"
CAMPAIGN_ID = "campaign-1"


@pytest.fixture
def engine(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'marketplace.db'}")
    init_db(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def make_campaign(db):
    def _make(campaign_id=CAMPAIGN_ID, budget="500.00", brand_id=BRAND_ID):
        db.add(Campaign(id=campaign_id, brand_id=brand_id, title="Summer launch", budget=Decimal(budget), currency="USD"))
        db.commit()
        return campaign_id
    return _make


@pytest.fixture
def campaign(make_campaign):
    return make_campaign()


# ============================================================================
# HTTP
# ============================================================================

def _user(user_id, user_type):
    return User(id=user_id, email=f"{user_id}@example.com", name=user_id, user_type=user_type)


USERS = {
    "brand": _user(BRAND_ID, UserType.BRAND),
    "other_brand": _user(OTHER_BRAND_ID, UserType.BRAND),
    "influencer": _user(INFLUENCER_ID, UserType.INFLUENCER),
    "other_influencer": _user(OTHER_INFLUENCER_ID, UserType.INFLUENCER),
    "admin": _user(ADMIN_ID, UserType.ADMIN),
    "untyped": _user("legacy-1", None),
}


@pytest.fixture
def client(session_factory):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def login():
    """Switch the authenticated caller: login("brand"), login("admin"), ..."""
    def _login(name):
        user = USERS[name]
        app.dependency_overrides[get_current_user] = lambda: user
        return user
    return _login
