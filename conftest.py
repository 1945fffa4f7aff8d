"""
Shared pytest fixtures.

Every test gets a fresh in-memory award store and freshly built service
singletons, so tests never see each other's requisitions.
"""
import sys
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent
sys.path.insert(0, str(project_root))

import pytest

from backend.config import AwardSettings, override_settings
from backend.persistence.database import configure_engine, init_db
import backend.persistence.repository as repository_module
import backend.services.award_service as award_service_module
import backend.services.locks as locks_module
import backend.services.rfq_service as rfq_service_module
import backend.services.scoring_service as scoring_service_module

TEST_DB_URL = "sqlite://"


def _reset_singletons():
    repository_module._repository = None
    locks_module._locks = None
    rfq_service_module._rfq_service = None
    scoring_service_module._scoring_service = None
    award_service_module._award_service = None


@pytest.fixture(autouse=True)
def award_store():
    """Point the store at a private in-memory SQLite database."""
    override_settings(AwardSettings(db_url=TEST_DB_URL))
    configure_engine(TEST_DB_URL)
    init_db()
    _reset_singletons()
    yield
    configure_engine(None)
    override_settings(None)
    _reset_singletons()
