# Shared pytest configuration and fixtures for all test types
import pytest
import pytest_asyncio

from packages.control.client import ControlClient
from packages.control.models.domain.catalog import Catalog
from packages.control.models.domain.phase import OrgInfo
from tests.fixtures import SAMPLE_CATALOG_DATA, SAMPLE_ORG_INFO_DATA
from tests.fixtures.fake_ledger import FakeLedger


@pytest.fixture
def fake_ledger():
    """In-memory test-mode ledger."""
    return FakeLedger()


@pytest.fixture
def control(fake_ledger):
    """Control client over the fake ledger with its own org cache."""
    return ControlClient(ledger=fake_ledger, org_cache_size=10, push_max_workers=4)


@pytest.fixture
def sample_catalog():
    return Catalog.model_validate(SAMPLE_CATALOG_DATA)


@pytest.fixture
def sample_features(sample_catalog):
    return sample_catalog.to_features()


@pytest.fixture
def sample_org_info():
    return OrgInfo.model_validate(SAMPLE_ORG_INFO_DATA)


@pytest_asyncio.fixture(scope="function")
async def published(control, sample_features):
    """Control client with the sample catalog pushed."""
    await control.push(sample_features)
    return control
