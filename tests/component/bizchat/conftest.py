"""
Component Test Fixtures for BizChat Service

The real gateway client runs against an httpx.MockTransport that plays the
BizChat vendor; repositories are the in-memory ones; the balance lookup is
a fake.
"""

import pytest
import pytest_asyncio

import httpx

import sys
import os

# Add project root to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "../../.."))

from tests.contracts.bizchat.data_contract import (
    FIXED_NOW,
    BizChatTestDataFactory,
)
from tests.component.bizchat.mocks import (
    API_KEY,
    FakeBalanceClient,
    FakeBizChatVendor,
)
from core.config import BizChatConfig
from microservices.bizchat_service.campaign_repository import CampaignRepository, TemplateRepository
from microservices.bizchat_service.campaign_service import BizChatCampaignService
from microservices.bizchat_service.clients.bizchat_client import BizChatClient


# ====================
# Fixtures
# ====================


@pytest.fixture
def factory():
    """Provide test data factory"""
    return BizChatTestDataFactory()


@pytest.fixture
def now():
    return FIXED_NOW


@pytest.fixture
def vendor():
    return FakeBizChatVendor()


@pytest.fixture
def bizchat_config():
    return BizChatConfig(
        environment="development",
        dev_api_key=API_KEY,
        timeout_seconds=5.0,
        callback_base_url="https://campaigns.example.com",
    )


@pytest_asyncio.fixture
async def gateway(bizchat_config, vendor):
    """Real BizChat client on the scripted transport"""
    client = BizChatClient(bizchat_config, transport=httpx.MockTransport(vendor.handle))
    yield client
    await client.close()


@pytest.fixture
def balance_client():
    return FakeBalanceClient()


@pytest.fixture
def repository():
    return CampaignRepository()


@pytest.fixture
def template_repository():
    return TemplateRepository()


@pytest.fixture
def service(repository, template_repository, gateway, balance_client, bizchat_config):
    return BizChatCampaignService(
        repository=repository,
        template_repository=template_repository,
        gateway=gateway,
        balance_client=balance_client,
        config=bizchat_config,
    )


@pytest.fixture
def user_id():
    return BizChatTestDataFactory.make_user_id()


@pytest_asyncio.fixture
async def template(template_repository, user_id):
    """Approved LMS template owned by user_id"""
    return await template_repository.save_template(BizChatTestDataFactory.make_template(user_id=user_id))
