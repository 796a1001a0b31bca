"""
Unit Test Fixtures for BizChat Service

Pure-function fixtures; nothing here performs I/O.
Uses BizChatTestDataFactory from the data contract.
"""

import pytest

import sys
import os

# Add project root to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "../../.."))

from tests.contracts.bizchat.data_contract import (
    FIXED_NOW,
    BizChatTestDataFactory,
)
from microservices.bizchat_service.payload_assembler import PayloadAssembler
from microservices.bizchat_service.targeting_compiler import TargetingCompiler


CALLBACK_URL = "https://campaigns.example.com/api/v1/bizchat/callback/state"


@pytest.fixture
def factory():
    """Provide test data factory"""
    return BizChatTestDataFactory()


@pytest.fixture
def now():
    """Fixed business-day morning (2025-03-04 08:03 KST)"""
    return FIXED_NOW


@pytest.fixture
def compiler():
    """Lenient compiler: unknown regions are dropped"""
    return TargetingCompiler()


@pytest.fixture
def strict_compiler():
    return TargetingCompiler(strict_regions=True)


@pytest.fixture
def assembler():
    return PayloadAssembler(callback_url=CALLBACK_URL)
