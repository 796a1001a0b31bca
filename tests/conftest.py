"""
Root conftest.py - Global fixtures and configuration for all test layers.

Test Layers:
    - component/  : Component tests (mocked vendor transport and dependencies)
    - unit/       : Unit tests (pure functions, no I/O)
    - contracts/  : Test data factories shared by the layers above
"""
import os
import sys

import pytest

# Add project root to path
PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, PROJECT_ROOT)

# The gateway client refuses to start without a key; tests never reach the network
os.environ.setdefault("BIZCHAT_DEV_API_KEY", "test-dev-key")


# =============================================================================
# Test Configuration
# =============================================================================

class TestConfig:
    """Centralized test configuration"""

    SERVICE_NAME = "bizchat_service"
    SERVICE_PORT = 8260

    DEV_GATEWAY_URL = "https://gw-dev.bizchat1.co.kr:8443"
    PROD_GATEWAY_URL = "https://gw.bizchat1.co.kr"
    ACCOUNT_SERVICE_URL = "http://account.test"

    API_KEY = "test-dev-key"
    CALLBACK_AUTH_KEY = "callback-secret"

    # Timeouts
    HTTP_TIMEOUT = 5


@pytest.fixture(scope="session")
def test_config() -> TestConfig:
    """Provide test configuration"""
    return TestConfig()
