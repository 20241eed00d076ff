"""
Pytest configuration and fixtures.
"""

import pytest
import os
from typing import List
from unittest.mock import AsyncMock, MagicMock, patch

from src.shopvoice.storefront import CartItem, Product


@pytest.fixture(autouse=True)
def mock_env_vars():
    """Mock environment variables for tests."""
    env_vars = {
        "PORT": "7860",
        "LOG_LEVEL": "DEBUG",
        "ASSISTANT_ID": "asst_test",
        "LLM_PROVIDER": "groq",
        "GROQ_API_KEY": "test_groq_key",
        "GROQ_MODEL": "llama-3.3-70b-versatile",
        "ORACLE_FALLBACK_MODEL": "",
        "PROMPT_DIR": "",
        "DEFAULT_LOCALE": "en",
    }

    with patch.dict(os.environ, env_vars):
        # Clear config cache
        from src.shopvoice.config import get_config
        get_config.cache_clear()
        yield
        get_config.cache_clear()


class FakeClock:
    """Manually advanced monotonic clock (seconds)."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeSpeechSession:
    """Speech session double that records what the supervisor/engine asked for."""

    def __init__(self):
        self.start = AsyncMock()
        self.stop = AsyncMock()
        self.send_system_utterance = AsyncMock()
        self.consumer = None
        self.subscribe_calls = 0

    def subscribe(self, consumer) -> None:
        self.subscribe_calls += 1
        self.consumer = consumer

    def unsubscribe(self) -> None:
        self.consumer = None

    @property
    def spoken(self) -> List[str]:
        return [call.args[0] for call in self.send_system_utterance.await_args_list]


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def speech_session():
    return FakeSpeechSession()


@pytest.fixture
def oracle():
    mock = MagicMock()
    mock.complete = AsyncMock(return_value="general_command")
    return mock


@pytest.fixture
def sample_products():
    return [
        Product(id="p1", name="Aero Running Shoes", description="Lightweight road shoes", sizes=["S", "M", "L"]),
        Product(id="p2", name="Flow Yoga Mat", description="Non-slip mat", sizes=["One Size"]),
        Product(id="p3", name="Core Gym Hoodie", description="Fleece hoodie", sizes=["M", "L"]),
    ]


@pytest.fixture
def storefront(sample_products):
    """Storefront double with a product page open and an empty cart."""
    mock = MagicMock()
    mock.products.return_value = sample_products
    mock.current_product.return_value = sample_products[0]
    mock.cart_items.return_value = []
    mock.selected_size.return_value = None
    mock.filter_options.return_value = {
        "color": ["Black", "Blue", "Red"],
        "gender": ["Men", "Women"],
    }
    return mock


@pytest.fixture
def cart_with_items():
    return [
        CartItem(id="c1", name="Aero Running Shoes", quantity=2, size="M"),
        CartItem(id="c2", name="Core Gym Hoodie", quantity=1, size="L"),
    ]
