"""
Tests for the storefront command handlers.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from src.shopvoice.config import get_config
from src.shopvoice.errors import OracleError
from src.shopvoice.handlers import (
    ApplyFilterHandler,
    CartHandler,
    CategoryHandler,
    ClearFiltersHandler,
    LanguageHandler,
    NavigationCooldown,
    NavigationHandler,
    OrderCompletionHandler,
    ProductActionHandler,
    ProductNavigationHandler,
    RemoveFilterHandler,
    UserInfoHandler,
    build_handlers,
)
from src.shopvoice.intents import Intent
from src.shopvoice.router import ActionLog


@pytest.fixture
def action_log():
    return ActionLog()


@pytest.fixture
def speak():
    return AsyncMock()


@pytest.fixture
def make(oracle, storefront, action_log, speak):
    def _make(cls, **kwargs):
        return cls(oracle, storefront, action_log, config=get_config(), speak=speak, **kwargs)

    return _make


class TestNavigationHandler:
    @pytest.mark.asyncio
    async def test_back_then_cooldown(self, make, oracle, storefront, clock, action_log):
        oracle.complete.return_value = '{"action": "back"}'
        handler = make(NavigationHandler, cooldown=NavigationCooldown(3.0, clock=clock))

        assert await handler.handle("go back") is True
        storefront.go_back.assert_called_once()
        assert action_log.latest.description == "Navigated back"

        # Second navigation inside the cooldown is declined without asking the oracle
        assert await handler.handle("go back") is False
        assert oracle.complete.await_count == 1

        clock.advance(3.5)
        oracle.complete.return_value = '{"action": "home"}'
        assert await handler.handle("home page") is True
        storefront.navigate.assert_called_once_with("/")

    @pytest.mark.asyncio
    async def test_none_declines(self, make, oracle, clock):
        oracle.complete.return_value = '{"action": "none"}'
        handler = make(NavigationHandler, cooldown=NavigationCooldown(3.0, clock=clock))
        assert await handler.handle("what's on sale") is False

    @pytest.mark.asyncio
    async def test_oracle_failure_declines(self, make, oracle, clock):
        oracle.complete.side_effect = OracleError("timed out")
        handler = make(NavigationHandler, cooldown=NavigationCooldown(3.0, clock=clock))
        assert await handler.handle("go back") is False


class TestCartHandler:
    @pytest.mark.asyncio
    async def test_view_cart(self, make, oracle, storefront):
        oracle.complete.return_value = "YES"
        assert await make(CartHandler).handle("show my cart") is True
        storefront.navigate.assert_called_once_with("/cart")

    @pytest.mark.asyncio
    async def test_remove_item(self, make, oracle, storefront, cart_with_items, action_log):
        storefront.cart_items.return_value = cart_with_items
        oracle.complete.side_effect = ["no", '{"action": "remove", "targetItem": "running shoes"}']

        assert await make(CartHandler).handle("remove the running shoes") is True
        storefront.remove_from_cart.assert_called_once_with("c1")
        assert action_log.latest.description == "Removed Aero Running Shoes"

    @pytest.mark.asyncio
    async def test_increase_quantity(self, make, oracle, storefront, cart_with_items):
        storefront.cart_items.return_value = cart_with_items
        oracle.complete.side_effect = ["no", '{"action": "increase", "targetItem": "hoodie", "quantity": 2}']

        assert await make(CartHandler).handle("two more hoodies") is True
        storefront.update_cart_quantity.assert_called_once_with("c2", 3)

    @pytest.mark.asyncio
    async def test_unknown_item_declines(self, make, oracle, storefront, cart_with_items):
        storefront.cart_items.return_value = cart_with_items
        oracle.complete.side_effect = ["no", '{"action": "remove", "targetItem": "socks"}']

        assert await make(CartHandler).handle("remove the socks") is False
        storefront.remove_from_cart.assert_not_called()

    @pytest.mark.asyncio
    async def test_empty_cart_declines_update(self, make, oracle):
        oracle.complete.return_value = "no"
        assert await make(CartHandler).handle("remove the socks") is False
        assert oracle.complete.await_count == 1


class TestCategoryHandler:
    @pytest.mark.asyncio
    async def test_category_clears_filters_first(self, make, oracle, storefront):
        oracle.complete.return_value = '```json\n{"target": "yoga"}\n```'

        assert await make(CategoryHandler).handle("yoga stuff") is True
        storefront.clear_filters.assert_called_once()
        storefront.navigate.assert_called_once_with("/products/yoga")

    @pytest.mark.asyncio
    async def test_running_opens_jogging_page(self, make, oracle, storefront):
        oracle.complete.return_value = '{"target": "running"}'
        assert await make(CategoryHandler).handle("running gear") is True
        storefront.navigate.assert_called_once_with("/products/jogging")

    @pytest.mark.asyncio
    async def test_unknown_category_rejected_by_schema(self, make, oracle, storefront):
        oracle.complete.return_value = '{"target": "swimming"}'
        assert await make(CategoryHandler).handle("swimming gear") is False
        storefront.navigate.assert_not_called()


class TestProductNavigationHandler:
    @pytest.mark.asyncio
    async def test_confident_match_navigates(self, make, oracle, storefront, clock):
        oracle.complete.return_value = '{"productId": "p2", "confidence": 0.9}'
        handler = make(ProductNavigationHandler, cooldown=NavigationCooldown(3.0, clock=clock), min_confidence=0.7)

        assert await handler.handle("show me the yoga mat") is True
        storefront.navigate.assert_called_once_with("/product/p2")
        prompt = oracle.complete.await_args.args[0]
        assert "p2: Flow Yoga Mat" in prompt

    @pytest.mark.asyncio
    async def test_low_confidence_declines(self, make, oracle, storefront, clock):
        oracle.complete.return_value = '{"productId": "p2", "confidence": 0.5}'
        handler = make(ProductNavigationHandler, cooldown=NavigationCooldown(3.0, clock=clock), min_confidence=0.7)

        assert await handler.handle("something comfy") is False
        storefront.navigate.assert_not_called()

    @pytest.mark.asyncio
    async def test_unknown_product_id_declines(self, make, oracle, clock):
        oracle.complete.return_value = '{"productId": "p99", "confidence": 0.95}'
        handler = make(ProductNavigationHandler, cooldown=NavigationCooldown(3.0, clock=clock))
        assert await handler.handle("the blue one") is False


class TestProductActionHandler:
    @pytest.mark.asyncio
    async def test_add_without_size_asks_for_size(self, make, oracle, storefront, speak):
        oracle.complete.return_value = '{"action": "addToCart"}'

        assert await make(ProductActionHandler).handle("add to cart") is True
        storefront.add_to_cart.assert_not_called()
        speak.assert_awaited_once_with("Please select a size first.")

    @pytest.mark.asyncio
    async def test_add_with_size_and_quantity(self, make, oracle, storefront, speak, sample_products):
        oracle.complete.return_value = '{"action": "addToCart", "size": "m", "quantity": 2}'

        assert await make(ProductActionHandler).handle("add two in medium") is True
        storefront.select_size.assert_called_once_with("M")
        storefront.add_to_cart.assert_called_once_with(sample_products[0], "M", 2)
        speak.assert_awaited_once_with("Item added. Do you want to continue browsing or proceed to checkout?")

    @pytest.mark.asyncio
    async def test_single_size_product_auto_selected(self, make, oracle, storefront, sample_products):
        storefront.current_product.return_value = sample_products[1]
        oracle.complete.return_value = '{"action": "addToCart"}'

        assert await make(ProductActionHandler).handle("add it") is True
        storefront.add_to_cart.assert_called_once_with(sample_products[1], "One Size", 1)

    @pytest.mark.asyncio
    async def test_unavailable_size_reported(self, make, oracle, storefront, speak):
        oracle.complete.return_value = '{"action": "size", "size": "XXL"}'

        assert await make(ProductActionHandler).handle("size double xl") is True
        storefront.select_size.assert_not_called()
        assert "Available sizes are S, M, L" in speak.await_args.args[0]

    @pytest.mark.asyncio
    async def test_set_quantity(self, make, oracle, storefront):
        oracle.complete.return_value = '{"action": "quantity", "quantity": 3}'

        assert await make(ProductActionHandler).handle("make it three") is True
        storefront.set_quantity.assert_called_once_with(3)


class TestFilterHandlers:
    @pytest.mark.asyncio
    async def test_apply_filter_canonicalizes_and_clamps_price(self, make, oracle, storefront, action_log):
        oracle.complete.return_value = '{"color": ["black", "purple"], "size": ["M"], "price": [300, 20]}'

        assert await make(ApplyFilterHandler).handle("black under three hundred") is True
        storefront.apply_filters.assert_called_once_with({"color": ["Black"]}, (20.0, 200.0))
        assert action_log.latest.description == "Applied filters: color: Black; price: 20-200"

    @pytest.mark.asyncio
    async def test_apply_filter_nothing_known_declines(self, make, oracle, storefront):
        oracle.complete.return_value = '{"material": ["wool"]}'
        assert await make(ApplyFilterHandler).handle("wool please") is False
        storefront.apply_filters.assert_not_called()

    @pytest.mark.asyncio
    async def test_remove_filter_clear_all(self, make, oracle, storefront):
        oracle.complete.return_value = '{"isRemoveFilter": true, "clearAll": true}'
        assert await make(RemoveFilterHandler).handle("remove everything") is True
        storefront.clear_filters.assert_called_once()

    @pytest.mark.asyncio
    async def test_remove_specific_filter(self, make, oracle, storefront):
        oracle.complete.return_value = '{"isRemoveFilter": true, "filters": {"gender": ["women"]}}'
        assert await make(RemoveFilterHandler).handle("remove the women filter") is True
        storefront.remove_filters.assert_called_once_with({"gender": ["Women"]}, False)

    @pytest.mark.asyncio
    async def test_clear_filters_handler(self, storefront, action_log):
        handler = ClearFiltersHandler(storefront, action_log)
        assert await handler.handle("clear all filters") is True
        storefront.clear_filters.assert_called_once()
        assert action_log.latest.description == "Cleared all filters"


class TestUserInfoHandler:
    @pytest.mark.asyncio
    async def test_writes_only_provided_fields(self, make, oracle):
        store = MagicMock()
        oracle.complete.return_value = '{"isUserInfoUpdate": true, "email": "jane@example.com", "phone": null}'

        assert await make(UserInfoHandler, profile_store=store).handle("my email is jane at example dot com") is True
        store.update.assert_called_once_with({"email": "jane@example.com"})

    @pytest.mark.asyncio
    async def test_not_user_info(self, make, oracle):
        store = MagicMock()
        oracle.complete.return_value = '{"isUserInfoUpdate": false}'
        assert await make(UserInfoHandler, profile_store=store).handle("hello") is False
        store.update.assert_not_called()


class TestOrderCompletionHandler:
    @pytest.mark.asyncio
    async def test_explicit_phrase_starts_checkout(self, make, oracle, storefront, cart_with_items):
        storefront.cart_items.return_value = cart_with_items
        on_checkout = AsyncMock()

        assert await make(OrderCompletionHandler, on_checkout=on_checkout).handle("place my order") is True
        oracle.complete.assert_not_awaited()
        storefront.navigate.assert_called_once_with("/payment")
        on_checkout.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_empty_cart(self, make, storefront, speak):
        on_checkout = AsyncMock()

        assert await make(OrderCompletionHandler, on_checkout=on_checkout).handle("checkout") is True
        on_checkout.assert_not_awaited()
        storefront.navigate.assert_not_called()
        speak.assert_awaited_once_with("Your cart is empty. Add something before checking out.")

    @pytest.mark.asyncio
    async def test_oracle_decides_for_other_phrasings(self, make, oracle, storefront, cart_with_items):
        storefront.cart_items.return_value = cart_with_items
        oracle.complete.return_value = "no"
        on_checkout = AsyncMock()

        assert await make(OrderCompletionHandler, on_checkout=on_checkout).handle("i'm done") is False
        on_checkout.assert_not_awaited()


class TestLanguageHandler:
    @pytest.mark.asyncio
    async def test_switch_to_arabic(self, storefront, action_log):
        handler = LanguageHandler(storefront, action_log)
        assert await handler.handle("switch to arabic") is True
        storefront.set_locale.assert_called_once_with("ar")
        assert action_log.latest.description == "Language switched to Arabic"

    @pytest.mark.asyncio
    async def test_no_switch(self, storefront, action_log):
        assert await LanguageHandler(storefront, action_log).handle("hello") is False


def test_build_handlers_covers_every_routable_intent(oracle, storefront, action_log):
    handlers = build_handlers(oracle, storefront, MagicMock(), action_log, on_checkout=AsyncMock())
    assert set(handlers) == set(Intent) - {Intent.GENERAL_COMMAND}
