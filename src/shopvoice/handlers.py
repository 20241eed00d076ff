"""
Command handlers invoked by the router.

Every handler follows the same contract: `await handle(transcript) -> bool`,
True meaning the command was consumed. Oracle-backed handlers render their
template, decode the answer with `extract_json`, validate it with a pydantic
schema and only then touch the storefront. Any oracle or decoding problem
means "not handled".
"""

from __future__ import annotations

import time
from typing import Any, Awaitable, Callable, Dict, List, Literal, Optional, Type, TypeVar

import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from src.shopvoice.errors import OracleError
from src.shopvoice.fields import contains_order_command
from src.shopvoice.intents import Intent
from src.shopvoice.language import detect_language_switch_command
from src.shopvoice.oracle import Oracle, extract_json
from src.shopvoice.profile import ProfileStore
from src.shopvoice.prompts import render_prompt
from src.shopvoice.router import ActionLog, CommandHandler
from src.shopvoice.storefront import CartItem, Product, Storefront

logger = structlog.get_logger(__name__)

Speak = Callable[[str], Awaitable[None]]
ModelT = TypeVar("ModelT", bound=BaseModel)

_LOCALE_NAMES = {"en": "English", "ar": "Arabic"}


class _Decision(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class NavigationDecision(_Decision):
    action: Literal["back", "home", "none"] = "none"


class CartUpdateDecision(_Decision):
    action: Literal["remove", "increase", "decrease", "set_quantity", "none"] = "none"
    target_item: Optional[str] = Field(default=None, alias="targetItem")
    quantity: Optional[int] = None


class CategoryDecision(_Decision):
    target: Literal["gym", "yoga", "running", "none"] = "none"


CATEGORY_PATHS: Dict[str, str] = {
    "gym": "/products/gym",
    "yoga": "/products/yoga",
    "running": "/products/jogging",
}


class ProductMatch(_Decision):
    product_id: Optional[str] = Field(default=None, alias="productId")
    confidence: float = 0.0


class ProductActionDecision(_Decision):
    action: Literal["size", "quantity", "addToCart", "none"] = "none"
    size: Optional[str] = None
    quantity: Optional[int] = None
    product_name: Optional[str] = Field(default=None, alias="productName")


class FilterSelection(_Decision):
    model_config = ConfigDict(extra="allow")

    price: Optional[List[float]] = None


class RemoveFilterDecision(_Decision):
    is_remove_filter: bool = Field(default=False, alias="isRemoveFilter")
    clear_all: bool = Field(default=False, alias="clearAll")
    filters: Dict[str, List[str]] = Field(default_factory=dict)
    price: bool = False


class UserInfoDecision(_Decision):
    is_user_info_update: bool = Field(default=False, alias="isUserInfoUpdate")
    name: Optional[str] = None
    email: Optional[str] = None
    address: Optional[str] = None
    phone: Optional[str] = None
    card_name: Optional[str] = Field(default=None, alias="cardName")
    card_number: Optional[str] = Field(default=None, alias="cardNumber")
    expiry_date: Optional[str] = Field(default=None, alias="expiryDate")
    cvv: Optional[str] = None


class NavigationCooldown:
    """Blocks repeated page changes for a few seconds after a navigation."""

    def __init__(self, seconds: float, clock: Callable[[], float] = time.monotonic):
        self.seconds = seconds
        self._clock = clock
        self._last: Optional[float] = None

    def ready(self) -> bool:
        return self._last is None or (self._clock() - self._last) >= self.seconds

    def mark(self) -> None:
        self._last = self._clock()


def _find_by_name(name: str, items: List[Any]) -> Optional[Any]:
    target = (name or "").strip().lower()
    if not target:
        return None
    for item in items:
        item_name = item.name.lower()
        if target in item_name or item_name in target:
            return item
    return None


class OracleHandler:
    """Shared plumbing for handlers that consult the oracle."""

    def __init__(
        self,
        oracle: Oracle,
        storefront: Storefront,
        action_log: ActionLog,
        *,
        config: Optional[Any] = None,
        speak: Optional[Speak] = None,
    ):
        self._oracle = oracle
        self._storefront = storefront
        self._action_log = action_log
        self._config = config
        self._speak = speak

    async def _ask(self, template: str, **values: Any) -> Optional[str]:
        try:
            return await self._oracle.complete(render_prompt(template, config=self._config, **values))
        except OracleError as e:
            logger.warning("Oracle unavailable for handler", template=template, error=str(e))
            return None

    async def _ask_yes_no(self, template: str, **values: Any) -> bool:
        answer = await self._ask(template, **values)
        if not answer:
            return False
        return answer.strip().strip("`\"'.").lower().startswith("yes")

    async def _ask_json(self, schema: Type[ModelT], template: str, **values: Any) -> Optional[ModelT]:
        answer = await self._ask(template, **values)
        data = extract_json(answer or "")
        if not isinstance(data, dict):
            logger.info("No structured data from oracle", template=template)
            return None
        try:
            return schema.model_validate(data)
        except ValidationError as e:
            logger.info("Oracle answer failed validation", template=template, error=str(e))
            return None

    async def _say(self, text: str) -> None:
        if self._speak:
            await self._speak(text)

    def _log(self, description: str, success: bool = True) -> None:
        self._action_log.add(description, success=success)


class NavigationHandler(OracleHandler):
    def __init__(self, *args: Any, cooldown: NavigationCooldown, **kwargs: Any):
        super().__init__(*args, **kwargs)
        self._cooldown = cooldown

    async def handle(self, transcript: str) -> bool:
        if not self._cooldown.ready():
            logger.info("Navigation on cooldown")
            return False

        decision = await self._ask_json(NavigationDecision, "navigation", transcript=transcript)
        if decision is None or decision.action == "none":
            return False

        if decision.action == "back":
            self._storefront.go_back()
            self._log("Navigated back")
        else:
            self._storefront.navigate("/")
            self._log("Navigated to home page")
        self._cooldown.mark()
        return True


class CartHandler(OracleHandler):
    """Opens the cart, or applies remove/increase/decrease/set_quantity updates."""

    async def handle(self, transcript: str) -> bool:
        if await self._ask_yes_no("cart_view", transcript=transcript):
            self._storefront.navigate("/cart")
            self._log("Opened cart")
            return True

        items = self._storefront.cart_items()
        if not items:
            return False

        listing = "\n".join(f"- {item.name} (Qty: {item.quantity})" for item in items)
        decision = await self._ask_json(
            CartUpdateDecision, "cart_update", transcript=transcript, cartItems=listing
        )
        if decision is None or decision.action == "none" or not decision.target_item:
            return False

        item = _find_by_name(decision.target_item, items)
        if item is None:
            logger.info("Cart item not found", target=decision.target_item)
            return False
        return self._apply(decision, item)

    def _apply(self, decision: CartUpdateDecision, item: CartItem) -> bool:
        amount = decision.quantity or 1
        if decision.action == "remove":
            new_quantity = 0
        elif decision.action == "increase":
            new_quantity = item.quantity + amount
        elif decision.action == "decrease":
            new_quantity = max(0, item.quantity - amount)
        elif decision.quantity is not None:
            new_quantity = max(0, decision.quantity)
        else:
            return False

        if new_quantity == 0:
            self._storefront.remove_from_cart(item.id)
            self._log(f"Removed {item.name}")
        else:
            self._storefront.update_cart_quantity(item.id, new_quantity)
            self._log(f"Set {item.name} quantity to {new_quantity}")
        return True


class CategoryHandler(OracleHandler):
    async def handle(self, transcript: str) -> bool:
        decision = await self._ask_json(CategoryDecision, "category", transcript=transcript)
        if decision is None or decision.target == "none":
            return False

        self._storefront.clear_filters()
        self._storefront.navigate(CATEGORY_PATHS[decision.target])
        self._log(f"Opened {decision.target} category")
        return True


class ProductNavigationHandler(OracleHandler):
    def __init__(self, *args: Any, cooldown: NavigationCooldown, min_confidence: float = 0.7, **kwargs: Any):
        super().__init__(*args, **kwargs)
        self._cooldown = cooldown
        self._min_confidence = min_confidence

    async def handle(self, transcript: str) -> bool:
        if not self._cooldown.ready():
            logger.info("Navigation on cooldown, skipping product navigation")
            return False

        products = self._storefront.products()
        if not products:
            return False

        listing = "\n".join(f"{p.id}: {p.name} - {p.description}" for p in products)
        match = await self._ask_json(ProductMatch, "product_detail", transcript=transcript, productList=listing)
        if match is None or not match.product_id:
            return False
        if match.confidence < self._min_confidence:
            logger.info("Product match below confidence", confidence=match.confidence)
            return False

        product = next((p for p in products if p.id == match.product_id), None)
        if product is None:
            logger.info("Product id not in catalog", product_id=match.product_id)
            return False

        self._storefront.navigate(f"/product/{product.id}")
        self._cooldown.mark()
        self._log(f"Opened {product.name}")
        return True


class ProductActionHandler(OracleHandler):
    """Size, quantity and add-to-cart on the product being viewed."""

    async def handle(self, transcript: str) -> bool:
        product = self._storefront.current_product()
        decision = await self._ask_json(
            ProductActionDecision,
            "product_action",
            transcript=transcript,
            productName=product.name if product else "none",
            sizes=", ".join(product.sizes) if product else "none",
        )
        if decision is None or decision.action == "none":
            return False

        if decision.product_name:
            named = _find_by_name(decision.product_name, self._storefront.products())
            if named is not None:
                product = named
        if product is None:
            logger.info("No current product for product action")
            return False

        size = self._match_size(product, decision.size)
        if decision.size:
            if size is None:
                if decision.action == "size":
                    await self._say(
                        f"I couldn't find size {decision.size}. "
                        f"Available sizes are {', '.join(product.sizes)}."
                    )
                    return True
            elif size != self._storefront.selected_size():
                self._storefront.select_size(size)
                self._log(f"Size set to {size}")
        if decision.action == "size":
            return size is not None

        if decision.action == "quantity":
            if not decision.quantity or decision.quantity < 1:
                return False
            self._storefront.set_quantity(decision.quantity)
            self._log(f"Quantity set to {decision.quantity}")
            return True

        return await self._add_to_cart(product, size, decision.quantity)

    async def _add_to_cart(self, product: Product, size: Optional[str], quantity: Optional[int]) -> bool:
        size = size or self._storefront.selected_size()
        if not size and len(product.sizes) == 1:
            size = product.sizes[0]
        if not size:
            self._log("Please select a size first", success=False)
            await self._say("Please select a size first.")
            return True

        count = quantity if quantity and quantity > 0 else 1
        self._storefront.add_to_cart(product, size, count)
        self._log(f"Added {count} {product.name} to cart")
        await self._say("Item added. Do you want to continue browsing or proceed to checkout?")
        return True

    @staticmethod
    def _match_size(product: Product, size: Optional[str]) -> Optional[str]:
        if not size:
            return None
        wanted = size.strip().lower()
        return next((s for s in product.sizes if s.lower() == wanted), None)


def _canonical_filters(raw: Dict[str, Any], options: Dict[str, List[str]]) -> Dict[str, List[str]]:
    """Keep only keys/values that exist in the storefront's filter options."""
    selected: Dict[str, List[str]] = {}
    for key, values in raw.items():
        if key not in options or not isinstance(values, list):
            continue
        lookup = {option.lower(): option for option in options[key]}
        kept = [lookup[str(v).lower()] for v in values if str(v).lower() in lookup]
        if kept:
            selected[key] = kept
    return selected


def _describe_filters(filters: Dict[str, List[str]]) -> str:
    return "; ".join(f"{key}: {', '.join(values)}" for key, values in filters.items())


def _format_options(options: Dict[str, List[str]]) -> str:
    return "\n".join(f"- {key}: {', '.join(values)}" for key, values in options.items())


class ApplyFilterHandler(OracleHandler):
    async def handle(self, transcript: str) -> bool:
        options = self._storefront.filter_options()
        selection = await self._ask_json(
            FilterSelection, "apply_filter", transcript=transcript, filterOptions=_format_options(options)
        )
        if selection is None:
            return False

        filters = _canonical_filters(selection.model_extra or {}, options)
        price = None
        if selection.price and len(selection.price) == 2:
            low, high = sorted(selection.price)
            price = (max(0.0, low), min(200.0, high))
        if not filters and price is None:
            return False

        self._storefront.apply_filters(filters, price)
        described = _describe_filters(filters)
        if price is not None:
            described = "; ".join(filter(None, (described, f"price: {price[0]:g}-{price[1]:g}")))
        self._log(f"Applied filters: {described}")
        return True


class RemoveFilterHandler(OracleHandler):
    async def handle(self, transcript: str) -> bool:
        options = self._storefront.filter_options()
        decision = await self._ask_json(
            RemoveFilterDecision, "remove_filter", transcript=transcript, filterOptions=_format_options(options)
        )
        if decision is None or not decision.is_remove_filter:
            return False

        if decision.clear_all:
            self._storefront.clear_filters()
            self._log("Cleared all filters")
            return True

        filters = _canonical_filters(decision.filters, options)
        if not filters and not decision.price:
            return False

        self._storefront.remove_filters(filters, decision.price)
        described = _describe_filters(filters) or "price"
        self._log(f"Removed filters: {described}")
        return True


class ClearFiltersHandler:
    def __init__(self, storefront: Storefront, action_log: ActionLog):
        self._storefront = storefront
        self._action_log = action_log

    async def handle(self, transcript: str) -> bool:
        self._storefront.clear_filters()
        self._action_log.add("Cleared all filters")
        return True


class UserInfoHandler(OracleHandler):
    def __init__(self, *args: Any, profile_store: ProfileStore, **kwargs: Any):
        super().__init__(*args, **kwargs)
        self._profile_store = profile_store

    async def handle(self, transcript: str) -> bool:
        decision = await self._ask_json(UserInfoDecision, "user_info_update", transcript=transcript)
        if decision is None or not decision.is_user_info_update:
            return False

        partial = decision.model_dump(exclude={"is_user_info_update"}, exclude_none=True)
        partial = {key: value for key, value in partial.items() if str(value).strip()}
        if not partial:
            return False

        self._profile_store.update(partial)
        self._log(f"Updated {', '.join(sorted(partial))}")
        return True


class OrderCompletionHandler(OracleHandler):
    """Opens the payment page and starts guided checkout."""

    def __init__(self, *args: Any, on_checkout: Callable[[], Awaitable[None]], **kwargs: Any):
        super().__init__(*args, **kwargs)
        self._on_checkout = on_checkout

    async def handle(self, transcript: str) -> bool:
        explicit = contains_order_command(transcript)
        if not explicit and not await self._ask_yes_no("order_completion", transcript=transcript):
            return False

        if not self._storefront.cart_items():
            self._log("Cart is empty", success=False)
            await self._say("Your cart is empty. Add something before checking out.")
            return True

        self._storefront.navigate("/payment")
        self._log("Starting checkout")
        await self._on_checkout()
        return True


class LanguageHandler:
    def __init__(self, storefront: Storefront, action_log: ActionLog):
        self._storefront = storefront
        self._action_log = action_log

    async def handle(self, transcript: str) -> bool:
        locale = detect_language_switch_command(transcript)
        if locale is None:
            return False
        self._storefront.set_locale(locale)
        self._action_log.add(f"Language switched to {_LOCALE_NAMES[locale]}")
        return True


def build_handlers(
    oracle: Oracle,
    storefront: Storefront,
    profile_store: ProfileStore,
    action_log: ActionLog,
    *,
    on_checkout: Callable[[], Awaitable[None]],
    speak: Optional[Speak] = None,
    config: Optional[Any] = None,
) -> Dict[Intent, CommandHandler]:
    """Wire one handler per intent; GENERAL_COMMAND relies on the fallback chain."""
    if config is None:
        from src.shopvoice.config import get_config

        config = get_config()

    cooldown = NavigationCooldown(config.navigation_cooldown_seconds)
    common: Dict[str, Any] = {"config": config, "speak": speak}
    base = (oracle, storefront, action_log)

    return {
        Intent.NAVIGATION: NavigationHandler(*base, cooldown=cooldown, **common),
        Intent.CART: CartHandler(*base, **common),
        Intent.CATEGORY_NAVIGATION: CategoryHandler(*base, **common),
        Intent.PRODUCT_NAVIGATION: ProductNavigationHandler(
            *base,
            cooldown=cooldown,
            min_confidence=config.product_match_confidence,
            **common,
        ),
        Intent.PRODUCT_ACTION: ProductActionHandler(*base, **common),
        Intent.APPLY_FILTER: ApplyFilterHandler(*base, **common),
        Intent.REMOVE_FILTER: RemoveFilterHandler(*base, **common),
        Intent.CLEAR_FILTERS: ClearFiltersHandler(storefront, action_log),
        Intent.USER_INFO: UserInfoHandler(*base, profile_store=profile_store, **common),
        Intent.ORDER_COMPLETION: OrderCompletionHandler(*base, on_checkout=on_checkout, **common),
        Intent.SWITCH_LANGUAGE: LanguageHandler(storefront, action_log),
    }
