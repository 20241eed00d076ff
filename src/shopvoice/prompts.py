"""
Instruction templates for the oracle.

Templates use `{placeholder}` markers and are rendered with plain string
replacement (they contain literal JSON braces). Any template can be replaced
by a file named `<template>.txt` inside PROMPT_DIR.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, Optional

import structlog

logger = structlog.get_logger(__name__)

_DEFAULT_MAX_PROMPT_CHARS = 40_000


MASTER_INTENT = """You are a high-precision intent classifier for an e-commerce voice assistant.
Identify the PRIMARY intent of this voice command: "{transcript}"

INTENT CATEGORIES:
- "navigation": go back, go home, move between pages ("go back", "take me home")
- "order_completion": complete the purchase ("place my order", "checkout now")
- "user_info": providing or updating personal or payment details ("my email is...", "update my address")
- "cart": view or manage the shopping cart ("show me my cart", "remove the mat from my cart"). Misheard "card"/"carpet" pages also mean the cart.
- "product_action": act on the product being viewed ("add to cart", "size medium", "quantity 2")
- "product_navigation": open or describe a specific product ("show me the running shoes", "tell me about the blue leggings")
- "remove_filter": remove specific filters ("remove the red filter", "no more size small")
- "category_navigation": browse a category: gym, yoga or running ("I need gym clothes")
- "apply_filter": filter the current list ("show me red items", "women's products")
- "clear_filters": clear every filter ("reset filters")
- "switch_language": change the assistant language ("switch to Arabic", "speak English")
- "general_command": anything else, including small talk, weather or location remarks

DISAMBIGUATION:
- A category plus filters is "category_navigation".
- "I need a medium" is "product_action" on a product page, otherwise "apply_filter".
- Never infer filters from weather, location or pronouns.
- Input may be in Arabic; classify it the same way.

Return ONLY the intent name, with no explanation and no JSON."""

NAVIGATION = """You help shoppers navigate an e-commerce website.
Does this voice command ask to go back or to the home page? "{transcript}"

Return ONLY a JSON object:
{"action": "back" | "home" | "none"}"""

CART_VIEW = """You are a shopping assistant for an e-commerce website.
Does the user want to VIEW their shopping cart? "{transcript}"
("show me my cart", "what's in my cart", "go to cart" all count.)

Return ONLY "yes" or "no"."""

CART_UPDATE = """You are a shopping assistant managing a shopping cart.
Cart contents:
{cartItems}

Voice command: "{transcript}"

Return ONLY a JSON object:
{"action": "remove" | "increase" | "decrease" | "set_quantity" | "none",
 "targetItem": "name of the cart item" | null,
 "quantity": number | null}"""

CATEGORY = """You detect category navigation for a sports apparel store.
Voice command: "{transcript}"

CATEGORIES: "gym" (workout gear, weights), "yoga" (mats, stretching), "running" (shoes, joggers).
Implied categories count ("I want to lift weights" is gym). Unlisted categories are "none".

Return ONLY a JSON object:
{"target": "gym" | "yoga" | "running" | "none"}"""

PRODUCT_DETAIL = """You identify WHICH product the user wants to view.
Voice command: "{transcript}"

PRODUCTS (ID: Name - Description):
{productList}

Prefer exact name matches, then clear semantic matches. Requests to describe a product count.

Return ONLY a JSON object:
{"productId": "id from the list" | null, "confidence": number between 0 and 1}"""

PRODUCT_ACTION = """You are a shopping assistant for a sports apparel website.
The user is viewing: {productName}
Available sizes: {sizes}

Voice command: "{transcript}"

Return ONLY a JSON object:
{"action": "size" | "quantity" | "addToCart" | "none",
 "size": "size exactly as listed" | null,
 "quantity": number | null,
 "productName": "product name explicitly mentioned" | null}"""

APPLY_FILTER = """You extract ONLY explicitly mentioned filters from a voice command.
Voice command: "{transcript}"

Available values (use these exact values only):
{filterOptions}
Price range: between 0 and 200 dollars.

Rules: never infer from pronouns, metaphors, weather or location. When in doubt, leave it out.

Return ONLY a JSON object using the same keys as the available values, each a list,
plus "price": [min, max] or null. Return {} when nothing is mentioned."""

REMOVE_FILTER = """You detect requests to REMOVE product filters.
Voice command: "{transcript}"

Currently available values:
{filterOptions}

Return ONLY a JSON object:
{"isRemoveFilter": true | false,
 "clearAll": true | false,
 "filters": {"<filter key>": ["values to remove"]},
 "price": true | false}
Values must be lowercase. "clearAll" is true for "clear/reset/remove all filters"."""

USER_INFO_UPDATE = """You extract personal or payment details a shopper is providing.
Voice command: "{transcript}"

Return ONLY a JSON object:
{"isUserInfoUpdate": true | false,
 "name": string | null, "email": string | null, "address": string | null, "phone": string | null,
 "cardName": string | null, "cardNumber": string | null, "expiryDate": "MM/YY" | null, "cvv": string | null}"""

ORDER_COMPLETION = """You are a shopping assistant for an e-commerce website.
Does the user want to complete the purchase or place the order? "{transcript}"
("place my order", "finish checkout", "pay now" all count.)

Return ONLY "yes" or "no"."""

TEMPLATES: Dict[str, str] = {
    "master_intent": MASTER_INTENT,
    "navigation": NAVIGATION,
    "cart_view": CART_VIEW,
    "cart_update": CART_UPDATE,
    "category": CATEGORY,
    "product_detail": PRODUCT_DETAIL,
    "product_action": PRODUCT_ACTION,
    "apply_filter": APPLY_FILTER,
    "remove_filter": REMOVE_FILTER,
    "user_info_update": USER_INFO_UPDATE,
    "order_completion": ORDER_COMPLETION,
}


def _read_override(prompt_dir: str, name: str, *, max_chars: int) -> str:
    if not prompt_dir:
        return ""

    file_path = Path(prompt_dir) / f"{name}.txt"
    try:
        content = file_path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return ""
    except UnicodeDecodeError:
        logger.warning("Prompt file decode failed", path=str(file_path))
        return ""

    content = content.strip()
    if len(content) > max_chars:
        logger.warning("Prompt truncated (too long)", path=str(file_path), max_chars=max_chars)
        content = content[:max_chars]
    return content


def render_prompt(
    name: str,
    *,
    config: Optional[Any] = None,
    max_chars: int = _DEFAULT_MAX_PROMPT_CHARS,
    **values: Any,
) -> str:
    """
    Render template `name`, preferring PROMPT_DIR/<name>.txt when present.

    Raises:
        KeyError: If no built-in template has that name
    """
    template = TEMPLATES[name]
    prompt_dir = getattr(config, "prompt_dir", "") if config is not None else ""
    override = _read_override(prompt_dir, name, max_chars=max_chars)
    prompt = override or template

    for key, value in values.items():
        prompt = prompt.replace("{" + key + "}", str(value))
    return prompt
