"""
Storefront port used by command handlers.

The storefront (page rendering, catalog, cart) lives in the browser; handlers
only talk to it through this interface.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Protocol, Tuple


@dataclass
class Product:
    id: str
    name: str
    description: str = ""
    sizes: List[str] = field(default_factory=list)


@dataclass
class CartItem:
    id: str
    name: str
    quantity: int = 1
    size: str = ""


PriceRange = Tuple[float, float]


class Storefront(Protocol):
    def go_back(self) -> None:
        ...

    def navigate(self, path: str) -> None:
        ...

    def set_locale(self, locale: str) -> None:
        ...

    def current_product(self) -> Optional[Product]:
        ...

    def products(self) -> List[Product]:
        ...

    def cart_items(self) -> List[CartItem]:
        ...

    def add_to_cart(self, product: Product, size: str, quantity: int) -> None:
        ...

    def remove_from_cart(self, item_id: str) -> None:
        ...

    def update_cart_quantity(self, item_id: str, quantity: int) -> None:
        ...

    def selected_size(self) -> Optional[str]:
        ...

    def select_size(self, size: str) -> None:
        ...

    def set_quantity(self, quantity: int) -> None:
        ...

    def filter_options(self) -> Dict[str, List[str]]:
        ...

    def apply_filters(self, filters: Dict[str, List[str]], price: Optional[PriceRange] = None) -> None:
        ...

    def remove_filters(self, filters: Dict[str, List[str]], price: bool = False) -> None:
        ...

    def clear_filters(self) -> None:
        ...
