"""Side effects requested by ``do`` events.

Cart actions fan out one remote mutation per product ref and wait for all of
them; a failed line is logged and recorded but never cancels or rolls back the
others. Navigation hands the target page to the screen's navigator.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence

from .models import CartAction, CartLine, DoEvent, ProductId, ProductRef
from .utils import normalize_label

logger = logging.getLogger("storefront.actions")

ADD_TO_CART = "add to cart"
REMOVE_FROM_CART = "remove from cart"
GO_TO_PAGE = "go to page"

CART_ACTIONS: Dict[str, CartAction] = {
    ADD_TO_CART: "add",
    REMOVE_FROM_CART: "remove",
}


class CartMutator(Protocol):
    async def mutate_cart(self, line: CartLine, action: CartAction) -> Any:
        ...


class Navigator(Protocol):
    def navigate(self, target_page: str) -> None:
        ...


@dataclass
class MutationFailure:
    """One cart line that could not be applied."""
    product_id: ProductId
    quantity: int
    error: str


@dataclass
class ActionOutcome:
    """Aggregate result of executing one do-event."""
    action: str
    recognized: bool = True
    attempted: int = 0
    succeeded: int = 0
    failures: List[MutationFailure] = field(default_factory=list)
    navigated_to: Optional[str] = None
    cart_refresh_requested: bool = False

    @property
    def failed(self) -> int:
        return len(self.failures)


def cart_line_for(ref: ProductRef) -> CartLine:
    """Quantity defaults to 1 when the assistant leaves it out (or sends 0)."""
    return CartLine(id=ref.id, quantity=ref.quantity or 1)


class ActionExecutor:
    """Executes cart and navigation actions for do-events."""

    def __init__(
        self,
        cart: CartMutator,
        navigator: Optional[Navigator] = None,
        on_cart_changed: Optional[Callable[[], None]] = None,
    ) -> None:
        """Purpose: Wire the executor to its cart, navigation and refresh hooks.
        Inputs/Outputs: Inputs are a CartMutator, optional Navigator and an
            optional refresh callback; no return value.
        Side Effects / State: Stores collaborators only.
        Dependencies: CartMutator.mutate_cart, Navigator.navigate.
        Failure Modes: None at init.
        If Removed: Do-events become text-only replies.
        Testing Notes: Use fakes that record calls and raise on chosen ids.
        """
        self._cart = cart
        self._navigator = navigator
        self._on_cart_changed = on_cart_changed

    async def execute(self, event: DoEvent) -> ActionOutcome:
        """Purpose: Perform the side effect named by a do-event.
        Inputs/Outputs: Input is a DoEvent; output is an ActionOutcome.
        Side Effects / State: Remote cart mutations, navigation, refresh signal.
        Dependencies: _run_cart_fan_out and _navigate.
        Failure Modes: Never raises for mutation or navigation errors; those are
            logged and recorded. Unrecognized actions are logged no-ops.
        If Removed: "add to cart" replies would not change the cart.
        Testing Notes: N refs -> N calls even when some of them fail.
        """
        # Dispatch on the normalized action label.
        action = normalize_label(event.action)
        outcome = ActionOutcome(action=action)

        if action in CART_ACTIONS:
            await self._run_cart_fan_out(event.product_refs or [], CART_ACTIONS[action], outcome)
        elif action == GO_TO_PAGE:
            self._navigate(event.target_page, outcome)
        else:
            outcome.recognized = False
            logger.info("unknown action=%r ignored", event.action)
        return outcome

    async def _run_cart_fan_out(
        self, refs: Sequence[ProductRef], cart_action: CartAction, outcome: ActionOutcome
    ) -> None:
        if not refs:
            logger.info("action=%s has no products, nothing to do", outcome.action)
            return

        lines = [cart_line_for(ref) for ref in refs]
        outcome.attempted = len(lines)
        results = await asyncio.gather(
            *(self._cart.mutate_cart(line, cart_action) for line in lines),
            return_exceptions=True,
        )
        for line, result in zip(lines, results):
            if isinstance(result, BaseException):
                outcome.failures.append(
                    MutationFailure(product_id=line.id, quantity=line.quantity, error=str(result) or type(result).__name__)
                )
                logger.warning(
                    "cart %s failed product=%s quantity=%d error=%s",
                    cart_action,
                    line.id,
                    line.quantity,
                    result,
                )
            else:
                outcome.succeeded += 1
        logger.info(
            "cart %s settled attempted=%d succeeded=%d failed=%d",
            cart_action,
            outcome.attempted,
            outcome.succeeded,
            outcome.failed,
        )

        outcome.cart_refresh_requested = True
        if self._on_cart_changed is not None:
            try:
                self._on_cart_changed()
            except Exception:
                logger.exception("cart refresh listener failed after %s", cart_action)

    def _navigate(self, target_page: Optional[str], outcome: ActionOutcome) -> None:
        if not target_page:
            logger.info("go to page without target page ignored")
            return
        if self._navigator is None:
            logger.info("no navigator attached, dropping target=%s", target_page)
            return
        logger.info("navigating to target=%s", target_page)
        try:
            self._navigator.navigate(target_page)
        except Exception:
            logger.exception("navigation to %s failed", target_page)
            return
        outcome.navigated_to = target_page
