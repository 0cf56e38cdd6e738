"""Shopping cart tools."""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from cart_assistant.analytics.logger import logger
from cart_assistant.mcp.mcp_client import CommerceTool, ToolRegistry, ToolResult
from cart_assistant.mcp.tools.matching import (
    FUZZY_THRESHOLD,
    LINE_KEY_PATTERN,
    parse_position,
    similarity,
)
from cart_assistant.memory.proposal_store import ProposalManager
from cart_assistant.services.commerce_backend import CommerceBackend
from cart_assistant.utils.cache import CART_FAMILY
from cart_assistant.utils.exceptions import PersistenceError, ToolExecutionError

TOOL_VIEW_CART = "view_cart"
TOOL_ADD_TO_CART = "add_to_cart"
TOOL_REMOVE_FROM_CART = "remove_from_cart"
TOOL_CLEAR_CART = "clear_cart"
TOOL_ADD_MULTIPLE_TO_CART = "add_multiple_to_cart"


class AddToCartArgs(BaseModel):
    model_config = ConfigDict(extra="forbid")
    product_id: int = Field(ge=1)
    variation_id: int = Field(default=0, ge=0)
    quantity: int = Field(default=1, ge=1, le=99)


class RemoveFromCartArgs(BaseModel):
    model_config = ConfigDict(extra="forbid")
    identifier: str = Field(min_length=1, max_length=200)

    @field_validator("identifier")
    @classmethod
    def validate_identifier(cls, value: str) -> str:
        clean = value.strip()
        if not clean:
            raise ValueError("identifier cannot be empty")
        return clean


class CartLineArgs(BaseModel):
    model_config = ConfigDict(extra="forbid")
    product_id: int = Field(ge=1)
    variation_id: int = Field(default=0, ge=0)
    quantity: int = Field(default=1, ge=1, le=99)


class AddMultipleToCartArgs(BaseModel):
    model_config = ConfigDict(extra="forbid")
    proposal_id: Optional[str] = Field(default=None, max_length=64)
    products: Optional[List[CartLineArgs]] = Field(default=None, max_length=50)

    @model_validator(mode="after")
    def require_source(self):
        if not self.proposal_id and not self.products:
            raise ValueError("provide either proposal_id or products")
        return self


class ViewCartTool(CommerceTool):
    """Show the current cart."""

    cache_family = CART_FAMILY

    def __init__(self, backend: CommerceBackend, cache_ttl: Optional[int] = 30):
        super().__init__(
            name=TOOL_VIEW_CART,
            description="Show the items currently in the user's cart, with quantities, prices and total.",
            cache_ttl=cache_ttl,
        )
        self.backend = backend

    async def execute(self, args, context) -> ToolResult:
        items = await self.backend.get_cart(context.cart_id)
        if not items:
            return ToolResult.success("Cart is empty", total_items=0, items=[], cart_total=0.0)

        return ToolResult.success(
            total_items=sum(item["quantity"] for item in items),
            items=[{"position": index, **item} for index, item in enumerate(items, start=1)],
            cart_total=round(sum(item["subtotal"] for item in items), 2),
        )


class AddToCartTool(CommerceTool):
    """Add a product to the shopping cart."""

    args_model = AddToCartArgs
    mutates_cart = True

    def __init__(self, backend: CommerceBackend):
        super().__init__(
            name=TOOL_ADD_TO_CART,
            description=(
                "Add one product to the cart. Variable products need the variation_id "
                "returned by search_products."
            ),
        )
        self.backend = backend

    def get_parameters(self) -> Dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "product_id": {"type": "integer", "description": "Product ID to add to cart"},
                "variation_id": {
                    "type": "integer",
                    "description": "Variation ID for variable products (default: 0)",
                },
                "quantity": {
                    "type": "integer",
                    "description": "Quantity to add (default: 1)",
                },
            },
            "required": ["product_id"],
        }

    async def execute(self, args: AddToCartArgs, context) -> ToolResult:
        line = await self.backend.add_to_cart(
            context.cart_id, args.product_id, args.variation_id, args.quantity
        )
        return ToolResult.success(
            f"Added {args.quantity} x {line['product_name']} to cart",
            item=line,
        )


class RemoveFromCartTool(CommerceTool):
    """Remove cart lines by key, position, name or closest name."""

    args_model = RemoveFromCartArgs
    mutates_cart = True

    def __init__(self, backend: CommerceBackend, fuzzy_threshold: float = FUZZY_THRESHOLD):
        super().__init__(
            name=TOOL_REMOVE_FROM_CART,
            description=(
                "Remove items from the cart. The identifier may be a cart item key, a position "
                "in the cart ('2', 'second', 'ii', '2nd') or (part of) the product name."
            ),
        )
        self.backend = backend
        self.fuzzy_threshold = fuzzy_threshold

    def get_parameters(self) -> Dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "identifier": {
                    "type": "string",
                    "description": "Cart item key, position in the cart, or product name",
                },
            },
            "required": ["identifier"],
        }

    async def _remove(self, context, item: Dict[str, Any]):
        removed = await self.backend.remove_line(context.cart_id, item["cart_item_key"])
        if not removed:
            raise ToolExecutionError(
                f"{item['product_name']} is no longer in the cart", tool_name=self.name
            )

    async def execute(self, args: RemoveFromCartArgs, context) -> ToolResult:
        items = await self.backend.get_cart(context.cart_id)
        if not items:
            return ToolResult.error("The cart is empty, there is nothing to remove")

        identifier = args.identifier

        key = identifier.lower()
        if LINE_KEY_PATTERN.match(key):
            for item in items:
                if item["cart_item_key"] == key:
                    await self._remove(context, item)
                    return ToolResult.success(
                        f"Removed {item['product_name']}", removed=[item["product_name"]], matched_by="key"
                    )

        position = parse_position(identifier)
        if position is not None and 1 <= position <= len(items):
            item = items[position - 1]
            await self._remove(context, item)
            return ToolResult.success(
                f"Removed {item['product_name']} (item {position})",
                removed=[item["product_name"]],
                matched_by="position",
                position=position,
            )

        needle = identifier.lower()
        matches = [item for item in items if needle in item["product_name"].lower()]
        if matches:
            for item in matches:
                await self._remove(context, item)
            names = [item["product_name"] for item in matches]
            return ToolResult.success(
                f"Removed {', '.join(names)}", removed=names, matched_by="name"
            )

        best_item, best_score = None, 0.0
        for item in items:
            score = similarity(needle, item["product_name"].lower())
            if score > best_score:
                best_item, best_score = item, score

        if best_item is not None and best_score >= self.fuzzy_threshold:
            await self._remove(context, best_item)
            logger.info(f"Removed '{best_item['product_name']}' by similarity {best_score:.1f}% to '{identifier}'")
            return ToolResult.success(
                f"Removed {best_item['product_name']} (found by similarity)",
                removed=[best_item["product_name"]],
                matched_by="similarity",
                similarity=round(best_score, 1),
            )

        return ToolResult.error(
            f"Could not find '{identifier}' in the cart. Ask the user which item they mean.",
            cart_items=[item["product_name"] for item in items],
        )


class ClearCartTool(CommerceTool):
    """Empty the cart."""

    mutates_cart = True

    def __init__(self, backend: CommerceBackend):
        super().__init__(
            name=TOOL_CLEAR_CART,
            description="Remove every item from the user's cart. Only call after the user confirms.",
        )
        self.backend = backend

    async def execute(self, args, context) -> ToolResult:
        removed = await self.backend.empty_cart(context.cart_id)
        return ToolResult.success("Cart cleared", items_removed=removed)


class AddMultipleToCartTool(CommerceTool):
    """Apply a confirmed proposal, or a raw list of lines, to the cart."""

    args_model = AddMultipleToCartArgs
    mutates_cart = True

    def __init__(self, backend: CommerceBackend, proposals: ProposalManager):
        super().__init__(
            name=TOOL_ADD_MULTIPLE_TO_CART,
            description=(
                "Add several products at once. Prefer passing the proposal_id returned by "
                "create_proposed_cart after the user confirmed it."
            ),
        )
        self.backend = backend
        self.proposals = proposals

    def get_parameters(self) -> Dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "proposal_id": {
                    "type": "string",
                    "description": "ID of a proposal created by create_proposed_cart",
                },
                "products": {
                    "type": "array",
                    "description": "Lines to add when no proposal is used",
                    "items": {
                        "type": "object",
                        "properties": {
                            "product_id": {"type": "integer"},
                            "variation_id": {"type": "integer"},
                            "quantity": {"type": "integer"},
                        },
                        "required": ["product_id"],
                    },
                },
            },
        }

    async def execute(self, args: AddMultipleToCartArgs, context) -> ToolResult:
        if args.proposal_id:
            lines = await self.proposals.redeem(args.proposal_id, context.owner_key)
            if lines is None:
                return ToolResult.error(
                    "Proposal is invalid, expired or was already used. Create a new proposal."
                )
        else:
            lines = [line.model_dump() for line in args.products]

        added: List[Dict[str, Any]] = []
        failed: List[Dict[str, Any]] = []
        for line in lines:
            try:
                item = await self.backend.add_to_cart(
                    context.cart_id,
                    int(line["product_id"]),
                    int(line.get("variation_id") or 0),
                    int(line.get("quantity") or 1),
                )
                added.append({"product_id": item["product_id"], "name": item["product_name"]})
            except ToolExecutionError as e:
                failed.append({"product_id": line.get("product_id"), "reason": e.message})
            except PersistenceError as e:
                logger.warning(f"Bulk add line {line.get('product_id')} not saved: {e.message}")
                failed.append({"product_id": line.get("product_id"), "reason": e.message})

        result = ToolResult.success if added else ToolResult.error
        return result(
            f"Added {len(added)} of {len(lines)} products",
            added=len(added),
            failed=len(failed),
            total_requested=len(lines),
            details={"added_products": added, "failed_products": failed},
        )


def register_cart_tools(
    registry: ToolRegistry,
    backend: CommerceBackend,
    proposals: ProposalManager,
    cart_view_ttl: int = 30,
):
    registry.register(ViewCartTool(backend, cache_ttl=cart_view_ttl))
    registry.register(AddToCartTool(backend))
    registry.register(RemoveFromCartTool(backend))
    registry.register(ClearCartTool(backend))
    registry.register(AddMultipleToCartTool(backend, proposals))
