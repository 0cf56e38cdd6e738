"""Catalog tools: search, add by name and specialty kits."""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from cart_assistant.mcp.mcp_client import CommerceTool, ToolRegistry, ToolResult
from cart_assistant.mcp.tools.kits import AVAILABLE_MODELS, KITS, find_kit
from cart_assistant.mcp.tools.matching import match_catalog, resolve_line
from cart_assistant.services.commerce_backend import MAX_SEARCH_RESULTS, CommerceBackend
from cart_assistant.utils.exceptions import PersistenceError, ToolExecutionError

TOOL_SEARCH_PRODUCTS = "search_products"
TOOL_ADD_PRODUCTS_BY_NAME = "add_products_by_name"
TOOL_SPECIALTY_KITS = "list_or_get_specialty_kit"


class SearchProductsArgs(BaseModel):
    model_config = ConfigDict(extra="forbid")
    query: str = Field(min_length=1, max_length=200)
    limit: int = Field(default=10, ge=1, le=MAX_SEARCH_RESULTS)

    @field_validator("query")
    @classmethod
    def validate_query(cls, value: str) -> str:
        clean = value.strip()
        if not clean:
            raise ValueError("query cannot be empty")
        return clean


class AddProductsByNameArgs(BaseModel):
    model_config = ConfigDict(extra="forbid")
    product_names: List[str] = Field(min_length=1, max_length=50)
    model_name: Optional[str] = Field(default=None, max_length=64)


class SpecialtyKitArgs(BaseModel):
    model_config = ConfigDict(extra="forbid")
    kit_name: Optional[str] = Field(default=None, max_length=100)
    model_name: Optional[str] = Field(default=None, max_length=64)


class SearchProductsTool(CommerceTool):
    """Search the catalog by name."""

    args_model = SearchProductsArgs

    def __init__(self, backend: CommerceBackend, cache_ttl: Optional[int] = 300):
        super().__init__(
            name=TOOL_SEARCH_PRODUCTS,
            description=(
                "Search products by name. Returns ids, prices, stock and, for variable "
                "products, the available variations."
            ),
            cache_ttl=cache_ttl,
        )
        self.backend = backend

    def get_parameters(self) -> Dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "query": {"type": "string", "description": "Product name or part of it"},
                "limit": {
                    "type": "integer",
                    "description": f"Maximum number of results (1-{MAX_SEARCH_RESULTS}, default 10)",
                },
            },
            "required": ["query"],
        }

    async def execute(self, args: SearchProductsArgs, context) -> ToolResult:
        products = await self.backend.search_products(args.query, args.limit)
        if not products:
            return ToolResult.not_found(f"No products found for '{args.query}'", total=0, products=[])
        return ToolResult.success(total=len(products), products=products)


class AddProductsByNameTool(CommerceTool):
    """Match free-text product names against the catalog and add them."""

    args_model = AddProductsByNameArgs
    mutates_cart = True

    def __init__(self, backend: CommerceBackend, default_model: str = "Standard"):
        super().__init__(
            name=TOOL_ADD_PRODUCTS_BY_NAME,
            description=(
                "Add products to the cart by name, choosing the variation that matches "
                "model_name. Use when the user lists specialties by name."
            ),
        )
        self.backend = backend
        self.default_model = default_model

    def get_parameters(self) -> Dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "product_names": {
                    "type": "array",
                    "items": {"type": "string"},
                    "description": "Names of the products to add",
                },
                "model_name": {
                    "type": "string",
                    "description": f"Preferred model, one of {', '.join(AVAILABLE_MODELS)}",
                },
            },
            "required": ["product_names"],
        }

    async def execute(self, args: AddProductsByNameArgs, context) -> ToolResult:
        model = args.model_name or self.default_model
        catalog = await self.backend.list_catalog()

        added: List[Dict[str, Any]] = []
        not_found: List[Dict[str, Any]] = []
        for requested in args.product_names:
            product = match_catalog(requested, catalog)
            if product is None:
                not_found.append({"name": requested, "reason": "not in catalog"})
                continue

            line = resolve_line(product, model)
            if line is None:
                not_found.append({"name": requested, "reason": "no variation available"})
                continue

            try:
                item = await self.backend.add_to_cart(
                    context.cart_id, line["product_id"], line["variation_id"], 1
                )
            except (ToolExecutionError, PersistenceError) as e:
                not_found.append({"name": requested, "reason": e.message})
                continue
            added.append({
                "requested": requested,
                "found": item["product_name"],
                "model": line["variation_name"],
            })

        result = ToolResult.success if added else ToolResult.error
        return result(
            f"Added {len(added)} of {len(args.product_names)} products",
            added=len(added),
            not_found_count=len(not_found),
            total_requested=len(args.product_names),
            added_products=added,
            not_found=not_found,
            model_used=model,
        )


class SpecialtyKitTool(CommerceTool):
    """List kits, or resolve one kit into concrete products for a proposal."""

    args_model = SpecialtyKitArgs

    def __init__(self, backend: CommerceBackend, cache_ttl: Optional[int] = 300,
                 default_model: str = "Standard"):
        super().__init__(
            name=TOOL_SPECIALTY_KITS,
            description=(
                "Without kit_name, list the available specialty kits and models. With kit_name, "
                "return the kit's products in the requested model, ready to be passed to "
                "add_multiple_to_cart once the user confirms."
            ),
            cache_ttl=cache_ttl,
        )
        self.backend = backend
        self.default_model = default_model

    def get_parameters(self) -> Dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "kit_name": {
                    "type": "string",
                    "description": "Kit id or name, e.g. 'friend_class' or 'Friend Class'",
                },
                "model_name": {
                    "type": "string",
                    "description": f"Preferred model, one of {', '.join(AVAILABLE_MODELS)}",
                },
            },
        }

    async def execute(self, args: SpecialtyKitArgs, context) -> ToolResult:
        if not args.kit_name:
            return ToolResult.success(
                total_kits=len(KITS),
                available_models=AVAILABLE_MODELS,
                available_kits=[
                    {
                        "id": kit_id,
                        "name": kit["name"],
                        "description": kit["description"],
                        "total_items": len(kit["items"]),
                    }
                    for kit_id, kit in KITS.items()
                ],
            )

        kit_id, kit = find_kit(args.kit_name)
        if kit is None:
            return ToolResult.error(
                f"Kit '{args.kit_name}' not found", available_kits=list(KITS.keys())
            )

        model = args.model_name or self.default_model
        catalog = await self.backend.list_catalog()
        products: List[Dict[str, Any]] = []
        not_found: List[str] = []
        for specialty in kit["items"]:
            product = match_catalog(specialty, catalog)
            line = resolve_line(product, model) if product else None
            if line is None:
                not_found.append(specialty)
                continue
            products.append({
                "product_id": line["product_id"],
                "variation_id": line["variation_id"],
                "product_name": line["name"],
                "variation_name": line["variation_name"],
                "quantity": 1,
            })

        return ToolResult.success(
            f"Found {len(products)} of {len(kit['items'])} products for {kit['name']}",
            kit_id=kit_id,
            kit_name=kit["name"],
            model_name=model,
            total_requested=len(kit["items"]),
            total_found=len(products),
            products=products,
            not_found=not_found,
        )


def register_product_tools(
    registry: ToolRegistry,
    backend: CommerceBackend,
    search_ttl: int = 300,
    kit_ttl: int = 300,
    default_model: str = "Standard",
):
    registry.register(SearchProductsTool(backend, cache_ttl=search_ttl))
    registry.register(AddProductsByNameTool(backend, default_model=default_model))
    registry.register(SpecialtyKitTool(backend, cache_ttl=kit_ttl, default_model=default_model))
