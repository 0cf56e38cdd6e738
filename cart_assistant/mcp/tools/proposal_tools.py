"""Two-phase bulk add: validate into a signed proposal before touching the cart."""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from cart_assistant.mcp.mcp_client import STATUS_PROPOSAL_READY, CommerceTool, ToolRegistry, ToolResult
from cart_assistant.mcp.tools.matching import match_catalog, resolve_line
from cart_assistant.memory.proposal_store import ProposalManager
from cart_assistant.services.commerce_backend import CommerceBackend

TOOL_CREATE_PROPOSED_CART = "create_proposed_cart"


class ProposedProduct(BaseModel):
    model_config = ConfigDict(extra="forbid")
    product_name: str = Field(min_length=1, max_length=200)
    variation_name: Optional[str] = Field(default=None, max_length=64)


class CreateProposedCartArgs(BaseModel):
    model_config = ConfigDict(extra="forbid")
    products: List[ProposedProduct] = Field(min_length=1, max_length=50)


class CreateProposedCartTool(CommerceTool):
    """Resolve requested products and stage them; never mutates the cart."""

    args_model = CreateProposedCartArgs

    def __init__(self, backend: CommerceBackend, proposals: ProposalManager,
                 default_model: str = "Standard"):
        super().__init__(
            name=TOOL_CREATE_PROPOSED_CART,
            description=(
                "Check a list of products against the catalog and stage them as a proposal. "
                "Show the proposal to the user and only call add_multiple_to_cart with its "
                "proposal_id after they confirm."
            ),
        )
        self.backend = backend
        self.proposals = proposals
        self.default_model = default_model

    def get_parameters(self) -> Dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "products": {
                    "type": "array",
                    "items": {
                        "type": "object",
                        "properties": {
                            "product_name": {"type": "string"},
                            "variation_name": {"type": "string"},
                        },
                        "required": ["product_name"],
                    },
                },
            },
            "required": ["products"],
        }

    async def execute(self, args: CreateProposedCartArgs, context) -> ToolResult:
        catalog = await self.backend.list_catalog()

        items: List[Dict[str, Any]] = []
        errors: List[str] = []
        for requested in args.products:
            product = match_catalog(requested.product_name, catalog)
            line = resolve_line(product, requested.variation_name or self.default_model) if product else None
            if line is None:
                errors.append(
                    f"Product not found or unavailable: {requested.product_name}"
                    + (f" - {requested.variation_name}" if requested.variation_name else "")
                )
                continue
            items.append({
                "product_id": line["product_id"],
                "variation_id": line["variation_id"],
                "name": line["name"],
                "variation_name": line["variation_name"],
                "quantity": 1,
                "available": True,
            })

        if not items:
            return ToolResult.error("None of the requested products were found", errors=errors)

        created = await self.proposals.create(items, context.owner_key, errors=errors)
        return ToolResult(
            STATUS_PROPOSAL_READY,
            f"Proposal with {len(items)} products ready for confirmation",
            created,
        )


def register_proposal_tools(
    registry: ToolRegistry,
    backend: CommerceBackend,
    proposals: ProposalManager,
    default_model: str = "Standard",
):
    registry.register(CreateProposedCartTool(backend, proposals, default_model=default_model))
