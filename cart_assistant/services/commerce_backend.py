"""Commerce backend contract and its SQL implementation."""

import secrets
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from cart_assistant.analytics.logger import logger
from cart_assistant.database.db import SessionLocal
from cart_assistant.database.models import CartItem, Product, ProductVariation
from cart_assistant.utils.exceptions import PersistenceError, ToolExecutionError

MAX_SEARCH_RESULTS = 20


class CommerceBackend(ABC):
    """Catalog and cart operations the tools are written against."""

    @abstractmethod
    async def search_products(self, query: str, limit: int = 10) -> List[Dict[str, Any]]:
        ...

    @abstractmethod
    async def list_catalog(self) -> List[Dict[str, Any]]:
        """Every published product, variations included."""

    @abstractmethod
    async def get_product(self, product_id: int) -> Optional[Dict[str, Any]]:
        ...

    @abstractmethod
    async def get_cart(self, cart_id: str) -> List[Dict[str, Any]]:
        """Cart lines in display order."""

    @abstractmethod
    async def add_to_cart(
        self, cart_id: str, product_id: int, variation_id: int = 0, quantity: int = 1
    ) -> Dict[str, Any]:
        ...

    @abstractmethod
    async def remove_line(self, cart_id: str, line_key: str) -> bool:
        ...

    @abstractmethod
    async def empty_cart(self, cart_id: str) -> int:
        ...


def escape_like(value: str) -> str:
    """Make LIKE wildcards in user input match literally."""
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def variation_label(attributes: Optional[Dict[str, Any]]) -> str:
    return ", ".join(str(value) for value in (attributes or {}).values())


def serialize_product(product: Product) -> Dict[str, Any]:
    return {
        "id": product.id,
        "name": product.name,
        "price": product.price,
        "type": product.product_type,
        "in_stock": product.in_stock,
        "variations": [
            {
                "id": variation.id,
                "attributes": variation.attributes or {},
                "price": variation.price,
                "in_stock": variation.in_stock,
            }
            for variation in product.variations
        ],
    }


def serialize_line(item: CartItem) -> Dict[str, Any]:
    return {
        "cart_item_key": item.line_key,
        "product_id": item.product_id,
        "variation_id": item.variation_id or 0,
        "product_name": item.product_name,
        "quantity": item.quantity,
        "price": item.price,
        "subtotal": round((item.price or 0.0) * item.quantity, 2),
    }


class SqlCommerceBackend(CommerceBackend):
    """Catalog and carts stored in the application database."""

    def __init__(self, session_factory=None):
        self.session_factory = session_factory or SessionLocal

    def _products(self, db: Session):
        return (
            db.query(Product)
            .options(selectinload(Product.variations))
            .filter(Product.published.is_(True))
        )

    async def search_products(self, query: str, limit: int = 10) -> List[Dict[str, Any]]:
        limit = max(1, min(int(limit), MAX_SEARCH_RESULTS))
        db = self.session_factory()
        try:
            products = (
                self._products(db)
                .filter(Product.name.ilike(f"%{escape_like(query.strip())}%", escape="\\"))
                .order_by(Product.name)
                .limit(limit)
                .all()
            )
            return [serialize_product(p) for p in products]
        except SQLAlchemyError as e:
            logger.error(f"Error searching products: {e}")
            raise PersistenceError("Product search failed") from e
        finally:
            db.close()

    async def list_catalog(self) -> List[Dict[str, Any]]:
        db = self.session_factory()
        try:
            return [serialize_product(p) for p in self._products(db).order_by(Product.name).all()]
        except SQLAlchemyError as e:
            logger.error(f"Error listing catalog: {e}")
            raise PersistenceError("Catalog listing failed") from e
        finally:
            db.close()

    async def get_product(self, product_id: int) -> Optional[Dict[str, Any]]:
        db = self.session_factory()
        try:
            product = self._products(db).filter(Product.id == product_id).first()
            return serialize_product(product) if product else None
        finally:
            db.close()

    async def get_cart(self, cart_id: str) -> List[Dict[str, Any]]:
        db = self.session_factory()
        try:
            items = (
                db.query(CartItem)
                .filter(CartItem.cart_id == cart_id)
                .order_by(CartItem.id.asc())
                .all()
            )
            return [serialize_line(item) for item in items]
        except SQLAlchemyError as e:
            logger.error(f"Error reading cart: {e}")
            raise PersistenceError("Cart read failed") from e
        finally:
            db.close()

    async def add_to_cart(
        self, cart_id: str, product_id: int, variation_id: int = 0, quantity: int = 1
    ) -> Dict[str, Any]:
        if quantity < 1:
            raise ToolExecutionError("Quantity must be at least 1", tool_name="add_to_cart")

        db = self.session_factory()
        try:
            product = self._products(db).filter(Product.id == product_id).first()
            if not product:
                raise ToolExecutionError(f"Product {product_id} not found", tool_name="add_to_cart")

            name = product.name
            price = product.price
            in_stock = product.in_stock
            if product.product_type == "variable":
                variation = None
                if variation_id:
                    variation = (
                        db.query(ProductVariation)
                        .filter(
                            ProductVariation.id == variation_id,
                            ProductVariation.product_id == product.id,
                        )
                        .first()
                    )
                if variation is None:
                    raise ToolExecutionError(
                        f"{product.name} requires a valid variation_id", tool_name="add_to_cart"
                    )
                label = variation_label(variation.attributes)
                name = f"{product.name} - {label}" if label else product.name
                price = variation.price
                in_stock = variation.in_stock
            else:
                variation_id = 0

            if not in_stock:
                raise ToolExecutionError(f"{name} is out of stock", tool_name="add_to_cart")

            # Check if item already in cart
            existing_item = (
                db.query(CartItem)
                .filter(
                    CartItem.cart_id == cart_id,
                    CartItem.product_id == product.id,
                    CartItem.variation_id == variation_id,
                )
                .first()
            )
            if existing_item:
                existing_item.quantity += quantity
                item = existing_item
            else:
                item = CartItem(
                    cart_id=cart_id,
                    line_key=secrets.token_hex(16),
                    product_id=product.id,
                    variation_id=variation_id,
                    product_name=name,
                    quantity=quantity,
                    price=price,
                )
                db.add(item)
            db.commit()
            db.refresh(item)
            return serialize_line(item)
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Error adding to cart: {e}")
            raise PersistenceError("Cart update failed") from e
        finally:
            db.close()

    async def remove_line(self, cart_id: str, line_key: str) -> bool:
        db = self.session_factory()
        try:
            deleted = (
                db.query(CartItem)
                .filter(CartItem.cart_id == cart_id, CartItem.line_key == line_key)
                .delete()
            )
            db.commit()
            return deleted > 0
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Error removing cart line: {e}")
            raise PersistenceError("Cart update failed") from e
        finally:
            db.close()

    async def empty_cart(self, cart_id: str) -> int:
        db = self.session_factory()
        try:
            deleted = db.query(CartItem).filter(CartItem.cart_id == cart_id).delete()
            db.commit()
            return deleted
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Error emptying cart: {e}")
            raise PersistenceError("Cart update failed") from e
        finally:
            db.close()
