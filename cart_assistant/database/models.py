"""SQLAlchemy database models."""

from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, Float, ForeignKey, Index, Integer, JSON, String, Text
from sqlalchemy.orm import relationship

from cart_assistant.database.db import Base


def utcnow():
    return datetime.now(timezone.utc)


class ConversationTurn(Base):
    """One append-only unit of a chat transcript."""

    __tablename__ = "conversation_turns"

    id = Column(Integer, primary_key=True, index=True)
    session_id = Column(String(64), nullable=False)
    user_id = Column(Integer, nullable=True, index=True)
    sender = Column(String(32), nullable=False)  # user, ai, function_call, function_response
    content = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    __table_args__ = (Index("ix_turns_session_order", "session_id", "created_at", "id"),)


class AuditLog(Base):
    """Security and operational events, kept apart from chat history."""

    __tablename__ = "audit_log"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, nullable=True)
    session_id = Column(String(64), nullable=True, index=True)
    action = Column(String(64), nullable=False, index=True)
    details = Column(JSON)
    ip_address = Column(String(64))
    user_agent = Column(String(255))
    timestamp = Column(DateTime(timezone=True), default=utcnow, nullable=False)


class Product(Base):
    """Catalog product."""

    __tablename__ = "products"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False, index=True)
    price = Column(Float, default=0.0)
    product_type = Column(String(16), default="simple")  # simple, variable
    in_stock = Column(Boolean, default=True)
    published = Column(Boolean, default=True)

    variations = relationship(
        "ProductVariation", back_populates="product", order_by="ProductVariation.id"
    )


class ProductVariation(Base):
    """One purchasable variant of a variable product."""

    __tablename__ = "product_variations"

    id = Column(Integer, primary_key=True, index=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False)
    attributes = Column(JSON)  # e.g. {"model": "Standard"}
    price = Column(Float, default=0.0)
    in_stock = Column(Boolean, default=True)

    product = relationship("Product", back_populates="variations")


class CartItem(Base):
    """Shopping cart line."""

    __tablename__ = "cart_items"

    id = Column(Integer, primary_key=True, index=True)
    cart_id = Column(String(80), nullable=False, index=True)
    line_key = Column(String(32), unique=True, nullable=False)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False)
    variation_id = Column(Integer, default=0)
    product_name = Column(String, nullable=False)
    quantity = Column(Integer, default=1)
    price = Column(Float, default=0.0)
    created_at = Column(DateTime(timezone=True), default=utcnow)
