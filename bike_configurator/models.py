from datetime import datetime
from typing import Optional

from sqlalchemy import (
	JSON,
	Boolean,
	DateTime,
	ForeignKey,
	Integer,
	Numeric,
	String,
	Text,
)
from sqlalchemy.orm import relationship, Mapped, mapped_column

from .db import Base

ORDER_STATUSES = ("Pending", "Processing", "Shipped", "Completed", "Cancelled")


class Product(Base):
	__tablename__ = "products"

	id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
	name: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
	description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
	base_price: Mapped[float] = mapped_column(Numeric(12, 2), default=0, nullable=False)

	parts: Mapped[list["Part"]] = relationship(
		"Part", back_populates="product", order_by="Part.position"
	)


class Part(Base):
	__tablename__ = "parts"

	id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
	product_id: Mapped[int] = mapped_column(ForeignKey("products.id"), nullable=False)
	name: Mapped[str] = mapped_column(String(255), nullable=False)
	position: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

	product: Mapped["Product"] = relationship("Product", back_populates="parts")
	part_options: Mapped[list["PartOption"]] = relationship(
		"PartOption", back_populates="part", order_by="PartOption.id"
	)


class PartOption(Base):
	__tablename__ = "part_options"

	id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
	part_id: Mapped[int] = mapped_column(ForeignKey("parts.id"), nullable=False)
	name: Mapped[str] = mapped_column(String(255), nullable=False)
	# Nullable so that a missing price can be stored and priced as zero
	price: Mapped[Optional[float]] = mapped_column(Numeric(12, 2), nullable=True)
	in_stock: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

	part: Mapped["Part"] = relationship("Part", back_populates="part_options")


class PartRestriction(Base):
	"""Selecting ``part_option_id`` forbids ``restricted_part_option_id``."""

	__tablename__ = "part_restrictions"

	id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
	part_option_id: Mapped[int] = mapped_column(ForeignKey("part_options.id"), nullable=False)
	restricted_part_option_id: Mapped[int] = mapped_column(ForeignKey("part_options.id"), nullable=False)


class PriceRule(Base):
	__tablename__ = "price_rules"

	id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
	part_option_a_id: Mapped[int] = mapped_column(ForeignKey("part_options.id"), nullable=False)
	part_option_b_id: Mapped[int] = mapped_column(ForeignKey("part_options.id"), nullable=False)
	price_premium: Mapped[float] = mapped_column(Numeric(12, 2), nullable=False)


class Order(Base):
	__tablename__ = "orders"

	id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
	customer_name: Mapped[str] = mapped_column(String(255), nullable=False)
	customer_email: Mapped[str] = mapped_column(String(255), nullable=False)
	product_id: Mapped[Optional[int]] = mapped_column(ForeignKey("products.id"), nullable=True)
	selected_part_option_ids: Mapped[list] = mapped_column(JSON, nullable=False)
	total_price: Mapped[float] = mapped_column(Numeric(12, 2), nullable=False)
	status: Mapped[str] = mapped_column(String(32), default="Pending", nullable=False)

	created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)
