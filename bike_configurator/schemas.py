from datetime import datetime
from typing import Any, List, Optional, Union

from pydantic import BaseModel, Field, field_validator

from .models import ORDER_STATUSES


def _normalize_option_ids(values: List[Any]) -> List[Union[int, str]]:
	# Integer-like values become ints; anything else is kept as text and
	# reported back as an unknown option
	normalized: List[Union[int, str]] = []
	for value in values:
		if isinstance(value, bool):
			normalized.append(str(value))
		elif isinstance(value, int):
			normalized.append(value)
		elif isinstance(value, str) and value.strip().isascii() and value.strip().isdecimal():
			try:
				normalized.append(int(value.strip()))
			except ValueError:
				# past the interpreter's int conversion limit
				normalized.append(value)
		else:
			normalized.append(str(value))
	return normalized


class SelectionRequest(BaseModel):
	selected_part_option_ids: List[Any]
	product_id: Optional[int] = None

	@field_validator("selected_part_option_ids")
	@classmethod
	def normalize_ids(cls, v: List[Any]) -> List[Union[int, str]]:
		return _normalize_option_ids(v)


class ValidationResponse(BaseModel):
	valid: bool
	errors: List[str]


class PriceResponse(BaseModel):
	total_price: str


class EvaluationResponse(BaseModel):
	validation: ValidationResponse
	pricing: PriceResponse


class PartOptionOut(BaseModel):
	id: int
	part_id: int
	name: str
	price: Optional[str]
	in_stock: bool


class PartOut(BaseModel):
	id: int
	product_id: int
	name: str
	position: int
	part_options: List[PartOptionOut]


class ProductSummaryOut(BaseModel):
	id: int
	name: str
	description: Optional[str]
	base_price: str


class ProductOut(ProductSummaryOut):
	parts: List[PartOut]


class RestrictionOut(BaseModel):
	id: int
	part_option_id: int
	restricted_part_option_id: int


class PriceRuleOut(BaseModel):
	id: int
	part_option_a_id: int
	part_option_b_id: int
	price_premium: str


class OrderCreate(BaseModel):
	customer_name: str = Field(min_length=1)
	customer_email: str = Field(min_length=3)
	selected_part_option_ids: List[Any]
	product_id: Optional[int] = None

	@field_validator("customer_name")
	@classmethod
	def validate_name(cls, v: str) -> str:
		if not v.strip():
			raise ValueError("customer_name must not be blank")
		return v.strip()

	@field_validator("customer_email")
	@classmethod
	def validate_email(cls, v: str) -> str:
		v = v.strip()
		if "@" not in v:
			raise ValueError("customer_email must be an email address")
		return v

	@field_validator("selected_part_option_ids")
	@classmethod
	def normalize_ids(cls, v: List[Any]) -> List[Union[int, str]]:
		return _normalize_option_ids(v)


class OrderCreateRequest(BaseModel):
	order: OrderCreate


class OrderStatusUpdate(BaseModel):
	status: str

	@field_validator("status")
	@classmethod
	def validate_status(cls, v: str) -> str:
		if v not in ORDER_STATUSES:
			raise ValueError(f"status must be one of: {', '.join(ORDER_STATUSES)}")
		return v


class OrderUpdateRequest(BaseModel):
	order: OrderStatusUpdate


class OrderOut(BaseModel):
	id: int
	customer_name: str
	customer_email: str
	product_id: Optional[int]
	selected_part_option_ids: List[int]
	total_price: str
	status: str
	created_at: datetime
