from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .db import snapshot_scope
from .models import Part, PartOption, PartRestriction, PriceRule, Product

logger = logging.getLogger(__name__)


class LookupFailure(Exception):
	"""Raised when catalog or rule data cannot be read or is inconsistent."""


class ProductNotFound(LookupError):
	def __init__(self, product_id: Any):
		super().__init__(f"Product not found: {product_id}")
		self.product_id = product_id


@dataclass(frozen=True)
class ProductInfo:
	id: int
	name: str
	base_price: Optional[Decimal]
	description: Optional[str] = None


@dataclass(frozen=True)
class PartInfo:
	id: int
	product_id: int
	name: str


@dataclass(frozen=True)
class OptionInfo:
	id: int
	part_id: int
	name: str
	price: Optional[Decimal]
	in_stock: bool = True


@dataclass(frozen=True)
class RestrictionInfo:
	id: int
	option_a_id: int
	option_b_id: int


@dataclass(frozen=True)
class PriceRuleInfo:
	id: int
	option_a_id: int
	option_b_id: int
	premium: Optional[Decimal]


def pair_key(a: int, b: int) -> Tuple[int, int]:
	return (a, b) if a <= b else (b, a)


def _is_option_id(value: Any) -> bool:
	return isinstance(value, int) and not isinstance(value, bool)


class CatalogSnapshot:
	"""Immutable view of products, parts and options for one evaluation."""

	def __init__(
		self,
		products: Iterable[ProductInfo],
		parts: Iterable[PartInfo],
		options: Iterable[OptionInfo],
	):
		self._products: Dict[int, ProductInfo] = {p.id: p for p in products}
		self._parts: Dict[int, PartInfo] = {p.id: p for p in parts}
		self._options: Dict[int, OptionInfo] = {o.id: o for o in options}
		for part in self._parts.values():
			if part.product_id not in self._products:
				raise LookupFailure(f"Part {part.id} references missing product {part.product_id}")
		for option in self._options.values():
			if option.part_id not in self._parts:
				raise LookupFailure(f"Option {option.id} references missing part {option.part_id}")

	def get_product(self, product_id: Any) -> ProductInfo:
		try:
			return self._products[product_id]
		except (KeyError, TypeError):
			raise ProductNotFound(product_id) from None

	def get_options_by_ids(self, ids: Iterable[Any]) -> Tuple[Dict[int, OptionInfo], List[Any]]:
		"""Resolve option ids, returning ``(found, missing)``.

		Duplicates collapse to their first occurrence and ``missing`` keeps
		input order. Values that are not integers are always missing.
		"""
		found: Dict[int, OptionInfo] = {}
		missing: List[Any] = []
		seen = set()
		for value in ids:
			# keyed by type too, so True is not folded into option 1
			key = (type(value), value)
			if key in seen:
				continue
			seen.add(key)
			option = self._options.get(value) if _is_option_id(value) else None
			if option is None:
				missing.append(value)
			else:
				found[option.id] = option
		return found, missing

	def option(self, option_id: int) -> OptionInfo:
		return self._options[option_id]

	def part(self, part_id: int) -> PartInfo:
		return self._parts[part_id]

	def product_for_option(self, option: OptionInfo) -> ProductInfo:
		return self._products[self._parts[option.part_id].product_id]


class RuleSnapshot:
	"""Restrictions and price rules indexed by unordered option pair.

	Rows that cannot be applied (an option paired with itself, a missing or
	negative premium) are logged and left out of the index.
	"""

	def __init__(self, restrictions: Iterable[RestrictionInfo], price_rules: Iterable[PriceRuleInfo]):
		self.restrictions: Tuple[RestrictionInfo, ...] = tuple(sorted(restrictions, key=lambda r: r.id))
		self.price_rules: Tuple[PriceRuleInfo, ...] = tuple(sorted(price_rules, key=lambda r: r.id))
		self._restrictions_by_pair: Dict[Tuple[int, int], List[RestrictionInfo]] = {}
		self._price_rules_by_pair: Dict[Tuple[int, int], List[PriceRuleInfo]] = {}

		for restriction in self.restrictions:
			if restriction.option_a_id == restriction.option_b_id:
				logger.warning(
					"Ignoring self-referencing restriction %s on option %s",
					restriction.id,
					restriction.option_a_id,
				)
				continue
			key = pair_key(restriction.option_a_id, restriction.option_b_id)
			self._restrictions_by_pair.setdefault(key, []).append(restriction)

		for rule in self.price_rules:
			if rule.option_a_id == rule.option_b_id:
				logger.warning("Ignoring self-referencing price rule %s on option %s", rule.id, rule.option_a_id)
				continue
			if rule.premium is None or rule.premium < 0:
				logger.warning("Ignoring price rule %s with invalid premium %r", rule.id, rule.premium)
				continue
			key = pair_key(rule.option_a_id, rule.option_b_id)
			self._price_rules_by_pair.setdefault(key, []).append(rule)

	def restrictions_for(self, a: int, b: int) -> Sequence[RestrictionInfo]:
		return self._restrictions_by_pair.get(pair_key(a, b), ())

	def price_rules_for(self, a: int, b: int) -> Sequence[PriceRuleInfo]:
		return self._price_rules_by_pair.get(pair_key(a, b), ())


@dataclass(frozen=True)
class Snapshot:
	catalog: CatalogSnapshot
	rules: RuleSnapshot


def _decimal_or_none(value: Any) -> Optional[Decimal]:
	if value is None:
		return None
	return Decimal(str(value))


def load_snapshot(db: Session) -> Snapshot:
	"""Read every catalog and rule row once and freeze them into a Snapshot."""
	try:
		with snapshot_scope(db):
			products = [
				ProductInfo(
					id=p.id,
					name=p.name,
					base_price=_decimal_or_none(p.base_price),
					description=p.description,
				)
				for p in db.scalars(select(Product).order_by(Product.id))
			]
			parts = [
				PartInfo(id=p.id, product_id=p.product_id, name=p.name)
				for p in db.scalars(select(Part).order_by(Part.id))
			]
			options = [
				OptionInfo(
					id=o.id,
					part_id=o.part_id,
					name=o.name,
					price=_decimal_or_none(o.price),
					in_stock=bool(o.in_stock),
				)
				for o in db.scalars(select(PartOption).order_by(PartOption.id))
			]
			restrictions = [
				RestrictionInfo(id=r.id, option_a_id=r.part_option_id, option_b_id=r.restricted_part_option_id)
				for r in db.scalars(select(PartRestriction).order_by(PartRestriction.id))
			]
			price_rules = [
				PriceRuleInfo(
					id=r.id,
					option_a_id=r.part_option_a_id,
					option_b_id=r.part_option_b_id,
					premium=_decimal_or_none(r.price_premium),
				)
				for r in db.scalars(select(PriceRule).order_by(PriceRule.id))
			]
	except SQLAlchemyError as exc:
		logger.error("Failed to load catalog snapshot: %s", exc)
		raise LookupFailure("Catalog or rule data unavailable") from exc

	return Snapshot(
		catalog=CatalogSnapshot(products, parts, options),
		rules=RuleSnapshot(restrictions, price_rules),
	)
