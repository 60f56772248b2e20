from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from itertools import combinations
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy.orm import Session

from .catalog import CatalogSnapshot, OptionInfo, ProductInfo, Snapshot, load_snapshot

logger = logging.getLogger(__name__)


def _to_decimal(value: Any) -> Decimal:
	return Decimal(str(value))


def _round_currency(value: Decimal) -> Decimal:
	return value.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def to_cents(value: Any) -> int:
	"""Convert a money amount to integer minor units, rounding half up."""
	return int(_round_currency(_to_decimal(value)) * 100)


def format_cents(cents: int) -> str:
	sign = "-" if cents < 0 else ""
	whole, fraction = divmod(abs(cents), 100)
	return f"{sign}{whole}.{fraction:02d}"


@dataclass
class ValidationResult:
	valid: bool
	errors: List[str] = field(default_factory=list)


@dataclass
class PriceResult:
	total_cents: int

	@property
	def total_price(self) -> str:
		return format_cents(self.total_cents)


@dataclass
class Evaluation:
	validation: ValidationResult
	pricing: PriceResult
	product_id: Optional[int] = None


def _by_id(options: Dict[int, OptionInfo]) -> List[OptionInfo]:
	return sorted(options.values(), key=lambda o: o.id)


def resolve_product(
	catalog: CatalogSnapshot, options: List[OptionInfo], product_id: Optional[int] = None
) -> Optional[ProductInfo]:
	"""Pick the product a selection is configuring.

	An explicit id wins. Otherwise the product of the lowest-id option is the
	target; an empty selection has none.
	"""
	if product_id is not None:
		return catalog.get_product(product_id)
	if options:
		return catalog.product_for_option(options[0])
	return None


class Validator:
	"""Decides whether a selection is a valid configuration.

	Every check runs and contributes its messages; nothing short-circuits.
	Messages are grouped by kind in a fixed order: unknown options (input
	order), options from another product, part conflicts (part id), stock
	(option id), then restrictions (restriction id).
	"""

	def __init__(self, snapshot: Snapshot):
		self.catalog = snapshot.catalog
		self.rules = snapshot.rules

	def validate(self, selected_option_ids: Iterable[Any], product_id: Optional[int] = None) -> ValidationResult:
		if product_id is not None:
			# an unknown explicit product is raised before anything else
			self.catalog.get_product(product_id)
		found, missing = self.catalog.get_options_by_ids(selected_option_ids)
		options = _by_id(found)
		product = resolve_product(self.catalog, options, product_id)

		errors = [f"Unknown option: {value}" for value in missing]
		if product is not None:
			errors.extend(self._foreign_option_errors(options, product))
		errors.extend(self._part_conflict_errors(options))
		errors.extend(self._stock_errors(options))
		errors.extend(self._restriction_errors(options))
		return ValidationResult(valid=not errors, errors=errors)

	def _foreign_option_errors(self, options: List[OptionInfo], product: ProductInfo) -> List[str]:
		return [
			f"{option.name} is not available for {product.name}"
			for option in options
			if self.catalog.part(option.part_id).product_id != product.id
		]

	def _part_conflict_errors(self, options: List[OptionInfo]) -> List[str]:
		by_part: Dict[int, List[OptionInfo]] = {}
		for option in options:
			by_part.setdefault(option.part_id, []).append(option)
		errors: List[str] = []
		for part_id in sorted(by_part):
			part_name = self.catalog.part(part_id).name
			# options are already in id order, so each pair is too
			for first, second in combinations(by_part[part_id], 2):
				errors.append(f"Conflicting selection for part {part_name}: {first.name} vs {second.name}")
		return errors

	def _stock_errors(self, options: List[OptionInfo]) -> List[str]:
		return [f"{option.name} is out of stock" for option in options if not option.in_stock]

	def _restriction_errors(self, options: List[OptionInfo]) -> List[str]:
		violated = []
		for first, second in combinations(options, 2):
			violated.extend(self.rules.restrictions_for(first.id, second.id))
		violated.sort(key=lambda r: r.id)
		return [
			f"{self.catalog.option(r.option_a_id).name} cannot be combined with {self.catalog.option(r.option_b_id).name}"
			for r in violated
		]


class Pricer:
	"""Computes the total price of a selection in integer cents.

	Unknown ids are left out of the sum. Every price rule matching a selected
	pair adds its premium, so two rules on the same pair both apply.
	"""

	def __init__(self, snapshot: Snapshot):
		self.catalog = snapshot.catalog
		self.rules = snapshot.rules

	def price(self, selected_option_ids: Iterable[Any], product_id: Optional[int] = None) -> PriceResult:
		found, missing = self.catalog.get_options_by_ids(selected_option_ids)
		if missing:
			logger.debug("Pricing without unknown options %s", missing)
		options = _by_id(found)

		total = self._base_cents(resolve_product(self.catalog, options, product_id))
		for option in options:
			total += self._option_cents(option)
		for first, second in combinations(options, 2):
			for rule in self.rules.price_rules_for(first.id, second.id):
				total += to_cents(rule.premium)
		return PriceResult(total_cents=total)

	def _base_cents(self, product: Optional[ProductInfo]) -> int:
		if product is None:
			return 0
		if product.base_price is None or product.base_price < 0:
			logger.warning("Product %s has invalid base price %r; using 0", product.id, product.base_price)
			return 0
		return to_cents(product.base_price)

	def _option_cents(self, option: OptionInfo) -> int:
		if option.price is None or option.price < 0:
			logger.warning("Option %s has invalid price %r; using 0", option.id, option.price)
			return 0
		return to_cents(option.price)


class ConfigurationService:
	"""Validates and prices selections against one snapshot.

	A service instance never reloads data, so a validation and a price taken
	from the same instance always agree on the catalog and rules they saw.
	"""

	def __init__(self, snapshot: Snapshot):
		self.snapshot = snapshot
		self.validator = Validator(snapshot)
		self.pricer = Pricer(snapshot)

	@classmethod
	def from_session(cls, db: Session) -> "ConfigurationService":
		return cls(load_snapshot(db))

	def validate(self, selected_option_ids: Iterable[Any], product_id: Optional[int] = None) -> ValidationResult:
		return self.validator.validate(selected_option_ids, product_id=product_id)

	def price(self, selected_option_ids: Iterable[Any], product_id: Optional[int] = None) -> PriceResult:
		return self.pricer.price(selected_option_ids, product_id=product_id)

	def evaluate(self, selected_option_ids: Iterable[Any], product_id: Optional[int] = None) -> Evaluation:
		selection = list(selected_option_ids)
		validation = self.validate(selection, product_id=product_id)
		pricing = self.price(selection, product_id=product_id)
		found, _missing = self.snapshot.catalog.get_options_by_ids(selection)
		product = resolve_product(self.snapshot.catalog, _by_id(found), product_id)
		logger.debug(
			"Evaluated %d option(s): valid=%s total=%s",
			len(selection),
			validation.valid,
			pricing.total_price,
		)
		return Evaluation(
			validation=validation,
			pricing=pricing,
			product_id=product.id if product is not None else None,
		)
