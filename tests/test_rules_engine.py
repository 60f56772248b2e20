import itertools
import logging
import os
import tempfile
from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session

from bike_configurator.catalog import (
	CatalogSnapshot,
	LookupFailure,
	OptionInfo,
	PartInfo,
	PriceRuleInfo,
	ProductInfo,
	ProductNotFound,
	RestrictionInfo,
	RuleSnapshot,
	Snapshot,
	load_snapshot,
)
from bike_configurator.rules_engine import ConfigurationService, format_cents, to_cents

CARBON, ALUMINUM, ROAD, MOUNTAIN, RED, BLUE, GREEN, CHROME, WICKER = range(1, 10)


def _catalog() -> CatalogSnapshot:
	return CatalogSnapshot(
		products=[
			ProductInfo(id=1, name="Trail Bike", base_price=Decimal("150.00")),
			ProductInfo(id=2, name="City Bike", base_price=Decimal("90.00")),
		],
		parts=[
			PartInfo(id=1, product_id=1, name="Frame"),
			PartInfo(id=2, product_id=1, name="Wheels"),
			PartInfo(id=3, product_id=1, name="Color"),
			PartInfo(id=4, product_id=2, name="Basket"),
		],
		options=[
			OptionInfo(id=CARBON, part_id=1, name="Carbon", price=Decimal("500.00")),
			OptionInfo(id=ALUMINUM, part_id=1, name="Aluminum", price=Decimal("200.00"), in_stock=False),
			OptionInfo(id=ROAD, part_id=2, name="Road", price=Decimal("100.00")),
			OptionInfo(id=MOUNTAIN, part_id=2, name="Mountain", price=Decimal("150.00")),
			OptionInfo(id=RED, part_id=3, name="Red", price=Decimal("0")),
			OptionInfo(id=BLUE, part_id=3, name="Blue", price=Decimal("20.00")),
			OptionInfo(id=GREEN, part_id=3, name="Green", price=None),
			OptionInfo(id=CHROME, part_id=3, name="Chrome", price=Decimal("-5.00")),
			OptionInfo(id=WICKER, part_id=4, name="Wicker", price=Decimal("30.00")),
		],
	)


def _rules(restrictions=None, price_rules=None) -> RuleSnapshot:
	if restrictions is None:
		restrictions = [
			RestrictionInfo(id=1, option_a_id=CARBON, option_b_id=ROAD),
			RestrictionInfo(id=2, option_a_id=BLUE, option_b_id=MOUNTAIN),
			RestrictionInfo(id=3, option_a_id=ROAD, option_b_id=BLUE),
		]
	if price_rules is None:
		price_rules = [
			PriceRuleInfo(id=1, option_a_id=MOUNTAIN, option_b_id=CARBON, premium=Decimal("25.50")),
			PriceRuleInfo(id=2, option_a_id=CARBON, option_b_id=MOUNTAIN, premium=Decimal("10.00")),
		]
	return RuleSnapshot(restrictions, price_rules)


@pytest.fixture
def service() -> ConfigurationService:
	return ConfigurationService(Snapshot(catalog=_catalog(), rules=_rules()))


def test_empty_selection_is_valid(service):
	result = service.validate([])
	assert result.valid is True
	assert result.errors == []


def test_empty_selection_prices_at_base(service):
	assert service.price([], product_id=1).total_price == "150.00"
	assert service.price([]).total_price == "0.00"


def test_trail_bike_restriction_scenario(service):
	result = service.validate([CARBON, ROAD])
	assert result.valid is False
	assert result.errors == ["Carbon cannot be combined with Road"]
	assert service.price([CARBON, ROAD]).total_price == "750.00"


def test_trail_bike_out_of_stock_scenario(service):
	result = service.validate([ALUMINUM, ROAD])
	assert result.valid is False
	assert result.errors == ["Aluminum is out of stock"]
	# 150.00 base + 200.00 + 100.00
	assert service.price([ALUMINUM, ROAD]).total_price == "450.00"


def test_restriction_matches_either_selection_order(service):
	forward = service.validate([CARBON, ROAD])
	backward = service.validate([ROAD, CARBON])
	assert forward == backward
	assert not backward.valid


def test_restriction_message_uses_stored_direction(service):
	result = service.validate([MOUNTAIN, BLUE])
	assert result.errors == ["Blue cannot be combined with Mountain"]


def test_duplicate_restriction_rows_each_report():
	rules = _rules(
		restrictions=[
			RestrictionInfo(id=1, option_a_id=CARBON, option_b_id=ROAD),
			RestrictionInfo(id=7, option_a_id=ROAD, option_b_id=CARBON),
		],
		price_rules=[],
	)
	service = ConfigurationService(Snapshot(catalog=_catalog(), rules=rules))
	assert service.validate([CARBON, ROAD]).errors == [
		"Carbon cannot be combined with Road",
		"Road cannot be combined with Carbon",
	]


def test_two_options_for_same_part_conflict(service):
	result = service.validate([ALUMINUM, CARBON])
	assert result.valid is False
	assert result.errors == [
		"Conflicting selection for part Frame: Carbon vs Aluminum",
		"Aluminum is out of stock",
	]


def test_three_options_for_same_part_report_each_pair(service):
	errors = service.validate([RED, BLUE, GREEN]).errors
	assert errors == [
		"Conflicting selection for part Color: Red vs Blue",
		"Conflicting selection for part Color: Red vs Green",
		"Conflicting selection for part Color: Blue vs Green",
	]


def test_unknown_options_reported_in_input_order(service):
	result = service.validate([99, CARBON, "abc", 98, 99])
	assert result.valid is False
	assert result.errors == [
		"Unknown option: 99",
		"Unknown option: abc",
		"Unknown option: 98",
	]


def test_error_groups_follow_fixed_order(service):
	result = service.validate([99, ALUMINUM, CARBON, ROAD, BLUE])
	assert result.errors == [
		"Unknown option: 99",
		"Conflicting selection for part Frame: Carbon vs Aluminum",
		"Aluminum is out of stock",
		"Carbon cannot be combined with Road",
		"Road cannot be combined with Blue",
	]


def test_error_order_independent_of_input_order(service):
	selection = [ALUMINUM, CARBON, ROAD, BLUE]
	expected = service.validate(selection).errors
	for permutation in itertools.permutations(selection):
		assert service.validate(list(permutation)).errors == expected


def test_option_from_other_product(service):
	result = service.validate([CARBON, WICKER], product_id=1)
	assert result.errors == ["Wicker is not available for Trail Bike"]


def test_options_from_two_products_without_product_id(service):
	result = service.validate([WICKER, CARBON])
	assert result.valid is False
	assert result.errors == ["Wicker is not available for Trail Bike"]
	evaluation = service.evaluate([WICKER, CARBON])
	assert evaluation.product_id == 1
	assert evaluation.validation == result


def test_single_product_inferred_from_options(service):
	evaluation = service.evaluate([WICKER])
	assert evaluation.validation.valid is True
	assert evaluation.product_id == 2
	assert evaluation.pricing.total_price == "120.00"
	assert service.evaluate([]).product_id is None


def test_unknown_product_raises(service):
	with pytest.raises(ProductNotFound):
		service.validate([CARBON], product_id=42)
	with pytest.raises(ProductNotFound):
		service.price([CARBON], product_id=42)


def test_price_sums_options_and_every_matching_premium(service):
	# 150 + 500 + 150 + 20, plus both Carbon/Mountain premiums 25.50 and 10.00
	assert service.price([CARBON, MOUNTAIN, BLUE]).total_price == "855.50"


def test_price_is_independent_of_validity(service):
	assert not service.validate([BLUE, MOUNTAIN]).valid
	assert service.price([BLUE, MOUNTAIN]).total_price == "320.00"


def test_price_ignores_unknown_options(service):
	assert service.price([CARBON, 999, "x"]).total_price == "650.00"


def test_price_uses_requested_product_base(service):
	assert service.price([WICKER], product_id=2).total_price == "120.00"
	assert service.price([WICKER]).total_price == "120.00"


def test_missing_or_negative_option_price_counts_as_zero(service, caplog):
	with caplog.at_level(logging.WARNING, logger="bike_configurator.rules_engine"):
		assert service.price([GREEN]).total_price == "150.00"
		assert service.price([CHROME]).total_price == "150.00"
	assert "Option 7 has invalid price" in caplog.text
	assert "Option 8 has invalid price" in caplog.text
	assert service.validate([GREEN]).valid is True


def test_money_is_exact_in_cents():
	catalog = CatalogSnapshot(
		products=[ProductInfo(id=1, name="Kids Bike", base_price=Decimal("0.10"))],
		parts=[PartInfo(id=1, product_id=1, name="Bell")],
		options=[OptionInfo(id=1, part_id=1, name="Ding", price=Decimal("0.20"))],
	)
	service = ConfigurationService(Snapshot(catalog=catalog, rules=RuleSnapshot([], [])))
	result = service.price([1])
	assert result.total_cents == 30
	assert result.total_price == "0.30"


def test_malformed_rule_rows_are_skipped(caplog):
	rules_args = dict(
		restrictions=[RestrictionInfo(id=5, option_a_id=RED, option_b_id=RED)],
		price_rules=[
			PriceRuleInfo(id=8, option_a_id=CARBON, option_b_id=CARBON, premium=Decimal("5.00")),
			PriceRuleInfo(id=9, option_a_id=CARBON, option_b_id=ROAD, premium=Decimal("-3.00")),
		],
	)
	with caplog.at_level(logging.WARNING, logger="bike_configurator.catalog"):
		rules = _rules(**rules_args)
	assert "self-referencing restriction 5" in caplog.text
	assert "self-referencing price rule 8" in caplog.text
	assert "price rule 9 with invalid premium" in caplog.text

	service = ConfigurationService(Snapshot(catalog=_catalog(), rules=rules))
	assert service.validate([RED]).valid is True
	assert service.price([CARBON, ROAD]).total_price == "750.00"


def test_repeated_calls_return_identical_results(service):
	selection = [ALUMINUM, CARBON, ROAD, MOUNTAIN]
	assert service.validate(selection) == service.validate(selection)
	assert service.price(selection) == service.price(selection)


def test_evaluate_returns_both_results(service):
	evaluation = service.evaluate(iter([CARBON, ROAD]))
	assert evaluation.validation.errors == ["Carbon cannot be combined with Road"]
	assert evaluation.pricing.total_price == "750.00"


def test_get_options_by_ids_reports_missing():
	found, missing = _catalog().get_options_by_ids([CARBON, 77, CARBON, True])
	assert list(found) == [CARBON]
	assert missing == [77, True]


def test_inconsistent_catalog_is_a_lookup_failure():
	with pytest.raises(LookupFailure):
		CatalogSnapshot(
			products=[],
			parts=[PartInfo(id=1, product_id=3, name="Frame")],
			options=[],
		)


def test_unreachable_store_is_a_lookup_failure():
	missing_dir = os.path.join(tempfile.gettempdir(), "bike-configurator-missing-dir", "nested")
	broken = create_engine("sqlite:///" + os.path.join(missing_dir, "store.db"))
	with Session(broken) as db:
		with pytest.raises(LookupFailure):
			load_snapshot(db)


def test_money_helpers():
	assert to_cents("10.005") == 1001
	assert to_cents(Decimal("0.1")) == 10
	assert format_cents(5) == "0.05"
	assert format_cents(123456) == "1234.56"
	assert format_cents(-150) == "-1.50"
