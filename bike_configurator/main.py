import logging
import os
from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from .catalog import LookupFailure, ProductNotFound
from .db import get_db, init_db
from .models import Order, Part, PartRestriction, PriceRule, Product
from .rules_engine import ConfigurationService, format_cents, to_cents
from .schemas import (
	EvaluationResponse,
	OrderCreateRequest,
	OrderOut,
	OrderUpdateRequest,
	PartOptionOut,
	PartOut,
	PriceResponse,
	PriceRuleOut,
	ProductOut,
	ProductSummaryOut,
	RestrictionOut,
	SelectionRequest,
	ValidationResponse,
)

logger = logging.getLogger("bike_configurator")


def _configure_logging() -> None:
	level_name = os.getenv("APP_LOG_LEVEL", "INFO").upper()
	level = getattr(logging, level_name, logging.INFO)
	if not isinstance(level, int):
		level = logging.INFO
	logging.basicConfig(format="%(asctime)s %(levelname)s %(name)s: %(message)s")
	logger.setLevel(level)


_configure_logging()

app = FastAPI(title="Bike Configurator API")
api = APIRouter(prefix="/api/v1")

# Create tables at startup (simple dev approach; in prod use migrations)
init_db()


@app.exception_handler(LookupFailure)
def lookup_failure_handler(request: Request, exc: LookupFailure):
	logger.error("Lookup failure on %s %s: %s", request.method, request.url.path, exc)
	return JSONResponse(status_code=503, content={"detail": "Catalog or rule data unavailable"})


@app.exception_handler(ProductNotFound)
def product_not_found_handler(request: Request, exc: ProductNotFound):
	return JSONResponse(status_code=404, content={"detail": "Product not found"})


def _money(value) -> Optional[str]:
	if value is None:
		return None
	return format_cents(to_cents(value))


@api.post("/product_configuration/validate_selection", response_model=ValidationResponse)
def validate_selection(req: SelectionRequest, db: Session = Depends(get_db)):
	service = ConfigurationService.from_session(db)
	result = service.validate(req.selected_part_option_ids, product_id=req.product_id)
	return ValidationResponse(valid=result.valid, errors=result.errors)


@api.post("/product_configuration/calculate_price", response_model=PriceResponse)
def calculate_price(req: SelectionRequest, db: Session = Depends(get_db)):
	service = ConfigurationService.from_session(db)
	result = service.price(req.selected_part_option_ids, product_id=req.product_id)
	return PriceResponse(total_price=result.total_price)


@api.post("/product_configuration/evaluate", response_model=EvaluationResponse)
def evaluate_selection(req: SelectionRequest, db: Session = Depends(get_db)):
	service = ConfigurationService.from_session(db)
	evaluation = service.evaluate(req.selected_part_option_ids, product_id=req.product_id)
	return EvaluationResponse(
		validation=ValidationResponse(valid=evaluation.validation.valid, errors=evaluation.validation.errors),
		pricing=PriceResponse(total_price=evaluation.pricing.total_price),
	)


def _product_summary(product: Product) -> ProductSummaryOut:
	return ProductSummaryOut(
		id=product.id,
		name=product.name,
		description=product.description,
		base_price=_money(product.base_price or Decimal("0")),
	)


@api.get("/products", response_model=List[ProductSummaryOut])
def list_products(db: Session = Depends(get_db)):
	products = db.query(Product).order_by(Product.id.asc()).all()
	return [_product_summary(p) for p in products]


@api.get("/products/{product_id}", response_model=ProductOut)
def get_product(product_id: int, db: Session = Depends(get_db)):
	product = db.scalars(
		select(Product)
		.where(Product.id == product_id)
		.options(selectinload(Product.parts).selectinload(Part.part_options))
	).first()
	if not product:
		raise HTTPException(status_code=404, detail="Product not found")

	parts = sorted(product.parts, key=lambda p: (p.position, p.id))
	return ProductOut(
		**_product_summary(product).model_dump(),
		parts=[
			PartOut(
				id=part.id,
				product_id=part.product_id,
				name=part.name,
				position=part.position,
				part_options=[
					PartOptionOut(
						id=o.id,
						part_id=o.part_id,
						name=o.name,
						price=_money(o.price),
						in_stock=o.in_stock,
					)
					for o in part.part_options
				],
			)
			for part in parts
		],
	)


@api.get("/part_restrictions", response_model=List[RestrictionOut])
def list_restrictions(db: Session = Depends(get_db)):
	rows = db.query(PartRestriction).order_by(PartRestriction.id.asc()).all()
	return [
		RestrictionOut(id=r.id, part_option_id=r.part_option_id, restricted_part_option_id=r.restricted_part_option_id)
		for r in rows
	]


@api.get("/price_rules", response_model=List[PriceRuleOut])
def list_price_rules(db: Session = Depends(get_db)):
	rows = db.query(PriceRule).order_by(PriceRule.id.asc()).all()
	return [
		PriceRuleOut(
			id=r.id,
			part_option_a_id=r.part_option_a_id,
			part_option_b_id=r.part_option_b_id,
			price_premium=_money(r.price_premium),
		)
		for r in rows
	]


def _order_out(order: Order) -> OrderOut:
	return OrderOut(
		id=order.id,
		customer_name=order.customer_name,
		customer_email=order.customer_email,
		product_id=order.product_id,
		selected_part_option_ids=order.selected_part_option_ids,
		total_price=_money(order.total_price),
		status=order.status,
		created_at=order.created_at,
	)


@api.post("/orders", response_model=OrderOut, status_code=201)
def create_order(req: OrderCreateRequest, db: Session = Depends(get_db)):
	data = req.order
	if not data.selected_part_option_ids:
		raise HTTPException(status_code=422, detail={"message": "Selection is empty", "errors": []})

	# Client-side gating is advisory; validate and price again from one snapshot
	service = ConfigurationService.from_session(db)
	evaluation = service.evaluate(data.selected_part_option_ids, product_id=data.product_id)
	if not evaluation.validation.valid:
		raise HTTPException(
			status_code=422,
			detail={"message": "Selection is not valid", "errors": evaluation.validation.errors},
		)

	order = Order(
		customer_name=data.customer_name,
		customer_email=data.customer_email,
		product_id=evaluation.product_id,
		selected_part_option_ids=list(dict.fromkeys(data.selected_part_option_ids)),
		total_price=Decimal(evaluation.pricing.total_price),
		status="Pending",
	)
	db.add(order)
	db.commit()
	db.refresh(order)
	logger.info(
		"Order %s placed: %s option(s), total %s",
		order.id,
		len(order.selected_part_option_ids),
		evaluation.pricing.total_price,
	)
	return _order_out(order)


@api.get("/orders", response_model=List[OrderOut])
def list_orders(db: Session = Depends(get_db)):
	orders = db.query(Order).order_by(Order.created_at.desc(), Order.id.desc()).all()
	return [_order_out(o) for o in orders]


@api.get("/orders/{order_id}", response_model=OrderOut)
def get_order(order_id: int, db: Session = Depends(get_db)):
	order = db.get(Order, order_id)
	if not order:
		raise HTTPException(status_code=404, detail="Order not found")
	return _order_out(order)


@api.patch("/orders/{order_id}", response_model=OrderOut)
def update_order(order_id: int, req: OrderUpdateRequest, db: Session = Depends(get_db)):
	order = db.get(Order, order_id)
	if not order:
		raise HTTPException(status_code=404, detail="Order not found")
	if order.status != req.order.status:
		logger.info("Order %s status %s -> %s", order.id, order.status, req.order.status)
		order.status = req.order.status
		db.commit()
		db.refresh(order)
	return _order_out(order)


app.include_router(api)
