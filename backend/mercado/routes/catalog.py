# Overview: Flask API routes for the product catalog; read-only listings for the storefront and POS.

from flask import Blueprint, request

from ..services import catalog_service
from ..validation import ValidationError, require_positive_int


catalog_bp = Blueprint("catalog", __name__, url_prefix="/api")


@catalog_bp.get("/products")
def list_products_route():
    """
    Product listing with bundle tiers and effective cost.

    Query params:
    - page, limit: optional pagination (all products when page is omitted)
    """
    page = request.args.get("page")
    limit = request.args.get("limit")
    try:
        page = require_positive_int(page, "page") if page is not None else None
        limit = require_positive_int(limit, "limit") if limit is not None else None
    except ValidationError as e:
        return {"error": str(e)}, 400

    return catalog_service.fetch_products(page=page, limit=limit)


@catalog_bp.get("/products/<int:product_id>")
def get_product_route(product_id: int):
    product = catalog_service.get_product(product_id)
    if product is None:
        return {"error": "Product not found"}, 404
    return {"product": product.to_dict()}


@catalog_bp.get("/categories")
def list_categories_route():
    return catalog_service.fetch_categories()
