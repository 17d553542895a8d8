from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

import storage
from auth import get_current_user
from schemas import Product as ProductSchema, Review as ReviewSchema
from shops import load_shop, managed_shop

router = APIRouter(prefix="/api", tags=["products"])


# Request Models
class CreateProductRequest(BaseModel):
    shop_id: str
    name: str = Field(..., min_length=1, max_length=200)
    description: str = Field("", max_length=5000)
    avatar_url: str = ""
    price: float = Field(..., ge=0)
    quantity: int = Field(0, ge=0)


class UpdateProductRequest(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=5000)
    avatar_url: Optional[str] = None
    price: Optional[float] = Field(None, ge=0)
    quantity: Optional[int] = Field(None, ge=0)


class CreateReviewRequest(BaseModel):
    rating: int = Field(..., ge=1, le=5)
    comment: str = Field("", max_length=2000)


def load_product(product_id: str):
    product = storage.get_product(product_id)
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")
    return product


# Product routes
@router.get("/products")
def list_products(
    search: Optional[str] = Query(None, max_length=100),
    shop_id: Optional[str] = None,
    owner_id: Optional[str] = None,
):
    return storage.list_products(search=search, shop_id=shop_id, owner_id=owner_id)


@router.get("/products/{product_id}")
def get_product(product_id: str):
    return load_product(product_id)


@router.post("/products", status_code=201)
def create_product(payload: CreateProductRequest, current_user=Depends(get_current_user)):
    shop = managed_shop(payload.shop_id, current_user)
    limit = storage.get_settings().get("max_products_per_shop", 0)
    if limit and storage.count_products(shop["id"]) >= limit:
        raise HTTPException(status_code=400, detail=f"A shop may list at most {limit} products")
    product_doc = ProductSchema(**payload.model_dump())
    return storage.create_product(product_doc)


@router.patch("/products/{product_id}")
def update_product(product_id: str, payload: UpdateProductRequest, current_user=Depends(get_current_user)):
    product = load_product(product_id)
    managed_shop(product["shop_id"], current_user)
    return storage.update_product(product["id"], payload.model_dump(exclude_unset=True))


@router.delete("/products/{product_id}")
def delete_product(product_id: str, current_user=Depends(get_current_user)):
    product = load_product(product_id)
    managed_shop(product["shop_id"], current_user)
    storage.delete_product(product["id"])
    return {"message": "Product deleted"}


# Review routes
@router.get("/products/{product_id}/reviews")
def list_reviews(product_id: str):
    product = load_product(product_id)
    return storage.get_reviews_by_product(product["id"])


@router.post("/products/{product_id}/reviews", status_code=201)
def create_review(product_id: str, payload: CreateReviewRequest, current_user=Depends(get_current_user)):
    product = load_product(product_id)
    load_shop(product["shop_id"])
    review_doc = ReviewSchema(product_id=product["id"], user_id=current_user["id"], rating=payload.rating, comment=payload.comment)
    return storage.create_review(review_doc)
