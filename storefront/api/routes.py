from fastapi import APIRouter, Depends, File, HTTPException, Query, Request, Response, UploadFile
from pydantic import BaseModel
from typing import Optional
from storefront.application.service import StorageService
from storefront.application.schemas import (
    Order,
    OrderCreate,
    OrderStatusUpdate,
    Product,
    ProductCreate,
    ProductUpdate,
    StorageResult,
)
from storefront.auth_local import check_admin_password, create_access_token, decode_access_token
from storefront.core.logging_config import get_logger, set_request_context
from storefront.core_settings import Settings
from storefront.domain.models import Category, OrderStatus
from storefront.infrastructure.images import ImageRejected, MAX_IMAGE_BYTES

logger = get_logger(__name__)

BEARER_PREFIX = "Bearer "

def get_storage(request: Request) -> StorageService:
    return request.app.state.storage

def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings

def require_admin(request: Request, settings: Settings = Depends(get_app_settings)) -> dict:
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith(BEARER_PREFIX):
        raise HTTPException(status_code=401, detail="Missing token")
    token_data = decode_access_token(auth_header[len(BEARER_PREFIX):], settings)
    if not token_data:
        raise HTTPException(status_code=401, detail="Invalid token")
    set_request_context(actor=token_data.get("sub"))
    return token_data

def _annotate(response: Response, result: StorageResult) -> None:
    """Expose where the data came from and whether the remote backend was skipped."""
    response.headers["X-Data-Source"] = result.source.value
    response.headers["X-Storage-Degraded"] = "true" if result.fallback_used else "false"

# ----- Admin -----

admin_router = APIRouter(tags=["admin"])

class LoginRequest(BaseModel):
    password: str

class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"

@admin_router.post("/admin/login", response_model=TokenResponse)
def login(payload: LoginRequest, settings: Settings = Depends(get_app_settings)):
    if not check_admin_password(payload.password, settings):
        logger.warning("Admin login refused")
        raise HTTPException(status_code=401, detail="Invalid credentials")
    return TokenResponse(access_token=create_access_token(settings))

@admin_router.post("/images", status_code=201, dependencies=[Depends(require_admin)])
async def upload_image(request: Request, file: UploadFile = File(...)):
    data = await file.read()
    if len(data) > MAX_IMAGE_BYTES:
        raise HTTPException(status_code=413, detail="File size must be less than 5MB")
    storage = get_storage(request)
    if storage.images is None:
        raise HTTPException(status_code=503, detail="Image uploads are not available")
    try:
        url = storage.images.save(data, file.content_type, file.filename)
    except ImageRejected as exc:
        raise HTTPException(status_code=422, detail=str(exc))
    return {"imageUrl": url}

# ----- Products -----

products_router = APIRouter(prefix="/products", tags=["products"])

@products_router.get("/", response_model=list[Product])
def list_products(
    response: Response,
    page: Optional[int] = Query(None, ge=1),
    limit: Optional[int] = Query(None, ge=1, le=100),
    category: Optional[Category] = None,
    storage: StorageService = Depends(get_storage),
):
    result = storage.get_products(page=page, limit=limit, category=category)
    _annotate(response, result)
    return result.value

@products_router.get("/{product_id}", response_model=Product)
def get_product(product_id: str, response: Response, storage: StorageService = Depends(get_storage)):
    result = storage.get_product(product_id)
    if result.value is None:
        raise HTTPException(status_code=404, detail="Product not found")
    _annotate(response, result)
    return result.value

@products_router.post("/", response_model=Product, status_code=201, dependencies=[Depends(require_admin)])
def create_product(payload: ProductCreate, response: Response, storage: StorageService = Depends(get_storage)):
    result = storage.add_product(payload)
    if result.value is None:
        raise HTTPException(status_code=503, detail=result.error or "Product could not be saved")
    _annotate(response, result)
    return result.value

@products_router.put("/{product_id}", response_model=Product, dependencies=[Depends(require_admin)])
def update_product(
    product_id: str,
    payload: ProductUpdate,
    response: Response,
    storage: StorageService = Depends(get_storage),
):
    result = storage.update_product(product_id, payload)
    if not result.ok:
        raise HTTPException(status_code=503, detail=result.error or "Product could not be saved")
    if not result.value:
        raise HTTPException(status_code=404, detail="Product not found")
    _annotate(response, result)
    return storage.get_product(product_id).value

@products_router.delete("/{product_id}", status_code=204, dependencies=[Depends(require_admin)])
def delete_product(product_id: str, storage: StorageService = Depends(get_storage)):
    storage.delete_product(product_id)
    return Response(status_code=204)

# ----- Orders -----

orders_router = APIRouter(prefix="/orders", tags=["orders"])

@orders_router.post("/", response_model=Order, status_code=201)
def create_order(payload: OrderCreate, response: Response, storage: StorageService = Depends(get_storage)):
    result = storage.add_order(payload)
    if result.value is None:
        raise HTTPException(status_code=409, detail=result.error or "Order could not be placed")
    _annotate(response, result)
    return result.value

@orders_router.get("/", response_model=list[Order], dependencies=[Depends(require_admin)])
def list_orders(
    response: Response,
    page: Optional[int] = Query(None, ge=1),
    limit: Optional[int] = Query(None, ge=1, le=100),
    status: Optional[OrderStatus] = None,
    storage: StorageService = Depends(get_storage),
):
    result = storage.get_orders(page=page, limit=limit, status=status)
    _annotate(response, result)
    return result.value

@orders_router.get("/{order_id}", response_model=Order, dependencies=[Depends(require_admin)])
def get_order(order_id: str, response: Response, storage: StorageService = Depends(get_storage)):
    result = storage.get_order(order_id)
    if result.value is None:
        raise HTTPException(status_code=404, detail="Order not found")
    _annotate(response, result)
    return result.value

@orders_router.patch("/{order_id}/status", response_model=Order, dependencies=[Depends(require_admin)])
def update_order_status(
    order_id: str,
    payload: OrderStatusUpdate,
    response: Response,
    storage: StorageService = Depends(get_storage),
):
    result = storage.update_order_status(order_id, payload.status)
    if not result.value:
        raise HTTPException(status_code=404, detail="Order not found")
    _annotate(response, result)
    return storage.get_order(order_id).value

@orders_router.delete("/{order_id}", status_code=204, dependencies=[Depends(require_admin)])
def delete_order(order_id: str, storage: StorageService = Depends(get_storage)):
    storage.delete_order(order_id)
    return Response(status_code=204)
