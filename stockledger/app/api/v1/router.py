from fastapi import APIRouter

from stockledger.app.api.v1.endpoints.inventory import router as inventory_router
from stockledger.app.api.v1.endpoints.cycle_counts import router as cycle_counts_router
from stockledger.app.api.v1.endpoints.physical_inventories import router as physical_inventories_router
from stockledger.app.api.v1.endpoints.locations import router as locations_router
from stockledger.app.api.v1.endpoints.products import router as products_router

router = APIRouter()
router.include_router(inventory_router, tags=["inventory"])
router.include_router(cycle_counts_router, tags=["cycle_counts"])
router.include_router(physical_inventories_router, tags=["physical_inventories"])
router.include_router(locations_router, tags=["locations"])
router.include_router(products_router, tags=["products"])
