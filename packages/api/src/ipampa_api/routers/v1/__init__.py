from fastapi import APIRouter

from ipampa_api.routers.v1 import ipampa

v1_router = APIRouter(prefix="/v1")

v1_router.include_router(ipampa.router)
