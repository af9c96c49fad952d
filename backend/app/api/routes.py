from fastapi import APIRouter
from .v1 import runs

api_router = APIRouter(prefix="/api", tags=["conductor"])

api_router.include_router(runs.router, prefix="/v1", tags=["runs"])

@api_router.get("/")
def read_root():
    return {"message": "Conductor is running"}
