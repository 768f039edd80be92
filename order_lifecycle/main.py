import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from order_lifecycle.presentation.admin_api import router as admin_router
from order_lifecycle.presentation.api import router

logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Order Lifecycle Service",
    description="Orders, payment reconciliation, shipping, returns and refunds",
    version="1.0.0",
)

app.include_router(router, prefix="/api")
app.include_router(admin_router, prefix="/api")


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled error on {request.method} {request.url.path}: {exc}", exc_info=exc)
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


@app.get("/")
async def root():
    return {"message": "Order lifecycle service is running"}


@app.get("/health")
async def health():
    return {"status": "healthy"}
