from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .api import auth, health, mpesa_proxy, users
from .config import settings
from .logging_config import setup_logging
from .middleware import RequestLoggingMiddleware


@asynccontextmanager
async def lifespan(_app: FastAPI):
    setup_logging()
    yield
    await mpesa_proxy.close_backend_http_client()


# Create FastAPI app
app = FastAPI(
    title="DotPay Wallet API",
    description="Backend-for-frontend for DotPay M-Pesa flows",
    version="0.1.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

app.add_middleware(RequestLoggingMiddleware)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(health.router, tags=["Health"])
app.include_router(auth.router, tags=["Auth"])
app.include_router(mpesa_proxy.router, tags=["M-Pesa"])
app.include_router(users.router, tags=["Users"])


@app.get("/")
async def root():
    """Root endpoint with basic info"""
    return {
        "name": "DotPay Wallet API",
        "version": "0.1.0",
        "description": "Backend-for-frontend for DotPay M-Pesa flows",
        "docs": "/docs",
        "health": "/healthz"
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "dotpay.main:app",
        host=settings.host,
        port=settings.port,
        reload=True,
        log_level=settings.log_level.lower()
    )
