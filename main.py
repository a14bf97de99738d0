"""
支付交易服务入口
"""
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.dependencies import shutdown_payment_gateway
from api.middleware import LoggingMiddleware, RequestIDMiddleware
from api.routes import auth as auth_routes
from api.routes import diagnostics as diagnostics_routes
from api.routes import orders as orders_routes
from api.routes import payments as payments_routes
from core.config import settings
from core.exceptions import register_exception_handlers
from core.logging_config import configure_logging, get_logger
from core.response import success_response
from core.settings import payment_settings
from infrastructure.database import create_tables, dispose_engine


configure_logging()
logger = get_logger(__name__)


def _log_gateway_selection() -> None:
    provider = payment_settings.provider
    gateway = payment_settings.authorize_net
    if provider == "authorize_net" and not gateway.configured:
        # 不阻止启动：每次网关调用都会返回通用失败
        logger.warning("payment_gateway_not_configured", provider=provider, environment=gateway.environment)
    logger.info(
        "payment_gateway_selected",
        provider=provider,
        environment=gateway.environment,
        settlement_window_hours=payment_settings.settlement.window_hours,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    if settings.DEBUG:
        await create_tables()
    else:
        logger.info("database_schema_required", backend=settings.database.url.split(":", 1)[0])
    _log_gateway_selection()

    yield

    await shutdown_payment_gateway()
    await dispose_engine()
    logger.info("application_shutdown")


app = FastAPI(
    title=settings.PROJECT_NAME,
    version=settings.VERSION,
    debug=settings.DEBUG,
    lifespan=lifespan,
    description="支付交易生命周期服务：授权、扣款、撤销、退款与结算资格判定",
)

# 后添加的中间件在外层：RequestID 必须包住日志中间件
app.add_middleware(LoggingMiddleware)
app.add_middleware(RequestIDMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)

for module in (auth_routes, payments_routes, orders_routes, diagnostics_routes):
    app.include_router(module.router, prefix="/api/v1")


@app.get("/", tags=["Root"])
async def root():
    return success_response(
        data={
            "name": settings.PROJECT_NAME,
            "version": settings.VERSION,
            "provider": payment_settings.provider,
            "docs": "/docs",
        },
        message="Payment transactions service",
    )


@app.get("/health", tags=["Health"])
async def health_check():
    """存活检查，不访问数据库与网关"""
    return success_response(data={"status": "healthy"}, message="OK")


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG,
        log_level="debug" if settings.DEBUG else "info",
    )
