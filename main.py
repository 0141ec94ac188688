"""
FastAPI应用主入口
"""
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.middleware import LoggingMiddleware, RequestIDMiddleware
from api.routes import enrollments, finance, orders, payments, refunds, settlements
from core.config import settings
from core.exceptions import register_exception_handlers
from core.logging_config import configure_logging, get_logger
from core.response import success_response
from infrastructure.container import build_services
from infrastructure.database import create_tables
from infrastructure.external.cache import init_redis_client, shutdown_redis_client
from infrastructure.tasks.scheduler import LedgerScheduler, build_ledger_scheduler


# 初始化日志：在入口处显式配置，避免模块导入时的副作用
configure_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """应用生命周期管理"""
    # 启动时创建数据库表（仅开发环境）。生产应使用 Alembic 迁移
    if settings.DEBUG:
        await create_tables()
        logger.info("database_initialized", message="Database tables created (development)")
    else:
        logger.info(
            "database_migrations_required",
            message="No auto-create in production, use Alembic migrations (alembic upgrade head)"
        )

    # 分布式锁依赖 Redis，未配置时拒绝启动
    try:
        redis_client = await init_redis_client()
    except Exception as exc:
        logger.error("redis_init_failed", error=str(exc))
        raise

    app.state.services = build_services(redis=redis_client.client, namespace=redis_client.namespace)

    scheduler: LedgerScheduler | None = None
    if settings.ledger.scheduler.enabled:
        scheduler = build_ledger_scheduler(app.state.services)
        scheduler.start()

    yield

    if scheduler is not None:
        scheduler.shutdown(wait=True)
    await app.state.services.aclose()
    await shutdown_redis_client()
    logger.info("application_shutdown", message="Application shutdown")


app = FastAPI(
    title=settings.PROJECT_NAME,
    version=settings.VERSION,
    debug=settings.DEBUG,
    lifespan=lifespan,
    description="活动报名资金链路：报名、订单、支付、退款、结算与提现",
)

# 添加中间件（注意顺序：从下往上执行）
# 1. Request ID中间件（最先执行，为后续中间件提供request_id）
app.add_middleware(RequestIDMiddleware)

# 2. 日志中间件（依赖request_id）
app.add_middleware(LoggingMiddleware)

# 3. CORS中间件
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)

for router in (
    enrollments.router,
    orders.router,
    payments.router,
    refunds.router,
    settlements.router,
    finance.router,
):
    app.include_router(router, prefix="/api/v1")


@app.get("/", tags=["Root"])
async def root():
    """API根路径"""
    return success_response(
        data={
            "name": settings.PROJECT_NAME,
            "version": settings.VERSION,
            "docs": "/docs",
            "redoc": "/redoc"
        },
        message="Activity Ledger Service"
    )


@app.get("/health", tags=["Health"])
async def health_check():
    """健康检查端点"""
    return success_response(data={"status": "healthy"}, message="ok")


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG,
        log_level="debug" if settings.DEBUG else "info"
    )
