"""
管理接口

- POST   /webhook        注册 webhook {url, secret}
- GET    /webhooks       查看 webhook 列表
- DELETE /webhook/{url}  删除 webhook（url 需要 URL 编码）
- POST   /watch          设置关注币种 {coins: [...]}
- GET    /watch          查看关注币种
- DELETE /watch          清空关注币种
- POST   /start          开始监听
- POST   /stop           停止监听
- GET    /status         查看监听状态
"""

import time
import logging
from typing import List, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from store import StateStoreError

logger = logging.getLogger(__name__)


class WebhookRequest(BaseModel):
    url: str = Field(min_length=1)
    secret: Optional[str] = None


class WatchRequest(BaseModel):
    coins: List[str]


def create_app(monitor) -> FastAPI:
    """
    创建管理接口

    Args:
        monitor: ListingMonitor 实例

    Returns:
        FastAPI 应用
    """
    app = FastAPI(title="Binance Listing Webhook", version="0.1.0")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        started = time.perf_counter()
        response = await call_next(request)
        elapsed_ms = (time.perf_counter() - started) * 1000
        logger.info(f"{request.method} {request.url.path} {response.status_code} {elapsed_ms:.0f}ms")
        return response

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=400,
            content={"message": "Invalid request body", "detail": _describe_errors(exc)},
        )

    @app.exception_handler(StateStoreError)
    async def state_store_exception_handler(request: Request, exc: StateStoreError):
        logger.critical(f"[错误] 状态保存失败: {exc}")
        return JSONResponse(status_code=500, content={"message": "Failed to persist state"})

    @app.post("/webhook")
    def register_webhook(body: WebhookRequest):
        monitor.add_subscriber(body.url, body.secret)
        return {"message": "Webhook registered"}

    @app.get("/webhooks")
    def list_webhooks():
        return {
            "webhooks": [
                {"url": s.url, "hasSecret": bool(s.secret)} for s in monitor.list_subscribers()
            ]
        }

    @app.delete("/webhook/{url:path}")
    def delete_webhook(url: str):
        monitor.remove_subscriber(url)
        return {"message": "Webhook deleted"}

    @app.post("/watch")
    def set_watch_list(body: WatchRequest):
        watch_list = monitor.set_watch_list(body.coins)
        return {"message": "Watch list updated", "watchList": watch_list}

    @app.get("/watch")
    def get_watch_list():
        return {"watchList": monitor.get_watch_list()}

    @app.delete("/watch")
    def clear_watch_list():
        return {"message": "Watch list cleared", "watchList": monitor.clear_watch_list()}

    @app.post("/start")
    def start_monitoring():
        monitor.start()
        return {"message": "Monitoring started"}

    @app.post("/stop")
    def stop_monitoring():
        monitor.stop()
        return {"message": "Monitoring stopped"}

    @app.get("/status")
    def status():
        return monitor.status()

    return app


def _describe_errors(exc: RequestValidationError) -> List[str]:
    messages = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()) if part != "body")
        messages.append(f"{location or 'body'}: {error.get('msg')}")
    return messages
