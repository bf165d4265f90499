"""Pull API 모듈 - 최신 스냅샷 / 구성 비중 / 리밸런스 이력 조회 (aiohttp)"""

from __future__ import annotations

import logging

from aiohttp import web

from index_token.rebalance_store import JsonRebalanceStore
from index_token.snapshot_cache import SnapshotCache

logger = logging.getLogger(__name__)

CACHE_KEY = web.AppKey("snapshot_cache", SnapshotCache)
STORE_KEY = web.AppKey("rebalance_store", JsonRebalanceStore)

NO_DATA = {"error": "No data available"}
METHOD_NOT_ALLOWED = {"error": "Method Not Allowed"}
INTERNAL_ERROR = {"error": "Internal Server Error"}


async def handle_current_price(request: web.Request) -> web.Response:
    if request.method != "GET":
        return web.json_response(METHOD_NOT_ALLOWED, status=405)
    snapshot = request.app[CACHE_KEY].get_latest()
    if snapshot is None:
        return web.json_response(NO_DATA, status=404)
    return web.json_response(snapshot.to_payload())


async def handle_composition(request: web.Request) -> web.Response:
    if request.method != "GET":
        return web.json_response(METHOD_NOT_ALLOWED, status=405)
    composition = request.app[CACHE_KEY].get_composition()
    if composition is None:
        return web.json_response(NO_DATA, status=404)
    return web.json_response(composition)


async def handle_rebalance_history(request: web.Request) -> web.Response:
    """리밸런스 이력 (최신순). 이력이 없으면 빈 목록"""
    if request.method != "GET":
        return web.json_response(METHOD_NOT_ALLOWED, status=405)
    try:
        history = await request.app[STORE_KEY].history()
    except (OSError, ValueError, KeyError) as e:
        logger.error(f"[HTTP] 리밸런스 이력 읽기 실패: {e}")
        return web.json_response(INTERNAL_ERROR, status=500)
    return web.json_response({
        "rebalanceData": [record.to_dict() for record in reversed(history)],
    })


def create_app(cache: SnapshotCache,
               store: JsonRebalanceStore | None = None) -> web.Application:
    """store가 주어지면 /rebalance-history 라우트도 등록"""
    app = web.Application()
    app[CACHE_KEY] = cache
    app.router.add_route("*", "/current-price", handle_current_price)
    app.router.add_route("*", "/composition/balance", handle_composition)
    if store is not None:
        app[STORE_KEY] = store
        app.router.add_route("*", "/rebalance-history", handle_rebalance_history)
    return app


async def start_http_server(cache: SnapshotCache, host: str, port: int,
                            store: JsonRebalanceStore | None = None) -> web.AppRunner:
    """HTTP 서버 시작, 종료 시 runner.cleanup() 호출 필요"""
    runner = web.AppRunner(create_app(cache, store))
    await runner.setup()
    site = web.TCPSite(runner, host, port)
    await site.start()
    logger.info(f"[HTTP] http://{host}:{port} 대기 중")
    return runner
