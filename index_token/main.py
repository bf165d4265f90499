"""메인 애플리케이션 - 모든 모듈 초기화 및 동시 실행"""

from __future__ import annotations

import asyncio
import logging
import os
import signal
import sys
from pathlib import Path

from index_token.basket import BasketRefresher
from index_token.buffer import HistoryBuffer
from index_token.config import Config
from index_token.flusher import HistoryFlusher
from index_token.http_api import start_http_server
from index_token.index_service import IndexService
from index_token.integrity_logger import IntegrityLogger
from index_token.market_data import MarketDataProvider
from index_token.rebalance import RebalanceEngine
from index_token.rebalance_store import CollateralPriceStore, JsonRebalanceStore
from index_token.telegram_reporter import TelegramReporter

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    handlers=[
        logging.StreamHandler(sys.stdout),
    ],
)
logger = logging.getLogger(__name__)


async def main(config_path: str = "config.yaml") -> None:
    """모든 모듈 초기화 및 주기 작업 동시 실행"""
    config = Config.from_yaml(config_path)
    if not config.coinmarketcap_api_key:
        config.coinmarketcap_api_key = os.environ.get("COINMARKETCAP_API_KEY", "")
    if not config.coinmarketcap_api_key:
        logger.warning("[설정] COINMARKETCAP_API_KEY 미설정, 시장 데이터 조회 실패 예상")

    # 디렉토리 생성 (로깅 FileHandler보다 먼저)
    data_dir = Path(config.data_dir)
    data_dir.mkdir(parents=True, exist_ok=True)
    Path(config.log_dir).mkdir(parents=True, exist_ok=True)

    file_handler = logging.FileHandler(
        Path(config.log_dir) / "index_service.log", encoding="utf-8"
    )
    file_handler.setFormatter(
        logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")
    )
    logging.getLogger().addHandler(file_handler)

    # 모듈 초기화
    integrity_logger = IntegrityLogger(config.log_dir)
    telegram = TelegramReporter(config)
    service = IndexService(config, integrity_logger, telegram)
    provider = MarketDataProvider(config)
    token_slug = config.token_name.lower().replace(".", "_")
    store = JsonRebalanceStore(data_dir / f"{token_slug}_rebalance.json")
    collateral = CollateralPriceStore(data_dir / "collateral_prices.json")
    refresher = BasketRefresher(config, provider, service.directory, store,
                                on_refreshed=service.on_basket_refreshed)

    async def refresh_after_rebalance(record) -> None:
        await refresher.refresh_once()

    rebalancer = RebalanceEngine(
        config, service.cache, store, collateral,
        select_basket=provider.fetch_top_basket,
        integrity_logger=integrity_logger, telegram=telegram,
        on_record_persisted=refresh_after_rebalance,
    )
    history = HistoryBuffer()
    flusher = HistoryFlusher(config, service.cache, history)

    await telegram.send_startup_report(config)
    logger.info(f"=== {config.token_name} 인덱스 서비스 시작 ===")
    logger.info(f"바스켓 갱신 주기: {config.basket_refresh_interval}초")

    # 주기적 통계 로그
    async def periodic_log():
        while True:
            await asyncio.sleep(config.stats_interval)
            await integrity_logger.write_periodic_log()

    runner = await start_http_server(service.cache, config.http_host, config.http_port,
                                     store=store)
    await service.broadcaster.serve(config.http_host, config.ws_port)

    service.start_jobs([
        refresher.run(),
        service.broadcaster.run(),
        rebalancer.run(),
        flusher.run_sampler(),
        flusher.run(),
        periodic_log(),
    ])

    # graceful shutdown (신호가 여러 번 와도 이벤트 set만 반복)
    loop = asyncio.get_running_loop()
    shutdown_event = asyncio.Event()

    def _signal_handler():
        logger.info("종료 신호 수신, 정리 작업 시작...")
        shutdown_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, _signal_handler)

    await shutdown_event.wait()

    await service.shutdown()
    await runner.cleanup()

    logger.info("마지막 이력 플러시 실행...")
    try:
        await flusher.flush_now()
    except Exception as e:
        logger.error(f"마지막 플러시 실패: {e}")

    logger.info("=== 시스템 종료 ===")


if __name__ == "__main__":
    config_file = sys.argv[1] if len(sys.argv) > 1 else "config.yaml"
    asyncio.run(main(config_file))
