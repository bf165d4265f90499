"""시스템 설정 모듈 - config.yaml 로드 및 Config 데이터클래스"""

from dataclasses import dataclass, field, asdict
from pathlib import Path

import yaml


@dataclass
class Config:
    """인덱스 토큰 서비스 설정 (config.yaml에서 로드)"""
    token_name: str = "BIT10.TOP"
    total_supply: float = 25_000_000_000_000.0   # 25조
    basket_size: int = 10
    listings_limit: int = 15
    excluded_tags: list[str] = field(default_factory=lambda: ["stablecoin"])
    basket_refresh_interval: int = 1080          # 18분
    broadcast_interval: float = 1.0
    broadcast_send_timeout: float = 5.0
    feed_reconnect_delay: float = 5.0
    hermes_url: str = "https://hermes.pyth.network"
    hermes_ws_url: str = "wss://hermes.pyth.network/ws"
    coinmarketcap_url: str = "https://pro-api.coinmarketcap.com"
    coinmarketcap_api_key: str = ""
    http_host: str = "0.0.0.0"
    http_port: int = 8080
    ws_port: int = 8081
    data_dir: str = "./data"
    log_dir: str = "./logs"
    rebalance_weekday: int = 4                   # 금요일 (월=0)
    rebalance_hour: int = 10                     # UTC
    history_sample_interval: int = 60
    history_flush_interval: int = 3600
    stats_interval: int = 3600
    telegram_bot_token: str = ""
    telegram_chat_id: str = ""

    @classmethod
    def from_yaml(cls, path: str) -> "Config":
        """YAML 파일에서 Config 객체 생성"""
        p = Path(path)
        if not p.exists():
            return cls()
        with open(p, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        return cls(**{k: v for k, v in data.items() if k in cls.__dataclass_fields__})

    def to_yaml(self, path: str) -> None:
        """Config 객체를 YAML 파일로 저장"""
        with open(path, "w", encoding="utf-8") as f:
            yaml.dump(asdict(self), f, default_flow_style=False, allow_unicode=True)

    def to_dict(self) -> dict:
        """Config를 딕셔너리로 변환"""
        return asdict(self)
