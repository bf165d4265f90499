"""최신 스냅샷 보관 모듈 - 바스켓 스냅샷, 인덱스 스냅샷 (TTL 없음)"""

from __future__ import annotations

from index_token.models import BasketSnapshot, IndexSnapshot


class BasketSnapshotStore:
    """현재 바스켓 구성 보관 (갱신 시 통째로 교체)"""

    def __init__(self):
        self._current: BasketSnapshot | None = None

    @property
    def current(self) -> BasketSnapshot | None:
        return self._current

    def replace(self, basket: BasketSnapshot) -> None:
        self._current = basket

    def clear(self) -> None:
        self._current = None


class SnapshotCache:
    """최신 IndexSnapshot 보관. 종료 시 clear() 전까지 유지"""

    def __init__(self):
        self._latest: IndexSnapshot | None = None

    def get_latest(self) -> IndexSnapshot | None:
        """첫 계산 전에는 None"""
        return self._latest

    def replace(self, snapshot: IndexSnapshot) -> None:
        # 참조 교체 한 번으로 원자적 갱신 (스냅샷은 불변 객체)
        self._latest = snapshot

    def get_composition(self) -> dict | None:
        """구성 비중 뷰 - 같은 스냅샷에서 파생"""
        snapshot = self._latest
        if snapshot is None:
            return None
        return snapshot.composition()

    def clear(self) -> None:
        self._latest = None
