"""Shared fixtures and fakes for the pipeline tests."""

import asyncio
import logging
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

import pytest

import quran_endpoints
from quran_endpoints import (
    AyahMeta,
    AyahText,
    Config,
    DataCollectionError,
    JsonStore,
    SurahInfo,
    TafseerEntry,
)


def make_surah(number: int, total_ayat: int, name: str = "") -> SurahInfo:
    return SurahInfo(
        number=number,
        name_arabic=f"سورة {number}",
        name_arabic_long=f"سُورَة {number}",
        name_english=name or f"Surah {number}",
        revelation_place="Mecca",
        total_ayat=total_ayat,
    )


AL_FATIHAH = make_surah(1, 7, "Al-Fatiha")


def default_meta(surah_number: int, ayah_number: int) -> AyahMeta:
    return AyahMeta(page=surah_number, juz=1, hizb_quarter=ayah_number)


class FakeQuranClient:
    """In-memory stand-in for QuranAPIClient."""

    def __init__(
        self,
        surahs: List[SurahInfo],
        meta: Callable[[int, int], AyahMeta] = default_meta,
        text_failures: Optional[Dict[Tuple[int, int], int]] = None,
        tafseer_failures: Optional[Dict[Tuple[int, int], int]] = None,
        index_fails: bool = False,
        tafseer_delay: Callable[[int, int], float] = lambda s, a: 0.0,
    ):
        self.surahs = surahs
        self.meta = meta
        self.text_failures = dict(text_failures or {})
        self.tafseer_failures = dict(tafseer_failures or {})
        self.index_fails = index_fails
        self.tafseer_delay = tafseer_delay
        self.text_calls: List[Tuple[int, int]] = []
        self.meta_calls: List[Tuple[int, int]] = []
        self.tafseer_calls: List[Tuple[int, int]] = []
        self.active_tafseer = 0
        self.max_active_tafseer = 0

    async def __aenter__(self) -> "FakeQuranClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        return None

    @staticmethod
    def _maybe_fail(failures: Dict[Tuple[int, int], int], key: Tuple[int, int]) -> None:
        remaining = failures.get(key, 0)
        if remaining:
            failures[key] = remaining - 1
            raise DataCollectionError(f"upstream down for {key}")

    async def get_surahs(self) -> List[SurahInfo]:
        if self.index_fails:
            raise DataCollectionError("index unavailable")
        return list(self.surahs)

    async def get_ayah_info(self, surah_number: int, ayah_number: int) -> AyahText:
        self.text_calls.append((surah_number, ayah_number))
        self._maybe_fail(self.text_failures, (surah_number, ayah_number))
        return AyahText(
            ayah_number=ayah_number,
            arabic1=f"آية {surah_number}:{ayah_number}",
            arabic2=f"ءاية {surah_number}:{ayah_number}",
            english=f"Verse {surah_number}:{ayah_number}",
        )

    async def get_ayah_metadata(self, surah_number: int, ayah_number: int) -> AyahMeta:
        self.meta_calls.append((surah_number, ayah_number))
        return self.meta(surah_number, ayah_number)

    async def get_ayah_tafseer(self, surah_number: int, ayah_number: int) -> List[TafseerEntry]:
        self.tafseer_calls.append((surah_number, ayah_number))
        self.active_tafseer += 1
        self.max_active_tafseer = max(self.max_active_tafseer, self.active_tafseer)
        try:
            await asyncio.sleep(self.tafseer_delay(surah_number, ayah_number))
            self._maybe_fail(self.tafseer_failures, (surah_number, ayah_number))
            return [
                TafseerEntry(book_name=f"Book {i}", text=f"{surah_number}:{ayah_number} #{i}")
                for i in range(1, 8)
            ]
        finally:
            self.active_tafseer -= 1


@pytest.fixture
def logger() -> logging.Logger:
    return logging.getLogger("quran-endpoints-tests")


@pytest.fixture
def config(tmp_path: Path) -> Config:
    return Config(
        data_dir=tmp_path / "data",
        retry_delay=0,
        pacing_delay=0,
        log_file=None,
    )


@pytest.fixture
def store(config: Config, logger: logging.Logger) -> JsonStore:
    return JsonStore(config.data_dir, logger)


@pytest.fixture
def delays(monkeypatch: pytest.MonkeyPatch) -> List[float]:
    """Record every pipeline delay instead of sleeping."""
    recorded: List[float] = []

    async def fake_delay(seconds: float) -> None:
        recorded.append(seconds)

    monkeypatch.setattr(quran_endpoints, "delay", fake_delay)
    return recorded
