"""
Quran JSON Endpoint Builder
===========================
Batch pipeline that fetches Quran text, metadata, and tafseer from public APIs
and builds a static JSON dataset (per surah, per juz, per hizb, per page).

Version: 1.0.0
License: MIT
"""

import asyncio
import aiohttp
import json
import logging
import math
import os
import sys
from datetime import datetime
from pathlib import Path
from typing import (
    Any, Awaitable, Callable, Dict, Generic, List, Optional, Tuple, TypeVar
)
from dataclasses import dataclass, field

# ============================================================================
# Configuration & Constants
# ============================================================================

VERSION = "1.0.0"
TOTAL_SURAHS = 114
LOGGER_NAME = "QuranEndpoints"

GROUP_KEYS = ("juz", "hizb", "page")


@dataclass(frozen=True)
class Config:
    """Centralized configuration passed to every pipeline component."""

    # Output layout
    data_dir: Path = Path("data")
    surah_folder: str = "surahs"
    tafseer_folder: str = "tafseers"
    juz_folder: str = "juz"
    hizb_folder: str = "hizb"
    page_folder: str = "pages"

    # API Configuration
    quran_api_url: str = "https://quranapi.pages.dev/api"
    metadata_api_url: str = "https://api.alquran.cloud/v1/ayah"
    metadata_edition: str = "quran-uthmani"
    tafseer_api_url: str = "http://api.quran-tafseer.com/tafseer"
    tafseer_ids: Tuple[int, ...] = (1, 2, 3, 4, 6, 7, 8)

    # Retry & pacing (seconds)
    max_retries: int = 5
    retry_delay: float = 1.0
    tafseer_retries: int = 2
    pacing_delay: float = 0.1

    # Tafseer concurrency
    tafseer_concurrency: int = 5
    tafseer_concurrent: bool = True

    # HTTP Configuration
    api_timeout: int = 60
    api_connect_timeout: int = 30
    connection_limit: int = 10
    connection_limit_per_host: int = 5
    keepalive_timeout: int = 30

    log_file: Optional[str] = "quran_endpoints.log"

    def folder_for(self, key: str) -> str:
        """Output folder of a grouping key."""
        return {
            "juz": self.juz_folder,
            "hizb": self.hizb_folder,
            "page": self.page_folder,
        }[key]


# ============================================================================
# Logging Configuration
# ============================================================================

def setup_logging(log_file: Optional[str] = "quran_endpoints.log") -> logging.Logger:
    """
    Configure logging system with file and console handlers.

    Args:
        log_file: Path to log file (None disables file logging)

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(logging.DEBUG)

    # Prevent duplicate handlers
    if logger.handlers:
        return logger

    formatter = logging.Formatter(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    )

    if log_file:
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(logging.INFO)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    return logger


# ============================================================================
# Custom Exceptions
# ============================================================================

class QuranPipelineError(Exception):
    """Base exception for pipeline errors."""
    pass


class DataCollectionError(QuranPipelineError):
    """Exception raised when an upstream fetch fails."""
    pass


class RetryExhaustedError(DataCollectionError):
    """Exception raised when a failed fetch result is unwrapped."""
    pass


class DataValidationError(QuranPipelineError):
    """Exception raised when upstream data has an unexpected shape."""
    pass


class DataExportError(QuranPipelineError):
    """Exception raised when writing a JSON document fails."""
    pass


class DocumentNotFoundError(DataExportError):
    """Exception raised when appending to a document that does not exist."""
    pass


# ============================================================================
# Data Models
# ============================================================================

@dataclass(frozen=True)
class SurahInfo:
    """Immutable surah header, as listed by the surah index endpoint."""
    number: int
    name_arabic: str
    name_arabic_long: str
    name_english: str
    revelation_place: str
    total_ayat: int

    def __post_init__(self):
        """Validate surah data after initialization."""
        if self.number < 1 or self.number > TOTAL_SURAHS:
            raise DataValidationError(f"Invalid surah number: {self.number}")
        if self.total_ayat < 1:
            raise DataValidationError(f"Invalid ayat count: {self.total_ayat}")

    @classmethod
    def from_api(cls, number: int, data: Dict[str, Any]) -> "SurahInfo":
        try:
            return cls(
                number=number,
                name_arabic=data["surahNameArabic"],
                name_arabic_long=data["surahNameArabicLong"],
                name_english=data["surahName"],
                revelation_place=data["revelationPlace"],
                total_ayat=int(data["totalAyah"]),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise DataValidationError(
                f"Malformed surah entry {number}: {e}"
            ) from e

    def header(self) -> Dict[str, Any]:
        """Header fields shared by surah and tafseer documents."""
        return {
            "surahNo": self.number,
            "surahNameAr": self.name_arabic,
            "surahNameArabicLong": self.name_arabic_long,
            "surahNameEn": self.name_english,
            "revelationPlace": self.revelation_place,
            "totalAyat": self.total_ayat,
        }

    def to_document(self) -> Dict[str, Any]:
        """Empty surah document, ready to receive ayat."""
        return {**self.header(), "ayat": []}


@dataclass(frozen=True)
class AyahText:
    """Ayah text in its two Arabic renderings and English."""
    ayah_number: int
    arabic1: str
    arabic2: str
    english: str


@dataclass(frozen=True)
class AyahMeta:
    """Mushaf position of an ayah."""
    page: int
    juz: int
    hizb_quarter: int
    sajda: Any = False

    @property
    def hizb(self) -> int:
        return hizb_from_quarter(self.hizb_quarter)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "page": self.page,
            "juz": self.juz,
            "hizb": self.hizb,
            "hizbQuarter": self.hizb_quarter,
            "sajda": self.sajda,
        }


@dataclass(frozen=True)
class AyahRecord:
    """One ayah as stored in a surah document."""
    text: AyahText
    meta: AyahMeta

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ayahNo": self.text.ayah_number,
            "ayahArV1": self.text.arabic1,
            "ayahArV2": self.text.arabic2,
            "ayahEn": self.text.english,
            "meta": self.meta.to_dict(),
        }


@dataclass(frozen=True)
class TafseerEntry:
    """A single book's commentary on an ayah."""
    book_name: Optional[str]
    text: Optional[str]


T = TypeVar("T")


@dataclass(frozen=True)
class FetchResult(Generic[T]):
    """Outcome of a retried operation: a value or the last error."""
    value: Optional[T] = None
    error: Optional[BaseException] = None
    attempts: int = 1

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> T:
        """Return the value or raise RetryExhaustedError."""
        if self.error is not None:
            raise RetryExhaustedError(
                f"Gave up after {self.attempts} attempts: {self.error}"
            ) from self.error
        return self.value


@dataclass
class ValidationResult:
    """Validation result container."""
    is_valid: bool
    issues: List[str] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def add_issue(self, issue: str) -> None:
        """Add validation issue."""
        self.issues.append(issue)
        self.is_valid = False


@dataclass
class CorpusSummary:
    """Surah numbers completed and failed during a corpus run."""
    completed: List[int] = field(default_factory=list)
    failed: List[int] = field(default_factory=list)


def hizb_from_quarter(hizb_quarter: int) -> int:
    """Hizb number containing the given hizb quarter (four quarters per hizb)."""
    return math.ceil(hizb_quarter / 4)


# ============================================================================
# Async Helpers
# ============================================================================

async def delay(seconds: float) -> None:
    """Suspend the current task for ``seconds``."""
    await asyncio.sleep(seconds)


async def fetch_with_retries(
    operation: Callable[[], Awaitable[T]],
    retries: int = 5,
    delay_time: float = 1.0,
    logger: Optional[logging.Logger] = None,
    label: str = "operation",
) -> FetchResult[T]:
    """
    Run ``operation`` until it succeeds or ``retries`` are used up.

    The delay between attempts is fixed. Failures never propagate: the last
    error is returned inside the FetchResult so the caller decides what an
    exhausted retry means.

    Args:
        operation: Zero-argument coroutine factory
        retries: Number of retries after the first attempt
        delay_time: Seconds to wait between attempts
        logger: Logger instance
        label: Human readable name used in log lines

    Returns:
        FetchResult carrying the value or the last error
    """
    logger = logger or logging.getLogger(LOGGER_NAME)
    attempts = 0

    while True:
        attempts += 1
        try:
            value = await operation()
            return FetchResult(value=value, attempts=attempts)
        except Exception as e:
            logger.error(f"[Error] - {label} - {e}")

            if retries <= 0:
                logger.error(f"[Failed] - {label} - Max retries reached.")
                return FetchResult(error=e, attempts=attempts)

            logger.info(f"[Retrying] - {label} - {retries} retries left")
            await delay(delay_time)
            retries -= 1


class ConcurrencyLimiter:
    """
    Caps how many coroutines run at once.

    Submissions beyond the capacity wait on a semaphore and are admitted in
    submission order.
    """

    def __init__(self, capacity: int = 5):
        if capacity < 1:
            raise ValueError(f"Invalid limiter capacity: {capacity}")
        self.capacity = capacity
        self._semaphore = asyncio.Semaphore(capacity)
        self.active = 0

    async def _run(self, task: Callable[[], Awaitable[T]]) -> T:
        async with self._semaphore:
            self.active += 1
            try:
                return await task()
            finally:
                self.active -= 1

    def schedule(self, task: Callable[[], Awaitable[T]]) -> "asyncio.Task[T]":
        """Queue ``task`` and return an asyncio.Task for its result."""
        return asyncio.ensure_future(self._run(task))


# ============================================================================
# Data Collection Service
# ============================================================================

class QuranAPIClient:
    """
    Asynchronous HTTP client for the three upstream Quran APIs.

    Every public method performs its HTTP call(s) exactly once and raises
    DataCollectionError on failure. Retrying is left to the caller.
    """

    def __init__(
        self,
        config: Optional[Config] = None,
        logger: Optional[logging.Logger] = None,
        session: Optional[aiohttp.ClientSession] = None
    ):
        """
        Initialize API client.

        Args:
            config: Pipeline configuration
            logger: Logger instance (creates new if None)
            session: Pre-built session (a new one is created on entry if None)
        """
        self.config = config or Config()
        self.logger = logger or setup_logging(self.config.log_file)
        self.session = session
        self._owns_session = session is None

    async def __aenter__(self) -> "QuranAPIClient":
        """Create HTTP session on context entry."""
        if self.session is None:
            timeout = aiohttp.ClientTimeout(
                total=self.config.api_timeout,
                connect=self.config.api_connect_timeout
            )

            connector = aiohttp.TCPConnector(
                limit=self.config.connection_limit,
                limit_per_host=self.config.connection_limit_per_host,
                keepalive_timeout=self.config.keepalive_timeout
            )

            self.session = aiohttp.ClientSession(
                timeout=timeout,
                connector=connector,
                headers={"User-Agent": f"QuranEndpoints/{VERSION}"}
            )
            self._owns_session = True
            self.logger.info("HTTP session initialized")

        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Close session on context exit."""
        if self.session and self._owns_session:
            await self.session.close()
            self.session = None
            self.logger.info("HTTP session closed")

    async def _get_json(self, url: str) -> Any:
        """
        Perform a single GET request and decode the JSON body.

        Raises:
            DataCollectionError: On transport error, non-200 status, or bad JSON
        """
        status, data = await self._request_json(url)

        if status != 200:
            raise DataCollectionError(f"HTTP {status} from {url}")

        return data

    async def _request_json(self, url: str) -> Tuple[int, Any]:
        """
        Perform a single GET request and return its status and decoded body.

        Error statuses are returned, not raised.

        Raises:
            DataCollectionError: On transport error or bad JSON
        """
        if self.session is None:
            raise DataCollectionError("HTTP session is not open")

        self.logger.debug(f"GET {url}")

        try:
            async with self.session.get(url) as response:
                return response.status, await response.json(content_type=None)

        except asyncio.TimeoutError as e:
            raise DataCollectionError(f"Timeout fetching {url}") from e
        except aiohttp.ClientError as e:
            raise DataCollectionError(f"Client error fetching {url}: {e}") from e
        except ValueError as e:
            raise DataCollectionError(f"Invalid JSON from {url}: {e}") from e

    async def get_surahs(self) -> List[SurahInfo]:
        """
        Fetch the surah index.

        Returns:
            SurahInfo list in index order (surah number = position + 1)
        """
        self.logger.info("Fetching Surah index...")

        data = await self._get_json(f"{self.config.quran_api_url}/surah.json")

        if not isinstance(data, list):
            raise DataCollectionError("Surah index is not a list")

        surahs = [
            SurahInfo.from_api(index + 1, entry)
            for index, entry in enumerate(data)
        ]

        self.logger.info(f"Collected {len(surahs)} surahs")
        return surahs

    async def get_ayah_info(self, surah_number: int, ayah_number: int) -> AyahText:
        """Fetch the Arabic and English text of one ayah."""
        data = await self._get_json(
            f"{self.config.quran_api_url}/{surah_number}/{ayah_number}.json"
        )

        try:
            return AyahText(
                ayah_number=int(data["ayahNo"]),
                arabic1=data["arabic1"],
                arabic2=data["arabic2"],
                english=data["english"],
            )
        except (KeyError, TypeError, ValueError) as e:
            raise DataCollectionError(
                f"Malformed ayah text {surah_number}:{ayah_number}: {e}"
            ) from e

    async def get_ayah_metadata(self, surah_number: int, ayah_number: int) -> AyahMeta:
        """Fetch page, juz, hizb quarter and sajda of one ayah."""
        data = await self._get_json(
            f"{self.config.metadata_api_url}/{surah_number}:{ayah_number}"
            f"/{self.config.metadata_edition}"
        )

        if data.get("code") != 200:
            raise DataCollectionError(
                f"API error: {data.get('status', 'Unknown error')}"
            )

        try:
            ayah = data["data"]
            return AyahMeta(
                page=int(ayah["page"]),
                juz=int(ayah["juz"]),
                hizb_quarter=int(ayah["hizbQuarter"]),
                sajda=ayah.get("sajda", False),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise DataCollectionError(
                f"Malformed ayah metadata {surah_number}:{ayah_number}: {e}"
            ) from e

    async def get_ayah_tafseer(
        self,
        surah_number: int,
        ayah_number: int
    ) -> List[TafseerEntry]:
        """
        Fetch every configured tafseer book for one ayah, one request at a time.

        Entries keep their position even when a book answers with an error
        status or returns no text; only transport and JSON errors raise.
        """
        entries = []

        for tafseer_id in self.config.tafseer_ids:
            url = (
                f"{self.config.tafseer_api_url}/{tafseer_id}"
                f"/{surah_number}/{ayah_number}"
            )
            status, data = await self._request_json(url)

            if status != 200:
                self.logger.warning(f"HTTP {status} from {url}")
                data = {}
            elif not isinstance(data, dict):
                data = {}

            entries.append(TafseerEntry(
                book_name=data.get("tafseer_name"),
                text=data.get("text"),
            ))

        return entries


# ============================================================================
# JSON Store
# ============================================================================

class JsonStore:
    """
    Reads and writes pretty-printed JSON documents under the data directory.

    Every write goes to a temporary sibling first and is moved into place, so
    a reader never sees a half-written file. A single writer per file is
    assumed.
    """

    def __init__(self, root: Path, logger: Optional[logging.Logger] = None):
        self.root = Path(root)
        self.logger = logger or setup_logging()

    def path(self, folder: str, filename: str) -> Path:
        return self.root / folder / filename

    def _write(self, file_path: Path, data: Any) -> None:
        tmp_path = file_path.with_name(file_path.name + ".tmp")

        try:
            file_path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(data, f, ensure_ascii=False, indent=2)
            os.replace(tmp_path, file_path)
        except OSError as e:
            raise DataExportError(f"Writing {file_path} failed: {e}") from e

    def read(self, file_path: Path) -> Any:
        """Parse a JSON document. Raises OSError or ValueError on failure."""
        with open(file_path, encoding="utf-8") as f:
            return json.load(f)

    def create(self, folder: str, filename: str, data: Any) -> Path:
        """Write ``data`` to ``folder/filename``, replacing any existing file."""
        file_path = self.path(folder, filename)
        self._write(file_path, data)
        self.logger.info(f"[Created JSON] - {folder}/{filename}")
        return file_path

    def write_root(self, filename: str, data: Any) -> Path:
        """Write a document directly under the data directory."""
        file_path = self.root / filename
        self._write(file_path, data)
        return file_path

    def append_ayah(self, folder: str, filename: str, ayah: Dict[str, Any]) -> int:
        """
        Append one ayah record to an existing surah document.

        Returns:
            Number of ayat in the document after the append

        Raises:
            DocumentNotFoundError: If the surah document has not been created
        """
        file_path = self.path(folder, filename)

        if not file_path.exists():
            raise DocumentNotFoundError(
                f"Cannot add ayah {ayah.get('ayahNo')} to missing {file_path}"
            )

        try:
            document = self.read(file_path)
        except (OSError, ValueError) as e:
            raise DataExportError(f"Reading {file_path} failed: {e}") from e

        document["ayat"].append(ayah)
        self._write(file_path, document)

        self.logger.info(
            f"[Added Ayah Data] - (Ayah: {ayah.get('ayahNo')}) - {folder}/{filename}"
        )
        return len(document["ayat"])

    def numbered_files(self, folder: str) -> List[Path]:
        """
        ``{number}.json`` files of a folder in ascending numeric order.

        Files whose stem is not a number are ignored.
        """
        directory = self.root / folder
        if not directory.is_dir():
            return []

        files = []
        for file_path in directory.glob("*.json"):
            if not file_path.stem.isdigit():
                self.logger.warning(f"Skipping unexpected file {file_path}")
                continue
            files.append(file_path)

        return sorted(files, key=lambda p: int(p.stem))


# ============================================================================
# Surah Pipeline
# ============================================================================

class SurahPipeline:
    """
    Materializes one surah document per chapter, ayah by ayah.

    Ayat are fetched strictly in order and appended as they arrive, so the
    file on disk is always a valid prefix of the finished surah.
    """

    def __init__(
        self,
        client: QuranAPIClient,
        store: JsonStore,
        config: Optional[Config] = None,
        logger: Optional[logging.Logger] = None
    ):
        self.client = client
        self.store = store
        self.config = config or Config()
        self.logger = logger or setup_logging(self.config.log_file)

    def _existing_ayat_count(self, surah: SurahInfo) -> Optional[int]:
        """
        Number of ayat already stored for ``surah``.

        Returns None when there is no usable document to resume: the file is
        missing, unreadable, has a different header, or its ayat are not
        numbered 1..k.
        """
        file_path = self.store.path(self.config.surah_folder, f"{surah.number}.json")
        if not file_path.exists():
            return None

        try:
            document = self.store.read(file_path)
        except (OSError, ValueError) as e:
            self.logger.warning(f"Discarding unreadable {file_path}: {e}")
            return None

        header = {key: document.get(key) for key in surah.header()}
        if header != surah.header():
            return None

        ayat = document.get("ayat")
        if not isinstance(ayat, list) or len(ayat) > surah.total_ayat:
            return None

        for position, ayah in enumerate(ayat, start=1):
            if not isinstance(ayah, dict) or ayah.get("ayahNo") != position:
                return None

        return len(ayat)

    async def _fetch_ayah(self, surah_number: int, ayah_number: int) -> AyahRecord:
        label = f"Surah {surah_number}:{ayah_number}"

        text = (await fetch_with_retries(
            lambda: self.client.get_ayah_info(surah_number, ayah_number),
            self.config.max_retries,
            self.config.retry_delay,
            self.logger,
            f"{label} text",
        )).unwrap()
        meta = await fetch_with_retries(
            lambda: self.client.get_ayah_metadata(surah_number, ayah_number),
            self.config.max_retries,
            self.config.retry_delay,
            self.logger,
            f"{label} metadata",
        )
        await delay(self.config.pacing_delay)

        return AyahRecord(text=text, meta=meta.unwrap())

    async def process_surah(self, surah: SurahInfo) -> int:
        """
        Build (or resume) the document of one surah.

        Returns:
            Number of ayat in the document

        Raises:
            RetryExhaustedError: If an ayah could not be fetched
        """
        filename = f"{surah.number}.json"
        start = self._existing_ayat_count(surah)

        if start is None:
            self.store.create(self.config.surah_folder, filename, surah.to_document())
            start = 0
        elif start == surah.total_ayat:
            self.logger.info(f"[Skipped] - Surah {surah.number} already complete")
            return start
        elif start:
            self.logger.info(
                f"[Resuming] - Surah {surah.number} from ayah {start + 1}"
            )

        count = start
        for ayah_number in range(start + 1, surah.total_ayat + 1):
            record = await self._fetch_ayah(surah.number, ayah_number)

            if record.text.ayah_number != ayah_number:
                raise DataCollectionError(
                    f"Surah {surah.number}: asked for ayah {ayah_number}, "
                    f"got {record.text.ayah_number}"
                )

            count = self.store.append_ayah(
                self.config.surah_folder, filename, record.to_dict()
            )

        return count

    async def fetch_surah_data(self) -> CorpusSummary:
        """
        Build every surah document in index order.

        A surah that still fails after its retries is logged and skipped;
        its document is left incomplete on disk.
        """
        summary = CorpusSummary()

        index = await fetch_with_retries(
            self.client.get_surahs,
            self.config.max_retries,
            self.config.retry_delay,
            self.logger,
            "Surah index",
        )
        if not index.ok:
            self.logger.error(f"[Error] - Fetching surah data - {index.error}")
            return summary

        for surah in index.value:
            result = await fetch_with_retries(
                lambda: self.process_surah(surah),
                self.config.max_retries,
                self.config.retry_delay,
                self.logger,
                f"Surah {surah.number}",
            )

            if result.ok:
                summary.completed.append(surah.number)
            elif isinstance(result.error, DataExportError):
                raise result.error
            else:
                summary.failed.append(surah.number)
                self.logger.error(
                    f"[Incomplete] - Surah {surah.number} left with missing ayat"
                )

            await delay(self.config.pacing_delay)

        self.logger.info(
            f"[All Surahs Processed] - {len(summary.completed)} completed, "
            f"{len(summary.failed)} failed"
        )
        return summary


# ============================================================================
# Tafseer Pipeline
# ============================================================================

class TafseerPipeline:
    """
    Builds one tafseer document per surah document already on disk.

    Ayat of one surah are fetched concurrently through a ConcurrencyLimiter;
    surahs are processed one after another.
    """

    def __init__(
        self,
        client: QuranAPIClient,
        store: JsonStore,
        config: Optional[Config] = None,
        logger: Optional[logging.Logger] = None
    ):
        self.client = client
        self.store = store
        self.config = config or Config()
        self.logger = logger or setup_logging(self.config.log_file)

    async def _fetch_ayah_tafseer(
        self,
        surah_number: int,
        ayah_number: int
    ) -> Dict[str, Any]:
        label = f"Tafseer {surah_number}:{ayah_number}"

        result = await fetch_with_retries(
            lambda: self.client.get_ayah_tafseer(surah_number, ayah_number),
            self.config.tafseer_retries,
            self.config.retry_delay,
            self.logger,
            label,
        )

        if not result.ok:
            self.logger.error(f"[Failed] {label} - {result.error}")
            return {"ayahNo": ayah_number, "tafseer": []}

        tafseer = [
            {
                "id": position,
                "tafseerBookName": entry.book_name,
                "tafseer": entry.text,
            }
            for position, entry in enumerate(result.value, start=1)
        ]

        self.logger.info(f"[Added] {label} → {len(tafseer)} tafseers")
        return {"ayahNo": ayah_number, "tafseer": tafseer}

    async def process_surah(self, surah_document: Dict[str, Any]) -> Dict[str, Any]:
        """Fetch tafseer for every ayah of a surah document and write it."""
        surah_number = surah_document["surahNo"]
        header = {
            key: surah_document.get(key)
            for key in (
                "surahNo", "surahNameAr", "surahNameArabicLong",
                "surahNameEn", "revelationPlace", "totalAyat",
            )
        }
        ayat = surah_document.get("ayat", [])

        self.logger.info(
            f"[Processing Tafseer] - Surah {surah_number} ({len(ayat)} ayahs)"
        )

        capacity = self.config.tafseer_concurrency if self.config.tafseer_concurrent else 1
        limiter = ConcurrencyLimiter(capacity)

        tasks = [
            limiter.schedule(
                lambda ayah_number=ayah["ayahNo"]: self._fetch_ayah_tafseer(
                    surah_number, ayah_number
                )
            )
            for ayah in ayat
        ]
        results = await asyncio.gather(*tasks)

        output = {
            "surah": header,
            "ayat": sorted(results, key=lambda r: r["ayahNo"]),
        }

        self.store.create(self.config.tafseer_folder, f"{surah_number}.json", output)
        self.logger.info(
            f"[Tafseer Created] Surah {surah_number} → {len(results)} ayahs saved"
        )
        return output

    async def fetch_tafseer_data(self) -> int:
        """
        Build tafseer documents for every surah document.

        Returns:
            Number of tafseer documents written
        """
        written = 0

        for file_path in self.store.numbered_files(self.config.surah_folder):
            try:
                surah_document = self.store.read(file_path)
            except (OSError, ValueError) as e:
                self.logger.error(f"[Error] Reading Surah File {file_path.name}: {e}")
                continue

            await self.process_surah(surah_document)
            written += 1

        self.logger.info("[All Tafseer Processed] - All surahs completed.")
        return written


# ============================================================================
# Grouping & Endpoint Services
# ============================================================================

class GroupCompiler:
    """Regroups the ayat of all surah documents by juz, hizb, or page."""

    def __init__(
        self,
        store: JsonStore,
        config: Optional[Config] = None,
        logger: Optional[logging.Logger] = None
    ):
        self.store = store
        self.config = config or Config()
        self.logger = logger or setup_logging(self.config.log_file)

    def compile(self, key: str) -> Dict[Any, List[Dict[str, Any]]]:
        """
        Write one document per group number found under ``meta[key]``.

        Ayat are appended in scan order: surahs ascending, then ayat in the
        order they appear in each surah document.

        Returns:
            Mapping of group number to its ayat
        """
        if key not in GROUP_KEYS:
            raise ValueError(f"Unknown grouping key: {key}")

        groups: Dict[Any, List[Dict[str, Any]]] = {}

        for file_path in self.store.numbered_files(self.config.surah_folder):
            try:
                surah = self.store.read(file_path)
            except (OSError, ValueError) as e:
                self.logger.error(f"[Error] Reading Surah File {file_path.name}: {e}")
                continue

            for ayah in surah.get("ayat", []):
                group_number = ayah["meta"][key]
                groups.setdefault(group_number, []).append({
                    "surahNo": surah["surahNo"],
                    "ayahNo": ayah["ayahNo"],
                    "ayahArV1": ayah["ayahArV1"],
                    "ayahArV2": ayah["ayahArV2"],
                    "ayahEn": ayah["ayahEn"],
                    "meta": ayah["meta"],
                })

        folder = self.config.folder_for(key)
        for group_number, ayat in groups.items():
            self.store.create(folder, f"{group_number}.json", ayat)
            self.logger.debug(f"[{key.upper()} Created] - {key} {group_number}")

        self.logger.info(f"[All {key.upper()} Processed] - {len(groups)} groups")
        return groups


class EndpointAggregator:
    """Concatenates per-surah and per-group files into the endpoint files."""

    def __init__(
        self,
        store: JsonStore,
        config: Optional[Config] = None,
        logger: Optional[logging.Logger] = None
    ):
        self.store = store
        self.config = config or Config()
        self.logger = logger or setup_logging(self.config.log_file)

    def _read_all(self, folder: str) -> List[Tuple[Path, Any]]:
        if not (self.store.root / folder).is_dir():
            self.logger.warning(f"No {folder} folder in {self.store.root}")

        documents = []
        for file_path in self.store.numbered_files(folder):
            try:
                documents.append((file_path, self.store.read(file_path)))
            except (OSError, ValueError) as e:
                self.logger.error(f"[Error] Reading {folder}/{file_path.name}: {e}")
        return documents

    def build_surahs(self) -> List[Dict[str, Any]]:
        """Write ``surah.json``: every surah document ordered by surah number."""
        surahs = [doc for _, doc in self._read_all(self.config.surah_folder)]
        surahs.sort(key=lambda s: s["surahNo"])
        self.store.write_root("surah.json", surahs)
        return surahs

    def build_groups(self, folder: str) -> Dict[str, Any]:
        """Write ``{folder}.json``: group number mapped to that group's ayat."""
        groups = {
            str(int(file_path.stem)): doc
            for file_path, doc in self._read_all(folder)
        }
        self.store.write_root(f"{folder}.json", groups)
        return groups

    def create_endpoint_files(self) -> List[str]:
        """Write all four endpoint files and return their names."""
        self.build_surahs()

        names = ["surah.json"]
        for folder in (
            self.config.juz_folder,
            self.config.hizb_folder,
            self.config.page_folder,
        ):
            self.build_groups(folder)
            names.append(f"{folder}.json")

        self.logger.info(f"[Endpoint JSONs Created] - {', '.join(names)}")
        return names


# ============================================================================
# Validation Service
# ============================================================================

class QuranDataValidator:
    """
    Checks the surah documents on disk for completeness.

    The result is logged only; the run does not stop on issues.
    """

    # Reference verse counts per Surah (official Quran statistics)
    VERSES_PER_SURAH = {
        1: 7, 2: 286, 3: 200, 4: 176, 5: 120, 6: 165, 7: 206, 8: 75,
        9: 129, 10: 109, 11: 123, 12: 111, 13: 43, 14: 52, 15: 99, 16: 128,
        17: 111, 18: 110, 19: 98, 20: 135, 21: 112, 22: 78, 23: 118, 24: 64,
        25: 77, 26: 227, 27: 93, 28: 88, 29: 69, 30: 60, 31: 34, 32: 30,
        33: 73, 34: 54, 35: 45, 36: 83, 37: 182, 38: 88, 39: 75, 40: 85,
        41: 54, 42: 53, 43: 89, 44: 59, 45: 37, 46: 35, 47: 38, 48: 29,
        49: 18, 50: 45, 51: 60, 52: 49, 53: 62, 54: 55, 55: 78, 56: 96,
        57: 29, 58: 22, 59: 24, 60: 13, 61: 14, 62: 11, 63: 11, 64: 18,
        65: 12, 66: 12, 67: 30, 68: 52, 69: 52, 70: 44, 71: 28, 72: 28,
        73: 20, 74: 56, 75: 40, 76: 31, 77: 50, 78: 40, 79: 46, 80: 42,
        81: 29, 82: 19, 83: 36, 84: 25, 85: 22, 86: 17, 87: 19, 88: 26,
        89: 30, 90: 20, 91: 15, 92: 21, 93: 11, 94: 8, 95: 8, 96: 19,
        97: 5, 98: 8, 99: 8, 100: 11, 101: 11, 102: 8, 103: 3, 104: 9,
        105: 5, 106: 4, 107: 7, 108: 3, 109: 6, 110: 3, 111: 5, 112: 4,
        113: 5, 114: 6
    }

    def __init__(
        self,
        store: JsonStore,
        config: Optional[Config] = None,
        logger: Optional[logging.Logger] = None
    ):
        self.store = store
        self.config = config or Config()
        self.logger = logger or setup_logging(self.config.log_file)

    def validate_surah_documents(
        self,
        surah_numbers: Optional[List[int]] = None
    ) -> ValidationResult:
        """
        Validate surah documents against their declared and reference counts.

        Args:
            surah_numbers: Surahs to check (all 114 if None)

        Returns:
            ValidationResult with completeness check
        """
        self.logger.info("Validating surah documents...")

        result = ValidationResult(is_valid=True)
        numbers = surah_numbers or list(range(1, TOTAL_SURAHS + 1))
        total_ayat = 0

        for number in numbers:
            file_path = self.store.path(self.config.surah_folder, f"{number}.json")

            if not file_path.exists():
                result.add_issue(f"Surah {number}: document missing")
                continue

            try:
                document = self.store.read(file_path)
            except (OSError, ValueError) as e:
                result.add_issue(f"Surah {number}: unreadable ({e})")
                continue

            declared = document.get("totalAyat")
            ayah_numbers = [a.get("ayahNo") for a in document.get("ayat", [])]
            total_ayat += len(ayah_numbers)

            expected = self.VERSES_PER_SURAH.get(number)
            if declared != expected:
                result.add_issue(
                    f"Surah {number}: declares {declared} ayat, "
                    f"reference count is {expected}"
                )

            if ayah_numbers != list(range(1, len(ayah_numbers) + 1)):
                result.add_issue(f"Surah {number}: ayat out of sequence")

            if len(ayah_numbers) != declared:
                result.add_issue(
                    f"Surah {number}: expected {declared} ayat, "
                    f"got {len(ayah_numbers)}"
                )

        result.metadata = {
            "checked_surahs": len(numbers),
            "total_ayat": total_ayat,
            "issues_count": len(result.issues),
        }

        if result.is_valid:
            self.logger.info("✓ Surah documents validated successfully")
        else:
            self.logger.error(f"✗ Found {len(result.issues)} completeness issues")
            for issue in result.issues[:10]:
                self.logger.error(f"  • {issue}")

        return result


# ============================================================================
# Main Pipeline Orchestrator
# ============================================================================

class QuranPipeline:
    """
    Main pipeline orchestrator.

    Runs surah fetch, tafseer fetch, validation, grouping, and endpoint
    compilation in that order. Each stage only reads files written by the
    stages before it.
    """

    def __init__(
        self,
        config: Optional[Config] = None,
        client: Optional[QuranAPIClient] = None
    ):
        """
        Initialize pipeline.

        Args:
            config: Pipeline configuration
            client: API client (a QuranAPIClient is built from config if None)
        """
        self.config = config or Config()
        self.logger = setup_logging(self.config.log_file)
        self.client = client or QuranAPIClient(self.config, self.logger)

        self.store = JsonStore(self.config.data_dir, self.logger)
        self.surah_pipeline = SurahPipeline(
            self.client, self.store, self.config, self.logger
        )
        self.tafseer_pipeline = TafseerPipeline(
            self.client, self.store, self.config, self.logger
        )
        self.validator = QuranDataValidator(self.store, self.config, self.logger)
        self.group_compiler = GroupCompiler(self.store, self.config, self.logger)
        self.aggregator = EndpointAggregator(self.store, self.config, self.logger)

    def _print_header(self) -> None:
        """Print pipeline header."""
        print("\n" + "=" * 80)
        print("بسم الله الرحمن الرحيم")
        print("Quran JSON Endpoint Builder v" + VERSION)
        print("=" * 80 + "\n")

    def _print_section(self, step: int, title: str) -> None:
        """Print section header."""
        print(f"\n{'─' * 80}")
        print(f"Step {step}: {title}")
        print(f"{'─' * 80}")

    def _print_summary(self, duration: float, summary: CorpusSummary) -> None:
        """Print execution summary."""
        print("\n" + "=" * 80)
        print("✓ Pipeline completed")
        print("=" * 80)
        print(f"Duration: {duration:.2f} seconds")
        print(f"Output directory: {self.config.data_dir}/")
        print(f"Surahs completed: {len(summary.completed)}")
        if summary.failed:
            print(f"Surahs incomplete: {', '.join(map(str, summary.failed))}")
        print("\nGenerated files:")
        print("  • surah.json - All surahs with ayat")
        print("  • juz.json, hizb.json, pages.json - Grouped ayat")
        print(f"  • {self.config.tafseer_folder}/ - Tafseer per surah")
        print("\nالحمد لله رب العالمين")
        print("=" * 80 + "\n")

    async def execute(self) -> CorpusSummary:
        """
        Execute complete pipeline.

        Raises:
            QuranPipelineError: If pipeline execution fails
        """
        start_time = datetime.now()
        self._print_header()

        try:
            async with self.client:
                self._print_section(1, "Surah Fetch")
                self.logger.info("Starting Surah data fetch...")
                summary = await self.surah_pipeline.fetch_surah_data()
                self.logger.info("Surah data fetch completed.")

                self._print_section(2, "Tafseer Fetch")
                self.logger.info("Starting Tafseer fetch...")
                await self.tafseer_pipeline.fetch_tafseer_data()
                self.logger.info("Tafseer fetch completed.")

            self._print_section(3, "Validation")
            self.validator.validate_surah_documents()

            self._print_section(4, "Grouping")
            for key in GROUP_KEYS:
                self.logger.info(f"Starting {key.capitalize()} compilation...")
                self.group_compiler.compile(key)
                self.logger.info(f"{key.capitalize()} compilation completed.")

            self._print_section(5, "Endpoint Files")
            self.aggregator.create_endpoint_files()

            duration = (datetime.now() - start_time).total_seconds()
            self.logger.info(f"[DATA FETCH] - finished in {duration:.2f}s")
            self._print_summary(duration, summary)
            return summary

        except QuranPipelineError as e:
            self.logger.error(f"Pipeline failed: {e}")
            print(f"\n✗ Pipeline failed: {e}")
            raise

        except Exception as e:
            self.logger.error(f"Unexpected error: {e}", exc_info=True)
            print(f"\n✗ Unexpected error: {e}")
            raise QuranPipelineError(f"Unexpected error: {e}") from e


# ============================================================================
# Entry Point
# ============================================================================

async def main(config: Optional[Config] = None) -> None:
    """Main entry point."""
    try:
        pipeline = QuranPipeline(config)
        await pipeline.execute()

    except KeyboardInterrupt:
        print("\n\n Pipeline interrupted by user")
        sys.exit(1)

    except QuranPipelineError:
        sys.exit(1)


def cli() -> None:
    """Console script wrapper around main()."""
    asyncio.run(main())


if __name__ == "__main__":
    cli()
