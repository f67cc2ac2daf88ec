"""Security master: searchable index of Dhan tradable instruments.

The index is built from Dhan's bulk scrip-master CSV. Each load parses the
whole file into a fresh snapshot and swaps it in with a single reference
assignment, so concurrent searches see either the old or the new index in
full. A failed load keeps the previous snapshot.
"""

import asyncio
import csv
import io
import logging
import pathlib
from dataclasses import dataclass, field
from typing import Iterable, Optional

import httpx

from app.broker.errors import IndexLoadFailure
from app.broker.models import Instrument

logger = logging.getLogger("dhanbridge.instruments")

DEFAULT_TICK_SIZE = 0.05
DEFAULT_LOT_SIZE = 1

# Column positions in the compact scrip-master file
_COL_EXCHANGE = 0
_COL_SEGMENT = 1
_COL_SECURITY_ID = 2
_COL_INSTRUMENT_TYPE = 3
_COL_NAME = 4
_COL_TRADING_SYMBOL = 5
# Tick and lot follow the six listed columns. Older loaders read them one
# column further along (indices 7 and 8).
_COL_TICK_SIZE = 6
_COL_LOT_SIZE = 7
_MIN_COLUMNS = 6

# (exchange, segment code) → Dhan exchangeSegment used by the orders API
_SEGMENT_NAMES = {
    ("NSE", "E"): "NSE_EQ",
    ("BSE", "E"): "BSE_EQ",
    ("NSE", "D"): "NSE_FNO",
    ("BSE", "D"): "BSE_FNO",
    ("NSE", "C"): "NSE_CURRENCY",
    ("BSE", "C"): "BSE_CURRENCY",
    ("MCX", "M"): "MCX_COMM",
}


def exchange_segment(exchange: str, segment: str) -> str:
    """Return the orders-API segment name, or the bare exchange if unknown."""
    return _SEGMENT_NAMES.get((exchange.upper(), segment.upper()), exchange.upper())


def _parse_tick_size(row: list[str]) -> float:
    if len(row) <= _COL_TICK_SIZE:
        return DEFAULT_TICK_SIZE
    try:
        value = float(row[_COL_TICK_SIZE])
    except ValueError:
        return DEFAULT_TICK_SIZE
    return value if value > 0 else DEFAULT_TICK_SIZE


def _parse_lot_size(row: list[str]) -> int:
    if len(row) <= _COL_LOT_SIZE:
        return DEFAULT_LOT_SIZE
    try:
        value = int(float(row[_COL_LOT_SIZE]))
    except ValueError:
        return DEFAULT_LOT_SIZE
    return value if value > 0 else DEFAULT_LOT_SIZE


def parse_security_master(text: str) -> list[Instrument]:
    """Parse scrip-master CSV text into ``Instrument`` entries.

    The header row is skipped. Rows with fewer than six columns or without a
    security id are dropped; bad tick/lot columns fall back to defaults.
    """
    reader = csv.reader(io.StringIO(text.lstrip("\ufeff")))
    next(reader, None)  # header

    instruments: list[Instrument] = []
    skipped = 0
    for row in reader:
        if len(row) < _MIN_COLUMNS:
            skipped += 1
            continue
        row = [cell.strip() for cell in row]
        security_id = row[_COL_SECURITY_ID]
        if not security_id:
            skipped += 1
            continue
        instruments.append(
            Instrument(
                security_id=security_id,
                trading_symbol=row[_COL_TRADING_SYMBOL],
                name=row[_COL_NAME],
                exchange_segment=exchange_segment(row[_COL_EXCHANGE], row[_COL_SEGMENT]),
                instrument_type=row[_COL_INSTRUMENT_TYPE],
                tick_size=_parse_tick_size(row),
                lot_size=_parse_lot_size(row),
            )
        )
    if skipped:
        logger.debug("Dropped %d short or id-less security master rows", skipped)
    return instruments


def _rank_key(query: str):
    def key(inst: Instrument):
        symbol = inst.trading_symbol.upper()
        return (
            symbol != query,
            inst.instrument_type.upper() != "EQUITY",
            len(inst.trading_symbol),
            inst.trading_symbol,
        )
    return key


@dataclass(frozen=True)
class _Snapshot:
    instruments: tuple = ()
    by_id: dict = field(default_factory=dict)


class SecurityMaster:
    """In-memory instrument index with ranked symbol search.

    Args:
        url: Remote scrip-master CSV location.
        path: Local CSV file; when set it is used instead of ``url``.
        timeout: HTTP timeout in seconds for the remote fetch.
    """

    def __init__(
        self,
        url: str = "",
        path: str = "",
        timeout: float = 60.0,
    ) -> None:
        self._url = url
        self._path = path
        self._timeout = timeout
        self._snapshot = _Snapshot()
        self._ready = asyncio.Event()
        self._task: Optional[asyncio.Task] = None

    # ── State ────────────────────────────────────────────────────────────

    @property
    def size(self) -> int:
        return len(self._snapshot.instruments)

    @property
    def ready(self) -> asyncio.Event:
        """Set once the first load attempt has finished, successful or not."""
        return self._ready

    async def wait_ready(self, timeout: Optional[float] = None) -> bool:
        """Wait for the first load attempt. Returns ``False`` on timeout."""
        try:
            await asyncio.wait_for(self._ready.wait(), timeout)
        except asyncio.TimeoutError:
            return False
        return True

    # ── Loading ──────────────────────────────────────────────────────────

    def load(self, instruments: Iterable[Instrument]) -> int:
        """Replace the index with ``instruments``. Returns the new size."""
        entries = tuple(instruments)
        by_id: dict[str, Instrument] = {}
        for inst in entries:
            by_id.setdefault(inst.security_id, inst)
        self._snapshot = _Snapshot(instruments=entries, by_id=by_id)
        return len(entries)

    def load_from_text(self, text: str) -> int:
        """Parse CSV text and replace the index.

        Raises ``IndexLoadFailure`` when the text yields no instruments;
        the previous snapshot is kept in that case.
        """
        try:
            instruments = parse_security_master(text)
        except csv.Error as exc:
            raise IndexLoadFailure(f"Security master CSV is malformed: {exc}") from exc
        if not instruments:
            raise IndexLoadFailure("Security master contained no instruments")
        return self.load(instruments)

    def load_from_file(self, path: str) -> int:
        try:
            text = pathlib.Path(path).read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            raise IndexLoadFailure(f"Cannot read security master file {path}: {exc}") from exc
        return self.load_from_text(text)

    async def _fetch_text(self) -> str:
        try:
            async with httpx.AsyncClient(follow_redirects=True) as client:
                resp = await client.get(self._url, timeout=self._timeout)
            resp.raise_for_status()
        except httpx.HTTPError as exc:
            raise IndexLoadFailure(f"Cannot fetch security master from {self._url}: {exc}") from exc
        return resp.text

    async def refresh(self) -> bool:
        """Reload from the configured file or URL.

        Returns ``True`` on success. Failures are logged and leave the
        previous snapshot serving searches.
        """
        try:
            if self._path:
                logger.info("Loading security master from %s", self._path)
                count = await asyncio.to_thread(self.load_from_file, self._path)
            elif self._url:
                logger.info("Loading security master from %s", self._url)
                text = await self._fetch_text()
                count = await asyncio.to_thread(self.load_from_text, text)
            else:
                raise IndexLoadFailure("No security master source configured")
        except IndexLoadFailure as exc:
            logger.error("Security master load failed: %s (serving %d cached)", exc.message, self.size)
            return False
        logger.info("Loaded %d securities", count)
        return True

    async def _initial_load(self) -> None:
        try:
            await self.refresh()
        finally:
            self._ready.set()

    def start(self) -> asyncio.Task:
        """Schedule the one-shot startup load in the background.

        Idempotent; await ``wait_ready()`` for completion.
        """
        if self._task is None:
            self._task = asyncio.create_task(self._initial_load())
        return self._task

    # ── Queries ──────────────────────────────────────────────────────────

    def search(
        self,
        query: str,
        exchange: Optional[str] = None,
        limit: int = 10,
    ) -> list[Instrument]:
        """Return instruments matching ``query`` in ranked order.

        Matches on trading symbol or name (case-insensitive substring),
        optionally restricted to segments starting with ``exchange``.
        Exact symbol matches rank first, then equities, then shorter and
        alphabetically earlier symbols.
        """
        q = (query or "").strip().upper()
        if not q or limit <= 0:
            return []
        prefix = (exchange or "").strip().upper()

        snapshot = self._snapshot
        matches = [
            inst
            for inst in snapshot.instruments
            if (not prefix or inst.exchange_segment.upper().startswith(prefix))
            and (q in inst.trading_symbol.upper() or q in inst.name.upper())
        ]
        matches.sort(key=_rank_key(q))
        return matches[:limit]

    def get_by_id(self, security_id: str) -> Optional[Instrument]:
        return self._snapshot.by_id.get(security_id)
