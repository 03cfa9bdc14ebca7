from __future__ import annotations

import csv
import io
import json
import logging
import threading
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Protocol

from trader.config import RecorderConfig
from trader.storage.models import TradeRecord, TradeRecordError, validate_record

LOGGER = logging.getLogger(__name__)

CSV_TIME_FORMAT = "%Y-%m-%d %H:%M:%S"
RECORD_TYPE = "Trade"

# (csv column, json key, format)
_FIELDS: list[tuple[str, str, str]] = [
    ("Strategy", "Strategy", "text"),
    ("Instrument", "Instrument", "text"),
    ("Account", "Account", "text"),
    ("TradeNum", "TradeNumber", "int"),
    ("EntryTime", "EntryTime", "time"),
    ("Direction", "Direction", "text"),
    ("EntryPrice", "EntryPrice", "f2"),
    ("Quantity", "Quantity", "int"),
    ("ExitTime", "ExitTime", "time"),
    ("ExitPrice", "ExitPrice", "f2"),
    ("ExitName", "ExitName", "text"),
    ("ProfitTicks", "ProfitTicks", "f2"),
    ("ProfitCurrency", "ProfitCurrency", "f2"),
    ("Commission", "Commission", "f2"),
    ("MFE_Ticks", "MfeTicks", "f0"),
    ("MAE_Ticks", "MaeTicks", "f0"),
    ("MarketRegime", "MarketRegime", "text"),
    ("SignalSource", "SignalSource", "text"),
    ("StopType", "StopType", "text"),
    ("ProfitType", "ProfitType", "text"),
    ("ConfluenceScore", "ConfluenceScore", "f0"),
    ("ADX_at_Exit", "AdxAtExit", "f2"),
    ("ATR_at_Exit", "AtrAtExit", "f2"),
    ("Momentum_at_Exit", "MomentumAtExit", "f2"),
    ("BarsInTrade", "BarsInTrade", "int"),
    ("InitialSL_Ticks", "InitialSLTicks", "f2"),
    ("InitialTP_Ticks", "InitialTPTicks", "f2"),
    ("BE_Trigger_Ticks", "BeTriggerTicks", "f2"),
    ("SlippageTicks", "SlippageTicks", "f2"),
]

CSV_COLUMNS = [csv_name for csv_name, _, _ in _FIELDS]
JSON_KEYS = [json_key for _, json_key, _ in _FIELDS]


class SinkWriteError(OSError):
    pass


def sanitize_text(value: Any) -> str:
    text = "" if value is None else str(value)
    return text.replace(",", ";").replace("\r", " ").replace("\n", " ")


def _fixed(value: float, digits: int) -> str:
    formatted = f"{float(value):.{digits}f}"
    if formatted.startswith("-") and float(formatted) == 0:
        formatted = formatted[1:]
    return formatted


def _utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).replace(microsecond=0)


def _raw_values(record: TradeRecord) -> dict[str, Any]:
    return {
        "Strategy": record.strategy,
        "Instrument": record.instrument,
        "Account": record.account,
        "TradeNumber": record.trade_number,
        "EntryTime": record.entry.time,
        "Direction": record.direction,
        "EntryPrice": record.entry.price,
        "Quantity": record.quantity,
        "ExitTime": record.exit.time,
        "ExitPrice": record.exit.price,
        "ExitName": record.exit.name,
        "ProfitTicks": record.profit_ticks,
        "ProfitCurrency": record.profit_currency,
        "Commission": record.commission,
        "MfeTicks": record.mfe_ticks,
        "MaeTicks": record.mae_ticks,
        "MarketRegime": record.market_regime,
        "SignalSource": record.signal_source,
        "StopType": record.stop_type,
        "ProfitType": record.profit_type,
        "ConfluenceScore": record.confluence_score,
        "AdxAtExit": record.adx_at_exit,
        "AtrAtExit": record.atr_at_exit,
        "MomentumAtExit": record.momentum_at_exit,
        "BarsInTrade": record.bars_in_trade,
        "InitialSLTicks": record.initial_sl_ticks,
        "InitialTPTicks": record.initial_tp_ticks,
        "BeTriggerTicks": record.be_trigger_ticks,
        "SlippageTicks": record.slippage_ticks,
    }


def format_record(record: TradeRecord) -> dict[str, str]:
    """Canonical text form of a record, keyed by json key.

    Both sinks encode from this single mapping, so they always agree.
    """
    validate_record(record)
    raw = _raw_values(record)
    out: dict[str, str] = {}
    try:
        for _, key, kind in _FIELDS:
            value = raw[key]
            if kind == "text":
                out[key] = sanitize_text(value)
            elif kind == "int":
                out[key] = str(int(value))
            elif kind == "f2":
                out[key] = _fixed(value, 2)
            elif kind == "f0":
                out[key] = _fixed(value, 0)
            elif kind == "time":
                out[key] = _utc(value).strftime(CSV_TIME_FORMAT)
            else:
                raise ValueError(f"Unsupported field format {kind}")
    except (TypeError, ValueError, AttributeError) as exc:
        raise TradeRecordError(f"Trade record field '{key}' is not writable: {exc}") from exc
    return out


def _typed(kind: str, text: str) -> Any:
    if kind == "text":
        return text
    if kind == "int":
        return int(text)
    if kind in {"f2", "f0"}:
        return float(text)
    if kind == "time":
        normalized = text.replace("T", " ")
        if normalized.endswith("Z"):
            normalized = normalized[:-1] + "+00:00"
        dt = datetime.fromisoformat(normalized)
        return _utc(dt)
    raise ValueError(f"Unsupported field format {kind}")


def encode_csv_row(row: dict[str, str]) -> str:
    buffer = io.StringIO()
    writer = csv.DictWriter(buffer, fieldnames=CSV_COLUMNS, lineterminator="\n")
    writer.writerow({csv_name: row[key] for csv_name, key, _ in _FIELDS})
    return buffer.getvalue()


def encode_json_line(row: dict[str, str]) -> str:
    payload: dict[str, Any] = {"EntryType": RECORD_TYPE}
    for _, key, kind in _FIELDS:
        value = _typed(kind, row[key])
        if kind == "time":
            value = value.isoformat()
        payload[key] = value
    return json.dumps(payload, ensure_ascii=True) + "\n"


def parse_csv_row(line: str) -> dict[str, Any]:
    reader = csv.reader(io.StringIO(line))
    values = next(reader)
    if len(values) != len(_FIELDS):
        raise ValueError(f"Expected {len(_FIELDS)} columns, got {len(values)}")
    return {key: _typed(kind, text) for (_, key, kind), text in zip(_FIELDS, values)}


def parse_json_line(line: str) -> dict[str, Any]:
    payload = json.loads(line)
    if not isinstance(payload, dict):
        raise ValueError("Trade log line is not a JSON object")
    if payload.get("EntryType") != RECORD_TYPE:
        raise ValueError(f"Unexpected record type {payload.get('EntryType')!r}")
    out: dict[str, Any] = {}
    for _, key, kind in _FIELDS:
        value = payload[key]
        out[key] = _typed(kind, value) if kind == "time" else value
        if kind in {"f2", "f0"}:
            out[key] = float(value)
    return out


class SinkHandle:
    """Shared per-file handle: every writer of one path must hold the same one."""

    def __init__(self, path: str | Path):
        self.path = Path(path)
        self.lock = threading.Lock()


class SinkRegistry:
    def __init__(self) -> None:
        self._handles: dict[Path, SinkHandle] = {}
        self._lock = threading.Lock()

    def handle_for(self, path: str | Path) -> SinkHandle:
        key = Path(path).expanduser().resolve()
        with self._lock:
            handle = self._handles.get(key)
            if handle is None:
                handle = SinkHandle(key)
                self._handles[key] = handle
            return handle


class TradeSink(Protocol):
    name: str

    def append(self, row: dict[str, str]) -> None:
        ...


class _FileSink:
    name = "file"

    def __init__(self, handle: SinkHandle):
        self.handle = handle
        self.initialize()

    @property
    def path(self) -> Path:
        return self.handle.path

    def _header(self) -> str | None:
        return None

    def _ensure_ready_locked(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        header = self._header()
        if header is None:
            return
        if not self.path.exists() or self.path.stat().st_size == 0:
            with self.path.open("a", encoding="utf-8", newline="") as handle:
                handle.write(header)

    def initialize(self) -> bool:
        with self.handle.lock:
            try:
                self._ensure_ready_locked()
            except OSError as exc:
                LOGGER.warning("%s sink init failed for %s (will retry on write): %s", self.name, self.path, exc)
                return False
        return True

    def _encode(self, row: dict[str, str]) -> str:
        raise NotImplementedError

    def append(self, row: dict[str, str]) -> None:
        line = self._encode(row)
        with self.handle.lock:
            try:
                self._ensure_ready_locked()
                with self.path.open("a", encoding="utf-8", newline="") as handle:
                    handle.write(line)
                    handle.flush()
            except OSError as exc:
                raise SinkWriteError(f"Error logging trade to {self.name.upper()} at {self.path}: {exc}") from exc


class CsvTradeSink(_FileSink):
    name = "csv"

    def _header(self) -> str | None:
        return ",".join(CSV_COLUMNS) + "\n"

    def _encode(self, row: dict[str, str]) -> str:
        return encode_csv_row(row)


class JsonlTradeSink(_FileSink):
    name = "jsonl"

    def _encode(self, row: dict[str, str]) -> str:
        return encode_json_line(row)


@dataclass(slots=True)
class RecordResult:
    ok: bool
    written: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


class TradeRecorder:
    def __init__(self, sinks: Sequence[TradeSink]):
        self.sinks = list(sinks)

    def record(self, record: TradeRecord | None) -> RecordResult:
        try:
            row = format_record(record)
        except TradeRecordError as exc:
            LOGGER.warning("LogTrade failed: %s", exc)
            return RecordResult(ok=False, errors=[str(exc)])

        result = RecordResult(ok=True)
        for sink in self.sinks:
            try:
                sink.append(row)
            except SinkWriteError as exc:
                LOGGER.error("%s", exc)
                result.errors.append(str(exc))
                continue
            result.written.append(sink.name)
        result.ok = not result.errors
        return result


def build_recorder(config: RecorderConfig, registry: SinkRegistry | None = None) -> TradeRecorder:
    """Recorder for the configured sinks.

    Instances that write the same files must share ``registry``.
    """
    registry = registry or SinkRegistry()
    sinks: list[TradeSink] = []
    if config.csv_enabled:
        sinks.append(CsvTradeSink(registry.handle_for(config.csv_path)))
    if config.jsonl_enabled:
        sinks.append(JsonlTradeSink(registry.handle_for(config.jsonl_path)))
    return TradeRecorder(sinks)
