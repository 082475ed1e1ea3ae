"""Helpers for sampling host and process state.

Every reader here is best effort: failures become partial data or defaults,
never exceptions, so health checks keep answering on odd hosts.
"""
from __future__ import annotations

import logging
import os
import re
import time
from dataclasses import asdict, dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Union

import psutil

logger = logging.getLogger(__name__)

_MEMINFO_LINE = re.compile(r"^(\w+):\s+(\d+)")
_MEMINFO_KEYS = {
    "MemTotal": "total_bytes",
    "MemFree": "free_bytes",
    "MemAvailable": "available_bytes",
}
# Field 22 of /proc/<pid>/stat, counted after the "(comm)" field.
_STAT_STARTTIME_INDEX = 19
_DEFAULT_CLOCK_TICKS = 100


@dataclass(frozen=True)
class MemoryStats:
    total_bytes: Optional[int] = None
    free_bytes: Optional[int] = None
    available_bytes: Optional[int] = None
    used_bytes: Optional[int] = None
    used_percent: Optional[float] = None
    error: Optional[str] = None

    def as_dict(self) -> Dict[str, Any]:
        return {key: value for key, value in asdict(self).items() if value is not None}


@dataclass(frozen=True)
class CpuStats:
    logical_count: int = 1

    def as_dict(self) -> Dict[str, Any]:
        return {"logical_count": self.logical_count}


@dataclass(frozen=True)
class HostStats:
    memory: MemoryStats = field(default_factory=MemoryStats)
    cpu: CpuStats = field(default_factory=CpuStats)

    def as_dict(self) -> Dict[str, Any]:
        return {"memory": self.memory.as_dict(), "cpu": self.cpu.as_dict()}


@dataclass(frozen=True)
class ProcessStats:
    uptime_seconds: float
    pid: int

    def as_dict(self) -> Dict[str, Any]:
        return {"uptime_seconds": self.uptime_seconds, "pid": self.pid}


def round_half_up(value: float, places: int = 2) -> float:
    quantum = Decimal(1).scaleb(-places)
    return float(Decimal(str(value)).quantize(quantum, rounding=ROUND_HALF_UP))


def parse_meminfo(text: str) -> Dict[str, int]:
    """Extract total/free/available byte counts from ``/proc/meminfo`` text.

    Keys that are missing from the input are missing from the result.
    """
    values: Dict[str, int] = {}
    for line in text.splitlines():
        match = _MEMINFO_LINE.match(line)
        if match and match.group(1) in _MEMINFO_KEYS:
            values[_MEMINFO_KEYS[match.group(1)]] = int(match.group(2)) * 1024
    return values


def memory_stats_from_values(
    total_bytes: Optional[int] = None,
    free_bytes: Optional[int] = None,
    available_bytes: Optional[int] = None,
    error: Optional[str] = None,
) -> MemoryStats:
    used_bytes = None
    used_percent = None
    # "available" approximates reclaimable memory better than "free".
    if total_bytes and available_bytes is not None:
        used_bytes = max(0, total_bytes - available_bytes)
        used_percent = round_half_up(used_bytes / total_bytes * 100)
    return MemoryStats(
        total_bytes=total_bytes,
        free_bytes=free_bytes,
        available_bytes=available_bytes,
        used_bytes=used_bytes,
        used_percent=used_percent,
        error=error,
    )


class HostStatsProbe:
    """Reads memory, CPU and process uptime from ``/proc`` with psutil fallbacks."""

    def __init__(
        self,
        proc_root: Union[str, Path] = "/proc",
        cpu_counter: Callable[..., Optional[int]] = psutil.cpu_count,
        memory_reader: Callable[[], Any] = psutil.virtual_memory,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._proc_root = Path(proc_root)
        self._cpu_counter = cpu_counter
        self._memory_reader = memory_reader
        self._clock = clock

    def sample(self) -> HostStats:
        return HostStats(memory=self._sample_memory(), cpu=self._sample_cpu())

    def process_sample(self) -> ProcessStats:
        pid = os.getpid()
        try:
            uptime = self._process_uptime(pid)
        except Exception as exc:  # pylint: disable=broad-except
            logger.debug("Process uptime unavailable: %s", exc)
            uptime = 0.0
        return ProcessStats(uptime_seconds=max(0.0, uptime), pid=pid)

    def _sample_memory(self) -> MemoryStats:
        values: Dict[str, int] = {}
        try:
            meminfo_path = self._proc_root / "meminfo"
            if meminfo_path.exists():
                values = parse_meminfo(meminfo_path.read_text(encoding="utf-8", errors="ignore"))
            else:
                virtual = self._memory_reader()
                for key, attr in (("total_bytes", "total"), ("free_bytes", "free"), ("available_bytes", "available")):
                    value = getattr(virtual, attr, None)
                    if value is not None:
                        values[key] = int(value)
        except Exception as exc:  # pylint: disable=broad-except
            logger.debug("Memory stats unavailable: %s", exc)
            return memory_stats_from_values(**values, error=str(exc) or exc.__class__.__name__)
        return memory_stats_from_values(**values)

    def _sample_cpu(self) -> CpuStats:
        try:
            count = self._cpu_counter(logical=True)
        except Exception:  # pylint: disable=broad-except
            count = None
        return CpuStats(logical_count=count if count and count > 0 else 1)

    def _process_uptime(self, pid: int) -> float:
        stat_path = self._proc_root / "self" / "stat"
        if not stat_path.exists():
            return self._clock() - psutil.Process(pid).create_time()

        stat_text = stat_path.read_text(encoding="utf-8", errors="ignore")
        # The command name may contain spaces, so split after its closing paren.
        fields = stat_text[stat_text.rindex(")") + 2 :].split()
        start_ticks = int(fields[_STAT_STARTTIME_INDEX])
        system_uptime = float((self._proc_root / "uptime").read_text(encoding="utf-8").split()[0])

        now = self._clock()
        boot_time = now - system_uptime
        started_at = boot_time + start_ticks / _clock_ticks_per_second()
        return now - started_at


def _clock_ticks_per_second() -> int:
    try:
        ticks = os.sysconf("SC_CLK_TCK")
    except (AttributeError, ValueError, OSError):
        return _DEFAULT_CLOCK_TICKS
    return ticks if ticks > 0 else _DEFAULT_CLOCK_TICKS
