from __future__ import annotations

import threading
import time
from typing import Any, Dict, List, Optional

# Process-wide provider call statistics, exposed via /api/admin/stats
_lock = threading.Lock()
_agg: Dict[str, Any] = {"llm": {}, "fallbacks": {}}


def now() -> float:
    return time.perf_counter()


def elapsed_ms(t0: float) -> int:
    return int((time.perf_counter() - t0) * 1000)


def reset() -> None:
    global _agg
    with _lock:
        _agg = {"llm": {}, "fallbacks": {}}


def _percentile(values: List[int], p: float) -> Optional[int]:
    if not values:
        return None
    s = sorted(values)
    k = max(0, min(len(s) - 1, int(round((p / 100.0) * (len(s) - 1)))))
    return int(s[k])


def _summarize_latencies(values: List[int]) -> Dict[str, Optional[int]]:
    if not values:
        return {"p50": None, "p95": None, "p99": None, "max": None}
    return {
        "p50": _percentile(values, 50),
        "p95": _percentile(values, 95),
        "p99": _percentile(values, 99),
        "max": max(values),
    }


def record_llm(provider: str, model: str, *, latency_ms: int = 0, ok: bool = True) -> None:
    key = f"{provider}:{model}"
    with _lock:
        llm = _agg["llm"].setdefault(key, {"calls": 0, "errors": 0, "latency_ms": []})
        llm["calls"] += 1
        if latency_ms:
            llm["latency_ms"].append(int(latency_ms))
            # bounded window
            del llm["latency_ms"][:-500]
        if not ok:
            llm["errors"] += 1


def record_fallback(kind: str) -> None:
    with _lock:
        fb = _agg["fallbacks"]
        fb[kind] = int(fb.get(kind, 0)) + 1


def snapshot() -> Dict[str, Any]:
    with _lock:
        out: Dict[str, Any] = {"llm": {}, "fallbacks": dict(_agg["fallbacks"])}
        for key, v in _agg["llm"].items():
            out["llm"][key] = {
                "calls": int(v.get("calls", 0)),
                "errors": int(v.get("errors", 0)),
                "latency": _summarize_latencies(list(v.get("latency_ms", []))),
            }
    return out
