import hashlib
import math
import re
import secrets
from collections import defaultdict
from datetime import datetime, timezone
from typing import Iterable, List, Dict, Any, Optional, Tuple

PUBLIC_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]{3,64}$")
_PUBLIC_ID_ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789"


def utcnow() -> datetime:
    """Naive UTC now; every timestamp column stores naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_utc_naive(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def isoformat(dt: Optional[datetime]) -> Optional[str]:
    if dt is None:
        return None
    return to_utc_naive(dt).isoformat(timespec="milliseconds") + "Z"


def hash_api_key(api_key: str) -> str:
    return hashlib.sha256(api_key.encode("utf-8")).hexdigest()


def generate_public_id(prefix: str = "LOT-", length: int = 6) -> str:
    return prefix + "".join(secrets.choice(_PUBLIC_ID_ALPHABET) for _ in range(length))


def round_half_up(value: float, digits: int = 2) -> float:
    factor = 10 ** digits
    return math.floor(value * factor + 0.5) / factor


def qa_kpis(defects: List[int], temps: List[float], threshold: float) -> Dict[str, Any]:
    """Summary statistics over inspections and temperature readings.

    Empty inputs give zeros instead of dividing by zero.
    """
    total_inspections = len(defects)
    total_defects = sum(defects)
    defect_rate = total_defects / total_inspections if total_inspections else 0
    avg_temp = sum(temps) / len(temps) if temps else 0
    excursions = sum(1 for t in temps if t > threshold)
    return {
        "totalInspections": total_inspections,
        "totalDefects": total_defects,
        "defectRate": round_half_up(defect_rate),
        "avgTemp": round_half_up(avg_temp),
        "tempExcursions": excursions,
        "tempThreshold": threshold,
    }


def daily_series(
    inspections: Iterable[Tuple[datetime, int]],
    readings: Iterable[Tuple[datetime, float]],
) -> List[Dict[str, Any]]:
    """Bucket readings and defects per UTC calendar day, sorted by date."""
    temps_by_day: Dict[str, List[float]] = defaultdict(list)
    defects_by_day: Dict[str, int] = defaultdict(int)
    for at, temp in readings:
        temps_by_day[to_utc_naive(at).date().isoformat()].append(temp)
    for created_at, defects in inspections:
        defects_by_day[to_utc_naive(created_at).date().isoformat()] += defects

    series = []
    for day in sorted(set(temps_by_day) | set(defects_by_day)):
        temps = temps_by_day.get(day)
        series.append({
            "date": day,
            "avgTemp": sum(temps) / len(temps) if temps else None,
            "defects": defects_by_day.get(day, 0),
        })
    return series
