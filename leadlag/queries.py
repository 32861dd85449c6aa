# leadlag/queries.py
"""
Read-only projections over the causality matrix.

Nothing here mutates engine state, so calling any of these twice with no
ticks in between returns the same result.
"""
import csv
import io
import json
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, List

from .engine import CausalityEngine

CSV_HEADER = [
    "Leader", "Follower", "Successful_Follows", "Missed_Follows",
    "Follow_Rate", "Avg_Lag_MS", "Avg_Magnitude_Ratio", "Sample_Size",
]


def best_pairs(engine: CausalityEngine, min_samples: int = 10, min_follow_rate: float = 0.6, limit: int = 20) -> dict:
    """
    Pairs with enough observations and a follow rate above `min_follow_rate`,
    strongest first. `totalPairsAnalyzed` counts every qualifying pair, not just the returned slice.
    """
    pairs: List[dict] = []
    for leader, follower, rel in engine.matrix.pairs():
        if rel.total >= min_samples and rel.follow_rate > min_follow_rate:
            pairs.append({
                "leader": leader,
                "follower": follower,
                "followRate": rel.follow_rate,
                "avgLag": rel.avg_lag,
                "avgMagnitude": rel.avg_magnitude,
                "sampleSize": rel.sample_size,
                "successfulFollows": rel.successful_follows,
                "missedFollows": rel.missed_follows,
            })

    # sort is stable: ties keep matrix order
    pairs.sort(key=lambda p: p["followRate"], reverse=True)
    return {"pairs": pairs[:limit], "totalPairsAnalyzed": len(pairs)}


def matrix_snapshot(engine: CausalityEngine) -> dict:
    """Pairs with at least one successful follow, keyed leader -> follower."""
    simplified: Dict[str, Dict[str, dict]] = {a: {} for a in engine.assets}
    for leader, follower, rel in engine.matrix.pairs():
        if rel.successful_follows > 0:
            simplified[leader][follower] = {
                "followRate": rel.follow_rate,
                "avgLag": rel.avg_lag,
                "avgMagnitude": rel.avg_magnitude,
                "sampleSize": rel.sample_size,
            }
    return {
        "matrix": simplified,
        "leaderEvents": [e.to_dict() for e in engine.live_events()],
    }


def fixed(value: float, places: int) -> str:
    """
    Fixed-point text with exact halves rounded up, matching dashboard exports.
    Format specs round halves to even (100.5 -> "100"), this gives "101".
    """
    quantum = Decimal(1).scaleb(-places)
    return str(Decimal(value).quantize(quantum, rounding=ROUND_HALF_UP))


def csv_rows(engine: CausalityEngine) -> List[List[str]]:
    rows = []
    for leader, follower, rel in engine.matrix.pairs():
        if rel.total > 0:
            rows.append([
                leader,
                follower,
                str(rel.successful_follows),
                str(rel.missed_follows),
                fixed(rel.follow_rate, 3),
                fixed(rel.avg_lag, 0),
                fixed(rel.avg_magnitude, 3),
                str(rel.sample_size),
            ])
    return rows


def export_csv(engine: CausalityEngine) -> str:
    buf = io.StringIO()
    writer = csv.writer(buf, lineterminator="\n")
    writer.writerow(CSV_HEADER)
    writer.writerows(csv_rows(engine))
    return buf.getvalue()


def export_json(engine: CausalityEngine, indent: int = 2) -> str:
    return json.dumps(engine.snapshot(), indent=indent)
