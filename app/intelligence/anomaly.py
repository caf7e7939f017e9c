from dataclasses import dataclass
from enum import Enum
from typing import Optional

import numpy as np
import pandas as pd

from app.intelligence.matcher import merchant_signature


class AnomalyType(str, Enum):
    UNUSUAL_AMOUNT = "unusual_amount"
    NEW_MERCHANT_LARGE = "new_merchant_large"
    POTENTIAL_DUPLICATE = "potential_duplicate"
    CATEGORY_SPIKE = "category_spike"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


MIN_CATEGORY_SIZE = 5
MIN_REFERENCE_POINTS = 4
DEVIATION_THRESHOLD = 3.0
LARGE_AMOUNT_THRESHOLD = 100.0
MIN_HISTORY_MONTHS = 2
SPIKE_PERCENT_THRESHOLD = 300.0


@dataclass
class DetectedAnomaly:
    anomaly_type: AnomalyType
    severity: Severity
    description: str
    transaction_id: Optional[int] = None
    transaction: Optional[dict] = None
    category_id: Optional[int] = None
    category_name: Optional[str] = None


def penny(amount: float) -> float:
    return round(float(amount), 2)


def leave_one_out_stats(values, position: int) -> tuple[float, float, int]:
    """Mean, population std and size of ``values`` without the element at ``position``."""
    others = np.delete(np.asarray(values, dtype=float), position)
    if others.size == 0:
        return 0.0, 0.0, 0
    return float(others.mean()), float(others.std()), int(others.size)


def _optional_int(value) -> Optional[int]:
    if value is None or pd.isna(value):
        return None
    return int(value)


def _optional_str(value) -> Optional[str]:
    if value is None or (not isinstance(value, str) and pd.isna(value)):
        return None
    return value


class TransactionAnomalyDetector:
    """Per-transaction detection passes over a window of debit transactions.

    Expects columns ``id``, ``trx_date``, ``description``, ``debit`` and
    optionally ``category_id`` / ``category_name``. Transfers and credits are
    filtered out by the caller.
    """

    def __init__(self, df: pd.DataFrame):
        self.df = pd.DataFrame(df).copy()
        if self.df.empty:
            return
        for col in ("category_id", "category_name"):
            if col not in self.df.columns:
                self.df[col] = None
        self.df["trx_date"] = pd.to_datetime(self.df["trx_date"])
        self.df["debit"] = self.df["debit"].astype(float)
        self.df = self.df.sort_values(["trx_date", "id"], kind="stable").reset_index(drop=True)

    def _summary(self, row) -> dict:
        return {
            "id": int(row.id),
            "description": row.description,
            "amount": penny(row.debit),
            "date": row.trx_date.date().isoformat(),
            "category": _optional_str(row.category_name),
        }

    def _anomaly(self, row, anomaly_type: AnomalyType, severity: Severity, description: str) -> DetectedAnomaly:
        return DetectedAnomaly(
            anomaly_type=anomaly_type,
            severity=severity,
            description=description,
            transaction_id=int(row.id),
            transaction=self._summary(row),
            category_id=_optional_int(row.category_id),
            category_name=_optional_str(row.category_name),
        )

    def unusual_amounts(self) -> list[DetectedAnomaly]:
        if self.df.empty:
            return []

        found = []
        categorized = self.df.dropna(subset=["category_id"])
        for _, group in categorized.groupby("category_id", sort=True):
            if len(group) < MIN_CATEGORY_SIZE:
                continue

            amounts = group["debit"].to_numpy(dtype=float)
            for position, row in enumerate(group.itertuples(index=False)):
                mean, std, size = leave_one_out_stats(amounts, position)
                # A perfectly uniform reference group has no spread to measure against
                if size < MIN_REFERENCE_POINTS or std == 0:
                    continue

                deviation = abs(row.debit - mean) / std
                if deviation > DEVIATION_THRESHOLD:
                    found.append(self._anomaly(
                        row, AnomalyType.UNUSUAL_AMOUNT, Severity.MEDIUM,
                        f"Amount {penny(row.debit)} is {penny(deviation)} standard deviations "
                        f"from category average of {penny(mean)}",
                    ))
        return found

    def new_merchants(self, history: pd.DataFrame) -> list[DetectedAnomaly]:
        """Large debits whose merchant signature never appears on an earlier date.

        ``history`` holds every transaction of the same scope (``id``,
        ``trx_date``, ``description``), not just the window.
        """
        if self.df.empty:
            return []

        history = pd.DataFrame(history).copy()
        if history.empty:
            history = pd.DataFrame({"id": [], "trx_date": [], "description": []})
        history["trx_date"] = pd.to_datetime(history["trx_date"])
        upper_descriptions = history["description"].fillna("").astype(str).str.upper()

        found = []
        for row in self.df[self.df["debit"] > LARGE_AMOUNT_THRESHOLD].itertuples(index=False):
            signature = merchant_signature(row.description)
            seen_before = (
                (history["id"] != row.id)
                & (history["trx_date"] < row.trx_date)
                & upper_descriptions.str.contains(signature, regex=False)
            )
            if not seen_before.any():
                found.append(self._anomaly(
                    row, AnomalyType.NEW_MERCHANT_LARGE, Severity.LOW,
                    f'First transaction from new merchant "{signature}" with amount {penny(row.debit)}',
                ))
        return found

    def potential_duplicates(self) -> list[DetectedAnomaly]:
        if self.df.empty:
            return []

        found = []
        for _, group in self.df.groupby(["trx_date", "description", "debit"], sort=False):
            if len(group) < 2:
                continue
            for row in group.iloc[1:].itertuples(index=False):
                found.append(self._anomaly(
                    row, AnomalyType.POTENTIAL_DUPLICATE, Severity.HIGH,
                    f"Potential duplicate transaction: same amount ({penny(row.debit)}), "
                    f"same day, same description",
                ))
        return found


def detect_category_spikes(history: pd.DataFrame, current: pd.DataFrame) -> list[DetectedAnomaly]:
    """Categories whose current-month spend is at least 300% of their historical monthly average.

    ``history`` has one row per (category_id, month) with the month's
    ``total``, current month excluded. ``current`` has ``category_id``,
    ``category_name`` and ``total`` for the current month.
    """
    history = pd.DataFrame(history)
    current = pd.DataFrame(current)
    if history.empty or current.empty:
        return []

    stats = history.groupby("category_id")["total"].agg(["sum", "count"])

    found = []
    for row in current.itertuples(index=False):
        if row.category_id not in stats.index:
            continue
        total, months = stats.loc[row.category_id, "sum"], stats.loc[row.category_id, "count"]
        if months < MIN_HISTORY_MONTHS:
            continue

        average = total / months
        if average == 0:
            continue

        percent = row.total / average * 100
        if percent >= SPIKE_PERCENT_THRESHOLD:
            name = _optional_str(getattr(row, "category_name", None))
            found.append(DetectedAnomaly(
                anomaly_type=AnomalyType.CATEGORY_SPIKE,
                severity=Severity.MEDIUM,
                description=f"{name} spending is {penny(percent - 100)}% above monthly average "
                            f"({penny(row.total)} vs avg {penny(average)})",
                category_id=int(row.category_id),
                category_name=name,
            ))
    return found
