from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Optional

import numpy as np
import pandas as pd

from app.intelligence.matcher import extract_merchant_name


class Frequency(str, Enum):
    WEEKLY = "weekly"
    FORTNIGHTLY = "fortnightly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    YEARLY = "yearly"


# Inclusive bounds on the average gap in days
FREQUENCY_BANDS = [
    (Frequency.WEEKLY, 4, 10),
    (Frequency.FORTNIGHTLY, 11, 18),
    (Frequency.MONTHLY, 25, 35),
    (Frequency.QUARTERLY, 80, 100),
    (Frequency.YEARLY, 350, 380),
]

DAY_OF_MONTH_FREQUENCIES = {Frequency.MONTHLY, Frequency.QUARTERLY, Frequency.YEARLY}

DISPLAY_BUCKETS = {
    Frequency.WEEKLY: "weekly",
    Frequency.FORTNIGHTLY: "weekly",
    Frequency.MONTHLY: "monthly",
    Frequency.QUARTERLY: "monthly",
    Frequency.YEARLY: "annual",
}

MIN_OCCURRENCES = 3
MAX_AMOUNT_VARIATION = 0.10


@dataclass
class Classification:
    frequency: Optional[Frequency]
    typical_day: Optional[int]
    typical_amount: float


@dataclass
class RecurringCandidate:
    description: str
    merchant_name: str
    frequency: Frequency
    typical_amount: float
    typical_day: Optional[int]
    occurrence_count: int
    last_seen: date
    category_id: Optional[int]
    transaction_ids: list[int] = field(default_factory=list)


def _to_frame(transactions) -> pd.DataFrame:
    df = pd.DataFrame(transactions).copy()
    for col in ("debit", "credit"):
        if col not in df.columns:
            df[col] = 0.0
    df[["debit", "credit"]] = df[["debit", "credit"]].fillna(0.0).astype(float)
    df["trx_date"] = pd.to_datetime(df["trx_date"])
    return df


def _amounts(df: pd.DataFrame) -> pd.Series:
    return df["debit"].where(df["debit"] > 0, df["credit"])


def classify_frequency(average_gap: float) -> Optional[Frequency]:
    for frequency, low, high in FREQUENCY_BANDS:
        if low <= average_gap <= high:
            return frequency
    return None


def coefficient_of_variation(values) -> float:
    """Population standard deviation over |mean|; 0 for fewer than two values or a zero mean."""
    arr = np.asarray(list(values), dtype=float)
    if arr.size < 2:
        return 0.0
    mean = arr.mean()
    if mean == 0:
        return 0.0
    return float(arr.std() / abs(mean))


def classify_pattern(transactions) -> Classification:
    """Infer billing cadence, typical amount and typical day from a group of transactions.

    Accepts a DataFrame or a list of mappings with ``trx_date`` and
    ``debit``/``credit`` columns.
    """
    if len(transactions) < 2:
        return Classification(frequency=None, typical_day=None, typical_amount=0.0)

    df = _to_frame(transactions).sort_values("trx_date", kind="stable")

    gaps = df["trx_date"].diff().dt.days.dropna()
    frequency = classify_frequency(float(gaps.mean()))

    typical_amount = round(float(_amounts(df).mean()), 2)

    typical_day = None
    if frequency in DAY_OF_MONTH_FREQUENCIES:
        typical_day = int(np.floor(df["trx_date"].dt.day.mean() + 0.5))

    return Classification(frequency=frequency, typical_day=typical_day, typical_amount=typical_amount)


def frequency_bucket(frequency) -> Optional[str]:
    if frequency is None:
        return None
    try:
        return DISPLAY_BUCKETS[Frequency(frequency)]
    except ValueError:
        return None


class RecurringPatternAnalyzer:
    """Groups transaction history by exact description and keeps the regular, stable ones."""

    def __init__(self, df: pd.DataFrame):
        self.df = df.copy()

    def _most_common_category(self, group: pd.DataFrame) -> Optional[int]:
        categories = group["category_id"].dropna() if "category_id" in group.columns else pd.Series(dtype=float)
        if categories.empty:
            return None
        counts = categories.value_counts()
        # Ties go to the category seen first
        tied = counts[counts == counts.max()].index
        return int(categories[categories.isin(tied)].iloc[0])

    def candidates(
        self,
        min_occurrences: int = MIN_OCCURRENCES,
        max_variation: float = MAX_AMOUNT_VARIATION,
    ) -> list[RecurringCandidate]:
        if self.df.empty:
            return []

        df = _to_frame(self.df)
        result = []

        for description, group in df.groupby("description", sort=True):
            if len(group) < min_occurrences:
                continue

            if coefficient_of_variation(_amounts(group)) > max_variation:
                continue

            classification = classify_pattern(group)
            if classification.frequency is None:
                continue

            ordered = group.sort_values(["trx_date", "id"], kind="stable")
            result.append(RecurringCandidate(
                description=description,
                merchant_name=extract_merchant_name(description),
                frequency=classification.frequency,
                typical_amount=classification.typical_amount,
                typical_day=classification.typical_day,
                occurrence_count=len(group),
                last_seen=ordered["trx_date"].iloc[-1].date(),
                category_id=self._most_common_category(ordered),
                transaction_ids=[int(i) for i in ordered["id"]],
            ))

        return result
