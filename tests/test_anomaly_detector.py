from datetime import date

import pandas as pd

from app.intelligence.anomaly import (
    AnomalyType,
    Severity,
    TransactionAnomalyDetector,
    detect_category_spikes,
    leave_one_out_stats,
)


def _window(rows):
    return pd.DataFrame([
        {"id": i, "trx_date": d, "description": desc, "debit": debit,
         "category_id": cat, "category_name": "Groceries" if cat else None}
        for i, (d, desc, debit, cat) in enumerate(rows, start=1)
    ])


def test_leave_one_out_stats():
    mean, std, size = leave_one_out_stats([10, 10, 12, 11, 10, 200], 5)
    assert size == 5
    assert round(mean, 2) == 10.6
    assert round(std, 2) == 0.8


class TestUnusualAmounts:
    def test_outlier_flagged(self):
        amounts = [10.0, 10.0, 12.0, 11.0, 10.0, 200.0]
        df = _window([(date(2024, 3, i + 1), f"SHOP {i}", a, 1) for i, a in enumerate(amounts)])
        [anomaly] = TransactionAnomalyDetector(df).unusual_amounts()
        assert anomaly.anomaly_type == AnomalyType.UNUSUAL_AMOUNT
        assert anomaly.severity == Severity.MEDIUM
        assert anomaly.transaction_id == 6
        assert anomaly.transaction["amount"] == 200.0
        assert anomaly.description.startswith("Amount 200.0 is ")
        assert anomaly.description.endswith("from category average of 10.6")

    def test_uniform_reference_group_hides_outlier(self):
        # Every other member is 50, so the leave-one-out spread is zero and nothing is flagged
        amounts = [50.0, 50.0, 50.0, 50.0, 500.0]
        df = _window([(date(2024, 3, i + 1), f"SHOP {i}", a, 1) for i, a in enumerate(amounts)])
        assert TransactionAnomalyDetector(df).unusual_amounts() == []

    def test_small_categories_ignored(self):
        amounts = [10.0, 10.0, 11.0, 900.0]
        df = _window([(date(2024, 3, i + 1), f"SHOP {i}", a, 1) for i, a in enumerate(amounts)])
        assert TransactionAnomalyDetector(df).unusual_amounts() == []

    def test_uncategorized_ignored(self):
        amounts = [10.0, 10.0, 12.0, 11.0, 10.0, 200.0]
        df = _window([(date(2024, 3, i + 1), f"SHOP {i}", a, None) for i, a in enumerate(amounts)])
        assert TransactionAnomalyDetector(df).unusual_amounts() == []

    def test_deviation_of_exactly_three_not_flagged(self):
        # Without the last row the group is 10, 10, 12, 12: mean 11, std 1, so 14 sits exactly 3 away
        amounts = [10.0, 10.0, 12.0, 12.0, 14.0]
        df = _window([(date(2024, 3, i + 1), f"SHOP {i}", a, 1) for i, a in enumerate(amounts)])
        assert TransactionAnomalyDetector(df).unusual_amounts() == []

    def test_deviation_just_above_three_flagged(self):
        amounts = [10.0, 10.0, 12.0, 12.0, 14.5]
        df = _window([(date(2024, 3, i + 1), f"SHOP {i}", a, 1) for i, a in enumerate(amounts)])
        [anomaly] = TransactionAnomalyDetector(df).unusual_amounts()
        assert anomaly.transaction_id == 5


class TestDuplicates:
    def test_second_occurrence_flagged(self):
        df = _window([
            (date(2024, 3, 10), "COFFEE HOUSE", 4.5, 1),
            (date(2024, 3, 10), "COFFEE HOUSE", 4.5, 1),
            (date(2024, 3, 11), "COFFEE HOUSE", 4.5, 1),
        ])
        [anomaly] = TransactionAnomalyDetector(df).potential_duplicates()
        assert anomaly.anomaly_type == AnomalyType.POTENTIAL_DUPLICATE
        assert anomaly.severity == Severity.HIGH
        assert anomaly.transaction_id == 2
        assert anomaly.transaction["date"] == "2024-03-10"

    def test_different_amounts_not_duplicates(self):
        df = _window([
            (date(2024, 3, 10), "COFFEE HOUSE", 4.5, 1),
            (date(2024, 3, 10), "COFFEE HOUSE", 3.2, 1),
        ])
        assert TransactionAnomalyDetector(df).potential_duplicates() == []


class TestNewMerchants:
    def test_large_first_purchase(self):
        df = _window([(date(2024, 3, 10), "NEWSHOP LONDON", 150.0, None)])
        history = pd.DataFrame([{"id": 1, "trx_date": date(2024, 3, 10), "description": "NEWSHOP LONDON"}])
        [anomaly] = TransactionAnomalyDetector(df).new_merchants(history)
        assert anomaly.anomaly_type == AnomalyType.NEW_MERCHANT_LARGE
        assert anomaly.severity == Severity.LOW
        assert anomaly.description == 'First transaction from new merchant "NEWSHOP" with amount 150.0'

    def test_known_merchant(self):
        df = _window([(date(2024, 3, 10), "NEWSHOP LONDON", 150.0, None)])
        history = pd.DataFrame([
            {"id": 1, "trx_date": date(2024, 3, 10), "description": "NEWSHOP LONDON"},
            {"id": 99, "trx_date": date(2024, 1, 2), "description": "NEWSHOP ONLINE"},
        ])
        assert TransactionAnomalyDetector(df).new_merchants(history) == []

    def test_small_amounts_ignored(self):
        df = _window([(date(2024, 3, 10), "NEWSHOP LONDON", 99.0, None)])
        assert TransactionAnomalyDetector(df).new_merchants(pd.DataFrame()) == []


class TestCategorySpikes:
    def test_spike(self):
        history = pd.DataFrame([
            {"category_id": 1, "month": "2024-01", "total": 100.0},
            {"category_id": 1, "month": "2024-02", "total": 100.0},
        ])
        current = pd.DataFrame([{"category_id": 1, "category_name": "Shopping", "total": 400.0}])
        [anomaly] = detect_category_spikes(history, current)
        assert anomaly.anomaly_type == AnomalyType.CATEGORY_SPIKE
        assert anomaly.transaction_id is None
        assert anomaly.category_id == 1
        assert anomaly.description == "Shopping spending is 300.0% above monthly average (400.0 vs avg 100.0)"

    def test_needs_two_months_of_history(self):
        history = pd.DataFrame([{"category_id": 1, "month": "2024-02", "total": 100.0}])
        current = pd.DataFrame([{"category_id": 1, "category_name": "Shopping", "total": 900.0}])
        assert detect_category_spikes(history, current) == []

    def test_below_threshold(self):
        history = pd.DataFrame([
            {"category_id": 1, "month": "2024-01", "total": 100.0},
            {"category_id": 1, "month": "2024-02", "total": 100.0},
        ])
        current = pd.DataFrame([{"category_id": 1, "category_name": "Shopping", "total": 250.0}])
        assert detect_category_spikes(history, current) == []

    def test_exactly_three_times_average_flagged(self):
        history = pd.DataFrame([
            {"category_id": 1, "month": "2024-01", "total": 100.0},
            {"category_id": 1, "month": "2024-02", "total": 100.0},
        ])
        current = pd.DataFrame([{"category_id": 1, "category_name": "Shopping", "total": 300.0}])
        [anomaly] = detect_category_spikes(history, current)
        assert anomaly.description == "Shopping spending is 200.0% above monthly average (300.0 vs avg 100.0)"


def test_empty_window():
    detector = TransactionAnomalyDetector(pd.DataFrame())
    assert detector.unusual_amounts() == []
    assert detector.potential_duplicates() == []
    assert detector.new_merchants(pd.DataFrame()) == []
