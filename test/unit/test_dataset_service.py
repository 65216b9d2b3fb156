"""
Unit tests for backend/datachat/services/dataset_service.py
Tests: column type inference, descriptor contents, malformed uploads.
"""

import os

import pandas as pd
import pytest

from datachat.services.dataset_service import (
    DatasetError,
    infer_column_types,
    load_dataset,
    remove_dataset_file,
)


class TestInferColumnTypes:

    def test_numeric_date_categorical(self):
        df = pd.DataFrame({
            "amount": ["1", "2.5", "-3"],
            "when": ["2024-01-01", "2024-02-15", "2024-03-31"],
            "city": ["Pune", "Delhi", "Goa"],
        })
        assert infer_column_types(df) == {"amount": "numeric", "when": "date", "city": "categorical"}

    def test_blanks_ignored(self):
        df = pd.DataFrame({"x": [1.0, None, 3.0]})
        assert infer_column_types(df) == {"x": "numeric"}

    def test_all_empty_is_categorical(self):
        df = pd.DataFrame({"x": [None, None]})
        assert infer_column_types(df) == {"x": "categorical"}

    def test_mixed_values_are_categorical(self):
        df = pd.DataFrame({"x": ["1", "two", "3"]})
        assert infer_column_types(df) == {"x": "categorical"}


class TestLoadDataset:

    def test_descriptor(self, sample_csv):
        ds = load_dataset(sample_csv, name="employees.csv")
        assert ds.name == "employees.csv"
        assert ds.columns == ("name", "department", "salary", "experience", "hired")
        assert ds.total_rows == 5
        assert ds.column_types["salary"] == "numeric"
        assert ds.column_types["department"] == "categorical"
        assert ds.column_types["hired"] == "date"
        assert len(ds.sample_rows) == 5
        assert ds.sample_rows[0]["name"] == "Alice"

    def test_total_rows_counts_past_max_rows(self, tmp_path):
        path = tmp_path / "big.csv"
        path.write_text("v\n" + "\n".join(str(i) for i in range(50)) + "\n")
        ds = load_dataset(str(path), max_rows=10)
        assert ds.total_rows == 50

    def test_empty_file(self, tmp_path):
        path = tmp_path / "empty.csv"
        path.write_text("")
        with pytest.raises(DatasetError):
            load_dataset(str(path))

    def test_ragged_rows(self, tmp_path):
        path = tmp_path / "ragged.csv"
        path.write_text("a,b\n1,2\n1,2,3,4\n")
        with pytest.raises(DatasetError):
            load_dataset(str(path))


def test_remove_dataset_file(sample_dataset):
    remove_dataset_file(sample_dataset)
    assert not os.path.exists(sample_dataset.path)
    remove_dataset_file(sample_dataset)     # already gone: no error
