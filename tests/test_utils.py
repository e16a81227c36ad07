"""Tests for config, CSV, pickle and seed helpers."""

import numpy as np
import pytest

from confpred.utils.io import (
    load_config,
    load_csv_dataset,
    load_pickle,
    merge_config,
    save_config,
    save_pickle,
)
from confpred.utils.seed import get_rng, get_torch_generator


class TestConfig:
    """YAML config handling."""

    def test_save_and_load(self, tmp_path):
        config = {"seed": 1, "conformal": {"coverage": 0.9, "method": "naive"}}
        path = tmp_path / "nested" / "config.yaml"

        save_config(config, path)

        assert load_config(path) == config

    def test_empty_file_gives_empty_dict(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("")

        assert load_config(path) == {}

    def test_missing_config_raises(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "missing.yaml")

    def test_merge_nested_sections(self):
        base = {"seed": 42, "training": {"epochs": 100, "batch_size": 100}}

        merged = merge_config(base, {"training": {"epochs": 5}, "seed": None})

        assert merged == {"seed": 42, "training": {"epochs": 5, "batch_size": 100}}
        assert base["training"]["epochs"] == 100


class TestCsvDataset:
    """Tabular data loading."""

    def test_features_and_labels(self, tmp_path):
        path = tmp_path / "data.csv"
        path.write_text("f1,label,f2\n1.0,a,2.0\n3.5,b,-1.0\n")

        X, y = load_csv_dataset(path, "label")

        assert X.dtype == np.float32
        assert X.tolist() == [[1.0, 2.0], [3.5, -1.0]]
        assert y.tolist() == ["a", "b"]

    def test_byte_order_mark_header(self, tmp_path):
        path = tmp_path / "bom.csv"
        path.write_bytes("label,f1,f2\na,1.0,2.0\n".encode("utf-8-sig"))

        X, y = load_csv_dataset(path, "label")

        assert y.tolist() == ["a"]
        assert X.shape == (1, 2)

    def test_missing_target_raises(self, tmp_path):
        path = tmp_path / "data.csv"
        path.write_text("f1,f2\n1.0,2.0\n")

        with pytest.raises(ValueError, match="Target column"):
            load_csv_dataset(path, "label")

    def test_missing_file_raises(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_csv_dataset(tmp_path / "missing.csv", "label")


class TestPickle:
    def test_missing_pickle_raises(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_pickle(tmp_path / "missing.pkl")

    def test_save_creates_parents(self, tmp_path):
        path = tmp_path / "a" / "b.pkl"

        save_pickle({"q_hat": 0.9}, path)

        assert load_pickle(path) == {"q_hat": 0.9}


class TestSeed:
    def test_rng_reproducible(self):
        assert np.array_equal(get_rng(5).permutation(10), get_rng(5).permutation(10))

    def test_torch_generator_reproducible(self):
        import torch

        a = torch.randperm(10, generator=get_torch_generator(5))
        b = torch.randperm(10, generator=get_torch_generator(5))

        assert torch.equal(a, b)
