"""Unit tests for survival_walkthrough.config module."""
import json
import pytest
from survival_walkthrough.config import (
    ModelHyperparameters,
    DataConfig,
    AnalysisConfig,
    WalkthroughConfig,
)


class TestModelHyperparameters:
    """Tests for run-type specific hyperparameters."""

    def test_sample_defaults(self):
        """Test sample runs use the small forest."""
        hp = ModelHyperparameters.for_environment("sample")

        assert hp.rsf_n_estimators == 100
        assert hp.rsf_n_jobs == 1

    def test_production(self):
        """Test production runs use more trees and all cores."""
        hp = ModelHyperparameters.for_environment("production")

        assert hp.rsf_n_estimators == 500
        assert hp.rsf_n_jobs == -1
        assert hp.importance_n_repeats == 20


class TestDataAndAnalysisConfig:
    """Tests for the data and analysis sections."""

    def test_covariates_order(self):
        """Test factors come before numeric covariates."""
        assert DataConfig().covariates == ["trt", "celltype", "prior", "karno", "diagtime", "age"]

    def test_default_comparison(self):
        """Test default comparison order and labels."""
        analysis = AnalysisConfig()

        assert [analysis.label_for(k) for k in analysis.comparison_order] == ["KM", "Cox", "RF"]
        assert analysis.nan_policy == "propagate"

    def test_label_falls_back_to_key(self):
        """Test unknown keys are their own label."""
        assert AnalysisConfig().label_for("aalen") == "aalen"


class TestWalkthroughConfig:
    """Tests for the master configuration."""

    def test_for_run_type(self):
        """Test run type is stored and drives hyperparameters."""
        config = WalkthroughConfig.for_run_type("production")

        assert config.run_type == "production"
        assert config.hyperparameters.rsf_n_estimators == 500

    def test_unknown_run_type(self):
        """Test unknown run types raise ValueError."""
        with pytest.raises(ValueError, match="Unknown run_type"):
            WalkthroughConfig.for_run_type("staging")

    def test_to_dict_is_json_serializable(self):
        """Test tuples become lists."""
        data = WalkthroughConfig().to_dict()

        assert data["analysis"]["comparison_order"] == ["km", "cox", "rsf"]
        json.dumps(data)

    def test_save_load_roundtrip(self, tmp_path):
        """Test a saved configuration loads back equal."""
        config = WalkthroughConfig.for_run_type("production")
        config.analysis.nan_policy = "omit"
        config.analysis.comparison_order = ("km", "aalen", "rsf")
        config.description = "three-curve comparison"
        path = tmp_path / "configs" / "production.json"

        config.save(str(path))
        loaded = WalkthroughConfig.load(str(path))

        assert loaded == config
        assert isinstance(loaded.data.group_columns, tuple)

    def test_load_missing_file(self, tmp_path):
        """Test loading a missing file raises FileNotFoundError."""
        with pytest.raises(FileNotFoundError):
            WalkthroughConfig.load(str(tmp_path / "absent.json"))
