"""
Unit tests for keystroke authentication decisions.
"""
import sys
import os
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

import pytest
import numpy as np

from authenticator import authenticate
from autoencoder import SimpleAutoencoder
from schemas import (
    AutoencoderProfile,
    MeanStdParams,
    MinMaxParams,
    MseStats,
    StatisticalProfile,
)


@pytest.fixture
def statistical_profile():
    return StatisticalProfile(
        normalization_params=MeanStdParams(means=[1.0, 2.0], stds=[1.0, 0.0]),
        mse_stats=MseStats(percentile_threshold=0.5, mean_mse=0.1),
    )


@pytest.fixture
def autoencoder_profile():
    model = SimpleAutoencoder(input_size=4, hidden_size=3, bottleneck_size=2, seed=0)
    return AutoencoderProfile(
        normalization_params=MinMaxParams(min=[0.0] * 4, max=[10.0] * 4),
        threshold=1.0,
        autoencoder=model.serialize(),
    )


class TestStatisticalAuthentication:
    """Test the mean/std decision path."""

    def test_exact_match_accepted(self, statistical_profile):
        verdict = authenticate(statistical_profile, [1.0, 2.0])
        assert verdict.authenticated
        assert verdict.method == "statistical"
        assert verdict.mse == 0.0
        assert verdict.reason == "Authentication successful"

    def test_deviation_rejected(self, statistical_profile):
        # z = [2, 0] -> mse = 4 / 2
        verdict = authenticate(statistical_profile, [3.0, 2.0])
        assert not verdict.authenticated
        assert verdict.mse == pytest.approx(2.0)
        assert verdict.threshold == 0.5
        assert verdict.reason == "MSE (2.00000) exceeds threshold (0.50000)"

    def test_zero_std_uses_unit_divisor(self, statistical_profile):
        # Second feature has std 0: z = 0.5 / 1
        verdict = authenticate(statistical_profile, [1.0, 2.5])
        assert verdict.mse == pytest.approx(0.125)

    def test_default_threshold_without_stats(self):
        profile = StatisticalProfile(normalization_params=MeanStdParams(means=[0.0], stds=[1.0]))
        verdict = authenticate(profile, [0.2])
        assert verdict.threshold == 0.1
        assert verdict.authenticated

    def test_extra_features_ignored_but_counted(self, statistical_profile):
        verdict = authenticate(statistical_profile, [3.0, 2.0, 100.0])
        # Only the two stored features are compared; the sum is divided by 3
        assert verdict.mse == pytest.approx(4.0 / 3.0)

    def test_empty_features_rejected(self, statistical_profile):
        verdict = authenticate(statistical_profile, [])
        assert not verdict.authenticated
        assert verdict.reason.startswith("Statistical authentication failed")

    def test_nan_features_rejected(self, statistical_profile):
        verdict = authenticate(statistical_profile, [np.nan, 2.0])
        assert not verdict.authenticated
        assert "not finite" in verdict.reason


class TestAutoencoderAuthentication:
    """Test the reconstruction-error decision path."""

    def test_verdict_fields(self, autoencoder_profile):
        verdict = authenticate(autoencoder_profile, [5.0, 5.0, 5.0, 5.0])
        assert verdict.method == "autoencoder"
        assert verdict.threshold == 1.0
        assert verdict.mse == verdict.reconstruction_error
        # Normalized inputs and outputs are both in [0, 1]
        assert verdict.authenticated

    def test_threshold_comparison(self, autoencoder_profile):
        strict = autoencoder_profile.model_copy(update={"threshold": 0.0})
        verdict = authenticate(strict, [5.0, 5.0, 5.0, 5.0])
        assert not verdict.authenticated
        assert verdict.reason.startswith("Reconstruction error too high")

    def test_short_attempt_is_padded(self, autoencoder_profile):
        verdict = authenticate(autoencoder_profile, [5.0, 5.0])
        assert verdict.reconstruction_error is not None

    def test_corrupt_weights_rejected(self, autoencoder_profile):
        broken = autoencoder_profile.model_copy(
            update={"autoencoder": autoencoder_profile.autoencoder.model_copy(update={"biases1": [0.0]})}
        )
        verdict = authenticate(broken, [5.0, 5.0, 5.0, 5.0])
        assert not verdict.authenticated
        assert verdict.method == "autoencoder"
        assert verdict.reason.startswith("Autoencoder authentication failed")

    def test_stored_dict_profile(self, autoencoder_profile):
        stored = autoencoder_profile.to_storage()
        assert stored["modelType"] == "autoencoder"
        verdict = authenticate(stored, [5.0, 5.0, 5.0, 5.0])
        assert verdict.method == "autoencoder"


class TestMalformedProfiles:
    """Malformed input produces a rejected verdict instead of raising."""

    def test_unknown_model_type(self):
        verdict = authenticate({"modelType": "svm"}, [1.0])
        assert not verdict.authenticated
        assert verdict.method is None
        assert verdict.reason.startswith("Profile authentication failed")

    def test_missing_fields(self):
        verdict = authenticate({"modelType": "autoencoder"}, [1.0])
        assert not verdict.authenticated
