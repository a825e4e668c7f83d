"""
Unit tests for profile training, including an end-to-end enrollment run.
"""
import sys
import os
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

import pytest
import numpy as np

from authenticator import authenticate
from config import AuthConfig
from errors import InsufficientDataError, ShapeMismatchError
from keystroke_features import extract_features
from schemas import AutoencoderProfile, StatisticalProfile
from trainer import (
    augment_samples,
    build_statistical_profile,
    percentile_threshold,
    train_autoencoder,
    train_profile,
)
from synthetic import typing_attempt


@pytest.fixture(scope="module")
def enrollment_samples():
    """Ten genuine attempts: holds ~N(80, 5)ms, intervals ~N(150, 5)ms."""
    rng = np.random.default_rng(1234)
    return [extract_features(typing_attempt(rng)).tolist() for _ in range(10)]


@pytest.fixture(scope="module")
def trained_profile(enrollment_samples):
    return train_autoencoder(enrollment_samples, seed=42)


class TestAugmentation:
    """Test noisy sample augmentation."""

    def test_shape_and_originals_kept(self):
        samples = np.array([[10.0, 20.0], [30.0, 40.0]])
        augmented = augment_samples(samples, augmentation_factor=3, noise_level=0.1,
                                    rng=np.random.default_rng(0))

        assert augmented.shape == (8, 2)
        np.testing.assert_array_equal(augmented[0], samples[0])
        np.testing.assert_array_equal(augmented[4], samples[1])

    def test_noise_is_relative_and_bounded(self):
        samples = np.array([[100.0, 0.0, 50.0]])
        augmented = augment_samples(samples, augmentation_factor=20, noise_level=0.1,
                                    rng=np.random.default_rng(0))

        assert np.all(augmented >= 0)
        assert np.all(np.abs(augmented[:, 0] - 100.0) <= 10.0)
        # Zero-valued features get zero noise
        assert np.all(augmented[:, 1] == 0.0)

    def test_zero_factor_returns_originals(self):
        samples = np.array([[1.0, 2.0]])
        np.testing.assert_array_equal(augment_samples(samples, augmentation_factor=0), samples)


class TestPercentileThreshold:
    """Test threshold calibration."""

    def test_uses_sorted_percentile_index_with_margin(self):
        errors = [0.10, 0.01, 0.05, 0.02, 0.03, 0.04, 0.06, 0.07, 0.08, 0.09]
        # floor(0.95 * 10) = 9 -> the largest error
        assert percentile_threshold(errors) == pytest.approx(0.12)

    def test_twenty_errors(self):
        errors = [i / 100 for i in range(1, 21)]
        # floor(0.95 * 20) = 19 -> 0.20
        assert percentile_threshold(errors) == pytest.approx(0.24)

    def test_floor_applies(self):
        assert percentile_threshold([0.001, 0.002], floor=0.03) == 0.03


class TestTrainAutoencoder:
    """Test autoencoder profile training."""

    def test_profile_contents(self, trained_profile):
        assert isinstance(trained_profile, AutoencoderProfile)
        assert trained_profile.model_type == "autoencoder"
        assert trained_profile.autoencoder.input_size == 58
        assert len(trained_profile.normalization_params.min) == 58
        assert trained_profile.created_at is not None

    def test_training_stats(self, trained_profile):
        stats = trained_profile.training_stats
        assert stats.samples == 10
        assert stats.augmented_samples == 40
        assert len(stats.reconstruction_errors) == 10
        assert stats.min_error <= stats.mean_error <= stats.max_error

    def test_threshold_covers_all_training_errors(self, trained_profile):
        stats = trained_profile.training_stats
        assert trained_profile.threshold >= 0.03
        assert trained_profile.threshold >= stats.max_error * 1.2 - 1e-12

    def test_seeded_training_is_deterministic(self, enrollment_samples):
        a = train_autoencoder(enrollment_samples, seed=7)
        b = train_autoencoder(enrollment_samples, seed=7)
        assert a.threshold == b.threshold
        assert a.autoencoder.weights3 == b.autoencoder.weights3

    def test_insufficient_samples(self, enrollment_samples):
        with pytest.raises(InsufficientDataError) as exc_info:
            train_autoencoder(enrollment_samples[:9])
        assert exc_info.value.available == 9
        assert exc_info.value.required == 10

    def test_mismatched_lengths(self, enrollment_samples):
        samples = [list(s) for s in enrollment_samples]
        samples[3] = samples[3][:-1]
        with pytest.raises(ShapeMismatchError):
            train_autoencoder(samples)

    def test_custom_config(self, enrollment_samples):
        config = AuthConfig(samples_required=5, epochs=5, augmentation_factor=1, hidden_size=4, bottleneck_size=2)
        profile = train_autoencoder(enrollment_samples[:5], config=config, seed=0)
        assert profile.training_stats.augmented_samples == 10
        assert profile.autoencoder.hidden_size == 4


class TestEndToEndEnrollment:
    """Enroll on synthetic typing and authenticate fresh attempts."""

    def test_training_samples_accepted(self, trained_profile, enrollment_samples):
        for sample in enrollment_samples:
            verdict = authenticate(trained_profile, sample)
            assert verdict.authenticated, verdict.reason

    def test_genuine_attempts_accepted(self, trained_profile):
        rng = np.random.default_rng(99)
        verdicts = [authenticate(trained_profile, extract_features(typing_attempt(rng))) for _ in range(5)]
        assert sum(v.authenticated for v in verdicts) >= 4

    def test_imposter_rejected(self, trained_profile):
        rng = np.random.default_rng(5)
        attempt = typing_attempt(rng, hold_mean=300.0, hold_std=20.0, interval_mean=400.0, interval_std=20.0)
        verdict = authenticate(trained_profile, extract_features(attempt))

        assert not verdict.authenticated
        assert verdict.method == "autoencoder"
        assert verdict.reconstruction_error > verdict.threshold
        assert verdict.reason.startswith("Reconstruction error too high")


class TestStatisticalProfile:
    """Test the mean/std profile builder."""

    def test_means_and_stds(self):
        samples = [[1.0, 10.0], [3.0, 10.0], [5.0, 10.0]]
        config = AuthConfig(samples_required=3)
        profile = build_statistical_profile(samples, config)

        assert isinstance(profile, StatisticalProfile)
        np.testing.assert_allclose(profile.normalization_params.means, [3.0, 10.0])
        np.testing.assert_allclose(profile.normalization_params.stds, [np.std([1, 3, 5]), 0.0])

    def test_threshold_floor(self, enrollment_samples):
        profile = build_statistical_profile(enrollment_samples)
        assert profile.threshold >= 0.1
        assert profile.mse_stats.percentile_threshold == profile.threshold

    def test_enrollment_samples_pass(self, enrollment_samples):
        profile = build_statistical_profile(enrollment_samples)
        passed = sum(authenticate(profile, s).authenticated for s in enrollment_samples)
        assert passed == len(enrollment_samples)


class TestTrainProfile:
    """Test model type selection."""

    def test_statistical(self, enrollment_samples):
        assert train_profile(enrollment_samples, "statistical").model_type == "statistical"

    def test_unknown_type(self, enrollment_samples):
        with pytest.raises(ValueError):
            train_profile(enrollment_samples, "random_forest")
