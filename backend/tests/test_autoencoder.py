"""
Unit tests for the numpy autoencoder.
"""
import sys
import os
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

import pytest
import numpy as np

from autoencoder import SimpleAutoencoder, sigmoid, relu
from errors import ShapeMismatchError


@pytest.fixture
def training_data():
    """Normalized samples clustered around a fixed pattern."""
    rng = np.random.default_rng(7)
    base = rng.uniform(0.2, 0.8, size=12)
    return np.clip(base + rng.normal(0, 0.02, size=(20, 12)), 0, 1)


class TestActivations:
    """Test activation functions."""

    def test_relu(self):
        np.testing.assert_array_equal(relu(np.array([-1.0, 0.0, 2.0])), [0.0, 0.0, 2.0])

    def test_sigmoid_midpoint(self):
        assert sigmoid(np.array([0.0]))[0] == pytest.approx(0.5)

    def test_sigmoid_strictly_inside_unit_interval(self):
        """Extreme inputs neither overflow nor saturate to 0 or 1."""
        out = sigmoid(np.array([-1e6, -600.0, 600.0, 1e6]))
        assert np.all(np.isfinite(out))
        assert np.all(out > 0.0)
        assert np.all(out < 1.0)


class TestForward:
    """Test forward pass and reconstruction error."""

    def test_output_shape_and_range(self):
        model = SimpleAutoencoder(input_size=10, seed=1)
        output = model.predict(np.random.default_rng(0).uniform(0, 1, size=10))
        assert output.shape == (10,)
        assert np.all((output > 0) & (output < 1))

    def test_layer_sizes(self):
        model = SimpleAutoencoder(input_size=10, hidden_size=6, bottleneck_size=3, seed=1)
        hidden, bottleneck, output = model.forward(np.zeros(10))
        assert hidden.shape == (6,)
        assert bottleneck.shape == (3,)
        assert output.shape == (10,)

    def test_reconstruction_error_non_negative(self):
        model = SimpleAutoencoder(input_size=5, seed=2)
        assert model.reconstruction_error(np.ones(5)) >= 0.0

    def test_short_input_is_padded(self):
        """A shorter input behaves like the zero-padded input."""
        model = SimpleAutoencoder(input_size=6, seed=3)
        short = np.array([0.3, 0.6, 0.9])
        padded = np.array([0.3, 0.6, 0.9, 0.0, 0.0, 0.0])
        assert model.reconstruction_error(short) == pytest.approx(model.reconstruction_error(padded))

    def test_long_input_is_truncated(self):
        model = SimpleAutoencoder(input_size=3, seed=3)
        long = np.array([0.3, 0.6, 0.9, 0.5, 0.5])
        assert model.reconstruction_error(long) == pytest.approx(model.reconstruction_error(long[:3]))

    def test_invalid_sizes(self):
        with pytest.raises(ValueError):
            SimpleAutoencoder(input_size=0)


class TestInitialization:
    """Test weight initialization."""

    def test_seeded_models_identical(self):
        a = SimpleAutoencoder(input_size=8, seed=42)
        b = SimpleAutoencoder(input_size=8, seed=42)
        np.testing.assert_array_equal(a.weights1, b.weights1)
        np.testing.assert_array_equal(a.biases3, b.biases3)

    def test_weight_scale(self):
        model = SimpleAutoencoder(input_size=50, seed=0)
        assert np.abs(model.weights1).max() <= np.sqrt(2.0 / 50)
        assert np.abs(model.weights2).max() <= np.sqrt(2.0 / 16)
        assert np.abs(model.biases1).max() <= 0.05


class TestTraining:
    """Test training updates."""

    def test_loss_decreases(self, training_data):
        model = SimpleAutoencoder(input_size=12, seed=5)
        losses = model.train(training_data, epochs=60, learning_rate=0.05)
        assert len(losses) == 60
        assert losses[-1] < losses[0]

    def test_default_updates_only_output_layer(self, training_data):
        model = SimpleAutoencoder(input_size=12, seed=5)
        w1, w2, w3 = model.weights1.copy(), model.weights2.copy(), model.weights3.copy()
        b1, b2 = model.biases1.copy(), model.biases2.copy()

        model.train(training_data, epochs=5)

        np.testing.assert_array_equal(model.weights1, w1)
        np.testing.assert_array_equal(model.weights2, w2)
        np.testing.assert_array_equal(model.biases1, b1)
        np.testing.assert_array_equal(model.biases2, b2)
        assert not np.array_equal(model.weights3, w3)

    def test_full_backprop_lowers_error(self, training_data):
        model = SimpleAutoencoder(input_size=12, seed=5)
        before = np.mean([model.reconstruction_error(s) for s in training_data])
        model.train(training_data, epochs=80, learning_rate=0.05, full_backprop=True)
        after = np.mean([model.reconstruction_error(s) for s in training_data])
        assert after < before

    def test_wrong_width_rejected(self):
        model = SimpleAutoencoder(input_size=4, seed=0)
        with pytest.raises(ShapeMismatchError):
            model.train(np.zeros((3, 5)))

    def test_empty_data_rejected(self):
        model = SimpleAutoencoder(input_size=4, seed=0)
        with pytest.raises(ValueError):
            model.train(np.zeros((0, 4)))


class TestSerialization:
    """Test weight export and reload."""

    def test_reload_gives_same_predictions(self, training_data):
        model = SimpleAutoencoder(input_size=12, seed=9)
        model.train(training_data, epochs=10)

        restored = SimpleAutoencoder.from_weights(model.serialize())
        for sample in training_data[:3]:
            np.testing.assert_allclose(restored.predict(sample), model.predict(sample))

    def test_reload_from_camel_case_dict(self):
        model = SimpleAutoencoder(input_size=4, hidden_size=3, bottleneck_size=2, seed=1)
        stored = model.serialize().to_storage()
        assert "inputSize" in stored

        restored = SimpleAutoencoder.from_weights(stored)
        assert restored.input_size == 4
        assert restored.weights3.shape == (2, 4)

    def test_inconsistent_weights_rejected(self):
        weights = SimpleAutoencoder(input_size=4, hidden_size=3, bottleneck_size=2, seed=1).serialize()
        broken = weights.model_copy(update={"biases3": [0.0, 0.0]})
        with pytest.raises(ShapeMismatchError):
            SimpleAutoencoder.from_weights(broken)
