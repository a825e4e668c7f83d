"""
Small feed-forward autoencoder for keystroke anomaly detection.

Architecture: input -> hidden (ReLU) -> bottleneck (ReLU) -> output (sigmoid).
The model learns to reconstruct one user's normalized feature vectors; the
mean squared reconstruction error of a new attempt is its anomaly score.

Training uses the simplified update of the deployed models by default: only
the output layer's weights and biases are adjusted. ``full_backprop=True``
propagates the error through all three layers instead; models trained either
way serialize to the same shape.
"""
import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

import numpy as np

from errors import ShapeMismatchError
from schemas import AutoencoderWeights

logger = logging.getLogger(__name__)


DEFAULT_HIDDEN_SIZE = 16
DEFAULT_BOTTLENECK_SIZE = 8
BIAS_INIT_RANGE = 0.05
SIGMOID_CLAMP = 500.0
# Keeps sigmoid outputs strictly inside (0, 1) in float64
OUTPUT_EPS = 1e-12


def relu(x: np.ndarray) -> np.ndarray:
    return np.maximum(0.0, x)


def sigmoid(x: np.ndarray) -> np.ndarray:
    """Sigmoid with input clamping to avoid overflow."""
    z = np.clip(x, -SIGMOID_CLAMP, SIGMOID_CLAMP)
    out = 1.0 / (1.0 + np.exp(-z))
    return np.clip(out, OUTPUT_EPS, 1.0 - OUTPUT_EPS)


def init_weights(fan_in: int, fan_out: int, rng: np.random.Generator) -> np.ndarray:
    """Uniform init in [-scale, scale] with scale = sqrt(2 / fan_in)."""
    scale = np.sqrt(2.0 / fan_in)
    return rng.uniform(-scale, scale, size=(fan_in, fan_out))


class SimpleAutoencoder:
    """
    Three-layer dense autoencoder on numpy arrays.

    Weight matrices are stored as (fan_in, fan_out), so a layer computes
    ``activation(x @ W + b)``.
    """

    def __init__(
        self,
        input_size: int,
        hidden_size: int = DEFAULT_HIDDEN_SIZE,
        bottleneck_size: int = DEFAULT_BOTTLENECK_SIZE,
        seed: Optional[int] = None,
        rng: Optional[np.random.Generator] = None,
    ):
        """
        Initialize weights and biases randomly.

        Args:
            input_size: Length of the feature vector
            hidden_size: Width of the first hidden layer
            bottleneck_size: Width of the compressed layer
            seed: Seed for a fresh generator (ignored if rng is given)
            rng: Generator to draw the initial weights from
        """
        if min(input_size, hidden_size, bottleneck_size) < 1:
            raise ValueError("Layer sizes must be positive")

        self.input_size = input_size
        self.hidden_size = hidden_size
        self.bottleneck_size = bottleneck_size

        rng = rng if rng is not None else np.random.default_rng(seed)

        self.weights1 = init_weights(input_size, hidden_size, rng)
        self.weights2 = init_weights(hidden_size, bottleneck_size, rng)
        self.weights3 = init_weights(bottleneck_size, input_size, rng)

        self.biases1 = rng.uniform(-BIAS_INIT_RANGE, BIAS_INIT_RANGE, size=hidden_size)
        self.biases2 = rng.uniform(-BIAS_INIT_RANGE, BIAS_INIT_RANGE, size=bottleneck_size)
        self.biases3 = rng.uniform(-BIAS_INIT_RANGE, BIAS_INIT_RANGE, size=input_size)

    def _align(self, x: Union[Sequence[float], np.ndarray]) -> np.ndarray:
        """Pad with zeros or truncate an input to ``input_size``."""
        x = np.asarray(x, dtype=np.float64).ravel()
        if x.shape[0] == self.input_size:
            return x
        logger.warning(f"Input length {x.shape[0]} != model input size {self.input_size}; aligning")
        aligned = np.zeros(self.input_size, dtype=np.float64)
        n = min(x.shape[0], self.input_size)
        aligned[:n] = x[:n]
        return aligned

    def forward(self, x: Union[Sequence[float], np.ndarray]) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        """
        Run a forward pass.

        Returns:
            Tuple of (hidden, bottleneck, output) activations
        """
        x = self._align(x)
        hidden = relu(x @ self.weights1 + self.biases1)
        bottleneck = relu(hidden @ self.weights2 + self.biases2)
        output = sigmoid(bottleneck @ self.weights3 + self.biases3)
        return hidden, bottleneck, output

    def predict(self, x: Union[Sequence[float], np.ndarray]) -> np.ndarray:
        """Reconstruct an input; every output element lies in (0, 1)."""
        return self.forward(x)[2]

    def reconstruction_error(self, x: Union[Sequence[float], np.ndarray]) -> float:
        """Mean squared difference between an input and its reconstruction."""
        x = self._align(x)
        diff = x - self.predict(x)
        return float(np.mean(diff * diff))

    def train(
        self,
        data: Union[Sequence[Sequence[float]], np.ndarray],
        epochs: int = 100,
        learning_rate: float = 0.01,
        full_backprop: bool = False,
    ) -> List[float]:
        """
        Train on normalized samples with per-sample updates.

        Args:
            data: Samples of shape (n, input_size), values in [0, 1]
            epochs: Passes over the data
            learning_rate: Step size
            full_backprop: Update every layer instead of only the output layer

        Returns:
            Average loss per epoch
        """
        samples = np.asarray(data, dtype=np.float64)
        if samples.ndim != 2 or samples.shape[0] == 0:
            raise ValueError("train expects a non-empty 2-D sample matrix")
        if samples.shape[1] != self.input_size:
            raise ShapeMismatchError(self.input_size, samples.shape[1])

        losses = []
        for _ in range(epochs):
            total_loss = 0.0
            for sample in samples:
                hidden, bottleneck, output = self.forward(sample)
                error = sample - output
                total_loss += float(np.mean(error * error))
                if full_backprop:
                    self._backpropagate(sample, hidden, bottleneck, output, learning_rate)
                else:
                    self._update_output_layer(sample, bottleneck, output, learning_rate)
            losses.append(total_loss / samples.shape[0])

        return losses

    def _update_output_layer(
        self,
        target: np.ndarray,
        bottleneck: np.ndarray,
        output: np.ndarray,
        learning_rate: float,
    ) -> None:
        # Hidden and bottleneck weights keep their initial values
        delta = (target - output) * output * (1.0 - output)
        self.weights3 += learning_rate * np.outer(bottleneck, delta)
        self.biases3 += learning_rate * delta

    def _backpropagate(
        self,
        target: np.ndarray,
        hidden: np.ndarray,
        bottleneck: np.ndarray,
        output: np.ndarray,
        learning_rate: float,
    ) -> None:
        delta3 = (target - output) * output * (1.0 - output)
        delta2 = (self.weights3 @ delta3) * (bottleneck > 0)
        delta1 = (self.weights2 @ delta2) * (hidden > 0)

        self.weights3 += learning_rate * np.outer(bottleneck, delta3)
        self.biases3 += learning_rate * delta3
        self.weights2 += learning_rate * np.outer(hidden, delta2)
        self.biases2 += learning_rate * delta2
        self.weights1 += learning_rate * np.outer(target, delta1)
        self.biases1 += learning_rate * delta1

    def serialize(self) -> AutoencoderWeights:
        """Export weights for storage."""
        return AutoencoderWeights(
            weights1=self.weights1.tolist(),
            weights2=self.weights2.tolist(),
            weights3=self.weights3.tolist(),
            biases1=self.biases1.tolist(),
            biases2=self.biases2.tolist(),
            biases3=self.biases3.tolist(),
            input_size=self.input_size,
            hidden_size=self.hidden_size,
            bottleneck_size=self.bottleneck_size,
        )

    @classmethod
    def from_weights(cls, weights: Union[AutoencoderWeights, Dict[str, Any]]) -> "SimpleAutoencoder":
        """
        Rebuild a model from serialized weights.

        Raises:
            ShapeMismatchError: If a matrix or bias does not match the sizes
        """
        if not isinstance(weights, AutoencoderWeights):
            weights = AutoencoderWeights.model_validate(weights)

        model = cls.__new__(cls)
        model.input_size = weights.input_size
        model.hidden_size = weights.hidden_size
        model.bottleneck_size = weights.bottleneck_size

        expected = {
            "weights1": (weights.input_size, weights.hidden_size),
            "weights2": (weights.hidden_size, weights.bottleneck_size),
            "weights3": (weights.bottleneck_size, weights.input_size),
            "biases1": (weights.hidden_size,),
            "biases2": (weights.bottleneck_size,),
            "biases3": (weights.input_size,),
        }
        for name, shape in expected.items():
            array = np.asarray(getattr(weights, name), dtype=np.float64)
            if array.shape != shape:
                raise ShapeMismatchError(int(np.prod(shape)), int(array.size))
            setattr(model, name, array)

        return model
