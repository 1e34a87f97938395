import numpy as np
import pytest

from nnchain import initializers
from nnchain.activations import Identity, ReLU, Sigmoid, Tanh
from nnchain.loss import MeanSquaredError


@pytest.mark.parametrize("activation", [Identity(), Tanh(), Sigmoid()])
def test_derivative_matches_finite_differences(activation):
    z = np.linspace(-2.0, 2.0, 9)
    eps = 1e-6

    numeric = (activation.forward(z + eps) - activation.forward(z - eps)) / (
        2 * eps)

    np.testing.assert_allclose(activation.derivative(activation.forward(z)),
                               numeric,
                               rtol=1e-5,
                               atol=1e-8)


def test_relu():
    relu = ReLU()
    y = relu.forward(np.array([-1.0, 0.0, 2.0]))

    np.testing.assert_array_equal(y, [0.0, 0.0, 2.0])
    np.testing.assert_array_equal(relu.derivative(y), [0.0, 0.0, 1.0])


def test_activation_backward_chains_derivative():
    tanh = Tanh()
    y = tanh.forward(np.array([0.5, -0.5]))

    np.testing.assert_allclose(tanh.backward(np.array([2.0, 3.0]), y),
                               np.array([2.0, 3.0]) * (1 - y**2))


def test_activation_backward_shape_mismatch():
    with pytest.raises(ValueError):
        Tanh().backward(np.ones(2), np.ones(3))


def test_mean_squared_error():
    loss = MeanSquaredError()
    y = np.array([1.0, 2.0, 3.0])
    t = np.array([0.0, 2.0, 5.0])

    assert loss.forward(y, t) == pytest.approx(2.5)
    np.testing.assert_array_equal(loss.backward(y, t), [1.0, 0.0, -2.0])
    np.testing.assert_array_equal(loss.backward_2nd(y), np.ones(3))

    with pytest.raises(ValueError):
        loss.forward(y, np.ones(2))


def test_uniform_rand_bounds_and_seed():
    first = np.zeros(100)
    second = np.zeros(100)

    initializers.uniform_rand(first, -0.3, 0.3, np.random.default_rng(9))
    initializers.uniform_rand(second, -0.3, 0.3, np.random.default_rng(9))

    assert np.all(first >= -0.3)
    assert np.all(first < 0.3)
    np.testing.assert_array_equal(first, second)


def test_set_seed_reseeds_default_generator():
    first = np.zeros(5)
    second = np.zeros(5)

    initializers.set_seed(3)
    initializers.uniform_rand(first, 0.0, 1.0)
    initializers.set_seed(3)
    initializers.uniform_rand(second, 0.0, 1.0)

    np.testing.assert_array_equal(first, second)


def test_uniform_rand_rejects_inverted_range():
    with pytest.raises(ValueError):
        initializers.uniform_rand(np.zeros(3), 1.0, 0.0)
