import numpy as np
import pytest

from nnchain.activations import Tanh
from nnchain.exceptions import DimensionMismatch
from nnchain.layers import FullyConnectedLayer
from nnchain.models import Network
from nnchain.updaters import (GradientDescent,
                              GradientDescentLevenbergMarquardt, Momentum)


@pytest.fixture
def linear_data():
    rng = np.random.default_rng(0)
    x = rng.uniform(-1.0, 1.0, (50, 2))
    y = x @ np.array([[0.7], [-0.4]]) + 0.2
    return x, y


def make_linear_network():
    return Network(name="Linear").add(FullyConnectedLayer(2, 1))


def test_add_returns_network_and_propagates_mismatch():
    network = Network()

    assert network.add(FullyConnectedLayer(2, 3)) is network

    with pytest.raises(DimensionMismatch):
        network.add(FullyConnectedLayer(2, 1))

    assert network.in_size == 2
    assert network.out_size == 3


def test_predict_returns_copy():
    network = make_linear_network()
    network.init_weight(seed=1)

    out = network.predict(np.array([1.0, 1.0]))
    out[0] = 123.0

    assert network.layers.tail.output[0] != 123.0


@pytest.mark.parametrize("updater", [
    GradientDescent(alpha=0.05),
    Momentum(alpha=0.02, mu=0.5),
    GradientDescentLevenbergMarquardt(alpha=0.01),
])
def test_fit_reduces_loss(linear_data, updater):
    x, y = linear_data
    network = make_linear_network()

    history = network.fit(x, y, updater, num_epochs=20, seed=0)

    assert len(history) == 20
    assert history[-1] < history[0]
    assert history[-1] < 1e-2


def test_fit_learns_nonlinear_function():
    rng = np.random.default_rng(2)
    x = rng.uniform(-2.0, 2.0, (100, 1))
    y = 0.5 * np.tanh(2.0 * x)
    network = Network()
    network.add(FullyConnectedLayer(1, 8, Tanh()))
    network.add(FullyConnectedLayer(8, 1))

    history = network.fit(x,
                          y,
                          GradientDescent(alpha=0.05),
                          num_epochs=30,
                          seed=4)

    assert history[-1] < history[0]


def test_fit_validates_arguments(linear_data):
    x, y = linear_data
    network = make_linear_network()

    with pytest.raises(ValueError):
        network.fit(x, y[:10], GradientDescent())

    with pytest.raises(ValueError):
        network.fit(x, y, GradientDescent(), num_epochs=0)

    assert network.fit(x[:0], y[:0], GradientDescent()) == []


def test_calc_hessian_averages_over_samples(linear_data):
    x, _ = linear_data
    network = make_linear_network()
    network.init_weight(seed=0)
    layer = network.layers.tail

    used = network.calc_hessian(x)

    assert used == len(x)
    np.testing.assert_allclose(layer.weight_hessian, np.mean(x**2, axis=0))
    np.testing.assert_allclose(layer.bias_hessian, [1.0])


def test_calc_hessian_limits_sample_count(linear_data):
    x, _ = linear_data
    network = make_linear_network()
    network.init_weight(seed=0)

    used = network.calc_hessian(x, size_initialize_hessian=3)

    assert used == 3
    np.testing.assert_allclose(network.layers.tail.weight_hessian,
                               np.mean(x[:3]**2, axis=0))


def test_calc_hessian_with_no_samples_skips_division():
    network = make_linear_network()
    network.init_weight(seed=0)

    assert network.calc_hessian(np.zeros((0, 2))) == 0
    np.testing.assert_array_equal(network.layers.tail.weight_hessian, 0.0)


def test_train_once_returns_loss_and_updates():
    network = make_linear_network()
    layer = network.layers.tail
    layer.weight[:] = [1.0, 1.0]
    layer.bias[:] = [0.0]

    loss = network.train_once(np.array([1.0, 2.0]), np.array([1.0]),
                              GradientDescent(alpha=0.1))

    assert loss == pytest.approx(2.0)
    np.testing.assert_allclose(layer.weight, [0.8, 0.6])
    np.testing.assert_allclose(layer.bias, [-0.2])


def test_save_and_load_weights(tmp_path):
    source = Network().add(FullyConnectedLayer(2, 3, Tanh()))
    source.add(FullyConnectedLayer(3, 1))
    source.init_weight(seed=1)
    target = Network().add(FullyConnectedLayer(2, 3, Tanh()))
    target.add(FullyConnectedLayer(3, 1))
    target.init_weight(seed=2)
    path = tmp_path / "weights.npz"

    source.save_weights(path)
    target.load_weights(path)

    x = np.array([0.3, -0.6])
    np.testing.assert_allclose(target.predict(x), source.predict(x))
    for expected, actual in zip(source.layers, target.layers):
        np.testing.assert_array_equal(actual.weight, expected.weight)
        np.testing.assert_array_equal(actual.bias, expected.bias)


def test_hessian_round_trips_with_weights(tmp_path):
    source = make_linear_network()
    source.init_weight(seed=1)
    source.calc_hessian(np.array([[1.0, 2.0], [3.0, -1.0]]))
    target = make_linear_network()
    target.init_weight(seed=2)
    path = tmp_path / "weights.npz"

    source.save_weights(path)
    target.load_weights(path)

    np.testing.assert_array_equal(target.layers.tail.weight_hessian, [5.0, 2.5])
    np.testing.assert_array_equal(target.layers.tail.bias_hessian, [1.0])


def test_load_without_hessian_keeps_current_hessian(tmp_path):
    source = make_linear_network()
    source.init_weight(seed=1)
    target = make_linear_network()
    target.layers.tail.weight_hessian[:] = [3.0, 4.0]
    path = tmp_path / "weights.npz"

    source.save_weights(path, include_hessian=False)
    target.load_weights(path)

    np.testing.assert_array_equal(target.layers.tail.weight,
                                  source.layers.tail.weight)
    np.testing.assert_array_equal(target.layers.tail.weight_hessian,
                                  [3.0, 4.0])


def test_failed_load_writes_nothing(tmp_path):
    path = tmp_path / "weights.npz"
    source = Network().add(FullyConnectedLayer(2, 3))
    source.add(FullyConnectedLayer(3, 1))
    source.init_weight(seed=1)
    source.save_weights(path)
    target = Network().add(FullyConnectedLayer(2, 3))
    target.add(FullyConnectedLayer(3, 2))
    target.init_weight(seed=2)
    first_weight = target.layers[1].weight.copy()

    with pytest.raises(ValueError):
        target.load_weights(path)

    np.testing.assert_array_equal(target.layers[1].weight, first_weight)


def test_bprop_stops_before_input_layer(recording_updater):
    network = Network(in_dim=2).add(FullyConnectedLayer(2, 1))
    network.init_weight(seed=0)

    y = network.fprop(np.array([1.0, 2.0]))
    network.bprop(y, np.array([0.0]), recording_updater)
    network.bprop_2nd(y)

    np.testing.assert_array_equal(network.layers.head.delta, [0.0, 0.0])
    np.testing.assert_array_equal(network.layers.head.delta2, [0.0, 0.0])
    assert np.any(network.layers.tail.delta != 0.0)
    assert len(recording_updater.calls) == 2


def test_load_weights_shape_mismatch(tmp_path):
    path = tmp_path / "weights.npz"
    Network().add(FullyConnectedLayer(2, 3)).save_weights(path)

    with pytest.raises(ValueError):
        Network().add(FullyConnectedLayer(3, 3)).load_weights(path)


def test_load_weights_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        make_linear_network().load_weights(tmp_path / "missing.npz")


def test_save_weights_without_parameters(tmp_path):
    with pytest.raises(ValueError):
        Network().save_weights(tmp_path / "empty.npz")
