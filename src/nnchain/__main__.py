#!/usr/bin/env python3

import argparse
import logging
import sys
from pathlib import Path
from typing import Optional

import numpy as np

from nnchain.activations import Tanh
from nnchain.exceptions import NNError
from nnchain.layers import FullyConnectedLayer
from nnchain.models import Network
from nnchain.updaters import (GradientDescent,
                              GradientDescentLevenbergMarquardt, Momentum,
                              Updater)

logger = logging.getLogger(__name__)

DEFAULT_HIDDEN_DIM = 16
DEFAULT_NUM_SAMPLES = 200
DEFAULT_NUM_EPOCHS = 30
DEFAULT_SEED = 42
DEFAULT_UPDATER = "lm"
UPDATERS = ("gd", "momentum", "lm")


def make_updater(kind: str, learning_rate: Optional[float]) -> Updater:
    if kind == "gd":
        return (GradientDescent(learning_rate)
                if learning_rate is not None else GradientDescent())

    if kind == "momentum":
        return (Momentum(learning_rate)
                if learning_rate is not None else Momentum())

    if kind == "lm":
        return (GradientDescentLevenbergMarquardt(learning_rate)
                if learning_rate is not None else
                GradientDescentLevenbergMarquardt())

    raise ValueError(f"Unknown updater '{kind}'. Expected one of {UPDATERS}.")


def make_dataset(num_samples: int, seed: int):
    rng = np.random.default_rng(seed)
    x = rng.uniform(-np.pi, np.pi, (num_samples, 1))
    y = 0.8 * np.sin(x)

    return x, y


def main(args: argparse.Namespace) -> None:
    x, y = make_dataset(args.num_samples, args.seed)

    try:
        network = Network(name="SineRegressor")
        network.add(FullyConnectedLayer(1, args.hidden_dim, Tanh()))
        network.add(FullyConnectedLayer(args.hidden_dim, 1, Tanh()))
        updater = make_updater(args.updater, args.learning_rate)
    except (NNError, ValueError) as e:
        logger.error("Error building network: %s.", e, exc_info=True)
        sys.exit(1)

    try:
        history = network.fit(x,
                              y,
                              updater,
                              num_epochs=args.num_epochs,
                              log_interval=args.log_interval,
                              seed=args.seed)
    except (ValueError, RuntimeError, ZeroDivisionError) as e:
        logger.error("Failed to train network: %s.", e, exc_info=True)
        sys.exit(1)

    logger.info("Final average loss: %.6f (initial %.6f).", history[-1],
                history[0])

    if args.weights_out is not None:
        try:
            network.save_weights(args.weights_out)
        except (IOError, ValueError) as e:
            logger.error("Failed to save weights: %s.", e, exc_info=True)
            sys.exit(1)


def parse_arguments() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Train a small feed-forward network on a sine curve.",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter)

    model_args = parser.add_argument_group("Model hyperparameters")
    model_args.add_argument("--hidden-dim",
                            type=int,
                            default=DEFAULT_HIDDEN_DIM,
                            help="Number of hidden units.")
    model_args.add_argument("--updater",
                            choices=UPDATERS,
                            default=DEFAULT_UPDATER,
                            help="Parameter update rule.")
    model_args.add_argument("--learning-rate",
                            type=float,
                            default=None,
                            help="Learning rate; the updater's default when "
                            "omitted.")

    training_args = parser.add_argument_group("Training parameters")
    training_args.add_argument("--num-samples",
                               type=int,
                               default=DEFAULT_NUM_SAMPLES,
                               help="Number of generated training samples.")
    training_args.add_argument("--num-epochs",
                               type=int,
                               default=DEFAULT_NUM_EPOCHS,
                               help="Number of training epochs.")
    training_args.add_argument("--seed",
                               type=int,
                               default=DEFAULT_SEED,
                               help="Random seed.")

    output_args = parser.add_argument_group("Output and logging configuration")
    output_args.add_argument("--log-interval",
                             type=int,
                             default=5,
                             help="Log the training loss every N epochs.")
    output_args.add_argument("--weights-out",
                             type=Path,
                             default=None,
                             help="Save trained weights to this .npz file.")
    output_args.add_argument("--verbose",
                             action="store_true",
                             help="Enable debug logging.")

    args = parser.parse_args()

    if args.hidden_dim <= 0:
        parser.error("--hidden-dim must be positive.")

    if args.learning_rate is not None and args.learning_rate <= 0:
        parser.error("--learning-rate must be positive.")

    if args.num_samples <= 0:
        parser.error("--num-samples must be positive.")

    if args.num_epochs <= 0:
        parser.error("--num-epochs must be positive.")

    if args.log_interval <= 0:
        parser.error("--log-interval must be positive.")

    return args


if __name__ == "__main__":
    parsed_args = parse_arguments()

    logging.basicConfig(level=logging.DEBUG
                        if parsed_args.verbose else logging.INFO,
                        format=("%(asctime)s - %(name)s - [%(levelname)s] - "
                                "%(message)s"))

    main(parsed_args)
