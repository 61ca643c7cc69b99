"""
Shared fixtures for the chain objective tests.

All tests run on CPU. The graphs are tiny so that the forward-backward
results can be checked against brute-force path enumeration.
"""

import pytest
import torch

from chainobjf import ChainGraph, ChainTrainingOptions, Supervision

NUM_PDFS = 3


def make_den_graph():
    return ChainGraph.from_arcs(
        [(0, 0, 0, 0.5), (0, 1, 1, 0.5), (1, 1, 2, 0.5), (1, 0, 0, 0.5)],
        NUM_PDFS,
        initial_mode="leaky",
        final_mode="ones",
    )


def make_num_graph():
    # pdf 0 repeated, then pdf 1 once, then pdf 2 until the end
    return ChainGraph.from_arcs(
        [(0, 0, 0, 0.5), (0, 1, 1, 0.5), (1, 1, 2, 1.0)],
        NUM_PDFS,
        final_probs={1: 1.0},
    )


class EngineCalls(object):
    """Records the calls the stub engines receive."""

    def __init__(self):
        self.events = []


def stub_numerator(logprob, deriv_value=0.0, calls=None):
    class StubNumerator(object):
        def __init__(self, supervision, nnet_output):
            self.supervision = supervision
            if calls is not None:
                calls.events.append("num_init")

        def forward(self):
            if calls is not None:
                calls.events.append("num_forward")
            return logprob

        def backward(self, nnet_output_deriv):
            if calls is not None:
                calls.events.append("num_backward")
            nnet_output_deriv.add_(self.supervision.weight * deriv_value)

    return StubNumerator


def stub_denominator(logprob, deriv=0.0, ok=True, calls=None):
    """``deriv`` is a constant or a matrix added with the backward scale."""

    class StubDenominator(object):
        def __init__(self, opts, den_graph, num_sequences, nnet_output):
            if calls is not None:
                calls.events.append("den_init")

        def forward(self):
            if calls is not None:
                calls.events.append("den_forward")
            return logprob

        def backward(self, deriv_weight, nnet_output_deriv):
            if calls is not None:
                calls.events.append(("den_backward", deriv_weight))
            nnet_output_deriv.add_(deriv_weight * deriv)
            return ok

    return StubDenominator


class ExplodingBackward(object):
    """An engine whose backward must never be called."""

    def __init__(self, *args):
        pass

    def forward(self):
        return -1.0

    def backward(self, *args):
        raise AssertionError("backward should not be called")


@pytest.fixture(autouse=True)
def ensure_cpu_default():
    assert torch.tensor([1.0]).device.type == "cpu", "Default device should be CPU"
    yield


@pytest.fixture
def den_graph():
    return make_den_graph()


@pytest.fixture
def num_graph():
    return make_num_graph()


@pytest.fixture
def opts():
    return ChainTrainingOptions()


@pytest.fixture
def supervision():
    B, T = 2, 5
    return Supervision(B, T, weight=1.0, graphs=[make_num_graph() for _ in range(B)])


@pytest.fixture
def nnet_output(supervision):
    torch.manual_seed(0)
    return torch.randn(supervision.num_rows, NUM_PDFS)
