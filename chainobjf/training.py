# Copyright       2019  Yiwen Shao
#                 2020  Yiming Wang
#                 2020  Facebook Inc.  (author: Vimal Manohar)

# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at

#  http://www.apache.org/licenses/LICENSE-2.0

# THIS CODE IS PROVIDED *AS IS* BASIS, WITHOUT WARRANTIES OR CONDITIONS OF ANY
# KIND, EITHER EXPRESS OR IMPLIED, INCLUDING WITHOUT LIMITATION ANY IMPLIED
# WARRANTIES OR CONDITIONS OF TITLE, FITNESS FOR A PARTICULAR PURPOSE,
# MERCHANTABLITY OR NON-INFRINGEMENT.
# See the Apache 2 License for the specific language governing permissions and
# limitations under the License.

import logging
import math
from collections import namedtuple

import torch

from chainobjf.denominator import DenominatorComputation
from chainobjf.numerator import NumeratorComputation
from chainobjf.ops import add_scaled_diag_into, add_scaled_into, trace_mat_mat


logger = logging.getLogger(__name__)

# objective per frame reported when the computation breaks down
DEFAULT_OBJF_PER_FRAME = -10.0

ChainObjfInfo = namedtuple("ChainObjfInfo", ["objf", "l2_term", "weight"])


def compute_chain_objf_and_deriv(
    opts,
    den_graph,
    supervision,
    nnet_output,
    xent_output=None,
    nnet_output_deriv=None,
    xent_output_deriv=None,
    numerator=NumeratorComputation,
    denominator=DenominatorComputation,
):
    r"""Computes the chain objective and, optionally, its derivatives.

    Args:
        opts (ChainTrainingOptions)
        den_graph (ChainGraph): the denominator graph.
        supervision (Supervision)
        nnet_output (Tensor): chain output of shape
            (num_sequences * frames_per_sequence, num_pdfs), frame-major.
        xent_output (Tensor, optional): the cross-entropy output with the same
            shape. When given and ``opts.l2_regularize`` is nonzero, the l2
            term regresses the chain output on an affine function of it.
        nnet_output_deriv (Tensor, optional): if given, it is overwritten with
            the derivative of objf + l2_term w.r.t. nnet_output.
        xent_output_deriv (Tensor, optional): if given, it is overwritten with
            the numerator posteriors (the cross-entropy derivative) plus the
            derivative of the l2 term w.r.t. xent_output.
        numerator, denominator: factories of the two forward-backward
            computations, called as ``numerator(supervision, nnet_output)`` and
            ``denominator(opts, den_graph, num_sequences, nnet_output)``.

    Returns:
        ChainObjfInfo(objf, l2_term, weight). objf is not normalized; divide
        objf + l2_term by weight to get the objective per frame.

    If the objective comes out as inf or NaN, or the denominator backward
    fails, the derivatives are zeroed and objf is set to -10 per frame. The
    l2 term is computed and added to the derivatives in either case.
    """
    nnet_output = nnet_output.detach()
    if xent_output is not None:
        xent_output = xent_output.detach()
    if nnet_output_deriv is not None:
        nnet_output_deriv.zero_()

    # both the numerator log-prob and its derivative come scaled by
    # supervision.weight
    num = numerator(supervision, nnet_output)
    num_logprob_weighted = num.forward()
    if nnet_output_deriv is not None:
        num.backward(nnet_output_deriv)
        if xent_output_deriv is not None:
            xent_output_deriv.copy_(nnet_output_deriv)
    elif xent_output_deriv is not None:
        # cross-entropy derivatives wanted without the chain derivatives
        xent_output_deriv.zero_()
        num.backward(xent_output_deriv)

    den = denominator(opts, den_graph, supervision.num_sequences, nnet_output)
    den_logprob = den.forward()
    ok = True
    if nnet_output_deriv is not None:
        ok = den.backward(-supervision.weight, nnet_output_deriv)

    objf = float(num_logprob_weighted - supervision.weight * den_logprob)
    weight = (supervision.weight * supervision.num_sequences
              * supervision.frames_per_sequence)
    if not math.isfinite(objf) or not ok:
        if nnet_output_deriv is not None:
            nnet_output_deriv.zero_()
        if xent_output_deriv is not None:
            xent_output_deriv.zero_()
        logger.warning(
            "Objective function is {} and denominator computation (if done) "
            "returned {}, setting objective function to {} per frame."
            .format(objf, ok, DEFAULT_OBJF_PER_FRAME)
        )
        objf = DEFAULT_OBJF_PER_FRAME * weight

    if opts.verbose >= 1 and nnet_output_deriv is not None:
        derivs_per_frame = compute_derivs_per_frame(
            nnet_output_deriv, supervision.num_sequences,
            supervision.frames_per_sequence)
        logger.info("Derivs per frame are {}".format(derivs_per_frame.tolist()))

    l2_term = _add_l2_regularization(
        opts, supervision, nnet_output, xent_output,
        nnet_output_deriv, xent_output_deriv)
    return ChainObjfInfo(objf, l2_term, weight)


def _add_l2_regularization(opts, supervision, nnet_output, xent_output,
                           nnet_output_deriv, xent_output_deriv):
    if opts.l2_regularize == 0.0:
        return 0.0
    scale_coeff = supervision.weight * opts.l2_regularize
    if xent_output is None or xent_output.size(0) == 0:
        l2_term = -0.5 * scale_coeff * trace_mat_mat(nnet_output, nnet_output)
        if nnet_output_deriv is not None:
            add_scaled_into(nnet_output_deriv, -scale_coeff, nnet_output)
        return l2_term

    # Penalize the chain output y for deviating from an affine function
    # diag(scale) x + offset of the xent output x.
    scale, offset = compute_scale_offset(
        xent_output, nnet_output,
        policy=opts.scale_offset_policy, epsilon=opts.scale_offset_epsilon,
        centered=opts.scale_offset_centered)
    output_diff = xent_output * scale.unsqueeze(0) + offset.unsqueeze(0) - nnet_output
    l2_term = -0.5 * scale_coeff * trace_mat_mat(output_diff, output_diff)
    if nnet_output_deriv is not None:
        add_scaled_into(nnet_output_deriv, scale_coeff, output_diff)
    if xent_output_deriv is not None:
        add_scaled_diag_into(xent_output_deriv, -scale_coeff, output_diff, scale)
    return l2_term


def compute_scale_offset(input1, input2, policy="zero", epsilon=1e-20, centered=False):
    r"""Per-column scale and offset mapping input1 onto input2.

    For each column i, with x = input1[:, i] and y = input2[:, i],
    ``scale_i = sum_j(x_j * y_j) / sum_j(x_j ^ 2)`` and
    ``offset_i = mean(y) - scale_i * mean(x)``. This is the least-squares
    line fit when x has zero mean. With ``centered=True`` the sums are taken
    over mean-centered columns instead, which gives the least-squares fit of
    ``scale_i * x + offset_i`` to y for any x.

    A column whose denominator is zero (an all-zero column, or a constant
    one when centered) has no defined scale. With ``policy="zero"`` it gets
    ``scale_i = 0`` and the offset is the mean of input2; with
    ``policy="epsilon"`` the denominator is floored at ``epsilon``, which
    also gives 0 for such a column but bounds the scale of nearly zero ones.

    Returns:
        (scale, offset), each of shape (num_cols,).
    """
    if input1.shape != input2.shape:
        raise ValueError(
            "input1 of shape {} and input2 of shape {} should have the same shape"
            .format(tuple(input1.shape), tuple(input2.shape))
        )
    if input1.dim() != 2 or input1.size(0) == 0:
        raise ValueError(
            "inputs should be non-empty matrices but given shape {}"
            .format(tuple(input1.shape))
        )
    input1_mean = input1.mean(0)
    input2_mean = input2.mean(0)
    if centered:
        constant_cols = input1.amax(0) == input1.amin(0)
        x = (input1 - input1_mean).masked_fill(constant_cols.unsqueeze(0), 0.0)
        y = input2 - input2_mean
    else:
        x, y = input1, input2
    cross_product = (x * y).sum(0)
    input1_sumsq = (x * x).sum(0)
    if policy == "zero":
        degenerate = input1_sumsq == 0
        scale = torch.where(
            degenerate,
            torch.zeros_like(cross_product),
            cross_product / torch.where(degenerate, torch.ones_like(input1_sumsq), input1_sumsq),
        )
    elif policy == "epsilon":
        scale = cross_product / input1_sumsq.clamp(min=epsilon)
    else:
        raise ValueError("unknown scale/offset policy {!r}".format(policy))
    offset = input2_mean - scale * input1_mean
    return scale, offset


def compute_derivs_per_frame(nnet_output_deriv, num_sequences, frames_per_sequence):
    """Squared norm of each derivative row, averaged over the sequences."""
    if nnet_output_deriv.size(0) != num_sequences * frames_per_sequence:
        raise ValueError(
            "derivative has {} rows, expected {} sequences x {} frames"
            .format(nnet_output_deriv.size(0), num_sequences, frames_per_sequence)
        )
    row_products = (nnet_output_deriv * nnet_output_deriv).sum(1)
    return row_products.view(frames_per_sequence, num_sequences).mean(1)
