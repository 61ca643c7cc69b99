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
from collections import namedtuple

import torch
import torch.nn as nn

from chainobjf.options import ChainTrainingOptions
from chainobjf.ops import trace_mat_mat
from chainobjf.training import compute_chain_objf_and_deriv


logger = logging.getLogger(__name__)

ChainLossInfo = namedtuple("ChainLossInfo", ["objf", "l2_term", "weight", "xent_objf"])


class ChainFunction(torch.autograd.Function):
    @staticmethod
    def forward(ctx, nnet_output, xent_output, opts, den_graph, supervision):
        # initialize the derivatives here so that the objective only has to
        # accumulate into them
        nnet_output_deriv = None
        if ctx.needs_input_grad[0]:
            nnet_output_deriv = torch.zeros_like(nnet_output)
        xent_output_deriv = None
        if xent_output is not None and opts.xent_regularize != 0.0:
            xent_output_deriv = torch.zeros_like(xent_output)

        info = compute_chain_objf_and_deriv(
            opts, den_graph, supervision, nnet_output, xent_output,
            nnet_output_deriv, xent_output_deriv)
        # the cross-entropy objective is taken before the derivative is scaled
        # by xent_regularize in backward()
        xent_objf = 0.0
        if xent_output_deriv is not None:
            xent_objf = trace_mat_mat(xent_output, xent_output_deriv)

        ctx.deriv_scale = -1.0 / info.weight if info.weight != 0 else 0.0
        ctx.xent_regularize = opts.xent_regularize
        ctx.save_for_backward(nnet_output_deriv, xent_output_deriv)

        objf = info.objf + info.l2_term + opts.xent_regularize * xent_objf
        loss = nnet_output.new_tensor(ctx.deriv_scale * objf)
        stats = torch.tensor(
            [info.objf, info.l2_term, info.weight, xent_objf], dtype=torch.float64)
        ctx.mark_non_differentiable(stats)
        return loss, stats

    @staticmethod
    def backward(ctx, objf_grad, stats_grad):
        nnet_output_deriv, xent_output_deriv = ctx.saved_tensors
        nnet_output_grad = None
        xent_output_grad = None
        if nnet_output_deriv is not None and ctx.needs_input_grad[0]:
            nnet_output_grad = torch.mul(nnet_output_deriv, ctx.deriv_scale * objf_grad)
        if xent_output_deriv is not None and ctx.needs_input_grad[1]:
            xent_output_grad = torch.mul(
                xent_output_deriv, ctx.deriv_scale * ctx.xent_regularize * objf_grad)
        return nnet_output_grad, xent_output_grad, None, None, None


class ChainLoss(nn.Module):
    """Negated chain objective per frame.

    The returned loss is ``-(objf + l2_term + xent_regularize * xent_objf) / weight``.
    ``nnet_output`` (and ``xent_output``) may be given either as a
    (T * B, D) matrix in frame-major order or as a time-major (T, B, D)
    tensor. The statistics of the last call are kept in ``last_info``.
    """

    def __init__(self, den_graph, l2_regularize=0.0, leaky_hmm_coefficient=1e-5,
                 xent_regularize=0.0, verbose=0):
        super(ChainLoss, self).__init__()
        self.den_graph = den_graph
        self.opts = ChainTrainingOptions(
            l2_regularize=l2_regularize,
            leaky_hmm_coefficient=leaky_hmm_coefficient,
            xent_regularize=xent_regularize,
            verbose=verbose,
        )
        self.last_info = None

    def forward(self, nnet_output, supervision, xent_output=None):
        nnet_output = self._to_rows(nnet_output, supervision, "nnet_output")
        if xent_output is not None:
            xent_output = self._to_rows(xent_output, supervision, "xent_output")
            if xent_output.shape != nnet_output.shape:
                raise ValueError(
                    "xent_output shape {} does not match nnet_output shape {}"
                    .format(tuple(xent_output.shape), tuple(nnet_output.shape))
                )
        loss, stats = ChainFunction.apply(
            nnet_output, xent_output, self.opts, self.den_graph, supervision)
        self.last_info = ChainLossInfo(*stats.tolist())
        logger.debug(
            "chain objf {:.4f}, l2 term {:.4f}, xent objf {:.4f} over weight {}".format(
                self.last_info.objf, self.last_info.l2_term,
                self.last_info.xent_objf, self.last_info.weight)
        )
        return loss

    @staticmethod
    def _to_rows(x, supervision, name):
        if x.dim() == 3:  # (T, B, D) from a time-major network
            T, B, D = x.size()
            if B != supervision.num_sequences:
                raise ValueError(
                    "{} batch size ({}) does not equal to the number of sequences ({})"
                    .format(name, B, supervision.num_sequences)
                )
            x = x.reshape(T * B, D)
        if x.dim() != 2 or x.size(0) != supervision.num_rows:
            raise ValueError(
                "{} of shape {} does not match {} sequences x {} frames"
                .format(name, tuple(x.shape), supervision.num_sequences,
                        supervision.frames_per_sequence)
            )
        return x
