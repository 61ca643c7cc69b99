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

import torch

from chainobjf.forward_backward import ChainForwardBackward
from chainobjf.graph import ChainGraphBatch
from chainobjf.ops import add_scaled_into, rows_to_sequences, sequences_to_rows


logger = logging.getLogger(__name__)

# occupation probs of each frame should sum to one
POSTERIOR_SUM_TOL = 1e-3


class DenominatorComputation(object):
    """Forward-backward of the denominator graph, shared by all sequences.

    Every sequence starts from the graph's leaky probs and every state is
    final, whatever modes the graph was built with.
    """

    def __init__(self, opts, den_graph, num_sequences, nnet_output):
        if nnet_output.size(0) % num_sequences != 0:
            raise ValueError(
                "nnet_output has {} rows which is not a multiple of num_sequences ({})"
                .format(nnet_output.size(0), num_sequences)
            )
        self.opts = opts
        self.den_graph = den_graph
        self.num_sequences = num_sequences
        self.nnet_output = nnet_output
        self._computation = None

    def forward(self):
        graphs = ChainGraphBatch(self.den_graph, self.num_sequences)
        graphs.initial_probs = graphs.leaky_probs.clone()
        graphs.final_probs = torch.ones_like(graphs.final_probs)
        input = rows_to_sequences(self.nnet_output, self.num_sequences).clamp(-30, 30)
        self._computation = ChainForwardBackward(
            graphs, input, self.opts.leaky_hmm_coefficient)
        return self._computation.total_log_prob()

    def backward(self, deriv_weight, nnet_output_deriv):
        """Adds deriv_weight times the denominator posteriors to nnet_output_deriv.

        Returns False if the posteriors look wrong; they are added anyway.
        """
        if self._computation is None:
            raise RuntimeError("forward() must be called before backward()")
        posteriors = self._computation.posteriors()
        ok = bool(torch.isfinite(posteriors).all())
        if ok:
            max_error = (posteriors.sum(2) - 1.0).abs().max().item()
            if max_error > POSTERIOR_SUM_TOL:
                logger.warning(
                    "Denominator posteriors of a frame sum to 1 +/- {}".format(max_error))
                ok = False
        else:
            logger.warning("Non-finite denominator posteriors encountered")
        add_scaled_into(nnet_output_deriv, deriv_weight, sequences_to_rows(posteriors))
        return ok
