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

from chainobjf.forward_backward import ChainForwardBackward
from chainobjf.graph import ChainGraphBatch
from chainobjf.ops import add_scaled_into, rows_to_sequences, sequences_to_rows


class NumeratorComputation(object):
    """Forward-backward over the numerator graphs of a supervision.

    supervision.weight is included as a factor in both the log-prob returned
    by forward() and the derivative added by backward().
    """

    def __init__(self, supervision, nnet_output):
        if supervision.graphs is None:
            raise ValueError("NumeratorComputation requires numerator graphs in the supervision")
        if nnet_output.size(0) != supervision.num_rows:
            raise ValueError(
                "nnet_output has {} rows but the supervision expects {} ({} sequences x {} frames)"
                .format(nnet_output.size(0), supervision.num_rows,
                        supervision.num_sequences, supervision.frames_per_sequence)
            )
        self.supervision = supervision
        self.nnet_output = nnet_output
        self._computation = None

    def forward(self):
        graphs = ChainGraphBatch(self.supervision.graphs)
        self._computation = ChainForwardBackward(
            graphs, rows_to_sequences(self.nnet_output, self.supervision.num_sequences))
        return self.supervision.weight * self._computation.total_log_prob()

    def backward(self, nnet_output_deriv):
        """Adds supervision.weight times the numerator posteriors to nnet_output_deriv."""
        if self._computation is None:
            raise RuntimeError("forward() must be called before backward()")
        posteriors = sequences_to_rows(self._computation.posteriors())
        add_scaled_into(nnet_output_deriv, self.supervision.weight, posteriors)
