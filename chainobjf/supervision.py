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

from chainobjf.graph import ChainGraph


class Supervision(object):
    """Supervision for a minibatch of ``num_sequences`` parallel sequences.

    The network output for it has ``num_sequences * frames_per_sequence`` rows,
    frame-major: row ``t * num_sequences + b`` is frame ``t`` of sequence ``b``.
    ``graphs`` holds one numerator ChainGraph per sequence; it may be left out
    when the numerator is computed by something other than
    NumeratorComputation.
    """

    def __init__(self, num_sequences, frames_per_sequence, weight=1.0, graphs=None):
        if num_sequences <= 0:
            raise ValueError(
                "num_sequences should be positive but given {}".format(num_sequences))
        if frames_per_sequence <= 0:
            raise ValueError(
                "frames_per_sequence should be positive but given {}"
                .format(frames_per_sequence))
        if weight < 0:
            raise ValueError("weight should be non-negative but given {}".format(weight))
        if graphs is not None:
            graphs = list(graphs)
            if len(graphs) != num_sequences:
                raise ValueError(
                    "number of numerator graphs ({}) does not equal to num_sequences ({})"
                    .format(len(graphs), num_sequences)
                )
            for graph in graphs:
                if not isinstance(graph, ChainGraph):
                    raise ValueError(
                        "numerator graphs should be ChainGraph objects but given {}"
                        .format(type(graph))
                    )
        self.num_sequences = int(num_sequences)
        self.frames_per_sequence = int(frames_per_sequence)
        self.weight = float(weight)
        self.graphs = graphs

    @property
    def num_rows(self):
        return self.num_sequences * self.frames_per_sequence

    def __repr__(self):
        return "Supervision(num_sequences={}, frames_per_sequence={}, weight={})".format(
            self.num_sequences, self.frames_per_sequence, self.weight)
