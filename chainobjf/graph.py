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

import math
import os

import torch


LEAKY_PROBS_ITERS = 100


class ChainGraph(object):
    """An HMM over pdf-ids stored as tensors.

    Each transition is a row ``(src, dst, pdf_id)`` of ``forward_transitions``
    with its probability in ``forward_transition_probs``. Numerator graphs
    normally use ``initial_mode="fst"`` and ``final_mode="fst"``; the
    denominator graph is normally built with ``initial_mode="leaky"`` and
    ``final_mode="ones"``.
    """

    def __init__(
        self,
        transitions,
        transition_probs,
        num_states,
        num_pdfs,
        start_state=0,
        final_probs=None,
        initial_mode="fst",
        final_mode="fst",
    ):
        if initial_mode not in ("fst", "leaky"):
            raise ValueError(
                "initial_mode should be 'fst' or 'leaky' but given {!r}".format(initial_mode)
            )
        if final_mode not in ("fst", "ones"):
            raise ValueError(
                "final_mode should be 'fst' or 'ones' but given {!r}".format(final_mode)
            )
        probs_type = torch.get_default_dtype()
        self.num_states = int(num_states)
        self.num_pdfs = int(num_pdfs)
        self.start_state = int(start_state)
        self.forward_transitions = torch.as_tensor(
            transitions, dtype=torch.long).reshape(-1, 3)
        self.forward_transition_probs = torch.as_tensor(
            transition_probs, dtype=probs_type).reshape(-1)

        self.num_transitions = self.forward_transitions.size(0)
        if self.num_transitions == 0:
            raise ValueError("An empty graph encountered!")
        self._check_transitions()

        if final_mode == "ones":
            self.final_probs = torch.ones([self.num_states], dtype=probs_type)
        elif final_probs is None:
            raise ValueError("final_probs should be given when final_mode is 'fst'")
        else:
            self.final_probs = torch.as_tensor(final_probs, dtype=probs_type).reshape(-1)
            if self.final_probs.size(0) != self.num_states:
                raise ValueError(
                    "final_probs has {} entries but the graph has {} states"
                    .format(self.final_probs.size(0), self.num_states)
                )

        self.leaky_probs = self._compute_leaky_probs()
        if initial_mode == "fst":
            self.initial_probs = torch.zeros([self.num_states], dtype=probs_type)
            self.initial_probs[self.start_state] = 1.0
        else:
            self.initial_probs = self.leaky_probs.clone()

    def _check_transitions(self):
        if self.forward_transition_probs.size(0) != self.num_transitions:
            raise ValueError(
                "{} transition probs given for {} transitions"
                .format(self.forward_transition_probs.size(0), self.num_transitions)
            )
        if not 0 <= self.start_state < self.num_states:
            raise ValueError(
                "start state ({}) out of range for a graph with {} states"
                .format(self.start_state, self.num_states)
            )
        states = self.forward_transitions[:, :2]
        if states.min().item() < 0 or states.max().item() >= self.num_states:
            raise ValueError(
                "transition state ids should be in [0, {}) but found range [{}, {}]"
                .format(self.num_states, states.min().item(), states.max().item())
            )
        pdfs = self.forward_transitions[:, 2]
        if pdfs.min().item() < 0 or pdfs.max().item() >= self.num_pdfs:
            raise ValueError(
                "pdf ids should be in [0, {}) but found range [{}, {}]"
                .format(self.num_pdfs, pdfs.min().item(), pdfs.max().item())
            )

    def _compute_leaky_probs(self):
        # Average of the normalized state occupancies while running the HMM
        # from the start state.
        src = self.forward_transitions[:, 0]
        dst = self.forward_transitions[:, 1]
        probs = self.forward_transition_probs
        cur_probs = torch.zeros([self.num_states], dtype=probs.dtype)
        cur_probs[self.start_state] = 1.0
        avg_probs = torch.zeros_like(cur_probs)
        for _ in range(LEAKY_PROBS_ITERS):
            avg_probs.add_(cur_probs, alpha=1.0 / LEAKY_PROBS_ITERS)
            next_probs = torch.zeros_like(cur_probs).index_add_(
                0, dst, cur_probs[src] * probs)
            tot_prob = next_probs.sum()
            if tot_prob <= 0:
                break
            cur_probs = next_probs / tot_prob
        return avg_probs / avg_probs.sum()

    @classmethod
    def from_arcs(cls, arcs, num_pdfs, num_states=None, start_state=0,
                  final_probs=None, **kwargs):
        """Builds a graph from ``(src, dst, pdf_id, prob)`` tuples.

        ``final_probs`` maps final states to their probabilities.
        """
        arcs = list(arcs)
        final_probs = dict(final_probs or {})
        if num_states is None:
            states = [a[0] for a in arcs] + [a[1] for a in arcs] + list(final_probs)
            num_states = max(states + [start_state]) + 1
        finals = [0.0] * num_states
        for state, prob in final_probs.items():
            if not 0 <= state < num_states:
                raise ValueError(
                    "final state ({}) out of range for a graph with {} states"
                    .format(state, num_states)
                )
            finals[state] = prob
        return cls(
            [(a[0], a[1], a[2]) for a in arcs],
            [a[3] for a in arcs],
            num_states,
            num_pdfs,
            start_state=start_state,
            final_probs=finals,
            **kwargs
        )

    @classmethod
    def from_text(cls, source, num_pdfs, **kwargs):
        """Reads a graph printed by OpenFst's ``fstprint``.

        Arc lines are ``src dst ilabel olabel [weight]`` and final lines are
        ``state [weight]``; weights are costs (negated log-probs) and input
        labels are pdf-ids plus one. ``source`` is a path or an iterable of
        lines.
        """
        if isinstance(source, (str, os.PathLike)):
            with open(source, "r") as f:
                lines = f.readlines()
        else:
            lines = list(source)

        arcs = []
        final_probs = {}
        start_state = None
        for lineno, line in enumerate(lines, 1):
            fields = line.split()
            if not fields:
                continue
            try:
                if len(fields) in (4, 5):
                    src, dst, ilabel = int(fields[0]), int(fields[1]), int(fields[2])
                    cost = float(fields[4]) if len(fields) == 5 else 0.0
                    if start_state is None:
                        start_state = src
                    arcs.append((src, dst, ilabel - 1, math.exp(-cost)))
                elif len(fields) in (1, 2):
                    cost = float(fields[1]) if len(fields) == 2 else 0.0
                    final_probs[int(fields[0])] = math.exp(-cost)
                else:
                    raise ValueError("wrong number of fields")
            except ValueError as e:
                raise ValueError(
                    "malformed fst text at line {} ({!r}): {}"
                    .format(lineno, line.rstrip("\n"), e)
                )
        if start_state is None:
            raise ValueError("An empty graph encountered!")
        for arc in arcs:
            if arc[2] < 0:
                raise ValueError(
                    "epsilon input label on arc {} -> {} is not supported"
                    .format(arc[0], arc[1])
                )
        return cls.from_arcs(
            arcs, num_pdfs, start_state=start_state, final_probs=final_probs, **kwargs)


class ChainGraphBatch(object):
    def __init__(self, graphs, batch_size=None, max_num_transitions=None, max_num_states=None):
        if isinstance(graphs, ChainGraph):
            if not batch_size:
                raise ValueError("batch size should be specified to expand a single graph")
            self.batch_size = batch_size
            self.initialized_by_one(graphs)
        elif isinstance(graphs, (list, tuple)) and len(graphs) > 0:
            self.batch_size = len(graphs)
            if max_num_transitions is None:
                max_num_transitions = max(g.num_transitions for g in graphs)
            if max_num_states is None:
                max_num_states = max(g.num_states for g in graphs)
            self.initialized_by_list(
                graphs, max_num_transitions, max_num_states)
        else:
            raise ValueError(
                "ChainGraphBatch should be either initialized by a "
                "single ChainGraph object or a list of ChainGraph objects "
                "but given {}".format(type(graphs))
            )

    def initialized_by_one(self, graph):
        B = self.batch_size
        self.num_states = graph.num_states
        self.num_transitions = graph.num_transitions
        self.num_pdfs = graph.num_pdfs
        self.forward_transitions = graph.forward_transitions.repeat(B, 1, 1)
        self.forward_transition_probs = graph.forward_transition_probs.repeat(B, 1)
        self.final_probs = graph.final_probs.repeat(B, 1)
        self.leaky_probs = graph.leaky_probs.repeat(B, 1)
        self.initial_probs = graph.initial_probs.repeat(B, 1)

    def initialized_by_list(self, graphs, max_num_transitions, max_num_states):
        num_pdfs = set(g.num_pdfs for g in graphs)
        if len(num_pdfs) != 1:
            raise ValueError(
                "all graphs in a batch should have the same number of pdfs "
                "but given {}".format(sorted(num_pdfs))
            )
        transition_type = graphs[0].forward_transitions.dtype
        probs_type = graphs[0].forward_transition_probs.dtype
        self.num_pdfs = num_pdfs.pop()
        self.num_states = max_num_states
        self.num_transitions = max_num_transitions
        # padded transitions are 0 -> 0 with probability 0
        self.forward_transitions = torch.zeros(
            [self.batch_size, max_num_transitions, 3], dtype=transition_type)
        self.forward_transition_probs = torch.zeros(
            [self.batch_size, max_num_transitions], dtype=probs_type)
        self.leaky_probs = torch.zeros(
            [self.batch_size, max_num_states], dtype=probs_type)
        self.initial_probs = torch.zeros(
            [self.batch_size, max_num_states], dtype=probs_type)
        self.final_probs = torch.zeros(
            [self.batch_size, max_num_states], dtype=probs_type)

        for i in range(len(graphs)):
            graph = graphs[i]
            num_transitions = graph.num_transitions
            num_states = graph.num_states
            if num_transitions > max_num_transitions or num_states > max_num_states:
                raise ValueError(
                    "graph {} has {} transitions and {} states, more than the "
                    "maximum ({}, {})".format(
                        i, num_transitions, num_states,
                        max_num_transitions, max_num_states)
                )
            self.forward_transitions[i, :num_transitions, :].copy_(
                graph.forward_transitions)
            self.forward_transition_probs[i, :num_transitions].copy_(
                graph.forward_transition_probs)
            self.leaky_probs[i, :num_states].copy_(graph.leaky_probs)
            self.initial_probs[i, :num_states].copy_(graph.initial_probs)
            self.final_probs[i, :num_states].copy_(graph.final_probs)
