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

import torch


def chain_forward(graphs, input, leaky_hmm_coefficient=0.0):
    r"""Forward algorithm of a batch of chain graphs.

    Args:
        graphs (ChainGraphBatch): one graph per sequence.
        input (Tensor): log-likelihoods of shape (B, T, num_pdfs).
        leaky_hmm_coefficient (float): after every frame, this fraction of the
            total mass is redistributed according to the leaky probs.

    Returns:
        Tensor of shape (B,): log of the total probability of each sequence.
        It is differentiable w.r.t. ``input`` and its gradient is the
        occupation probability of each pdf on each frame.

    The recursion runs in the probability domain and renormalizes alpha
    after every frame, adding the log of the normalizer to the result.
    """
    B, T, D = input.size()
    if B != graphs.batch_size:
        raise ValueError(
            "input batch size ({}) does not equal to graph batch size ({})"
            .format(B, graphs.batch_size)
        )
    if D != graphs.num_pdfs:
        raise ValueError(
            "input dimension ({}) does not equal to the number of pdfs ({})"
            .format(D, graphs.num_pdfs)
        )
    transitions = graphs.forward_transitions.to(input.device)
    src = transitions[:, :, 0]
    dst = transitions[:, :, 1]
    pdf = transitions[:, :, 2]
    probs = graphs.forward_transition_probs.to(input)
    final_probs = graphs.final_probs.to(input)
    leaky_probs = graphs.leaky_probs.to(input)

    exp_input = input.exp()
    alpha = graphs.initial_probs.to(input)
    log_norm = input.new_zeros(B)
    for t in range(T):
        arc_probs = alpha.gather(1, src) * probs * exp_input[:, t, :].gather(1, pdf)
        alpha = torch.zeros_like(alpha).scatter_add(1, dst, arc_probs)
        if leaky_hmm_coefficient != 0.0:
            alpha = alpha + leaky_hmm_coefficient * alpha.sum(1, keepdim=True) * leaky_probs
        tot_prob = alpha.sum(1, keepdim=True)
        log_norm = log_norm + tot_prob.squeeze(1).log()
        alpha = alpha / tot_prob
    return log_norm + (alpha * final_probs).sum(1).log()


class ChainForwardBackward(object):
    """Runs chain_forward once and differentiates it on request.

    ``input`` is detached, so the autograd graph built here is private and
    does not reach the caller's network.
    """

    def __init__(self, graphs, input, leaky_hmm_coefficient=0.0):
        with torch.enable_grad():
            self.input = input.detach().requires_grad_(True)
            self.log_probs = chain_forward(graphs, self.input, leaky_hmm_coefficient)

    def total_log_prob(self):
        return self.log_probs.detach().sum().item()

    def posteriors(self):
        """Occupation probabilities of shape (B, T, num_pdfs)."""
        with torch.enable_grad():
            grad, = torch.autograd.grad(self.log_probs.sum(), self.input)
        return grad
