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


SCALE_OFFSET_POLICIES = ("zero", "epsilon")


class ChainTrainingOptions(object):
    """Options for the chain objective.

    l2_regularize: coefficient of the l2 penalty on the chain output (0 disables it).
    leaky_hmm_coefficient: leakage of the denominator HMM.
    xent_regularize: weight of the cross-entropy objective on the xent output.
    verbose: diagnostics level; 1 or more logs the derivatives per frame.
    scale_offset_policy: what the affine fit does with an all-zero xent column,
        "zero" gives it scale 0, "epsilon" floors its denominator at
        scale_offset_epsilon.
    scale_offset_centered: fit the affine map on mean-centered columns (exact
        least squares) instead of the raw ones.
    """

    def __init__(
        self,
        l2_regularize=0.0,
        leaky_hmm_coefficient=1e-5,
        xent_regularize=0.0,
        verbose=0,
        scale_offset_policy="zero",
        scale_offset_epsilon=1e-20,
        scale_offset_centered=False,
    ):
        if l2_regularize < 0:
            raise ValueError(
                "l2_regularize should be non-negative but given {}".format(l2_regularize)
            )
        if leaky_hmm_coefficient < 0:
            raise ValueError(
                "leaky_hmm_coefficient should be non-negative but given {}"
                .format(leaky_hmm_coefficient)
            )
        if xent_regularize < 0:
            raise ValueError(
                "xent_regularize should be non-negative but given {}".format(xent_regularize)
            )
        if scale_offset_policy not in SCALE_OFFSET_POLICIES:
            raise ValueError(
                "scale_offset_policy should be one of {} but given {}"
                .format(SCALE_OFFSET_POLICIES, scale_offset_policy)
            )
        if scale_offset_epsilon <= 0:
            raise ValueError(
                "scale_offset_epsilon should be positive but given {}"
                .format(scale_offset_epsilon)
            )
        self.l2_regularize = float(l2_regularize)
        self.leaky_hmm_coefficient = float(leaky_hmm_coefficient)
        self.xent_regularize = float(xent_regularize)
        self.verbose = int(verbose)
        self.scale_offset_policy = scale_offset_policy
        self.scale_offset_epsilon = float(scale_offset_epsilon)
        self.scale_offset_centered = bool(scale_offset_centered)

    def __repr__(self):
        return (
            "ChainTrainingOptions(l2_regularize={}, leaky_hmm_coefficient={}, "
            "xent_regularize={}, verbose={}, scale_offset_policy={!r}, "
            "scale_offset_epsilon={}, scale_offset_centered={})".format(
                self.l2_regularize,
                self.leaky_hmm_coefficient,
                self.xent_regularize,
                self.verbose,
                self.scale_offset_policy,
                self.scale_offset_epsilon,
                self.scale_offset_centered,
            )
        )
