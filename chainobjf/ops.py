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

"""Matrix helpers shared by the engines and the objective.

Derivative buffers are always accumulated into in place, never reassigned,
so every contribution goes through ``add_scaled_into`` or
``add_scaled_diag_into``.
"""

import torch


def add_scaled_into(dest, alpha, src):
    """dest += alpha * src"""
    if dest.shape != src.shape:
        raise ValueError(
            "cannot add a matrix of shape {} into one of shape {}"
            .format(tuple(src.shape), tuple(dest.shape))
        )
    dest.add_(src.to(dest), alpha=alpha)
    return dest


def add_scaled_diag_into(dest, alpha, src, col_scale):
    """dest += alpha * src * diag(col_scale), i.e. column j of src is scaled by col_scale[j]."""
    if col_scale.dim() != 1 or col_scale.size(0) != src.size(-1):
        raise ValueError(
            "column scale of shape {} does not match a matrix with {} columns"
            .format(tuple(col_scale.shape), src.size(-1))
        )
    return add_scaled_into(dest, alpha, src * col_scale.unsqueeze(0))


def trace_mat_mat(a, b):
    """tr(a b^T), the sum of the elementwise product, as a python float."""
    if a.shape != b.shape:
        raise ValueError(
            "shape mismatch: {} vs {}".format(tuple(a.shape), tuple(b.shape))
        )
    return torch.sum(a * b).item()


def rows_to_sequences(matrix, num_sequences):
    """(T * B, D) with row t * B + b  ->  (B, T, D)"""
    num_rows, dim = matrix.size()
    if num_rows % num_sequences != 0:
        raise ValueError(
            "number of rows ({}) is not a multiple of the number of sequences ({})"
            .format(num_rows, num_sequences)
        )
    return matrix.reshape(num_rows // num_sequences, num_sequences, dim).transpose(0, 1)


def sequences_to_rows(tensor):
    """(B, T, D)  ->  (T * B, D) with row t * B + b"""
    B, T, D = tensor.size()
    return tensor.transpose(0, 1).contiguous().view(T * B, D)
