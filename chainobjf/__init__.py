from chainobjf.denominator import DenominatorComputation
from chainobjf.graph import ChainGraph, ChainGraphBatch
from chainobjf.loss import ChainFunction, ChainLoss, ChainLossInfo
from chainobjf.numerator import NumeratorComputation
from chainobjf.options import ChainTrainingOptions
from chainobjf.supervision import Supervision
from chainobjf.training import (
    ChainObjfInfo,
    compute_chain_objf_and_deriv,
    compute_derivs_per_frame,
    compute_scale_offset,
)

__version__ = "0.1.0"
