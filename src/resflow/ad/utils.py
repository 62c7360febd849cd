from __future__ import annotations

from typing import Sequence

import numpy as np
import scipy.sparse as sps

from resflow.ad.forward_mode import AdArray
from resflow.errors import ShapeMismatchError


def concatenate(variables: Sequence) -> AdArray:
    """Stack AdArrays and constants vertically.

    The block structure is taken from the AdArrays in the list. Constants are given
    zero Jacobian blocks.

    Raises:
        ShapeMismatchError: If the AdArrays do not share a block structure, or if no
            AdArray is given.

    """
    ad_vars = [var for var in variables if isinstance(var, AdArray)]
    if len(ad_vars) == 0:
        raise ShapeMismatchError("Concatenation needs at least one AdArray.")

    block_sizes = ad_vars[0].block_sizes
    padded = []
    for var in variables:
        if isinstance(var, AdArray):
            ad_vars[0]._check_blocks(var)
            padded.append(var)
        else:
            val = np.atleast_1d(np.asarray(var, dtype=float)).ravel()
            jac = [sps.csr_matrix((val.size, m)) for m in block_sizes]
            padded.append(AdArray(val, jac))

    vals = np.concatenate([var.val for var in padded])
    jacs = [
        sps.vstack([var.jac[k] for var in padded], format="csr")
        for k in range(len(block_sizes))
    ]
    return AdArray(vals, jacs)
