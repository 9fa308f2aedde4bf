"""
Random-walk Metropolis.

Proposal: value' = value + L · ε,  ε ~ N(0, I)

where L is a scalar scale or a lower-triangular matrix (the Cholesky factor
of the proposal covariance). The proposal is symmetric, so the log ratio is
the log-target difference.

The standardised direction ε of the last proposal is kept in
`last_direction` (also in the step record's info under 'direction'); the
robust adaptive tuner reads it, including for rejected candidates.
"""

import numpy as np

from ..error_handling import ConfigurationError
from ..states import VariateForm
from .common import MCSampler, Proposal, draw_normal


class RWM(MCSampler):
    """
    Random-walk Metropolis kernel.

    Args:
        scale: Positive scalar, or lower-triangular (d, d) matrix for a
               multivariate parameter
    """

    name = "RWM"
    required_fields = ('logtarget',)
    tunable = 'scale'

    def __init__(self, scale=1.0):
        self.last_direction = None
        scale = np.asarray(scale, dtype=np.float64)
        if scale.ndim == 0:
            if not scale > 0:
                raise ConfigurationError(f"RWM scale must be positive, got {float(scale)}")
            self.scale = float(scale)
        elif scale.ndim == 2 and scale.shape[0] == scale.shape[1]:
            if not np.allclose(scale, np.tril(scale)):
                raise ConfigurationError("RWM scale matrix must be lower triangular")
            self.scale = scale
        else:
            raise ConfigurationError(f"RWM scale must be a scalar or square matrix, got shape {scale.shape}")

    @property
    def is_matrix_scale(self) -> bool:
        return isinstance(self.scale, np.ndarray)

    def validate(self, state):
        super().validate(state)
        if self.is_matrix_scale:
            d = state.size
            if state.form != VariateForm.MULTIVARIATE or self.scale.shape != (d, d):
                raise ConfigurationError(
                    f"RWM scale of shape {self.scale.shape} does not fit a parameter of size {d}"
                )

    def propose(self, state, target, rng):
        eps = draw_normal(rng, state.value)
        self.last_direction = eps
        if self.is_matrix_scale:
            step = self.scale @ eps
        else:
            step = self.scale * eps
        candidate = target.candidate(state, state.value + step)
        return Proposal(candidate, 0.0, {'direction': eps})

    def _params(self):
        return {'scale': self.scale}
