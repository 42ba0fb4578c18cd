"""Metadata class for nonlinear least-squares models."""

from __future__ import annotations

from typing import Self

import numpy as np
from pydantic import ConfigDict, NonNegativeInt, model_validator

from .utils import ImmutableBaseModel, broadcast_1d_array
from .validated_types import Array1D  # noqa: TC001


class NLSMeta(ImmutableBaseModel):
    r"""Metadata of the residual of a nonlinear least-squares model.

    A least-squares model minimizes $\frac{1}{2}\|F(x)\|^2$ for a residual
    $F: \mathbb{R}^{n} \rightarrow \mathbb{R}^{m}$. This class describes the
    residual map independently of any constraints of the surrounding model,
    which are described by an
    [`NLPModelMeta`][nlpreform.meta.NLPModelMeta] object.

    Attributes:
        nequ: The number of residual components.
        nvar: The number of variables of the residual map.
        x0:   The initial point (default: 0).
        nnzj: Number of nonzeros in the residual Jacobian (default:
              `nequ * nvar`).
        nnzh: Number of nonzeros in the residual Hessians (default:
              `nvar * nvar`).
    """

    nequ: NonNegativeInt
    nvar: NonNegativeInt
    x0: Array1D = np.array(0.0)
    nnzj: NonNegativeInt | None = None
    nnzh: NonNegativeInt | None = None

    model_config = ConfigDict(
        arbitrary_types_allowed=True,
        extra="forbid",
        validate_default=True,
    )

    @model_validator(mode="after")
    def _broadcast(self) -> Self:
        self._mutable()
        self.x0 = broadcast_1d_array(self.x0, "x0", self.nvar)
        if self.nnzj is None:
            self.nnzj = self.nequ * self.nvar
        if self.nnzh is None:
            self.nnzh = self.nvar * self.nvar
        self._immutable()
        return self
