"""Metadata describing the shape of optimization models.

Models do not store their dimensions and bounds directly, but delegate this to
metadata objects:

- [`NLPModelMeta`][nlpreform.meta.NLPModelMeta]: Variables, constraints,
  bounds, initial values, constraint classification and sparsity counts.
- [`NLSMeta`][nlpreform.meta.NLSMeta]: The dimensions of the residual of a
  least-squares model.

Both classes are built using [`pydantic`](https://docs.pydantic.dev/). They
can be created with keyword arguments, or from a dictionary using the
`model_validate` method. After validation they are immutable: array values
are stored as read-only `numpy` arrays, and attributes cannot be reassigned.
Transformations that change the shape of a model build new metadata objects,
they never modify the metadata of the model they wrap.
"""

from ._nlp_meta import NLPModelMeta
from ._nls_meta import NLSMeta

__all__ = [
    "NLPModelMeta",
    "NLSMeta",
]
