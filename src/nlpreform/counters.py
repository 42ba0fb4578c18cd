"""Evaluation counters for optimization models.

Each model records how often each of its evaluation operators was called.
Plain models own a [`Counters`][nlpreform.counters.Counters] object,
least-squares models a [`NLSCounters`][nlpreform.counters.NLSCounters]
object, which adds the residual-related counters.

Counters are mutated in place by the evaluation routines. They are not
protected against concurrent mutation from multiple threads.
"""

from __future__ import annotations

from dataclasses import dataclass, fields

from nlpreform.enums import EvaluationCounter


@dataclass(slots=True)
class Counters:
    """Evaluation counters of a nonlinear optimization model.

    Attributes:
        neval_obj:    Number of objective evaluations.
        neval_grad:   Number of gradient evaluations.
        neval_cons:   Number of constraint evaluations.
        neval_jac:    Number of constraint Jacobian evaluations.
        neval_jprod:  Number of Jacobian-vector products.
        neval_jtprod: Number of transposed Jacobian-vector products.
        neval_hess:   Number of Lagrangian Hessian evaluations.
        neval_hprod:  Number of Lagrangian Hessian-vector products.
    """

    neval_obj: int = 0
    neval_grad: int = 0
    neval_cons: int = 0
    neval_jac: int = 0
    neval_jprod: int = 0
    neval_jtprod: int = 0
    neval_hess: int = 0
    neval_hprod: int = 0

    def increment(self, counter: str | EvaluationCounter, amount: int = 1) -> None:
        """Increment a counter.

        Args:
            counter: The name of the counter field.
            amount:  The amount to add.

        Raises:
            ValueError: If this object has no counter with the given name.
        """
        name = str(counter)
        if name not in self.names():
            msg = f"{self.__class__.__name__} has no counter named `{name}`"
            raise ValueError(msg)
        setattr(self, name, getattr(self, name) + amount)

    def get(self, counter: str | EvaluationCounter) -> int:
        """Return the value of a counter.

        Args:
            counter: The name of the counter field.

        Returns:
            The current value of the counter.
        """
        name = str(counter)
        if name not in self.names():
            msg = f"{self.__class__.__name__} has no counter named `{name}`"
            raise ValueError(msg)
        value: int = getattr(self, name)
        return value

    def names(self) -> tuple[str, ...]:
        """Return the names of all counters in this object."""
        return tuple(item.name for item in fields(self))

    def sum(self) -> int:
        """Return the sum of all counters."""
        return sum(getattr(self, name) for name in self.names())

    def reset(self) -> None:
        """Set all counters to zero."""
        for name in self.names():
            setattr(self, name, 0)


@dataclass(slots=True)
class NLSCounters(Counters):
    """Evaluation counters of a nonlinear least-squares model.

    In addition to the counters of
    [`Counters`][nlpreform.counters.Counters], the evaluations of the residual
    and its derivatives are counted.

    Attributes:
        neval_residual:        Number of residual evaluations.
        neval_jac_residual:    Number of residual Jacobian evaluations.
        neval_jprod_residual:  Number of residual Jacobian-vector products.
        neval_jtprod_residual: Number of transposed residual Jacobian-vector
                               products.
        neval_hess_residual:   Number of residual Hessian evaluations.
        neval_hprod_residual:  Number of residual Hessian-vector products.
    """

    neval_residual: int = 0
    neval_jac_residual: int = 0
    neval_jprod_residual: int = 0
    neval_jtprod_residual: int = 0
    neval_hess_residual: int = 0
    neval_hprod_residual: int = 0
