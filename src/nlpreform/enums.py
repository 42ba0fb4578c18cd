"""Enumerations used within the `nlpreform` library."""

from enum import StrEnum


class EvaluationCounter(StrEnum):
    """Enumerates the evaluation counters kept for each model.

    Every model keeps one integer counter per kind of evaluation (see
    [`Counters`][nlpreform.counters.Counters]). The values of this enumeration
    are the names of the counter fields, and can be passed wherever a counter
    name is expected, for instance to
    [`increment`][nlpreform.models.AbstractNLPModel.increment].
    """

    OBJ = "neval_obj"
    "Objective evaluations."

    GRAD = "neval_grad"
    "Gradient evaluations."

    CONS = "neval_cons"
    "Constraint evaluations."

    JAC = "neval_jac"
    "Constraint Jacobian evaluations."

    JPROD = "neval_jprod"
    "Constraint Jacobian-vector products."

    JTPROD = "neval_jtprod"
    "Transposed constraint Jacobian-vector products."

    HESS = "neval_hess"
    "Lagrangian Hessian evaluations."

    HPROD = "neval_hprod"
    "Lagrangian Hessian-vector products."

    RESIDUAL = "neval_residual"
    "Residual evaluations (least-squares models only)."

    JAC_RESIDUAL = "neval_jac_residual"
    "Residual Jacobian evaluations (least-squares models only)."

    JPROD_RESIDUAL = "neval_jprod_residual"
    "Residual Jacobian-vector products (least-squares models only)."

    JTPROD_RESIDUAL = "neval_jtprod_residual"
    "Transposed residual Jacobian-vector products (least-squares models only)."

    HESS_RESIDUAL = "neval_hess_residual"
    "Residual Hessian evaluations (least-squares models only)."

    HPROD_RESIDUAL = "neval_hprod_residual"
    "Residual Hessian-vector products (least-squares models only)."
