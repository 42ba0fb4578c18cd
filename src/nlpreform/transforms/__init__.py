"""Model transformations.

The transformations in this module present an existing model as an
equivalent model of a different form. They are models themselves, delegating
the evaluations to the model they wrap, and can be composed freely:

- [`ResidualAsConstraintsModel`][nlpreform.transforms.ResidualAsConstraintsModel]:
  Moves the residual of a least-squares model into equality constraints,
  using additional residual variables.
- [`SlackBoundModel`][nlpreform.transforms.SlackBoundModel]: Converts
  inequality constraints into equality constraints and bounds on slack
  variables.

The [`slack_model`][nlpreform.transforms.slack_model] factory produces the
slack form of a model, using a specialized builder for the model kinds that
allow it, and a [`SlackBoundModel`][nlpreform.transforms.SlackBoundModel]
otherwise.
"""

from ._feasibility import ResidualAsConstraintsModel, residual_as_constraints_meta
from ._slack import (
    SlackBoundModel,
    SlackBoundNLSModel,
    register_slack_specialization,
    slack_function_model,
    slack_linear_least_squares_model,
    slack_meta,
    slack_model,
    slack_rows,
)

__all__ = [
    "ResidualAsConstraintsModel",
    "SlackBoundModel",
    "SlackBoundNLSModel",
    "register_slack_specialization",
    "residual_as_constraints_meta",
    "slack_function_model",
    "slack_linear_least_squares_model",
    "slack_meta",
    "slack_model",
    "slack_rows",
]
