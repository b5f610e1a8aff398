import math
from typing import NamedTuple, Union

from errors import ConfigurationError

# lower bound for log-sum, so that a zero probability doesn't yield -inf
MIN_PROBABILITY = 1e-12


class SumAccumulator(NamedTuple):
  """plain sum of the step scores."""

  total: float = 0.0
  count: int = 0

  @property
  def score(self) -> float:
    return self.total

  def append(self, step_score: float) -> "SumAccumulator":
    return SumAccumulator(self.total + step_score, self.count + 1)


class AverageAccumulator(NamedTuple):
  """running average, not biased toward shorter derivations."""

  total: float = 0.0
  count: int = 0

  @property
  def score(self) -> float:
    return self.total / self.count if self.count else 0.0

  def append(self, step_score: float) -> "AverageAccumulator":
    return AverageAccumulator(self.total + step_score, self.count + 1)


class LogSumAccumulator(NamedTuple):
  """sum of log-probabilities. step scores must be probabilities."""

  total: float = 0.0
  count: int = 0

  @property
  def score(self) -> float:
    return self.total

  def append(self, step_score: float) -> "LogSumAccumulator":
    return LogSumAccumulator(
      self.total + math.log(max(step_score, MIN_PROBABILITY)), self.count + 1
    )


ScoreAccumulator = Union[SumAccumulator, AverageAccumulator, LogSumAccumulator]

ACCUMULATORS = {
  "sum": SumAccumulator,
  "average": AverageAccumulator,
  "log_sum": LogSumAccumulator,
}


def initial_accumulator(kind: str) -> ScoreAccumulator:
  try:
    return ACCUMULATORS[kind]()
  except KeyError:
    raise ConfigurationError(f"unknown score accumulator: {kind}") from None
