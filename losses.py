from typing import List

import jax
import numpy as np

from config import TrainerConfig
from engine import Action
from errors import ConfigurationError


def softmax(scores) -> np.ndarray:
  """normalized exponentials of action scores, shared by scoring and losses."""
  return np.asarray(jax.nn.softmax(np.asarray(scores, dtype=np.float32)))


def best_action(actions: List[Action]) -> Action:
  """highest score, the first enumerated wins ties."""
  return max(actions, key=lambda a: a.score)


def best_correct_action(actions: List[Action]) -> Action:
  correct = [a for a in actions if a.is_correct]
  if not correct:
    raise ValueError("no correct action to select")
  return best_action(correct)


def top_actions(actions: List[Action], k: int) -> List[Action]:
  """the k highest-scored actions, ties kept in enumeration order."""
  return sorted(actions, key=lambda a: a.score, reverse=True)[:k]


class HingeLossErrorsSetter:
  """
  margin violation between the best correct action and the best wrong one.
  errors are d(loss)/d(score): +1 on the rival, -1 on the gold action.
  """

  def __init__(self, margin: float = 1.0):
    self.margin = margin

  def set_errors(self, actions: List[Action]) -> bool:
    for action in actions:
      action.error = 0.0

    gold = best_correct_action(actions)
    wrong = [a for a in actions if not a.is_correct]
    if not wrong:
      return False

    rival = best_action(wrong)
    if rival.score <= gold.score - self.margin:
      return False

    rival.error = 1.0
    gold.error = -1.0
    return True


class SoftmaxCrossEntropyErrorsSetter:
  """
  errors = p - onehot(gold), p being the softmax of the scores
  (or the scores themselves when the scorer already applies softmax).
  relevant when the top-scored action is wrong.
  """

  def __init__(self, scores_are_probabilities: bool = False):
    self.scores_are_probabilities = scores_are_probabilities

  def set_errors(self, actions: List[Action]) -> bool:
    scores = [a.score for a in actions]
    probabilities = scores if self.scores_are_probabilities else softmax(scores)

    gold = best_correct_action(actions)
    for action, p in zip(actions, probabilities):
      action.error = float(p) - (1.0 if action is gold else 0.0)

    return not best_action(actions).is_correct


def build_errors_setter(config: TrainerConfig, activation: str):
  if config.loss == "hinge":
    if activation == "softmax":
      # margins are measured on unnormalized scores
      raise ConfigurationError("the hinge loss requires the 'none' activation")
    return HingeLossErrorsSetter(margin=config.hinge_margin)
  if config.loss == "softmax":
    return SoftmaxCrossEntropyErrorsSetter(
      scores_are_probabilities=activation == "softmax"
    )
  raise ConfigurationError(f"unknown loss criterion: {config.loss}")
