from typing import Dict, List, Optional

from engine import Action, State, Transition, TRANSITION_SYSTEMS
from errors import ConfigurationError, OracleError
from schema import DependencyTree


def is_reachable(gold_tree: DependencyTree) -> bool:
  """whether a projective transition system can derive the tree."""
  return len(gold_tree.roots) == 1 and gold_tree.is_projective()


class StaticOracle:
  """
  zero-cost oracle over a gold tree.
  an arc action is correct iff it creates a gold arc (with the gold deprel
  when labeled) on a dependent that already collected all its dependents,
  and assigns the gold POS of that dependent when tagging.
  shift is correct iff no allowed arc action is.
  """

  def __init__(
    self, gold_tree: DependencyTree, gold_pos: Optional[Dict[int, str]] = None
  ):
    self.gold_tree = gold_tree
    self.gold_pos = gold_pos or {}

  def _is_complete(self, state: State, token_id: int) -> bool:
    return all(d in state.attached for d in self.gold_tree.dependents(token_id))

  def _is_gold_arc(self, state: State, transition: Transition) -> bool:
    dependent, governor = transition.arc(state)
    return (
      self.gold_tree.has_head(dependent)
      and self.gold_tree.governor(dependent) == governor
      and self._is_complete(state, dependent)
    )

  def is_correct(self, state: State, action: Action, transitions) -> bool:
    transition = action.transition
    if not transition.is_allowed(state):
      return False

    if transition.direction is None:
      return not any(
        t.direction is not None and t.is_allowed(state) and self._is_gold_arc(state, t)
        for t in transitions
      )

    if not self._is_gold_arc(state, transition):
      return False
    dependent, _ = transition.arc(state)
    if action.deprel is not None and self.gold_tree.deprel(dependent) != action.deprel:
      return False
    if action.pos is not None and self.gold_pos.get(dependent) != action.pos:
      return False
    return True

  def mark(self, state: State, actions: List[Action], transitions) -> int:
    """sets `is_correct` on every action, returns how many are correct."""
    correct = 0
    for action in actions:
      action.is_correct = self.is_correct(state, action, transitions)
      correct += action.is_correct

    if correct == 0:
      raise OracleError(f"the gold tree is unreachable from state {state}")
    return correct


ORACLES = {name: StaticOracle for name in TRANSITION_SYSTEMS}


def build_oracle(
  transition_system: str,
  gold_tree: DependencyTree,
  gold_pos: Optional[Dict[int, str]] = None,
) -> StaticOracle:
  try:
    return ORACLES[transition_system](gold_tree, gold_pos)
  except KeyError:
    raise ConfigurationError(
      f"no oracle for transition system: {transition_system}"
    ) from None
