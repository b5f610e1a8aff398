from dataclasses import dataclass
from typing import NamedTuple, FrozenSet, List, Optional, Tuple

import numpy as np

from config import ParserConfig
from errors import ConfigurationError, TransitionSystemError
from schema import DependencyTree, Sentence, Vocabulary, LEFT, RIGHT, ROOT


class State(NamedTuple):
  """
  the immutable configuration of a transition-based parser.
  every token id is in exactly one of stack, buffer, attached.
  """

  stack: Tuple[int, ...]  # top is the last element
  buffer: Tuple[int, ...]  # front is the first element
  attached: FrozenSet[int] = frozenset()

  @classmethod
  def initial(cls, token_ids) -> "State":
    return cls(stack=(), buffer=tuple(token_ids), attached=frozenset())

  @property
  def is_terminal(self) -> bool:
    return not self.buffer and not self.stack


# (dependent, governor) where a None governor means the sentence root
ArcEffect = Tuple[int, Optional[int]]


class Transition:
  """
  a stateless operation with a precondition and a deterministic effect.
  `direction` is the deprel group of label-bearing transitions.
  """

  name = ""
  direction: Optional[str] = None

  def __init__(self, index: int):
    self.index = index

  def is_allowed(self, state: State) -> bool:
    raise NotImplementedError

  def arc(self, state: State) -> Optional[ArcEffect]:
    """the arc this transition would create, without applying it."""
    return None

  def perform(self, state: State) -> State:
    raise NotImplementedError

  def __repr__(self) -> str:
    return self.name


class Shift(Transition):
  name = "Shift"

  def is_allowed(self, state):
    return len(state.buffer) > 0

  def perform(self, state):
    # push buffer[0] onto the stack
    return state._replace(stack=state.stack + state.buffer[:1], buffer=state.buffer[1:])


class Root(Transition):
  """the last token on the stack becomes the root of the sentence."""

  name = "Root"
  direction = ROOT

  def is_allowed(self, state):
    return len(state.stack) == 1 and not state.buffer

  def arc(self, state):
    return state.stack[-1], None

  def perform(self, state):
    return state._replace(stack=(), attached=state.attached | {state.stack[-1]})


class ArcStandardLeft(Transition):
  """s1 <- s0: removes s1."""

  name = "ArcLeft"
  direction = LEFT

  def is_allowed(self, state):
    return len(state.stack) >= 2

  def arc(self, state):
    return state.stack[-2], state.stack[-1]

  def perform(self, state):
    dependent = state.stack[-2]
    return state._replace(
      stack=state.stack[:-2] + state.stack[-1:], attached=state.attached | {dependent}
    )


class ArcStandardRight(Transition):
  """s1 -> s0: removes s0."""

  name = "ArcRight"
  direction = RIGHT

  def is_allowed(self, state):
    return len(state.stack) >= 2

  def arc(self, state):
    return state.stack[-1], state.stack[-2]

  def perform(self, state):
    dependent = state.stack[-1]
    return state._replace(stack=state.stack[:-1], attached=state.attached | {dependent})


class ArcHybridLeft(Transition):
  """s0 <- b0: removes s0."""

  name = "ArcLeft"
  direction = LEFT

  def is_allowed(self, state):
    return len(state.stack) >= 1 and len(state.buffer) >= 1

  def arc(self, state):
    return state.stack[-1], state.buffer[0]

  def perform(self, state):
    dependent = state.stack[-1]
    return state._replace(stack=state.stack[:-1], attached=state.attached | {dependent})


@dataclass
class Action:
  """
  a transition bound to a state, with an optional deprel and POS label.
  score is set by the scorer, error and is_correct during training.
  """

  transition: Transition
  deprel: Optional[str] = None
  pos: Optional[str] = None
  index: int = 0
  score: float = 0.0
  error: float = 0.0
  is_correct: bool = False

  @property
  def is_arc(self) -> bool:
    return self.transition.direction is not None

  def __repr__(self) -> str:
    labels = [label for label in (self.deprel, self.pos) if label is not None]
    if not labels:
      return self.transition.name
    return f"{self.transition.name}({', '.join(labels)})"


class TransitionSystem:
  """
  enumerates the legal actions of a state and applies them.
  enumeration order (the greedy tie-break) follows `transition_types`,
  then the sorted deprels of each label-bearing transition, then the POS
  tags in vocabulary order when tagging.
  """

  name = ""
  transition_types: Tuple[type, ...] = ()

  def __init__(
    self,
    vocab: Vocabulary,
    labeled: bool = True,
    restrict_deprels_by_pos: bool = False,
    pos_tagging: bool = False,
  ):
    self.vocab = vocab
    self.labeled = labeled
    self.restrict_deprels_by_pos = restrict_deprels_by_pos
    self.pos_tagging = pos_tagging
    self.transitions = tuple(t(i) for i, t in enumerate(self.transition_types))

  def initial_state(self, sentence: Sentence) -> State:
    return State.initial(sentence.ids)

  def _deprels(self, transition: Transition, state: State, pos_by_id):
    if not self.labeled:
      return (None,)
    pos = None
    if self.restrict_deprels_by_pos:
      dependent, _ = transition.arc(state)
      pos = pos_by_id.get(dependent)
    return self.vocab.deprels_for(transition.direction, pos)

  def generate_actions(self, state: State, sentence: Sentence) -> List[Action]:
    pos_by_id = {}
    if self.restrict_deprels_by_pos:
      pos_by_id = {t.id: t.pos for t in sentence.tokens}
    tags = self.vocab.pos_tags if self.pos_tagging else (None,)
    actions: List[Action] = []

    for transition in self.transitions:
      if not transition.is_allowed(state):
        continue
      if transition.direction is None:
        actions.append(Action(transition, index=len(actions)))
        continue
      for deprel in self._deprels(transition, state, pos_by_id):
        for pos in tags:
          actions.append(Action(transition, deprel=deprel, pos=pos, index=len(actions)))

    if not actions and not state.is_terminal:
      raise TransitionSystemError(
        f"{self.name}: no legal action in non-terminal state {state}"
      )
    return actions

  def apply(self, state: State, tree: DependencyTree, action: Action) -> State:
    """
    returns the next state, recording the created arc (if any) and the
    predicted POS of its dependent into `tree`.
    """
    arc = action.transition.arc(state)
    if arc is not None:
      dependent, governor = arc
      if governor is None:
        tree.set_root(dependent, action.deprel)
      else:
        tree.set_arc(dependent, governor, action.deprel)
      if action.pos is not None:
        tree.set_pos(dependent, action.pos)
    return action.transition.perform(state)


class ArcStandard(TransitionSystem):
  name = "arc_standard"
  transition_types = (Shift, ArcStandardLeft, ArcStandardRight, Root)


class ArcHybrid(TransitionSystem):
  name = "arc_hybrid"
  # arc-hybrid right arc has the same effect as the arc-standard one
  transition_types = (Shift, ArcHybridLeft, ArcStandardRight, Root)


TRANSITION_SYSTEMS = {
  ArcStandard.name: ArcStandard,
  ArcHybrid.name: ArcHybrid,
}


def build_transition_system(
  config: ParserConfig, vocab: Vocabulary
) -> TransitionSystem:
  try:
    system_class = TRANSITION_SYSTEMS[config.transition_system]
  except KeyError:
    raise ConfigurationError(
      f"unknown transition system: {config.transition_system}"
    ) from None
  return system_class(
    vocab,
    labeled=config.labeled,
    restrict_deprels_by_pos=config.restrict_deprels_by_pos,
    pos_tagging=config.pos_tagging,
  )


def extract_window(state: State, tree: DependencyTree, positions) -> np.ndarray:
  """
  sentence positions of the 18 tokens around the stack/buffer boundary,
  -1 where the token doesn't exist. `positions` maps token id -> position.
  """

  def child(head, left: bool, rank: int) -> int:
    if head == -1:
      return -1
    children = tree.left_dependents(head) if left else tree.right_dependents(head)
    return children[rank] if rank < len(children) else -1

  def at(seq, i: int) -> int:
    return seq[i] if -len(seq) <= i < len(seq) else -1

  # 1. basic stack and buffer positions
  s0, s1, s2 = at(state.stack, -1), at(state.stack, -2), at(state.stack, -3)
  b0, b1, b2 = at(state.buffer, 0), at(state.buffer, 1), at(state.buffer, 2)

  # 2. first and second order children
  lc_s0, rc_s0 = child(s0, True, 0), child(s0, False, 0)
  lc_s1, rc_s1 = child(s1, True, 0), child(s1, False, 0)
  lc2_s0, rc2_s0 = child(s0, True, 1), child(s0, False, 1)
  lc2_s1, rc2_s1 = child(s1, True, 1), child(s1, False, 1)

  # grandchildren (leftmost of leftmost, rightmost of rightmost)
  llc_s0, rrc_s0 = child(lc_s0, True, 0), child(rc_s0, False, 0)
  llc_s1, rrc_s1 = child(lc_s1, True, 0), child(rc_s1, False, 0)

  ids = [
    s0, s1, s2, b0, b1, b2,
    lc_s0, rc_s0, lc2_s0, rc2_s0, llc_s0, rrc_s0,
    lc_s1, rc_s1, lc2_s1, rc2_s1, llc_s1, rrc_s1,
  ]
  return np.array([positions[i] if i != -1 else -1 for i in ids], dtype=np.int32)
