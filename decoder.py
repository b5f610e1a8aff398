import logging
from concurrent.futures import ThreadPoolExecutor
from functools import partial
from typing import Callable, List, NamedTuple, Optional

from accumulator import ScoreAccumulator, initial_accumulator
from config import DecodingConfig, MAX_STEPS_PER_TOKEN, check_decoding_config
from engine import Action, State, TransitionSystem
from errors import TransitionSystemError
from losses import best_action, top_actions
from schema import DependencyTree, Sentence

logger = logging.getLogger(__name__)

BeforeApplyAction = Callable[[Action, object], None]


def max_steps(sentence: Sentence) -> int:
  return MAX_STEPS_PER_TOKEN * len(sentence) + 1


def check_output_tree(tree: DependencyTree) -> DependencyTree:
  problems = tree.violations()
  if problems:
    raise TransitionSystemError(
      f"decoding produced an invalid tree: {'; '.join(problems)}"
    )
  return tree


class GreedyDecoder:
  """applies the best scored action at each step until a terminal state."""

  def __init__(
    self, transition_system: TransitionSystem, scorer, accumulator: str = "sum"
  ):
    self.transition_system = transition_system
    self.scorer = scorer
    self.accumulator = accumulator
    self.last_score: Optional[ScoreAccumulator] = None

  def decode(
    self,
    sentence: Sentence,
    before_apply_action: Optional[BeforeApplyAction] = None,
  ) -> DependencyTree:
    tree = DependencyTree(sentence.ids)
    if not sentence.tokens:
      return tree

    context = self.scorer.encode(sentence)
    state = self.transition_system.initial_state(sentence)
    score = initial_accumulator(self.accumulator)

    for _ in range(max_steps(sentence)):
      if state.is_terminal:
        self.last_score = score
        return check_output_tree(tree)

      actions = self.transition_system.generate_actions(state, sentence)
      self.scorer.score(context, state, tree, actions)
      action = best_action(actions)

      if before_apply_action is not None:
        before_apply_action(action, context)

      score = score.append(action.score)
      state = self.transition_system.apply(state, tree, action)

    raise TransitionSystemError(f"no terminal state after {max_steps(sentence)} steps")

  def close(self) -> None:
    pass

  def __enter__(self):
    return self

  def __exit__(self, *exc):
    self.close()
    return False


class BeamElement(NamedTuple):
  state: State
  tree: DependencyTree
  score: ScoreAccumulator


class BeamDecoder:
  """
  keeps the `beam_size` best partial derivations by accumulated score.
  the expansions of the beam elements run on a worker pool owned by the
  decoder: use it as a context manager or call close().
  """

  def __init__(
    self,
    transition_system: TransitionSystem,
    scorer,
    accumulator: str = "sum",
    beam_size: int = 1,
    max_parallel_threads: int = 1,
  ):
    check_decoding_config(DecodingConfig(beam_size, max_parallel_threads))
    self.transition_system = transition_system
    self.scorer = scorer
    self.accumulator = accumulator
    self.beam_size = beam_size
    self.max_parallel_threads = max_parallel_threads
    self.last_score: Optional[ScoreAccumulator] = None

    # threads are pointless with a single element
    if beam_size > 1 and max_parallel_threads > 1:
      self._executor: Optional[ThreadPoolExecutor] = ThreadPoolExecutor(
        max_workers=max_parallel_threads, thread_name_prefix="beam"
      )
    else:
      self._executor = None

  def _expand(
    self, element: BeamElement, sentence: Sentence, context
  ) -> List[BeamElement]:
    if element.state.is_terminal:
      return [element]

    actions = self.transition_system.generate_actions(element.state, sentence)
    self.scorer.score(context, element.state, element.tree, actions)

    expansions = []
    for action in top_actions(actions, self.beam_size):
      tree = element.tree.copy()
      state = self.transition_system.apply(element.state, tree, action)
      expansions.append(BeamElement(state, tree, element.score.append(action.score)))
    return expansions

  def decode(self, sentence: Sentence) -> DependencyTree:
    if not sentence.tokens:
      return DependencyTree(sentence.ids)

    context = self.scorer.encode(sentence)
    beam = [
      BeamElement(
        self.transition_system.initial_state(sentence),
        DependencyTree(sentence.ids),
        initial_accumulator(self.accumulator),
      )
    ]
    expand = partial(self._expand, sentence=sentence, context=context)
    mapper = self._executor.map if self._executor is not None else map

    for _ in range(max_steps(sentence)):
      if all(e.state.is_terminal for e in beam):
        best = beam[0]
        self.last_score = best.score
        return check_output_tree(best.tree)

      candidates = [c for expansions in mapper(expand, beam) for c in expansions]
      # stable: ties keep the element order, then the action order
      candidates.sort(key=lambda e: e.score.score, reverse=True)
      beam = candidates[: self.beam_size]

    raise TransitionSystemError(f"no terminal beam after {max_steps(sentence)} steps")

  def close(self) -> None:
    if self._executor is not None:
      self._executor.shutdown(wait=True)
      self._executor = None

  def __enter__(self):
    return self

  def __exit__(self, *exc):
    self.close()
    return False


def build_decoder(
  transition_system: TransitionSystem,
  scorer,
  accumulator: str,
  config: DecodingConfig,
):
  """a greedy decoder for beam size 1, a beam decoder otherwise."""
  check_decoding_config(config)
  if config.beam_size == 1:
    return GreedyDecoder(transition_system, scorer, accumulator)
  logger.info(
    "beam decoding: size %d, %d threads", config.beam_size, config.max_parallel_threads
  )
  return BeamDecoder(
    transition_system,
    scorer,
    accumulator,
    beam_size=config.beam_size,
    max_parallel_threads=config.max_parallel_threads,
  )
