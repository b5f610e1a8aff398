import logging
from typing import Callable, List, Optional

import jax
import numpy as np

from config import TrainerConfig, check_trainer_config
from decoder import max_steps
from engine import Action
from errors import ConfigurationError, GoldTreeError, OracleError, TransitionSystemError
from evaluation import Validator
from losses import best_correct_action, build_errors_setter
from neural_parser import NeuralParser
from optimizer import GradientAccumulator
from oracle import build_oracle, is_reachable
from schema import DependencyTree, Sentence
from utils import save_model

logger = logging.getLogger(__name__)


def check_gold_trees(sentences: List[Sentence]) -> None:
  """rejects sentences without a well-formed gold tree."""
  for i, sentence in enumerate(sentences):
    if sentence.gold_tree is None:
      raise ConfigurationError(f"training sentence {i} has no gold dependency tree")
    if sentence.gold_tree.token_ids != sentence.ids:
      raise GoldTreeError(f"sentence {i}: gold tree and tokens have different ids")
    problems = sentence.gold_tree.violations()
    if problems:
      raise GoldTreeError(f"sentence {i}: {'; '.join(problems)}")


class Trainer:
  """
  oracle-guided training of a NeuralParser.

  each sentence is decoded following the best scored correct action; the
  errors set on the scored actions are propagated at the end of the sentence.
  every `batch_size` sentences the parameters are updated if at least
  `min_relevant_errors` sentences of the batch had relevant errors, otherwise
  the batch gradients are discarded. after each epoch the model is validated
  and saved when its no-punctuation UAS is the best so far.
  """

  def __init__(
    self,
    parser: NeuralParser,
    config: TrainerConfig = TrainerConfig(),
    validator: Optional[Validator] = None,
    model_path: Optional[str] = None,
    before_apply_action: Optional[Callable[[Action, object], None]] = None,
  ):
    self.config = check_trainer_config(config)
    if validator is not None and model_path is None:
      raise ConfigurationError(
        "a model path is required to save the best validated model"
      )

    self.parser = parser
    self.model = parser.model
    self.transition_system = parser.transition_system
    self.scorer = parser.scorer
    self.validator = validator
    self.model_path = model_path
    self.before_apply_action = before_apply_action
    self.errors_setter = build_errors_setter(config, self.model.config.activation)

    self.scorer.optimizers = {
      group: GradientAccumulator(
        self.model,
        group,
        learning_rate=config.learning_rate,
        decay=config.learning_rate_decay,
      )
      for group in self.model.GROUPS
    }

    self.best_accuracy = -1.0  # all accuracies are in [0, 1]
    self.relevant_sentences = 0
    self.updates = 0
    self.lost_sentences = 0
    self._rng = jax.random.PRNGKey(config.seed)
    self._shuffler = np.random.default_rng(config.seed)

  def _next_key(self):
    self._rng, key = jax.random.split(self._rng)
    return key

  def train(self, sentences: List[Sentence], shuffle: bool = True) -> float:
    """trains for the configured epochs, returns the best validation accuracy."""
    check_gold_trees(sentences)

    if self.config.skip_non_projective:
      reachable = [s for s in sentences if is_reachable(s.gold_tree)]
      if len(reachable) < len(sentences):
        skipped = len(sentences) - len(reachable)
        logger.info("skipping %d non-projective sentences", skipped)
      sentences = reachable

    for epoch in range(1, self.config.epochs + 1):
      for optimizer in self.scorer.optimizers.values():
        optimizer.new_epoch()

      relevant = self.train_epoch(sentences, shuffle=shuffle)
      logger.info(
        "epoch %d/%d | sentences with relevant errors: %d/%d | updates: %d | lost: %d",
        epoch,
        self.config.epochs,
        relevant,
        len(sentences),
        self.updates,
        self.lost_sentences,
      )

      if self.validator is not None:
        self.validate_and_save()

    return self.best_accuracy

  def train_epoch(self, sentences: List[Sentence], shuffle: bool = True) -> int:
    """returns the number of sentences with relevant errors."""
    n = len(sentences)
    order = self._shuffler.permutation(n) if shuffle else np.arange(n)
    total_relevant = 0
    self.relevant_sentences = 0

    for i, index in enumerate(order, start=1):
      if self.learn(sentences[index]):
        self.relevant_sentences += 1
        total_relevant += 1

      if i % self.config.batch_size == 0:
        self.end_batch()

    if len(order) % self.config.batch_size:
      self.end_batch()

    return total_relevant

  def end_batch(self) -> bool:
    """updates the parameters if the batch had enough relevant errors."""
    if self.relevant_sentences >= self.config.min_relevant_errors:
      updated = self.scorer.update()
      self.updates += updated
    else:
      self.scorer.discard()
      updated = False

    self.relevant_sentences = 0
    return updated

  def learn(self, sentence: Sentence) -> bool:
    """
    decodes a sentence along the oracle path and propagates its errors.
    returns whether any of its errors was relevant. a sentence whose gold
    tree gets unreachable is logged and contributes nothing.
    """
    if not sentence.tokens:
      return False

    context = self.scorer.encode(sentence, train=True, rng=self._next_key())
    gold_pos = {t.id: t.pos for t in sentence.tokens}
    oracle = build_oracle(
      self.model.config.transition_system, sentence.gold_tree, gold_pos
    )
    transitions = self.transition_system.transitions
    state = self.transition_system.initial_state(sentence)
    tree = DependencyTree(sentence.ids)
    relevant = False

    for _ in range(max_steps(sentence)):
      if state.is_terminal:
        break

      actions = self.transition_system.generate_actions(state, sentence)
      self.scorer.score(context, state, tree, actions)
      try:
        oracle.mark(state, actions, transitions)
      except OracleError:
        self.lost_sentences += 1
        logger.warning(
          "gold tree unreachable, sentence skipped: %s",
          " ".join(t.form for t in sentence.tokens),
        )
        return False

      relevant |= self.errors_setter.set_errors(actions)
      action = best_correct_action(actions)

      if self.before_apply_action is not None:
        self.before_apply_action(action, context)

      state = self.transition_system.apply(state, tree, action)
    else:
      raise TransitionSystemError(
        f"no terminal state after {max_steps(sentence)} steps"
      )

    self.scorer.backward(context)
    return relevant

  def validate_and_save(self) -> float:
    stats = self.validator.evaluate()
    logger.info("validation:\n%s", stats)

    accuracy = stats.no_punctuation.uas.perc
    if accuracy > self.best_accuracy:
      self.best_accuracy = accuracy
      save_model(self.model, self.model_path)
      logger.info("  → new best UAS: %.2f%%", accuracy * 100.0)

    return accuracy
