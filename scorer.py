import logging
from typing import Dict, List, NamedTuple, Optional

import jax
import jax.numpy as jnp
import numpy as np

from engine import Action, State, extract_window
from losses import softmax
from optimizer import GradientAccumulator
from parser_model import ParserModel
from schema import DependencyTree, Sentence

logger = logging.getLogger(__name__)


class ScoringStep(NamedTuple):
  """what a training forward pass needs to be replayed by backward()."""

  window: np.ndarray
  dropout_key: jax.Array
  actions: List[Action]


class SentenceContext:
  """the encoded sentence, shared by every decoding step over it."""

  def __init__(
    self, sentence: Sentence, word_ids, pos_ids, vectors, train: bool = False, rng=None
  ):
    self.sentence = sentence
    self.positions = {t.id: i for i, t in enumerate(sentence.tokens)}
    self.word_ids = word_ids
    self.pos_ids = pos_ids
    self.vectors = vectors
    self.train = train
    self.steps: List[ScoringStep] = []
    self._rng = rng

  def next_key(self):
    self._rng, key = jax.random.split(self._rng)
    return key


class ActionsScorer:
  """
  scores the legal actions of a state (forward) and propagates the errors
  assigned to them back into the scorer network and the token encoder.

  action score = transition score + deprel score + POS score, followed by a
  softmax over the legal actions when the model activation is "softmax".
  errors are output errors of the scores before the activation.
  """

  def __init__(self, model: ParserModel):
    self.model = model
    self.activation = model.config.activation
    self.optimizers: Dict[str, GradientAccumulator] = {}
    self._eval_key = jax.random.PRNGKey(0)

    encoder, network = model.encoder, model.network

    def encode(params, words, pos):
      return encoder.apply({"params": params}, words, pos)

    def encoder_backward(params, words, pos, errors):
      _, vjp_fn = jax.vjp(lambda p: encoder.apply({"params": p}, words, pos), params)
      return vjp_fn(errors)[0]

    def forward(params, vectors, window, key, train):
      return network.apply(
        {"params": params}, vectors, window, train=train, rngs={"dropout": key}
      )

    def backward(params, vectors, windows, keys, errors):
      # gradient of sum(errors * scores) over every step of the sentence
      def objective(p, v):
        scores = jax.vmap(lambda w, k: forward(p, v, w, k, True))(windows, keys)
        return sum(jnp.sum(s * e) for s, e in zip(scores, errors))

      return jax.grad(objective, argnums=(0, 1))(params, vectors)

    self._encode = jax.jit(encode)
    self._encoder_backward = jax.jit(encoder_backward)
    self._forward = jax.jit(forward, static_argnums=4)
    self._backward = jax.jit(backward)

  def encode(
    self, sentence: Sentence, train: bool = False, rng=None
  ) -> SentenceContext:
    """
    runs the token encoder over a sentence.
    in training mode words and POS are randomly replaced by the unknown id.
    """
    vocab, config = self.model.vocab, self.model.config
    words = np.array([vocab.word_id(t.form) for t in sentence.tokens], dtype=np.int32)
    pos = np.array([vocab.pos_id(t.pos) for t in sentence.tokens], dtype=np.int32)

    if train:
      if rng is None:
        raise ValueError("a random key is required to encode in training mode")
      rng, word_key, pos_key = jax.random.split(rng, 3)
      word_drop = jax.random.bernoulli(word_key, config.word_dropout, words.shape)
      pos_drop = jax.random.bernoulli(pos_key, config.pos_dropout, pos.shape)
      words = np.where(np.asarray(word_drop), config.UNK_ID, words).astype(np.int32)
      pos = np.where(np.asarray(pos_drop), config.P_UNK_ID, pos).astype(np.int32)

    vectors = self._encode(self.model.params["encoder"], words, pos)
    return SentenceContext(sentence, words, pos, vectors, train=train, rng=rng)

  def _output_ids(self, action: Action):
    """indexes of the transition, deprel and POS outputs summed into a score."""
    vocab = self.model.vocab
    deprel = vocab.deprel2id[action.deprel] if action.deprel is not None else None
    pos = vocab.pos_id(action.pos) if action.pos is not None else None
    return action.transition.index, deprel, pos

  def score(
    self,
    context: SentenceContext,
    state: State,
    tree: DependencyTree,
    actions: List[Action],
  ) -> List[Action]:
    """sets the score of every action."""
    window = extract_window(state, tree, context.positions)
    key = context.next_key() if context.train else self._eval_key

    outputs = self._forward(
      self.model.params["scorer"], context.vectors, window, key, context.train
    )
    outputs = [np.asarray(o) for o in outputs]

    scores = []
    for action in actions:
      ids = self._output_ids(action)
      scores.append(sum(float(o[i]) for o, i in zip(outputs, ids) if i is not None))
    if self.activation == "softmax":
      scores = softmax(scores)

    for action, score in zip(actions, scores):
      action.score = float(score)

    if context.train:
      context.steps.append(ScoringStep(window, key, actions))
    return actions

  def _optimizer(self, group: str) -> GradientAccumulator:
    try:
      return self.optimizers[group]
    except KeyError:
      raise RuntimeError(f"no optimizer attached for the {group} parameters") from None

  def backward(
    self, context: SentenceContext, propagate_to_input: bool = True
  ) -> Optional[jax.Array]:
    """
    accumulates the gradients of the errors set on the scored actions of a
    sentence. returns the errors of the encoded tokens, None if there were
    no errors to propagate.
    """
    steps = [s for s in context.steps if any(a.error != 0.0 for a in s.actions)]
    context.steps = []
    if not steps:
      return None

    network = self.model.network
    sizes = (network.n_transitions, network.n_deprels, max(1, network.n_pos_tags))
    errors = [np.zeros((len(steps), size), dtype=np.float32) for size in sizes]
    for i, step in enumerate(steps):
      for action in step.actions:
        for output_errors, j in zip(errors, self._output_ids(action)):
          if j is not None:
            output_errors[i, j] += action.error

    windows = np.stack([s.window for s in steps])
    keys = jnp.stack([s.dropout_key for s in steps])

    params = self.model.params
    scorer_grads, input_errors = self._backward(
      params["scorer"], context.vectors, windows, keys, tuple(errors)
    )
    self._optimizer("scorer").accumulate(scorer_grads)

    if propagate_to_input:
      encoder_grads = self._encoder_backward(
        params["encoder"], context.word_ids, context.pos_ids, input_errors
      )
      self._optimizer("encoder").accumulate(encoder_grads)

    return input_errors

  def update(self) -> bool:
    """applies the pending gradients of every parameter group."""
    updated = [optimizer.update() for optimizer in self.optimizers.values()]
    return any(updated)

  def discard(self) -> None:
    for optimizer in self.optimizers.values():
      optimizer.reset()
