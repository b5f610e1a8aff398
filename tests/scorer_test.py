import jax
import numpy as np
import pytest

from engine import ArcStandard, State, extract_window
from optimizer import GradientAccumulator
from parser_model import ParserModel
from schema import DependencyTree
from scorer import ActionsScorer
from conftest import cat_sentence, fox_sentence, same_params


def scored_actions(scorer, vocab, context, state, system=None):
  sentence = context.sentence
  tree = DependencyTree(sentence.ids)
  system = system or ArcStandard(vocab)
  actions = system.generate_actions(state, sentence)
  return scorer.score(context, state, tree, actions)


def attach_optimizers(scorer, learning_rate=0.01):
  scorer.optimizers = {
    group: GradientAccumulator(scorer.model, group, learning_rate=learning_rate)
    for group in scorer.model.GROUPS
  }


def test_encode(small_model):
  scorer = ActionsScorer(small_model)
  context = scorer.encode(fox_sentence())

  assert context.vectors.shape == (10, small_model.encoding_size)
  assert context.positions == {i: i for i in range(10)}
  assert not context.train

  with pytest.raises(ValueError):
    scorer.encode(fox_sentence(), train=True)


def test_encode_without_recurrent_layer(small_config, vocab):
  model = ParserModel(small_config._replace(recurrent_encoder=False), vocab)
  context = ActionsScorer(model).encode(cat_sentence())

  width = small_config.word_embed_size + small_config.pos_embed_size
  assert context.vectors.shape == (3, width)


def test_training_encode_drops_words_to_unknown(small_model):
  scorer = ActionsScorer(small_model)
  sentence = fox_sentence()
  config, vocab = small_model.config, small_model.vocab
  expected = [vocab.word_id(t.form) for t in sentence.tokens]

  context = scorer.encode(sentence, train=True, rng=jax.random.PRNGKey(5))
  for word, original in zip(context.word_ids, expected):
    assert word in (original, config.UNK_ID)


def test_scores_are_transition_plus_deprel_scores(small_config, vocab):
  config = small_config._replace(activation="none", accumulator="sum")
  model = ParserModel(config, vocab)
  scorer = ActionsScorer(model)
  context = scorer.encode(cat_sentence())
  state = State((0, 1), (2,))

  actions = scored_actions(scorer, vocab, context, state)
  tree = DependencyTree(context.sentence.ids)
  window = extract_window(state, tree, context.positions)
  transition_scores, deprel_scores, _ = model.network.apply(
    {"params": model.params["scorer"]}, context.vectors, window, train=False
  )

  for action in actions:
    expected = float(transition_scores[action.transition.index])
    if action.deprel is not None:
      expected += float(deprel_scores[vocab.deprel2id[action.deprel]])
    assert action.score == pytest.approx(expected, abs=1e-5)


def pos_tagging_model(small_config, vocab):
  config = small_config._replace(activation="none", accumulator="sum", pos_tagging=True)
  return ParserModel(config, vocab, seed=2)


def test_pos_tagging_scores_add_the_pos_score(small_config, vocab):
  model = pos_tagging_model(small_config, vocab)
  scorer = ActionsScorer(model)
  system = ArcStandard(vocab, pos_tagging=True)
  context = scorer.encode(cat_sentence())
  state = State((0, 1), (2,))

  actions = scored_actions(scorer, vocab, context, state, system)
  tree = DependencyTree(context.sentence.ids)
  window = extract_window(state, tree, context.positions)
  transition_scores, deprel_scores, pos_scores = model.network.apply(
    {"params": model.params["scorer"]}, context.vectors, window, train=False
  )

  assert pos_scores.shape == (len(vocab.pos2id),)
  for action in actions:
    expected = float(transition_scores[action.transition.index])
    if action.is_arc:
      expected += float(deprel_scores[vocab.deprel2id[action.deprel]])
      expected += float(pos_scores[vocab.pos_id(action.pos)])
    assert action.score == pytest.approx(expected, abs=1e-5)


def test_pos_tagging_backward_reaches_the_pos_scores(small_config, vocab):
  model = pos_tagging_model(small_config, vocab)
  scorer = ActionsScorer(model)
  attach_optimizers(scorer)
  system = ArcStandard(vocab, labeled=False, pos_tagging=True)
  context = scorer.encode(cat_sentence(), train=True, rng=jax.random.PRNGKey(0))

  actions = scored_actions(scorer, vocab, context, State((0, 1), (2,)), system)
  # same transition, only the POS differs
  det = next(a for a in actions if repr(a) == "ArcLeft(DET)")
  noun = next(a for a in actions if repr(a) == "ArcLeft(NOUN)")
  det.error, noun.error = -1.0, 1.0

  before = jax.tree_util.tree_map(np.array, model.params["scorer"])
  assert scorer.backward(context, propagate_to_input=False) is not None
  assert scorer.update()

  after = model.params["scorer"]
  assert not same_params(before["pos_scores"], after["pos_scores"])
  assert same_params(before["deprel_scores"], after["deprel_scores"])


def test_softmax_activation(small_model, vocab):
  scorer = ActionsScorer(small_model)
  context = scorer.encode(cat_sentence())
  actions = scored_actions(scorer, vocab, context, State((0, 1), (2,)))

  assert sum(a.score for a in actions) == pytest.approx(1.0, abs=1e-5)
  assert all(0.0 < a.score < 1.0 for a in actions)
  # inference doesn't record anything for backward()
  assert context.steps == []


def test_inference_scores_are_deterministic(small_model, vocab):
  scorer = ActionsScorer(small_model)
  context = scorer.encode(cat_sentence())
  state = State((0, 1), (2,))
  first = [a.score for a in scored_actions(scorer, vocab, context, state)]
  second = [a.score for a in scored_actions(scorer, vocab, context, state)]

  assert first == second


def test_backward_and_update(small_model, vocab):
  scorer = ActionsScorer(small_model)
  attach_optimizers(scorer)
  context = scorer.encode(cat_sentence(), train=True, rng=jax.random.PRNGKey(0))

  actions = scored_actions(scorer, vocab, context, State((0, 1), (2,)))
  scored_actions(scorer, vocab, context, State((0,), (1, 2)))
  actions[0].error = 1.0
  actions[3].error = -1.0
  assert len(context.steps) == 2

  input_errors = scorer.backward(context)

  assert input_errors.shape == context.vectors.shape
  assert np.any(np.asarray(input_errors) != 0.0)
  assert context.steps == []
  assert all(o.has_pending for o in scorer.optimizers.values())

  before = jax.tree_util.tree_map(np.array, small_model.params)
  assert scorer.update()
  assert not same_params(before["scorer"], small_model.params["scorer"])
  assert not same_params(before["encoder"], small_model.params["encoder"])

  # nothing pending anymore
  assert not scorer.update()


def test_backward_without_errors(small_model, vocab):
  scorer = ActionsScorer(small_model)
  attach_optimizers(scorer)
  context = scorer.encode(cat_sentence(), train=True, rng=jax.random.PRNGKey(0))
  scored_actions(scorer, vocab, context, State((0, 1), (2,)))

  assert scorer.backward(context) is None
  assert not any(o.has_pending for o in scorer.optimizers.values())


def test_backward_to_the_scorer_only(small_model, vocab):
  scorer = ActionsScorer(small_model)
  attach_optimizers(scorer)
  context = scorer.encode(cat_sentence(), train=True, rng=jax.random.PRNGKey(0))
  actions = scored_actions(scorer, vocab, context, State((0, 1), (2,)))
  actions[1].error = 0.5

  scorer.backward(context, propagate_to_input=False)

  assert scorer.optimizers["scorer"].has_pending
  assert not scorer.optimizers["encoder"].has_pending

  scorer.discard()
  assert not scorer.optimizers["scorer"].has_pending


def test_backward_requires_optimizers(small_model, vocab):
  scorer = ActionsScorer(small_model)
  context = scorer.encode(cat_sentence(), train=True, rng=jax.random.PRNGKey(0))
  actions = scored_actions(scorer, vocab, context, State((0, 1), (2,)))
  actions[0].error = 1.0

  with pytest.raises(RuntimeError):
    scorer.backward(context)
