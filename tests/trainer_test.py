import os

import jax
import numpy as np
import pytest

from config import TrainerConfig, create_config
from data_loader import build_vocab
from errors import ConfigurationError, GoldTreeError
from evaluation import Validator, compute_statistics
from neural_parser import NeuralParser
from parser_model import ParserModel
from schema import DependencyTree, Sentence
from trainer import Trainer, check_gold_trees
from conftest import (
  SMALL_MODEL,
  cat_sentence,
  fox_sentence,
  gave_sentence,
  non_projective_sentence,
  same_params,
  single_token_sentence,
)


def make_parser(sentences, **options):
  vocab = build_vocab(sentences)
  config = create_config(vocab, **dict(SMALL_MODEL, **options))
  return NeuralParser(ParserModel(config, vocab, seed=0))


def margin_parser(sentences):
  """scores without softmax, as the hinge loss needs."""
  return make_parser(sentences, activation="none", accumulator="sum")


def always_relevant(**options):
  # initial scores never beat a margin this large
  return TrainerConfig(loss="hinge", hinge_margin=1000.0, **options)


def test_training_follows_the_oracle():
  sentences = [cat_sentence()]
  applied = []
  trainer = Trainer(
    make_parser(sentences),
    TrainerConfig(epochs=1),
    before_apply_action=lambda action, context: applied.append(repr(action)),
  )
  trainer.train(sentences)

  assert applied == [
    "Shift", "Shift", "ArcLeft(det)", "Shift", "ArcLeft(nsubj)", "Root(root)"
  ]


def test_arc_hybrid_training_follows_the_oracle():
  sentences = [cat_sentence()]
  applied = []
  trainer = Trainer(
    make_parser(sentences, transition_system="arc_hybrid"),
    TrainerConfig(epochs=1),
    before_apply_action=lambda action, context: applied.append(repr(action)),
  )
  trainer.train(sentences)

  assert applied == [
    "Shift", "ArcLeft(det)", "Shift", "ArcLeft(nsubj)", "Shift", "Root(root)"
  ]


def test_training_with_pos_tagging_follows_the_gold_tags(corpus):
  applied = []
  parser = make_parser(corpus, pos_tagging=True)
  trainer = Trainer(
    parser,
    TrainerConfig(epochs=1),
    before_apply_action=lambda action, context: applied.append(repr(action)),
  )
  trainer.train([cat_sentence()])

  assert applied == [
    "Shift",
    "Shift",
    "ArcLeft(det, DET)",
    "Shift",
    "ArcLeft(nsubj, NOUN)",
    "Root(root, VERB)",
  ]

  sentence = fox_sentence()
  tree = parser.parse(sentence)
  assert set(tree.pos_tags) == set(sentence.ids)
  assert compute_statistics([sentence], [tree]).all_tokens.pos.total == len(sentence)


def test_updates_with_relevant_errors(corpus):
  parser = margin_parser(corpus)
  before = jax.tree_util.tree_map(np.array, parser.model.params)
  config = always_relevant(epochs=1, batch_size=1, min_relevant_errors=1)
  trainer = Trainer(parser, config)
  trainer.train(corpus, shuffle=False)

  # the single token sentence has no wrong action to compete with
  assert trainer.updates == 3
  assert not same_params(before["scorer"], parser.model.params["scorer"])
  assert not same_params(before["encoder"], parser.model.params["encoder"])


def test_no_update_below_the_relevance_threshold(corpus):
  parser = margin_parser(corpus)
  before = jax.tree_util.tree_map(np.array, parser.model.params)
  config = always_relevant(epochs=2, batch_size=1, min_relevant_errors=2)
  trainer = Trainer(parser, config)
  trainer.train(corpus)

  assert trainer.updates == 0
  assert same_params(before, parser.model.params)
  assert not any(o.has_pending for o in parser.scorer.optimizers.values())


def test_batches(corpus):
  config = always_relevant(epochs=1, batch_size=3, min_relevant_errors=2)
  trainer = Trainer(margin_parser(corpus), config)
  relevant = trainer.train_epoch(corpus, shuffle=False)

  # [cat, fox, gave] is updated, [single token] is discarded
  assert relevant == 3
  assert trainer.updates == 1


def test_hinge_loss_rejects_normalized_scores(corpus):
  with pytest.raises(ConfigurationError):
    Trainer(make_parser(corpus), TrainerConfig(loss="hinge"))


def test_softmax_loss_training(corpus):
  parser = make_parser(corpus, activation="none", accumulator="average")
  config = TrainerConfig(epochs=2, learning_rate=0.01, learning_rate_decay=0.1)
  trainer = Trainer(parser, config)
  trainer.train(corpus)

  tree = parser.parse(fox_sentence())
  assert tree.violations() == []


def test_saves_the_best_validated_model(corpus, tmp_path):
  path = tmp_path / "models" / "best.pkl"
  parser = make_parser(corpus)
  trainer = Trainer(
    parser,
    TrainerConfig(epochs=1),
    validator=Validator(parser, [cat_sentence(), gave_sentence()]),
    model_path=str(path),
  )

  best = trainer.train(corpus)

  assert os.path.exists(path)
  assert 0.0 <= best <= 1.0
  assert trainer.best_accuracy == best

  os.remove(path)
  trainer.best_accuracy = 2.0
  trainer.validate_and_save()
  assert not os.path.exists(path)


def test_validator_requires_a_model_path(corpus):
  parser = make_parser(corpus)
  with pytest.raises(ConfigurationError):
    Trainer(parser, validator=Validator(parser, [cat_sentence()]))


def test_non_projective_sentences_are_skipped(corpus):
  sentences = corpus + [non_projective_sentence()]
  trainer = Trainer(make_parser(sentences), TrainerConfig(epochs=1))
  trainer.train(sentences)

  assert trainer.lost_sentences == 0


def test_unreachable_sentences_are_lost_without_failing(corpus):
  sentences = corpus + [non_projective_sentence()]
  config = TrainerConfig(epochs=2, skip_non_projective=False)
  trainer = Trainer(make_parser(sentences), config)
  trainer.train(sentences)

  assert trainer.lost_sentences == 2


def test_missing_gold_tree():
  sentence = cat_sentence()
  with pytest.raises(ConfigurationError):
    check_gold_trees([Sentence(sentence.tokens)])


def test_malformed_gold_tree():
  sentence = cat_sentence()
  cyclic = DependencyTree(sentence.ids)
  cyclic.set_arc(0, 1)
  cyclic.set_arc(1, 2)
  cyclic.set_arc(2, 0)
  with pytest.raises(GoldTreeError):
    check_gold_trees([Sentence(sentence.tokens, cyclic)])

  with pytest.raises(GoldTreeError):
    check_gold_trees([Sentence(sentence.tokens, single_token_sentence().gold_tree)])


def test_gold_tree_with_two_roots():
  sentence = cat_sentence()
  two_roots = DependencyTree(sentence.ids)
  two_roots.set_arc(0, 1, "det")
  two_roots.set_root(1)
  two_roots.set_root(2)

  with pytest.raises(GoldTreeError, match="multiple root tokens"):
    check_gold_trees([Sentence(sentence.tokens, two_roots)])


def test_invalid_trainer_config(corpus):
  with pytest.raises(ConfigurationError):
    Trainer(make_parser(corpus), TrainerConfig(batch_size=0))
  with pytest.raises(ConfigurationError):
    Trainer(make_parser(corpus), TrainerConfig(loss="perceptron"))
