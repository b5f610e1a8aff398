import zlib
from types import SimpleNamespace

import jax
import numpy as np
import pytest

from config import create_config
from data_loader import build_sentence, build_vocab
from parser_model import ParserModel


def make_sentence(forms, heads=None, deprels=None, pos=None):
  """heads are CoNLL-style: 1-based, 0 for the root."""
  n = len(forms)
  heads = heads or [None] * n
  deprels = deprels or ["_"] * n
  pos = pos or ["X"] * n
  rows = [(f, p, "_", h, d) for f, p, h, d in zip(forms, pos, heads, deprels)]
  return build_sentence(rows, lowercase=False)


def cat_sentence():
  return make_sentence(
    ["The", "cat", "sleeps"],
    heads=[2, 3, 0],
    deprels=["det", "nsubj", "root"],
    pos=["DET", "NOUN", "VERB"],
  )


def fox_sentence():
  return make_sentence(
    ["the", "quick", "brown", "fox", "jumps", "over", "the", "lazy", "dog", "."],
    heads=[4, 4, 4, 5, 0, 9, 9, 9, 5, 5],
    deprels=[
      "det", "amod", "amod", "nsubj", "root", "case", "det", "amod", "obl", "punct"
    ],
    pos=["DET", "ADJ", "ADJ", "NOUN", "VERB", "ADP", "DET", "ADJ", "NOUN", "PUNCT"],
  )


def gave_sentence():
  return make_sentence(
    ["she", "gave", "him", "a", "book"],
    heads=[2, 0, 2, 5, 2],
    deprels=["nsubj", "root", "iobj", "det", "obj"],
    pos=["PRON", "VERB", "PRON", "DET", "NOUN"],
  )


def single_token_sentence():
  return make_sentence(["Stop"], heads=[0], deprels=["root"], pos=["VERB"])


def non_projective_sentence():
  # arcs 0 <- 2 and 1 <- 3 cross
  return make_sentence(
    ["a", "b", "c", "d"],
    heads=[3, 4, 4, 0],
    deprels=["dep", "dep", "dep", "root"],
    pos=["X", "X", "X", "X"],
  )


@pytest.fixture
def corpus():
  return [cat_sentence(), fox_sentence(), gave_sentence(), single_token_sentence()]


@pytest.fixture
def vocab(corpus):
  return build_vocab(corpus)


SMALL_MODEL = dict(
  word_embed_size=8,
  pos_embed_size=4,
  encoder_hidden_size=8,
  hidden_size=16,
  dropout_rate=0.1,
)


@pytest.fixture
def small_config(vocab):
  return create_config(vocab, **SMALL_MODEL)


@pytest.fixture
def small_model(small_config, vocab):
  return ParserModel(small_config, vocab, seed=1)


class StubScorer:
  """
  deterministic pseudo-random scores derived from the state and the action,
  without any network.
  """

  def __init__(self, score_fn=None):
    self.score_fn = score_fn or self.hashed_score
    self.calls = 0

  @staticmethod
  def hashed_score(state, action) -> float:
    key = repr((state.stack, state.buffer, repr(action))).encode()
    return zlib.crc32(key) / 2**32

  def encode(self, sentence, train=False, rng=None):
    return SimpleNamespace(sentence=sentence, train=train)

  def score(self, context, state, tree, actions):
    self.calls += 1
    for action in actions:
      action.score = self.score_fn(state, action)
    return actions


def same_params(a, b) -> bool:
  leaves_a, leaves_b = jax.tree_util.tree_leaves(a), jax.tree_util.tree_leaves(b)
  return len(leaves_a) == len(leaves_b) and all(
    np.array_equal(np.asarray(x), np.asarray(y)) for x, y in zip(leaves_a, leaves_b)
  )
