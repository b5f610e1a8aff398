from typing import Any, Dict, Optional

import jax
import jax.numpy as jnp
import flax.linen as nn

from config import ParserConfig, WINDOW_SIZE, check_parser_config
from engine import TRANSITION_SYSTEMS
from schema import Vocabulary


class TokenEncoder(nn.Module):
  """
  word + POS embeddings, optionally contextualized by a BiLSTM.
  """

  n_words: int
  n_pos: int
  word_embed_size: int = 50
  pos_embed_size: int = 25
  hidden_size: int = 100
  recurrent: bool = True

  @nn.compact
  def __call__(self, words, pos):
    """
    words, pos: (sentence_len,) - vocabulary ids
    returns: (sentence_len, output_size)
    """
    # learnable embedding tables, looked up by index
    word_embeddings = self.param(
      "word_embeddings",
      nn.initializers.uniform(scale=0.1),
      (self.n_words, self.word_embed_size),
    )
    pos_embeddings = self.param(
      "pos_embeddings",
      nn.initializers.uniform(scale=0.1),
      (self.n_pos, self.pos_embed_size),
    )
    x = jnp.concatenate([word_embeddings[words], pos_embeddings[pos]], axis=-1)

    if self.recurrent:
      bilstm = nn.Bidirectional(
        nn.RNN(nn.LSTMCell(features=self.hidden_size)),
        nn.RNN(nn.LSTMCell(features=self.hidden_size)),
      )
      # the RNN expects a batch dimension
      x = bilstm(x[None, :, :])[0]

    return x


class ActionsScorerNetwork(nn.Module):
  """
  feed-forward scorer over the encoded window around the stack/buffer boundary.
  returns separate transition, deprel and POS scores, summed per action
  outside. without POS tagging (n_pos_tags = 0) the POS scores are a
  single constant zero.
  """

  n_transitions: int
  n_deprels: int
  n_pos_tags: int = 0
  hidden_size: int = 200
  dropout_rate: float = 0.4

  @nn.compact
  def __call__(self, vectors, window, train: bool = True):
    """
    vectors: (sentence_len, input_size) - encoded tokens
    window: (WINDOW_SIZE,) - sentence positions, -1 for missing tokens
    """
    null = self.param(
      "null_vector", nn.initializers.uniform(scale=0.1), (vectors.shape[-1],)
    )

    # the null vector is appended last, so that index -1 selects it
    padded = jnp.concatenate([vectors, null[None, :]], axis=0)
    x = padded[window].reshape(-1)

    # hidden layer: affine -> relu -> dropout
    x = nn.Dense(
      features=self.hidden_size,
      kernel_init=nn.initializers.xavier_uniform(),
      bias_init=nn.initializers.uniform(),
    )(x)
    x = nn.relu(x)
    x = nn.Dropout(rate=self.dropout_rate, deterministic=not train)(x)

    transition_scores = nn.Dense(
      features=self.n_transitions,
      kernel_init=nn.initializers.xavier_uniform(),
      name="transition_scores",
    )(x)
    deprel_scores = nn.Dense(
      features=self.n_deprels,
      kernel_init=nn.initializers.xavier_uniform(),
      name="deprel_scores",
    )(x)
    if self.n_pos_tags > 0:
      pos_scores = nn.Dense(
        features=self.n_pos_tags,
        kernel_init=nn.initializers.xavier_uniform(),
        name="pos_scores",
      )(x)
    else:
      pos_scores = jnp.zeros((1,), dtype=x.dtype)

    return transition_scores, deprel_scores, pos_scores


class ParserModel:
  """
  the trainable state of a parser: its configuration, vocabulary and one
  parameter tree per group ("encoder", "scorer").
  """

  GROUPS = ("encoder", "scorer")

  def __init__(
    self,
    config: ParserConfig,
    vocab: Vocabulary,
    params: Optional[Dict[str, Any]] = None,
    seed: int = 0,
  ):
    self.config = check_parser_config(config)
    self.vocab = vocab
    self.encoder = TokenEncoder(
      n_words=len(vocab.word2id),
      n_pos=len(vocab.pos2id),
      word_embed_size=config.word_embed_size,
      pos_embed_size=config.pos_embed_size,
      hidden_size=config.encoder_hidden_size,
      recurrent=config.recurrent_encoder,
    )
    self.network = ActionsScorerNetwork(
      n_transitions=len(TRANSITION_SYSTEMS[config.transition_system].transition_types),
      n_deprels=max(1, len(vocab.deprels)),
      # indexed by vocabulary POS id, the unknown slot is never scored
      n_pos_tags=len(vocab.pos2id) if config.pos_tagging else 0,
      hidden_size=config.hidden_size,
      dropout_rate=config.dropout_rate,
    )
    if params is None:
      params = self.init_params(jax.random.PRNGKey(seed))
    self.params = params

  @property
  def encoding_size(self) -> int:
    if self.config.recurrent_encoder:
      return 2 * self.config.encoder_hidden_size
    return self.config.word_embed_size + self.config.pos_embed_size

  def init_params(self, rng) -> Dict[str, Any]:
    encoder_rng, scorer_rng = jax.random.split(rng)
    tokens = jnp.zeros((2,), dtype=jnp.int32)
    encoder_params = self.encoder.init(encoder_rng, tokens, tokens)["params"]

    vectors = jnp.zeros((2, self.encoding_size), dtype=jnp.float32)
    window = jnp.full((WINDOW_SIZE,), -1, dtype=jnp.int32)
    scorer_params = self.network.init(
      scorer_rng, vectors, window, train=False
    )["params"]

    return {"encoder": encoder_params, "scorer": scorer_params}
