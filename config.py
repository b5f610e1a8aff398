import os
from typing import NamedTuple

from dotenv import load_dotenv

from errors import ConfigurationError
from schema import Vocabulary

# the transition systems here need exactly 2n steps for n tokens,
# decoding gives up after 4n + 1
MAX_STEPS_PER_TOKEN = 4
WINDOW_SIZE = 18

TRANSITION_SYSTEMS = ("arc_standard", "arc_hybrid")
ACTIVATIONS = ("none", "softmax")
ACCUMULATORS = ("sum", "average", "log_sum")
LOSS_CRITERIA = ("softmax", "hinge")


class ParserConfig(NamedTuple):
  """settings of a parser model, fixed at construction and saved with it."""

  transition_system: str = "arc_standard"
  labeled: bool = True
  restrict_deprels_by_pos: bool = False
  # joint POS tagging: arc actions also assign the POS of their dependent
  pos_tagging: bool = False

  word_embed_size: int = 50
  pos_embed_size: int = 25
  encoder_hidden_size: int = 100
  recurrent_encoder: bool = True
  hidden_size: int = 200
  dropout_rate: float = 0.4
  word_dropout: float = 0.25
  pos_dropout: float = 0.15

  activation: str = "softmax"
  accumulator: str = "log_sum"

  # special IDs mapped from Vocabulary
  UNK_ID: int = 0
  P_UNK_ID: int = 0


class DecodingConfig(NamedTuple):
  beam_size: int = 1
  max_parallel_threads: int = 1


class TrainerConfig(NamedTuple):
  epochs: int = 10
  batch_size: int = 1
  min_relevant_errors: int = 1
  loss: str = "softmax"
  hinge_margin: float = 1.0
  learning_rate: float = 0.001
  learning_rate_decay: float = 0.0
  skip_non_projective: bool = True
  seed: int = 743


def _check_choice(name: str, value: str, choices) -> None:
  if value not in choices:
    raise ConfigurationError(f"invalid {name} {value!r}, expected one of {choices}")


def _check_positive(name: str, value) -> None:
  if not isinstance(value, int) or isinstance(value, bool) or value < 1:
    raise ConfigurationError(f"{name} must be a positive integer, got {value!r}")


def _check_rate(name: str, value: float) -> None:
  if not 0.0 <= value < 1.0:
    raise ConfigurationError(f"{name} must be in [0, 1), got {value!r}")


def check_parser_config(config: ParserConfig) -> ParserConfig:
  _check_choice("transition system", config.transition_system, TRANSITION_SYSTEMS)
  _check_choice("activation", config.activation, ACTIVATIONS)
  _check_choice("accumulator", config.accumulator, ACCUMULATORS)
  sizes = ("word_embed_size", "pos_embed_size", "encoder_hidden_size", "hidden_size")
  for name in sizes:
    _check_positive(name, getattr(config, name))
  for name in ("dropout_rate", "word_dropout", "pos_dropout"):
    _check_rate(name, getattr(config, name))

  # log-sum needs scores in (0, 1]
  if config.accumulator == "log_sum" and config.activation != "softmax":
    raise ConfigurationError("the log_sum accumulator requires the softmax activation")
  return config


def check_decoding_config(config: DecodingConfig) -> DecodingConfig:
  _check_positive("beam size", config.beam_size)
  _check_positive("max parallel threads", config.max_parallel_threads)
  return config


def check_trainer_config(config: TrainerConfig) -> TrainerConfig:
  _check_positive("epochs", config.epochs)
  _check_positive("batch size", config.batch_size)
  _check_positive("min relevant errors", config.min_relevant_errors)
  _check_choice("loss criterion", config.loss, LOSS_CRITERIA)
  if config.hinge_margin <= 0:
    raise ConfigurationError(f"hinge margin must be > 0, got {config.hinge_margin!r}")
  if config.learning_rate <= 0:
    raise ConfigurationError(f"learning rate must be > 0, got {config.learning_rate!r}")
  if config.learning_rate_decay < 0:
    raise ConfigurationError("learning rate decay must be >= 0")
  return config


def create_config(vocab: Vocabulary, **options) -> ParserConfig:
  """factory function to populate IDs based on the actual vocab with validation."""
  # validate required tokens exist
  if "<UNK>" not in vocab.word2id:
    raise ConfigurationError("missing required word token in vocabulary: <UNK>")
  if "<p>:<UNK>" not in vocab.pos2id:
    raise ConfigurationError("missing required POS token in vocabulary: <p>:<UNK>")
  if options.get("labeled", True) and not vocab.deprels:
    raise ConfigurationError(
      "a labeled parser needs at least one deprel in the vocabulary"
    )
  if options.get("pos_tagging", False) and not vocab.pos_tags:
    raise ConfigurationError("POS tagging needs at least one POS tag in the vocabulary")

  unknown = set(options) - (set(ParserConfig._fields) - {"UNK_ID", "P_UNK_ID"})
  if unknown:
    raise ConfigurationError(f"unknown parser options: {sorted(unknown)}")

  return check_parser_config(
    ParserConfig(
      UNK_ID=vocab.word2id["<UNK>"],
      P_UNK_ID=vocab.pos2id["<p>:<UNK>"],
      **options,
    )
  )


def _env_bool(name: str, default: bool) -> bool:
  value = os.getenv(name)
  if value is None:
    return default
  return value.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: int) -> int:
  value = os.getenv(name)
  if value is None:
    return default
  try:
    return int(value)
  except ValueError:
    raise ConfigurationError(f"{name} must be an integer, got {value!r}") from None


def _env_float(name: str, default: float) -> float:
  value = os.getenv(name)
  if value is None:
    return default
  try:
    return float(value)
  except ValueError:
    raise ConfigurationError(f"{name} must be a number, got {value!r}") from None


def parser_options_from_env() -> dict:
  """options for create_config() overridden through the environment."""
  load_dotenv()
  defaults = ParserConfig()
  return {
    "transition_system": os.getenv("TRANSITION_SYSTEM", defaults.transition_system),
    "activation": os.getenv("ACTIVATION", defaults.activation),
    "accumulator": os.getenv("ACCUMULATOR", defaults.accumulator),
    "labeled": _env_bool("LABELED", defaults.labeled),
    "pos_tagging": _env_bool("POS_TAGGING", defaults.pos_tagging),
  }


def decoding_config_from_env() -> DecodingConfig:
  load_dotenv()
  defaults = DecodingConfig()
  return check_decoding_config(
    DecodingConfig(
      beam_size=_env_int("BEAM_SIZE", defaults.beam_size),
      max_parallel_threads=_env_int(
        "MAX_PARALLEL_THREADS", defaults.max_parallel_threads
      ),
    )
  )


def trainer_config_from_env() -> TrainerConfig:
  load_dotenv()
  defaults = TrainerConfig()
  return check_trainer_config(
    TrainerConfig(
      epochs=_env_int("EPOCHS", defaults.epochs),
      batch_size=_env_int("BATCH_SIZE", defaults.batch_size),
      min_relevant_errors=_env_int("MIN_RELEVANT_ERRORS", defaults.min_relevant_errors),
      loss=os.getenv("LOSS", defaults.loss),
      hinge_margin=_env_float("HINGE_MARGIN", defaults.hinge_margin),
      learning_rate=_env_float("LEARNING_RATE", defaults.learning_rate),
      learning_rate_decay=_env_float(
        "LEARNING_RATE_DECAY", defaults.learning_rate_decay
      ),
      skip_non_projective=_env_bool(
        "SKIP_NON_PROJECTIVE", defaults.skip_non_projective
      ),
      seed=_env_int("SEED", defaults.seed),
    )
  )
