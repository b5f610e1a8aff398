import os
import pickle
import logging

import jax

from config import ParserConfig
from parser_model import ParserModel

logger = logging.getLogger(__name__)


def save_model(model: ParserModel, path: str) -> None:
  """saves config, vocabulary and parameters to a single file."""
  directory = os.path.dirname(path)
  if directory:
    os.makedirs(directory, exist_ok=True)

  blob = {
    "config": model.config._asdict(),
    "vocab": model.vocab,
    "params": jax.device_get(model.params),
  }
  with open(path, "wb") as f:
    pickle.dump(blob, f)
  logger.info("model saved to %s", path)


def load_model(path: str) -> ParserModel:
  """loads a model saved by save_model()."""
  with open(path, "rb") as f:
    blob = pickle.load(f)
  logger.info("model loaded from %s", path)
  config = ParserConfig(**blob["config"])
  return ParserModel(config, blob["vocab"], params=blob["params"])
