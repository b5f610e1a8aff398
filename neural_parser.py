from config import DecodingConfig
from decoder import build_decoder
from engine import build_transition_system
from parser_model import ParserModel
from schema import DependencyTree, Sentence
from scorer import ActionsScorer


class NeuralParser:
  """
  a transition-based parser: transition system + actions scorer + decoder,
  all built from one ParserModel. owns the decoder's worker pool, so close
  it (or use it as a context manager) when beam decoding.
  """

  def __init__(self, model: ParserModel, decoding: DecodingConfig = DecodingConfig()):
    self.model = model
    self.decoding = decoding
    self.transition_system = build_transition_system(model.config, model.vocab)
    self.scorer = ActionsScorer(model)
    self.decoder = build_decoder(
      self.transition_system, self.scorer, model.config.accumulator, decoding
    )

  def parse(self, sentence: Sentence) -> DependencyTree:
    return self.decoder.decode(sentence)

  def close(self) -> None:
    self.decoder.close()

  def __enter__(self):
    return self

  def __exit__(self, *exc):
    self.close()
    return False
