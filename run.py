import os
import logging

from dotenv import load_dotenv

from config import (
  create_config,
  decoding_config_from_env,
  parser_options_from_env,
  trainer_config_from_env,
)
from data_loader import load_conll_data, build_vocab
from evaluation import Validator
from neural_parser import NeuralParser
from parser_model import ParserModel
from trainer import Trainer
from utils import load_model

logger = logging.getLogger(__name__)


def main():
  logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
  )

  load_dotenv()
  data_path = os.getenv("DATA_PATH", "./data")
  output_path = os.getenv("MODEL_PATH", "results/best_model.pkl")
  logger.info("loading data from %s...", data_path)

  train_sentences = load_conll_data("train.conll")
  dev_sentences = load_conll_data("dev.conll")
  test_sentences = load_conll_data("test.conll")

  logger.info(
    "train sentences: %d | dev: %d | test: %d",
    len(train_sentences),
    len(dev_sentences),
    len(test_sentences),
  )

  vocab = build_vocab(train_sentences)
  config = create_config(vocab, **parser_options_from_env())
  decoding = decoding_config_from_env()
  trainer_config = trainer_config_from_env()

  logger.info(
    "%s parser | %d words, %d POS, %d deprels | loss: %s | accumulator: %s",
    config.transition_system,
    len(vocab.word2id),
    len(vocab.pos2id),
    len(vocab.deprels),
    trainer_config.loss,
    config.accumulator,
  )

  model = ParserModel(config, vocab, seed=trainer_config.seed)

  with NeuralParser(model, decoding) as parser:
    trainer = Trainer(
      parser,
      trainer_config,
      validator=Validator(parser, dev_sentences),
      model_path=output_path,
    )
    best_uas = trainer.train(train_sentences)

  logger.info("restoring best model for final testing...")
  with NeuralParser(load_model(output_path), decoding) as parser:
    test_stats = Validator(parser, test_sentences).evaluate()

  logger.info("")
  logger.info("=" * 60)
  logger.info("training summary:")
  logger.info("  best dev UAS (no punctuation): %.2f%%", best_uas * 100.0)
  logger.info("  test:\n%s", test_stats)
  logger.info("  lost sentences: %d", trainer.lost_sentences)
  logger.info("=" * 60)


if __name__ == "__main__":
  main()
