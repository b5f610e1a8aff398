from neural_parser import NeuralParser
from utils import load_model, save_model
from conftest import fox_sentence, same_params


def test_save_and_load(small_model, tmp_path):
  path = tmp_path / "nested" / "model.pkl"
  save_model(small_model, str(path))

  loaded = load_model(str(path))

  assert loaded.config == small_model.config
  assert loaded.vocab == small_model.vocab
  assert same_params(loaded.params, small_model.params)
  with NeuralParser(small_model) as original, NeuralParser(loaded) as restored:
    assert restored.parse(fox_sentence()) == original.parse(fox_sentence())
