import os
import logging
from collections import defaultdict
from typing import List, Optional

from dotenv import load_dotenv

from errors import GoldTreeError
from evaluation import is_punctuation
from schema import DependencyTree, Sentence, Token, Vocabulary, LEFT, RIGHT, ROOT

load_dotenv()


def build_sentence(rows, lowercase: bool = True) -> Sentence:
  """
  rows: (form, pos, fine_pos, head, deprel) with CoNLL 1-based heads, 0 = root.
  token ids are 0-based positions; a None head leaves the sentence unannotated.
  """
  tokens = []
  for i, (form, pos, fine_pos, _, _) in enumerate(rows):
    tokens.append(
      Token(
        id=i,
        form=form.lower() if lowercase else form,
        pos=pos,
        fine_pos=tuple(p for p in (fine_pos or "").split("|") if p and p != "_"),
        is_punct=is_punctuation(form),
      )
    )

  if any(row[3] is None for row in rows):
    return Sentence(tuple(tokens))

  tree = DependencyTree(t.id for t in tokens)
  for i, (_, _, _, head, deprel) in enumerate(rows):
    try:
      if head == 0:
        tree.set_root(i, deprel)
      else:
        tree.set_arc(i, head - 1, deprel)
    except ValueError as e:
      raise GoldTreeError(f"invalid head of token {i + 1}: {e}") from None
  return Sentence(tuple(tokens), tree)


def load_conll_data(
  file_name: str, lowercase: bool = True, data_path: Optional[str] = None
) -> List[Sentence]:
  """
  robust CoNLL(-U-ish) loader.
  - splits on any whitespace (tabs OR spaces)
  - flushes last sentence even if file doesn't end with a blank line
  - skips multiword tokens like 1-2, empty nodes like 1.1 and comments
  """

  logger = logging.getLogger(__name__)

  data_path = data_path or os.getenv("DATA_PATH", "./data")
  full_path = os.path.join(data_path, file_name)

  examples: List[Sentence] = []
  rows: list = []

  def flush():
    nonlocal rows
    if rows:
      examples.append(build_sentence(rows, lowercase=lowercase))
      rows = []

  with open(full_path, "r", encoding="utf-8") as f:
    for line in f:
      line = line.strip()
      if not line:
        flush()
        continue
      if line.startswith("#"):
        continue

      sp = line.split()  # whitespace-agnostic
      if len(sp) < 8:
        flush()
        continue

      tok_id = sp[0]
      if "-" in tok_id or "." in tok_id:
        continue

      upos, xpos = sp[3], sp[4]
      pos = upos if upos != "_" else xpos
      head = int(sp[6]) if sp[6] != "_" else None
      rows.append((sp[1], pos, xpos, head, sp[7]))

  flush()
  logger.info("loaded %d sentences from %s", len(examples), full_path)
  return examples


def build_vocab(train_data: List[Sentence]) -> Vocabulary:
  """
  builds vocabularies from annotated sentences.
  IDs are contiguous and stable (sorted), special tokens come last.
  """
  # 1) deprels, grouped by direction and by dependent POS
  deprels = set()
  by_direction = defaultdict(set)
  by_pos = defaultdict(set)
  for sentence in train_data:
    tree = sentence.gold_tree
    if tree is None:
      continue
    for token in sentence.tokens:
      if not tree.has_head(token.id) or tree.deprel(token.id) is None:
        continue
      deprel = tree.deprel(token.id)
      governor = tree.governor(token.id)
      direction = ROOT if governor is None else (LEFT if token.id < governor else RIGHT)
      deprels.add(deprel)
      by_direction[direction].add(deprel)
      by_pos[(token.pos, direction)].add(deprel)

  sorted_deprels = tuple(sorted(deprels))
  deprel2id = {d: i for i, d in enumerate(sorted_deprels)}

  # 2) POS
  unique_pos = sorted(set(f"<p>:{t.pos}" for s in train_data for t in s.tokens))
  pos2id = {p: i for i, p in enumerate(unique_pos)}
  pos2id["<p>:<UNK>"] = len(pos2id)

  # 3) words
  unique_words = sorted(set(t.form for s in train_data for t in s.tokens))
  word2id = {w: i for i, w in enumerate(unique_words)}
  word2id["<UNK>"] = len(word2id)

  return Vocabulary(
    word2id=word2id,
    pos2id=pos2id,
    deprels=sorted_deprels,
    deprel2id=deprel2id,
    left_deprels=tuple(sorted(by_direction[LEFT])),
    right_deprels=tuple(sorted(by_direction[RIGHT])),
    root_deprels=tuple(sorted(by_direction[ROOT])),
    pos_deprels={key: tuple(sorted(value)) for key, value in by_pos.items()},
  )
