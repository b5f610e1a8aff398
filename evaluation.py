import logging
import re
from typing import NamedTuple, List, Sequence

from errors import ConfigurationError
from schema import DependencyTree, Sentence

logger = logging.getLogger(__name__)

PUNCTUATION_REGEX = re.compile(r"^[-!\"#%&'()*,./:;?@\[\]_{}]+$")


def is_punctuation(form: str) -> bool:
  return PUNCTUATION_REGEX.match(form) is not None


class StatMetric(NamedTuple):
  count: int
  total: int

  @property
  def perc(self) -> float:
    return self.count / self.total if self.total else 0.0

  @property
  def perc100(self) -> float:
    return 100.0 * self.perc


class BaseStatistics(NamedTuple):
  """
  las/uas: labeled/unlabeled attachment scores
  ds: deprel accuracy
  slas/suas: sentences entirely correct (labeled/unlabeled)
  pos: accuracy of the predicted POS tags, over the tagged sentences only
  """

  las: StatMetric
  uas: StatMetric
  ds: StatMetric
  slas: StatMetric
  suas: StatMetric
  pos: StatMetric = StatMetric(0, 0)

  def __str__(self) -> str:
    text = (
      f"LAS {self.las.perc100:.2f}% | UAS {self.uas.perc100:.2f}%"
      f" | DS {self.ds.perc100:.2f}%"
      f" | SLAS {self.slas.perc100:.2f}% | SUAS {self.suas.perc100:.2f}%"
    )
    if self.pos.total:
      text += f" | POS {self.pos.perc100:.2f}%"
    return text


class Statistics(NamedTuple):
  all_tokens: BaseStatistics
  no_punctuation: BaseStatistics

  def __str__(self) -> str:
    return f"all tokens: {self.all_tokens}\nno punctuation: {self.no_punctuation}"


class MetricsCounter:
  def __init__(self):
    self.tokens = 0
    self.labeled = 0
    self.unlabeled = 0
    self.deprels = 0
    self.sentences = 0
    self.labeled_sentences = 0
    self.unlabeled_sentences = 0
    self.tagged = 0
    self.pos = 0

  def statistics(self) -> BaseStatistics:
    return BaseStatistics(
      las=StatMetric(self.labeled, self.tokens),
      uas=StatMetric(self.unlabeled, self.tokens),
      ds=StatMetric(self.deprels, self.tokens),
      slas=StatMetric(self.labeled_sentences, self.sentences),
      suas=StatMetric(self.unlabeled_sentences, self.sentences),
      pos=StatMetric(self.pos, self.tagged),
    )


def compute_statistics(
  sentences: Sequence[Sentence], parsed_trees: Sequence[DependencyTree]
) -> Statistics:
  """attachment statistics of parsed trees against the gold ones."""
  if len(sentences) != len(parsed_trees):
    raise ValueError("sentences and parsed trees differ in number")

  counter, counter_no_punct = MetricsCounter(), MetricsCounter()

  for sentence, parsed in zip(sentences, parsed_trees):
    gold = sentence.gold_tree
    sentence_labeled = sentence_unlabeled = True
    sentence_labeled_np = sentence_unlabeled_np = True
    tagged = bool(parsed.pos_tags)

    for token in sentence.tokens:
      head_ok = parsed.has_head(token.id) and (
        parsed.governor(token.id) == gold.governor(token.id)
      )
      deprel_ok = parsed.deprel(token.id) == gold.deprel(token.id)
      counters = [counter] if token.is_punct else [counter, counter_no_punct]

      for c in counters:
        c.tokens += 1
        c.unlabeled += head_ok
        c.labeled += head_ok and deprel_ok
        c.deprels += deprel_ok
        if tagged:
          c.tagged += 1
          c.pos += parsed.pos_tags.get(token.id) == token.pos

      sentence_unlabeled &= head_ok
      sentence_labeled &= head_ok and deprel_ok
      if not token.is_punct:
        sentence_unlabeled_np &= head_ok
        sentence_labeled_np &= head_ok and deprel_ok

    counter.sentences += 1
    counter.unlabeled_sentences += sentence_unlabeled
    counter.labeled_sentences += sentence_labeled
    counter_no_punct.sentences += 1
    counter_no_punct.unlabeled_sentences += sentence_unlabeled_np
    counter_no_punct.labeled_sentences += sentence_labeled_np

  return Statistics(counter.statistics(), counter_no_punct.statistics())


class Validator:
  """parses held-out sentences in inference mode and scores them."""

  def __init__(self, parser, sentences: List[Sentence]):
    if any(s.gold_tree is None for s in sentences):
      raise ConfigurationError("every validation sentence needs a gold dependency tree")
    self.parser = parser
    self.sentences = sentences

  def evaluate(self) -> Statistics:
    logger.info("parsing %d validation sentences", len(self.sentences))
    parsed = [self.parser.parse(s) for s in self.sentences]
    return compute_statistics(self.sentences, parsed)
