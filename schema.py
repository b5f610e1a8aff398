from collections import defaultdict
from typing import NamedTuple, Dict, Iterable, List, Optional, Tuple

LEFT = "left"
RIGHT = "right"
ROOT = "root"


class Token(NamedTuple):
  """a single sentence element. ids increase along the sentence."""

  id: int
  form: str
  pos: Optional[str] = None
  fine_pos: Tuple[str, ...] = ()
  is_punct: bool = False


class Arc(NamedTuple):
  dependent: int
  governor: int
  deprel: Optional[str] = None


class DependencyTree:
  """
  governor + deprel per token id, filled while decoding.
  a root token has a head entry whose governor is None.
  pos_tags holds the POS predicted along with the attachments, when tagging.
  """

  def __init__(self, token_ids: Iterable[int]):
    self.token_ids: Tuple[int, ...] = tuple(token_ids)
    self._ids = frozenset(self.token_ids)
    self.heads: Dict[int, Optional[int]] = {}
    self.deprels: Dict[int, Optional[str]] = {}
    self.pos_tags: Dict[int, str] = {}
    self._dependents: Dict[int, List[int]] = defaultdict(list)

  def _check_dependent(self, dependent: int) -> None:
    if dependent not in self._ids:
      raise ValueError(f"unknown token id: {dependent}")
    if dependent in self.heads:
      raise ValueError(f"the head of token {dependent} is already set")

  def set_arc(
    self, dependent: int, governor: int, deprel: Optional[str] = None
  ) -> None:
    self._check_dependent(dependent)
    if governor not in self._ids:
      raise ValueError(f"unknown governor id: {governor}")
    if governor == dependent:
      raise ValueError(f"self loop on token {dependent}")

    self.heads[dependent] = governor
    self.deprels[dependent] = deprel
    self._dependents[governor].append(dependent)

  def set_root(self, dependent: int, deprel: Optional[str] = None) -> None:
    self._check_dependent(dependent)
    self.heads[dependent] = None
    self.deprels[dependent] = deprel

  def set_pos(self, token_id: int, pos: str) -> None:
    if token_id not in self._ids:
      raise ValueError(f"unknown token id: {token_id}")
    self.pos_tags[token_id] = pos

  def has_head(self, token_id: int) -> bool:
    return token_id in self.heads

  def governor(self, token_id: int) -> Optional[int]:
    return self.heads.get(token_id)

  def deprel(self, token_id: int) -> Optional[str]:
    return self.deprels.get(token_id)

  def is_root(self, token_id: int) -> bool:
    return token_id in self.heads and self.heads[token_id] is None

  def dependents(self, governor: int) -> List[int]:
    return sorted(self._dependents.get(governor, ()))

  def left_dependents(self, governor: int) -> List[int]:
    """ascending, so the leftmost comes first."""
    return [d for d in self.dependents(governor) if d < governor]

  def right_dependents(self, governor: int) -> List[int]:
    """descending, so the rightmost comes first."""
    return [d for d in reversed(self.dependents(governor)) if d > governor]

  @property
  def arcs(self) -> List[Arc]:
    return [
      Arc(d, g, self.deprels[d]) for d, g in sorted(self.heads.items()) if g is not None
    ]

  @property
  def roots(self) -> List[int]:
    return sorted(d for d, g in self.heads.items() if g is None)

  def is_complete(self) -> bool:
    return len(self.heads) == len(self._ids)

  def has_cycle(self) -> bool:
    for start in self.heads:
      seen = {start}
      node = self.heads[start]
      while node is not None:
        if node in seen:
          return True
        seen.add(node)
        node = self.heads.get(node)
    return False

  def dominates(self, ancestor: int, token_id: int) -> bool:
    node: Optional[int] = token_id
    steps = 0
    while node is not None and steps <= len(self.token_ids):
      if node == ancestor:
        return True
      node = self.heads.get(node)
      steps += 1
    return False

  def is_projective(self) -> bool:
    for arc in self.arcs:
      low, high = sorted((arc.dependent, arc.governor))
      for token_id in self.token_ids:
        if low < token_id < high and not self.dominates(arc.governor, token_id):
          return False
    return True

  def violations(self) -> List[str]:
    """problems preventing this from being a complete dependency tree."""
    problems = []
    missing = [i for i in self.token_ids if i not in self.heads]
    if missing:
      problems.append(f"tokens without a head: {missing}")
    if self.heads and not self.roots:
      problems.append("no root token")
    if len(self.roots) > 1:
      problems.append(f"multiple root tokens: {self.roots}")
    if self.has_cycle():
      problems.append("the graph contains a cycle")
    return problems

  def copy(self) -> "DependencyTree":
    tree = DependencyTree(self.token_ids)
    tree.heads = dict(self.heads)
    tree.deprels = dict(self.deprels)
    tree.pos_tags = dict(self.pos_tags)
    for governor, dependents in self._dependents.items():
      tree._dependents[governor] = list(dependents)
    return tree

  def __eq__(self, other) -> bool:
    if not isinstance(other, DependencyTree):
      return NotImplemented
    return (
      self.token_ids == other.token_ids
      and self.heads == other.heads
      and self.deprels == other.deprels
      and self.pos_tags == other.pos_tags
    )

  def __repr__(self) -> str:
    return f"DependencyTree(heads={self.heads}, deprels={self.deprels})"


class Sentence(NamedTuple):
  """an ordered list of tokens, with the gold tree when annotated."""

  tokens: Tuple[Token, ...]
  gold_tree: Optional[DependencyTree] = None

  @property
  def ids(self) -> Tuple[int, ...]:
    return tuple(t.id for t in self.tokens)

  def __len__(self) -> int:
    return len(self.tokens)


class Vocabulary(NamedTuple):
  """
  id <-> label mappings built once per corpus.
  deprels are grouped by attachment direction (left/right/root) and by
  (dependent POS, direction) for the POS-conditioned compatibility table.
  """

  word2id: Dict[str, int]
  pos2id: Dict[str, int]
  deprels: Tuple[str, ...]
  deprel2id: Dict[str, int]
  left_deprels: Tuple[str, ...]
  right_deprels: Tuple[str, ...]
  root_deprels: Tuple[str, ...]
  pos_deprels: Dict[Tuple[str, str], Tuple[str, ...]]

  def word_id(self, form: str) -> int:
    return self.word2id.get(form, self.word2id["<UNK>"])

  def pos_id(self, pos: Optional[str]) -> int:
    return self.pos2id.get(f"<p>:{pos}", self.pos2id["<p>:<UNK>"])

  @property
  def pos_tags(self) -> Tuple[str, ...]:
    """the POS tags seen in training, in id order."""
    ordered = sorted(self.pos2id, key=self.pos2id.get)
    return tuple(p[len("<p>:"):] for p in ordered if p != "<p>:<UNK>")

  def deprels_for(self, direction: str, pos: Optional[str] = None) -> Tuple[str, ...]:
    """
    labels compatible with an attachment direction, optionally restricted to
    the ones seen with a dependent POS. falls back to wider groups when empty.
    """
    by_direction = {
      LEFT: self.left_deprels,
      RIGHT: self.right_deprels,
      ROOT: self.root_deprels,
    }[direction]

    if pos is not None:
      restricted = self.pos_deprels.get((pos, direction), ())
      if restricted:
        return restricted

    return by_direction or self.deprels
