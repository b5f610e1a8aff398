import logging

import jax
import jax.numpy as jnp
import optax

from parser_model import ParserModel

logger = logging.getLogger(__name__)


class GradientAccumulator:
  """
  gradients of one parameter group of a ParserModel, summed across
  sentences and applied with an optax Adam step on update().
  """

  def __init__(
    self,
    model: ParserModel,
    group: str,
    learning_rate: float = 0.001,
    decay: float = 0.0,
  ):
    if group not in model.params:
      raise KeyError(f"unknown parameter group: {group}")
    self.model = model
    self.group = group
    self.learning_rate = learning_rate
    self.decay = decay
    self.epoch = 0

    self.tx = optax.inject_hyperparams(optax.adam)(learning_rate=learning_rate)
    self.opt_state = self.tx.init(model.params[group])
    self._grads = None
    self._count = 0

  @property
  def has_pending(self) -> bool:
    return self._count > 0

  def accumulate(self, grads) -> None:
    if self._grads is None:
      self._grads = grads
    else:
      self._grads = jax.tree_util.tree_map(lambda a, b: a + b, self._grads, grads)
    self._count += 1

  def update(self) -> bool:
    """applies the averaged pending gradients. no-op without pending ones."""
    if not self.has_pending:
      return False

    params = self.model.params[self.group]
    grads = jax.tree_util.tree_map(lambda g: g / self._count, self._grads)
    updates, self.opt_state = self.tx.update(grads, self.opt_state, params)
    self.model.params[self.group] = optax.apply_updates(params, updates)

    logger.debug("%s: applied %d accumulated gradients", self.group, self._count)
    self.reset()
    return True

  def reset(self) -> None:
    """discards the pending gradients."""
    self._grads = None
    self._count = 0

  def new_epoch(self) -> None:
    """called at the start of each epoch, decays the learning rate."""
    self.epoch += 1
    self.reset()
    if self.decay > 0:
      rate = self.learning_rate / (1.0 + self.decay * (self.epoch - 1))
      self.opt_state.hyperparams["learning_rate"] = jnp.asarray(rate)
