class ConfigurationError(ValueError):
  """invalid parser/decoder/trainer settings or missing required annotation."""


class GoldTreeError(ValueError):
  """a gold dependency tree that is not a well-formed tree."""


class OracleError(RuntimeError):
  """the gold derivation is no longer reachable from the current state."""


class TransitionSystemError(RuntimeError):
  """
  broken invariant of a transition system (no legal action in a non-terminal
  state, too many steps, invalid output tree). never expected on legal input.
  """
