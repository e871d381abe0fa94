# netgraph/config.py
from dataclasses import dataclass
from typing import Optional, Tuple

from netgraph.node import PADDING_MODES, InputType

UPDATERS = ('sgd', 'nesterovs', 'adam')
WEIGHT_INITS = ('lecun_normal', 'xavier', 'relu')


@dataclass(frozen=True)
class AlphaGoZeroConfig:
    """
    Topology of the network. board_size, input_planes and channels must match
    what the board encoder emits (input_planes x board_size x board_size).
    """
    board_size: int = 19
    input_planes: int = 11
    channels: int = 256
    num_blocks: int = 19
    residual: bool = True     # plain convolutional tower when False
    kernel: Tuple[int, int] = (3, 3)
    stride: Tuple[int, int] = (1, 1)
    padding: str = 'same'
    value_hidden: int = 256

    def __post_init__(self):
        for name in ('board_size', 'input_planes', 'channels', 'value_hidden'):
            value = getattr(self, name)
            if not isinstance(value, int) or value < 1:
                raise ValueError(f"{name} must be a positive int, got {value!r}")
        if not isinstance(self.num_blocks, int) or self.num_blocks < 0:
            raise ValueError(f"num_blocks must be >= 0, got {self.num_blocks!r}")
        if self.padding not in PADDING_MODES:
            raise ValueError(f"Unknown padding mode {self.padding!r}")

    @property
    def input_type(self):
        return InputType(self.board_size, self.board_size, self.input_planes)

    @property
    def policy_size(self):
        # every point plus pass
        return self.board_size * self.board_size + 1


@dataclass(frozen=True)
class EngineConfig:
    updater: str = 'sgd'
    learning_rate: float = 1e-3
    momentum: float = 0.0
    weight_init: str = 'lecun_normal'
    seed: Optional[int] = None

    def __post_init__(self):
        if self.updater not in UPDATERS:
            raise ValueError(f"Unknown updater {self.updater!r}; expected one of {UPDATERS}")
        if self.weight_init not in WEIGHT_INITS:
            raise ValueError(f"Unknown weight init {self.weight_init!r}; expected one of {WEIGHT_INITS}")
        if self.learning_rate <= 0:
            raise ValueError("learning_rate must be positive")
        if self.momentum < 0:
            raise ValueError("momentum must be >= 0")


DEFAULT_CONFIG = AlphaGoZeroConfig()
DEFAULT_ENGINE_CONFIG = EngineConfig()
