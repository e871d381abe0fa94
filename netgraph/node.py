# netgraph/node.py
from dataclasses import asdict, dataclass
from typing import Optional, Tuple

INPUT = 'input'
CONV = 'conv'
BN = 'bn'
ACTIVATION = 'activation'
FC = 'fc'
OUTPUT = 'output'
CONCAT = 'concat'

# elementwise merges over same-shaped tensors
MERGE_OPS = ('add', 'subtract', 'product', 'average', 'max')
VERTEX_OPS = MERGE_OPS + (CONCAT,)

PADDING_MODES = ('same', 'valid', 'truncate')
ACTIVATION_FNS = ('relu', 'tanh', 'sigmoid', 'leaky_relu', 'softmax', 'identity')
LOSSES = ('mcxent', 'mse', 'xent')


def _pair(value, what):
    if isinstance(value, int):
        value = (value, value)
    value = tuple(value)
    if len(value) != 2 or any(not isinstance(v, int) or v < 1 for v in value):
        raise ValueError(f"{what} must be two positive ints, got {value!r}")
    return value


def _positive(value, what):
    if not isinstance(value, int) or value < 1:
        raise ValueError(f"{what} must be a positive int, got {value!r}")


def _one_of(value, choices, what):
    if value not in choices:
        raise ValueError(f"Unknown {what} {value!r}; expected one of {choices}")


@dataclass(frozen=True)
class InputConfig:
    op_type = INPUT


@dataclass(frozen=True)
class ConvConfig:
    in_channels: int
    out_channels: int = 256
    kernel: Tuple[int, int] = (3, 3)
    stride: Tuple[int, int] = (1, 1)
    padding: str = 'same'
    bias: bool = False

    op_type = CONV

    def __post_init__(self):
        _positive(self.in_channels, "in_channels")
        _positive(self.out_channels, "out_channels")
        object.__setattr__(self, 'kernel', _pair(self.kernel, "kernel"))
        object.__setattr__(self, 'stride', _pair(self.stride, "stride"))
        _one_of(self.padding, PADDING_MODES, "padding mode")
        if (self.padding == 'same' and self.stride != (1, 1)
                and any(k % 2 == 0 for k in self.kernel)):
            raise ValueError(f"'same' padding with stride {self.stride} needs odd kernels, got {self.kernel}")


@dataclass(frozen=True)
class BatchNormConfig:
    num_features: int

    op_type = BN

    def __post_init__(self):
        _positive(self.num_features, "num_features")


@dataclass(frozen=True)
class ActivationConfig:
    fn: str = 'relu'

    op_type = ACTIVATION

    def __post_init__(self):
        _one_of(self.fn, ACTIVATION_FNS, "activation")


@dataclass(frozen=True)
class DenseConfig:
    in_features: int
    out_features: int
    activation: str = 'relu'

    op_type = FC

    def __post_init__(self):
        _positive(self.in_features, "in_features")
        _positive(self.out_features, "out_features")
        _one_of(self.activation, ACTIVATION_FNS, "activation")


@dataclass(frozen=True)
class OutputConfig:
    """Terminal dense layer; `loss` is applied by the engine during training."""
    in_features: int
    out_features: int
    activation: str = 'softmax'
    loss: str = 'mcxent'

    op_type = OUTPUT

    def __post_init__(self):
        _positive(self.in_features, "in_features")
        _positive(self.out_features, "out_features")
        _one_of(self.activation, ACTIVATION_FNS, "activation")
        _one_of(self.loss, LOSSES, "loss")


@dataclass(frozen=True)
class MergeConfig:
    op: str = 'add'

    def __post_init__(self):
        _one_of(self.op, VERTEX_OPS, "merge op")

    @property
    def op_type(self):
        return self.op


@dataclass(frozen=True)
class CnnToFeedForward:
    """Flattens a (channels, height, width) activation into one feature vector."""
    height: int
    width: int
    channels: int

    def __post_init__(self):
        _positive(self.height, "height")
        _positive(self.width, "width")
        _positive(self.channels, "channels")

    @property
    def size(self):
        return self.height * self.width * self.channels


@dataclass(frozen=True)
class InputType:
    """Convolutional input of shape (channels, height, width)."""
    height: int = 19
    width: int = 19
    channels: int = 11

    def __post_init__(self):
        _positive(self.height, "height")
        _positive(self.width, "width")
        _positive(self.channels, "channels")

    @property
    def shape(self):
        return (self.channels, self.height, self.width)


@dataclass(frozen=True)
class Node:
    """
    id           : str, unique within the graph
    config       : one of the *Config records above; decides op_type
    parents      : tuple[str], producer ids in wiring order
    index        : insertion order assigned by the GraphContext
    preprocessor : optional layout adaptation applied to the node's input
    """
    id: str
    config: object
    parents: Tuple[str, ...] = ()
    index: int = 0
    preprocessor: Optional[CnnToFeedForward] = None

    @property
    def op_type(self):
        return self.config.op_type

    @property
    def params(self):
        return asdict(self.config)

    def is_merge(self):
        return self.op_type in VERTEX_OPS
