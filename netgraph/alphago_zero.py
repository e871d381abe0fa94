# netgraph/alphago_zero.py
from netgraph.blocks import conv_norm_block, convolutional_tower, residual_block, residual_tower
from netgraph.config import DEFAULT_CONFIG, AlphaGoZeroConfig
from netgraph.graph import ComputationGraph, GraphContext
from netgraph.heads import policy_head, value_head
from utils.logger import get_logger

logger = get_logger("alphago_zero", logfile="logs/alphago_zero.log")

INPUT_NAME = "input"
STEM_LABEL = "stem"


class AlphaGoZeroBuilder:
    """
    Owns the GraphContext for one network definition. Each add_* call returns
    the id of the last node it created; pass it to the next call.

        builder = AlphaGoZeroBuilder()
        builder.add_inputs("input")
        tower = builder.add_residual_tower(19, builder.add_conv_batch_norm_block("stem", "input", 11))
        builder.add_outputs([builder.add_policy_head(tower), builder.add_value_head(tower)])
        graph = builder.build_and_return()
    """

    def __init__(self, config: AlphaGoZeroConfig = None):
        self.config = config or DEFAULT_CONFIG
        self.ctx = GraphContext(input_types=[self.config.input_type])

    def add_inputs(self, *names):
        return self.ctx.add_inputs(*names)

    def add_outputs(self, names):
        self.ctx.set_outputs(list(names))

    def build_and_return(self) -> ComputationGraph:
        return self.ctx.build()

    def _tower_args(self, kernel, stride, padding):
        cfg = self.config
        return (cfg.kernel if kernel is None else kernel,
                cfg.stride if stride is None else stride,
                cfg.padding if padding is None else padding)

    def add_conv_batch_norm_block(self, block_name, in_name, n_in, use_activation=True,
                                  kernel=None, stride=None, padding=None):
        kernel, stride, padding = self._tower_args(kernel, stride, padding)
        return conv_norm_block(self.ctx, block_name, in_name, n_in, self.config.channels,
                               kernel, stride, padding, use_activation=use_activation)

    def add_residual_block(self, block_number, in_name, kernel=None, stride=None, padding=None):
        kernel, stride, padding = self._tower_args(kernel, stride, padding)
        return residual_block(self.ctx, block_number, in_name, self.config.channels,
                              kernel, stride, padding)

    def add_residual_tower(self, num_blocks, in_name, kernel=None, stride=None, padding=None,
                           in_channels=None):
        kernel, stride, padding = self._tower_args(kernel, stride, padding)
        return residual_tower(self.ctx, num_blocks, in_name, self.config.channels,
                              kernel, stride, padding, in_channels=in_channels)

    def add_convolutional_tower(self, num_blocks, in_name, in_channels=None,
                                kernel=None, stride=None, padding=None):
        kernel, stride, padding = self._tower_args(kernel, stride, padding)
        channels = self.config.channels
        return convolutional_tower(self.ctx, num_blocks, in_name,
                                   channels if in_channels is None else in_channels,
                                   channels, kernel, stride, padding)

    def add_policy_head(self, in_name, kernel=(3, 3), stride=(1, 1), padding='same'):
        return policy_head(self.ctx, in_name, self.config.channels, self.config.board_size,
                           kernel, stride, padding)

    def add_value_head(self, in_name, kernel=(1, 1), stride=(1, 1), padding='same'):
        return value_head(self.ctx, in_name, self.config.channels, self.config.board_size,
                          kernel, stride, padding, hidden=self.config.value_hidden)


def build_alphago_zero_graph(config: AlphaGoZeroConfig = None) -> ComputationGraph:
    """
    input -> stem -> residual or convolutional tower -> policy and value heads.
    Outputs are (policy, value) in that order.
    """
    config = config or DEFAULT_CONFIG
    logger.info("Assembling AlphaGo Zero graph: %s", config)

    builder = AlphaGoZeroBuilder(config)
    builder.add_inputs(INPUT_NAME)
    stem = builder.add_conv_batch_norm_block(STEM_LABEL, INPUT_NAME, config.input_planes)
    if config.residual:
        tower = builder.add_residual_tower(config.num_blocks, stem)
    else:
        tower = builder.add_convolutional_tower(config.num_blocks, stem)

    policy = builder.add_policy_head(tower)
    value = builder.add_value_head(tower)
    builder.add_outputs([policy, value])
    return builder.build_and_return()
