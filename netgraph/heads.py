# netgraph/heads.py
from netgraph.graph import GraphContext
from netgraph.node import (
    ActivationConfig, BatchNormConfig, CnnToFeedForward, ConvConfig, DenseConfig, OutputConfig,
)
from utils.logger import get_logger

logger = get_logger("heads", logfile="logs/heads.log")

# Fixed labels: one head of each kind per graph.
POLICY_CONV = "policy_head_conv"
POLICY_BN = "policy_head_batch_norm"
POLICY_ACT = "policy_head_relu"
POLICY_OUT = "policy_head_output"

VALUE_CONV = "value_head_conv"
VALUE_BN = "value_head_batch_norm"
VALUE_ACT = "value_head_relu"
VALUE_DENSE = "value_head_dense"
VALUE_OUT = "value_head_output"


def policy_head(ctx: GraphContext, producer: str, in_channels=256, board_size=19,
                kernel=(3, 3), stride=(1, 1), padding='same'):
    """
    conv(2) -> bn -> relu -> flatten -> output over board_size**2 + 1 moves
    (every point plus pass), softmax with multi-class cross entropy.
    """
    area = board_size * board_size
    ctx.add_layer(POLICY_CONV,
                  ConvConfig(in_channels, 2, kernel=kernel, stride=stride, padding=padding),
                  producer)
    ctx.add_layer(POLICY_BN, BatchNormConfig(2), POLICY_CONV)
    ctx.add_layer(POLICY_ACT, ActivationConfig('relu'), POLICY_BN)
    ctx.add_layer(POLICY_OUT,
                  OutputConfig(2 * area, area + 1, activation='softmax', loss='mcxent'),
                  POLICY_ACT)
    ctx.set_preprocessor(POLICY_OUT, CnnToFeedForward(board_size, board_size, 2))
    logger.info("Policy head on %s: %d outputs", producer, area + 1)
    return POLICY_OUT


def value_head(ctx: GraphContext, producer: str, in_channels=256, board_size=19,
               kernel=(1, 1), stride=(1, 1), padding='same', hidden=256):
    """conv(1) -> bn -> relu -> flatten -> dense(hidden) -> scalar tanh output."""
    area = board_size * board_size
    ctx.add_layer(VALUE_CONV,
                  ConvConfig(in_channels, 1, kernel=kernel, stride=stride, padding=padding),
                  producer)
    ctx.add_layer(VALUE_BN, BatchNormConfig(1), VALUE_CONV)
    ctx.add_layer(VALUE_ACT, ActivationConfig('relu'), VALUE_BN)
    ctx.add_layer(VALUE_DENSE, DenseConfig(area, hidden, activation='relu'), VALUE_ACT)
    ctx.set_preprocessor(VALUE_DENSE, CnnToFeedForward(board_size, board_size, 1))
    ctx.add_layer(VALUE_OUT, OutputConfig(hidden, 1, activation='tanh', loss='mse'), VALUE_DENSE)
    logger.info("Value head on %s", producer)
    return VALUE_OUT
