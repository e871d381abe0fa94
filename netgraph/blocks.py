# netgraph/blocks.py
from netgraph.graph import GraphContext
from netgraph.node import ActivationConfig, BatchNormConfig, ConvConfig
from utils.logger import get_logger

logger = get_logger("blocks", logfile="logs/blocks.log")


def conv_norm_block(ctx: GraphContext, label, producer: str, in_channels: int,
                    out_channels=256, kernel=(3, 3), stride=(1, 1), padding='same',
                    use_activation=True):
    """
    conv_<label> -> batch_norm_<label> [-> relu_<label>]
    Returns the id of the last node created so calls can be chained.
    Labels must be distinct per call; label=None allocates a fresh one.
    """
    if label is None:
        label = ctx.next_label("block_")
    conv_name = f"conv_{label}"
    bn_name = f"batch_norm_{label}"
    act_name = f"relu_{label}"

    ctx.add_layer(conv_name,
                  ConvConfig(in_channels, out_channels, kernel=kernel, stride=stride, padding=padding),
                  producer)
    ctx.add_layer(bn_name, BatchNormConfig(out_channels), conv_name)
    if not use_activation:
        return bn_name
    ctx.add_layer(act_name, ActivationConfig('relu'), bn_name)
    return act_name


def residual_block(ctx: GraphContext, index: int, producer: str, channels=256,
                   kernel=(3, 3), stride=(1, 1), padding='same', in_channels=None):
    """
    Two conv-norm blocks, an elementwise add and a final ReLU.

    The add combines the first sub-block's ReLU output with the second
    sub-block's norm output; the block input itself is not on the shortcut.
    """
    first_label = f"residual_1_{index}"
    second_label = f"residual_2_{index}"
    merge_name = f"add_{index}"
    act_name = f"relu_{index}"

    first_out = conv_norm_block(ctx, first_label, producer,
                                channels if in_channels is None else in_channels,
                                channels, kernel, stride, padding, use_activation=True)
    second_out = conv_norm_block(ctx, second_label, first_out, channels,
                                 channels, kernel, stride, padding, use_activation=False)
    ctx.add_vertex(merge_name, 'add', first_out, second_out)
    ctx.add_layer(act_name, ActivationConfig('relu'), merge_name)
    logger.debug("Residual block %d: %s -> %s", index, producer, act_name)
    return act_name


def _check_count(num_blocks):
    if not isinstance(num_blocks, int) or num_blocks < 0:
        raise ValueError(f"num_blocks must be a non-negative int, got {num_blocks!r}")


def residual_tower(ctx: GraphContext, num_blocks: int, producer: str, channels=256,
                   kernel=(3, 3), stride=(1, 1), padding='same', in_channels=None):
    """Chains residual blocks 0..num_blocks-1; num_blocks=0 returns `producer`."""
    _check_count(num_blocks)
    name = producer
    for i in range(num_blocks):
        name = residual_block(ctx, i, name, channels, kernel, stride, padding,
                              in_channels=in_channels if i == 0 else None)
    logger.info("Residual tower of %d blocks: %s -> %s", num_blocks, producer, name)
    return name


def convolutional_tower(ctx: GraphContext, num_blocks: int, producer: str, in_channels=256,
                        channels=256, kernel=(3, 3), stride=(1, 1), padding='same'):
    """Chains activated conv-norm blocks labeled 0..num_blocks-1 without shortcuts."""
    _check_count(num_blocks)
    name = producer
    for i in range(num_blocks):
        name = conv_norm_block(ctx, str(i), name, in_channels if i == 0 else channels,
                               channels, kernel, stride, padding, use_activation=True)
    logger.info("Convolutional tower of %d blocks: %s -> %s", num_blocks, producer, name)
    return name
