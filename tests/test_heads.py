# tests/test_heads.py
import pytest

from netgraph.graph import DuplicateNodeError, GraphContext
from netgraph.heads import (
    POLICY_ACT, POLICY_OUT, VALUE_ACT, VALUE_DENSE, VALUE_OUT, policy_head, value_head,
)
from netgraph.node import CnnToFeedForward

def tower_context():
    ctx = GraphContext()
    ctx.add_input("tower")
    return ctx

def test_policy_head_width_on_19x19():
    ctx = tower_context()
    out = policy_head(ctx, "tower")
    node = ctx.node(out)
    assert out == POLICY_OUT
    assert node.op_type == "output"
    assert node.config.in_features == 2 * 19 * 19
    assert node.config.out_features == 362
    assert node.parents == (POLICY_ACT,)
    assert node.preprocessor == CnnToFeedForward(19, 19, 2)
    assert ctx.node("policy_head_conv").config.out_channels == 2
    assert ctx.node("policy_head_conv").config.in_channels == 256

def test_value_head_width_on_19x19():
    ctx = tower_context()
    out = value_head(ctx, "tower")
    node = ctx.node(out)
    assert out == VALUE_OUT
    assert node.config.out_features == 1
    assert node.config.in_features == 256
    assert node.config.activation == "tanh"
    dense = ctx.node(VALUE_DENSE)
    assert dense.parents == (VALUE_ACT,)
    assert (dense.config.in_features, dense.config.out_features) == (361, 256)
    assert dense.preprocessor == CnnToFeedForward(19, 19, 1)
    assert ctx.node("value_head_conv").config.kernel == (1, 1)

def test_policy_head_follows_board_size():
    ctx = tower_context()
    policy_head(ctx, "tower", in_channels=32, board_size=9)
    assert ctx.node(POLICY_OUT).config.out_features == 82

def test_one_head_of_each_kind_per_graph():
    ctx = tower_context()
    policy_head(ctx, "tower")
    value_head(ctx, "tower")
    with pytest.raises(DuplicateNodeError):
        policy_head(ctx, "tower")
    with pytest.raises(DuplicateNodeError):
        value_head(ctx, VALUE_OUT)
