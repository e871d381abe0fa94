# tests/test_compiler.py
import numpy as np
import pytest
import torch

from netgraph.alphago_zero import AlphaGoZeroBuilder, build_alphago_zero_graph
from netgraph.compiler import (
    CompiledModel, EngineBuildError, compile_graph, initialize_weights, make_optimizer,
)
from netgraph.config import AlphaGoZeroConfig, EngineConfig
from netgraph.graph import GraphContext
from netgraph.node import ActivationConfig, BatchNormConfig, ConvConfig, InputType, OutputConfig
from objectives.cheap import count_parameters, estimate_flops, summarize
from utils.logger import get_logger

logger = get_logger("test_compiler", logfile="logs/test_compiler.log")

SMALL = AlphaGoZeroConfig(board_size=5, input_planes=3, channels=8, num_blocks=2, value_hidden=16)

def small_model(config=SMALL, seed=0):
    return compile_graph(build_alphago_zero_graph(config), EngineConfig(seed=seed))

def test_forward_shapes():
    model = small_model()
    x = torch.randn(4, 3, 5, 5)
    policy, value = model(x)
    logger.info("policy %s value %s", tuple(policy.shape), tuple(value.shape))

    assert policy.shape == (4, 26)
    assert value.shape == (4, 1)
    np.testing.assert_allclose(policy.sum(dim=1).detach().numpy(), np.ones(4), atol=1e-5)
    assert torch.all(value.abs() <= 1.0)

def test_forward_by_input_name():
    model = small_model().eval()
    x = torch.randn(2, 3, 5, 5)
    with torch.no_grad():
        by_position = model(x)
        by_name = model(input=x)
    for a, b in zip(by_position, by_name):
        assert torch.equal(a, b)
    with pytest.raises(TypeError):
        model(x, x)

def test_plain_tower_compiles():
    config = AlphaGoZeroConfig(board_size=5, input_planes=3, channels=8, num_blocks=2,
                               residual=False, value_hidden=16)
    policy, value = small_model(config)(torch.randn(2, 3, 5, 5))
    assert policy.shape == (2, 26)

def test_channel_mismatch_is_an_engine_error():
    # tower's first conv expects the tower width, but the input has 3 planes
    builder = AlphaGoZeroBuilder(SMALL)
    builder.add_inputs("input")
    tower = builder.add_convolutional_tower(2, "input")
    builder.add_outputs([builder.add_policy_head(tower), builder.add_value_head(tower)])
    graph = builder.build_and_return()

    model = compile_graph(graph, validate=False)
    assert isinstance(model, CompiledModel)
    with pytest.raises(EngineBuildError):
        compile_graph(graph)

def test_flatten_mismatch_is_an_engine_error():
    # heads sized for a 7x7 board on a 5x5 input
    builder = AlphaGoZeroBuilder(AlphaGoZeroConfig(board_size=7, input_planes=3, channels=8))
    builder.ctx.set_input_types(InputType(5, 5, 3))
    builder.add_inputs("input")
    stem = builder.add_conv_batch_norm_block("stem", "input", 3)
    builder.add_outputs([builder.add_policy_head(stem)])
    with pytest.raises(EngineBuildError):
        compile_graph(builder.build_and_return())

def test_seeded_compiles_match():
    a = small_model(seed=7).state_dict()
    b = small_model(seed=7).state_dict()
    assert a.keys() == b.keys()
    for k in a:
        assert torch.equal(a[k], b[k])

def test_initialize_weights_zeroes_bias():
    model = small_model()
    initialize_weights(model, "xavier")
    for m in model.modules():
        if isinstance(m, torch.nn.Linear):
            assert torch.count_nonzero(m.bias) == 0
    with pytest.raises(ValueError):
        initialize_weights(model, "orthogonal")

def test_loss_and_optimizer_step():
    model = small_model()
    opt = make_optimizer(model, EngineConfig(learning_rate=0.1))
    assert isinstance(opt, torch.optim.SGD)

    x = torch.randn(4, 3, 5, 5)
    target_policy = torch.zeros(4, 26)
    target_policy[:, 25] = 1.0
    target_value = torch.tensor([1.0, -1.0, 0.0, 1.0])

    before = model.layer("value_head_output")[0].weight.detach().clone()
    loss = model.compute_loss(model(x), [target_policy, target_value])
    assert loss.dim() == 0
    opt.zero_grad()
    loss.backward()
    opt.step()
    assert not torch.equal(before, model.layer("value_head_output")[0].weight)

    keyed = model.compute_loss(model(x), {"policy_head_output": target_policy,
                                          "value_head_output": target_value})
    assert keyed.item() > 0

def test_optimizer_kinds():
    model = small_model()
    assert isinstance(make_optimizer(model, EngineConfig(updater="adam")), torch.optim.Adam)
    nesterov = make_optimizer(model, EngineConfig(updater="nesterovs"))
    assert nesterov.param_groups[0]["nesterov"] is True
    assert nesterov.param_groups[0]["momentum"] == 0.9
    with pytest.raises(ValueError):
        EngineConfig(updater="rmsprop")

def test_concat_and_merge_vertices():
    ctx = GraphContext(input_types=[InputType(4, 4, 2), InputType(4, 4, 2)])
    ctx.add_inputs("a", "b")
    ctx.add_layer("conv", ConvConfig(4, 6, kernel=1), "a", "b")
    ctx.add_layer("bn", BatchNormConfig(6), "conv")
    ctx.add_layer("side", ConvConfig(2, 6, kernel=1), "a")
    ctx.add_vertex("sum", "max", "bn", "side")
    ctx.add_layer("relu", ActivationConfig("relu"), "sum")
    ctx.set_outputs("relu")
    model = compile_graph(ctx.build())

    out = model(torch.randn(3, 2, 4, 4), torch.randn(3, 2, 4, 4))
    assert out.shape == (3, 6, 4, 4)
    assert torch.all(out >= 0)

def test_cost_summary():
    model = small_model()
    summary = summarize(model)
    assert summary["params"] == count_parameters(model) > 0
    assert summary["flops"] == estimate_flops(model) > 0
    assert summary["nodes"]["add"] == 2

def build_two_conv_graph(first_id, second_id):
    ctx = GraphContext(input_types=[InputType(4, 4, 2)])
    ctx.add_input("in")
    ctx.add_layer(first_id, ConvConfig(2, 4, kernel=1), "in")
    ctx.add_layer(second_id, ConvConfig(4, 8, kernel=1), first_id)
    ctx.set_outputs(second_id)
    return ctx.build()

@pytest.mark.parametrize("first_id, second_id", [
    ("update", "keys"),
    ("training", "forward"),
    ("a.b", "a__dot__b"),
])
def test_node_ids_do_not_collide_as_module_keys(first_id, second_id):
    model = compile_graph(build_two_conv_graph(first_id, second_id))
    assert model.layer(first_id).in_channels == 2
    assert model.layer(second_id).in_channels == 4
    assert model(torch.randn(2, 2, 4, 4)).shape == (2, 8, 4, 4)

def test_single_output_loss_takes_bare_tensor_target():
    ctx = GraphContext()
    ctx.add_input("features")
    ctx.add_layer("out", OutputConfig(3, 1, activation="identity", loss="mse"), "features")
    ctx.set_outputs("out")
    model = compile_graph(ctx.build())

    for batch in (1, 5):
        x = torch.randn(batch, 3)
        target = torch.randn(batch, 1)
        out = model(x)
        loss = model.compute_loss(out, target)
        assert torch.allclose(loss, torch.nn.functional.mse_loss(out, target))

def test_strided_conv_keeps_same_size():
    ctx = GraphContext(input_types=[InputType(5, 5, 2)])
    ctx.add_input("in")
    ctx.add_layer("down", ConvConfig(2, 4, kernel=3, stride=2), "in")
    ctx.set_outputs("down")
    out = compile_graph(ctx.build())(torch.randn(1, 2, 5, 5))
    assert out.shape == (1, 4, 3, 3)

    with pytest.raises(ValueError):
        ConvConfig(2, 4, kernel=2, stride=2)
    assert ConvConfig(2, 4, kernel=2, stride=2, padding="valid").kernel == (2, 2)
    assert ConvConfig(2, 4, kernel=2).padding == "same"
