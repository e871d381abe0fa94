# netgraph/compiler.py
import torch
import torch.nn as nn
import torch.nn.functional as F

from netgraph.config import DEFAULT_ENGINE_CONFIG
from netgraph.node import ACTIVATION, BN, CONCAT, CONV, FC, INPUT, MERGE_OPS, OUTPUT
from utils.logger import get_logger

logger = get_logger("compiler", logfile="logs/compiler.log")

ACTIVATIONS = {
    'relu': nn.ReLU,
    'tanh': nn.Tanh,
    'sigmoid': nn.Sigmoid,
    'leaky_relu': nn.LeakyReLU,
    'softmax': lambda: nn.Softmax(dim=-1),
    'identity': nn.Identity,
}


class EngineBuildError(RuntimeError):
    """The graph is well-formed but the engine cannot realise it (e.g. channel mismatch)."""


class Flatten(nn.Module):
    """CnnToFeedForward: (N, C, H, W) -> (N, C*H*W), checked against the declared shape."""

    def __init__(self, height, width, channels):
        super().__init__()
        self.shape = (channels, height, width)

    def forward(self, x):
        if tuple(x.shape[1:]) != self.shape:
            raise EngineBuildError(
                f"Preprocessor expected input of shape {self.shape}, got {tuple(x.shape[1:])}")
        return x.reshape(x.shape[0], -1)


def _conv_padding(cfg):
    if cfg.padding in ('valid', 'truncate'):
        return 0
    if cfg.stride == (1, 1):
        return 'same'
    # torch only accepts padding='same' for unit stride; ConvConfig rejects even
    # kernels here, so kernel // 2 yields ceil(size / stride) outputs
    return (cfg.kernel[0] // 2, cfg.kernel[1] // 2)


def _build_module(node):
    op = node.op_type
    cfg = node.config
    if op == CONV:
        return nn.Conv2d(cfg.in_channels, cfg.out_channels, kernel_size=cfg.kernel,
                         stride=cfg.stride, padding=_conv_padding(cfg), bias=cfg.bias)
    if op == BN:
        return nn.BatchNorm2d(cfg.num_features)
    if op == ACTIVATION:
        return ACTIVATIONS[cfg.fn]()
    if op in (FC, OUTPUT):
        return nn.Sequential(nn.Linear(cfg.in_features, cfg.out_features),
                             ACTIVATIONS[cfg.activation]())
    if op == INPUT or op == CONCAT or op in MERGE_OPS:
        # inputs and merges have no parameters
        return nn.Identity()
    raise EngineBuildError(f"Unsupported op_type '{op}' for node {node.id}")


def _module_key(node):
    # keyed by insertion index: node ids may contain '.' or shadow ModuleDict attributes
    return f"n{node.index}"


def _merge(op, tensors):
    if op == 'add':
        return torch.stack(tensors, dim=0).sum(dim=0)
    if op == 'subtract':
        return tensors[0] - tensors[1]
    if op == 'product':
        out = tensors[0]
        for t in tensors[1:]:
            out = out * t
        return out
    if op == 'average':
        return torch.stack(tensors, dim=0).mean(dim=0)
    if op == 'max':
        return torch.stack(tensors, dim=0).max(dim=0).values
    if op == CONCAT:
        return torch.cat(tensors, dim=1)  # channel dim
    raise EngineBuildError(f"Unknown merge op {op}")


def mcxent(probs, target, eps=1e-8):
    """Multi-class cross entropy on probabilities (targets may be soft, e.g. visit counts)."""
    return -(target * torch.log(probs.clamp_min(eps))).sum(dim=-1).mean()


LOSSES = {
    'mcxent': mcxent,
    'mse': lambda out, target: F.mse_loss(out, target.reshape(out.shape)),
    'xent': lambda out, target: F.binary_cross_entropy(out, target.reshape(out.shape)),
}


class CompiledModel(nn.Module):
    def __init__(self, graph):
        super().__init__()
        self.graph = graph
        self.order = graph.topological_sort()
        self.layers = nn.ModuleDict()
        self.preprocessors = nn.ModuleDict()
        logger.info("Initializing CompiledModel")
        self._build()

    def _build(self):
        logger.info("Building modules for graph with %d nodes", len(self.graph.nodes))
        for node_id in self.order:
            node = self.graph.nodes[node_id]
            key = _module_key(node)
            self.layers[key] = _build_module(node)
            if node.preprocessor is not None:
                p = node.preprocessor
                self.preprocessors[key] = Flatten(p.height, p.width, p.channels)
            logger.debug("Created module for node %s op=%s params=%s", node_id, node.op_type, node.params)

    def layer(self, node_id):
        """Module realising `node_id`."""
        return self.layers[_module_key(self.graph.nodes[node_id])]

    def _bind_inputs(self, args, kwargs):
        inputs = self.graph.inputs
        if args and kwargs:
            raise TypeError("Pass inputs either positionally or by name, not both")
        if args:
            if len(args) != len(inputs):
                raise TypeError(f"Expected {len(inputs)} input tensor(s), got {len(args)}")
            return dict(zip(inputs, args))
        missing = [name for name in inputs if name not in kwargs]
        if missing:
            raise TypeError(f"Missing graph input(s): {missing}")
        return {name: kwargs[name] for name in inputs}

    def forward(self, *args, **kwargs):
        cache = self._bind_inputs(args, kwargs)

        for node_id in self.order:
            node = self.graph.nodes[node_id]
            if node.op_type == INPUT:
                continue
            tensors = [cache[p] for p in node.parents]
            if node.is_merge():
                try:
                    out = _merge(node.op_type, tensors)
                except RuntimeError as e:
                    logger.exception("Merge failed for node %s with parent shapes: %s",
                                     node_id, [tuple(t.shape) for t in tensors])
                    raise EngineBuildError(f"Merge failed at node {node_id}: {e}") from e
            else:
                inp = tensors[0]
                key = _module_key(node)
                if key in self.preprocessors:
                    inp = self.preprocessors[key](inp)
                try:
                    out = self.layers[key](inp)
                except RuntimeError as e:
                    logger.exception("Layer forward failed at node %s op=%s inp_shape=%s",
                                     node_id, node.op_type, tuple(inp.shape))
                    raise EngineBuildError(f"Layer {node_id} rejected its input: {e}") from e

            cache[node_id] = out

        outputs = tuple(cache[o] for o in self.graph.outputs)
        return outputs[0] if len(outputs) == 1 else outputs

    def compute_loss(self, outputs, targets):
        """
        Sum of the losses configured on each output layer. `outputs` follows
        graph.outputs order; `targets` is a matching sequence or a dict keyed
        by output id.
        """
        if isinstance(outputs, torch.Tensor):
            outputs = (outputs,)
        if isinstance(targets, torch.Tensor):
            targets = (targets,)
        elif isinstance(targets, dict):
            targets = [targets[o] for o in self.graph.outputs]
        if len(outputs) != len(self.graph.outputs) or len(targets) != len(outputs):
            raise ValueError("outputs and targets must match the graph's declared outputs")
        total = 0.0
        for out_id, out, target in zip(self.graph.outputs, outputs, targets):
            loss_name = getattr(self.graph.nodes[out_id].config, 'loss', None)
            if loss_name is None:
                raise ValueError(f"Output {out_id} is not an output layer and has no loss")
            total = total + LOSSES[loss_name](out, target)
        return total


def initialize_weights(model, scheme='lecun_normal'):
    """Initialise conv and linear weights; biases start at zero."""
    for module in model.modules():
        if not isinstance(module, (nn.Conv2d, nn.Linear)):
            continue
        if scheme == 'lecun_normal':
            # std = 1 / sqrt(fan_in)
            nn.init.kaiming_normal_(module.weight, mode='fan_in', nonlinearity='linear')
        elif scheme == 'xavier':
            nn.init.xavier_normal_(module.weight)
        elif scheme == 'relu':
            nn.init.kaiming_normal_(module.weight, mode='fan_in', nonlinearity='relu')
        else:
            raise ValueError(f"Unknown weight init scheme {scheme!r}")
        if module.bias is not None:
            nn.init.zeros_(module.bias)
    logger.info("Initialized weights with scheme=%s", scheme)


def make_optimizer(model, engine_config=None):
    cfg = engine_config or DEFAULT_ENGINE_CONFIG
    params = model.parameters()
    if cfg.updater == 'sgd':
        return torch.optim.SGD(params, lr=cfg.learning_rate, momentum=cfg.momentum)
    if cfg.updater == 'nesterovs':
        return torch.optim.SGD(params, lr=cfg.learning_rate, momentum=cfg.momentum or 0.9,
                               nesterov=True)
    if cfg.updater == 'adam':
        return torch.optim.Adam(params, lr=cfg.learning_rate)
    raise ValueError(f"Unknown updater {cfg.updater!r}")


def _dry_run(model):
    shapes = [t.shape for t in model.graph.input_types]
    fake = [torch.zeros(2, *shape) for shape in shapes]
    was_training = model.training
    model.eval()
    try:
        with torch.no_grad():
            model(*fake)
    except EngineBuildError:
        raise
    except RuntimeError as e:
        raise EngineBuildError(f"Graph failed shape validation: {e}") from e
    finally:
        model.train(was_training)


def compile_graph(graph, engine_config=None, validate=True):
    """
    Realise `graph` as a CompiledModel: seed, build modules, initialise
    weights and, when the graph carries input types, run a zero batch through
    it so that channel or shape mismatches fail here.
    """
    cfg = engine_config or DEFAULT_ENGINE_CONFIG
    if cfg.seed is not None:
        torch.manual_seed(cfg.seed)
    model = CompiledModel(graph)
    initialize_weights(model, cfg.weight_init)
    if validate and graph.input_types:
        _dry_run(model)
        logger.info("Graph validated against input types %s",
                    [t.shape for t in graph.input_types])
    return model
