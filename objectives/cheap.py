# objectives/cheap.py
import torch
from utils.logger import get_logger

logger = get_logger("cheap_obj", logfile="logs/cheap_obj.log")

def count_parameters(model):
    total = sum(p.numel() for p in model.parameters())
    trainable = sum(p.numel() for p in model.parameters() if p.requires_grad)
    logger.info("Parameter count: total=%d trainable=%d", total, trainable)
    return total

def estimate_flops(model, batch_size=1):
    """
    Multiply-adds of one forward pass through a CompiledModel, counted with
    forward hooks on Conv2d and Linear. Input shapes come from the graph's
    input types.
    """
    input_types = model.graph.input_types
    if not input_types:
        raise ValueError("Graph carries no input types; cannot size a forward pass")

    hooks = []
    flops = {'total': 0}

    def conv_hook(self, inp, out):
        out_c, out_h, out_w = out.shape[1], out.shape[2], out.shape[3]
        kernel_ops = self.kernel_size[0] * self.kernel_size[1] * (self.in_channels // self.groups)
        flops['total'] += kernel_ops * out_c * out_h * out_w

    def linear_hook(self, inp, out):
        flops['total'] += self.weight.numel()

    for module in model.modules():
        if isinstance(module, torch.nn.Conv2d):
            hooks.append(module.register_forward_hook(conv_hook))
        elif isinstance(module, torch.nn.Linear):
            hooks.append(module.register_forward_hook(linear_hook))

    was_training = model.training
    model.eval()
    try:
        with torch.no_grad():
            model(*[torch.zeros(batch_size, *t.shape) for t in input_types])
    finally:
        for h in hooks:
            h.remove()
        model.train(was_training)
    logger.info("Estimated FLOPs (mult-adds per sample batch=%d): %d", batch_size, flops['total'])
    return flops['total']

def summarize(model):
    """Parameter count, mult-adds and per-op node census of a compiled graph."""
    return {
        'params': count_parameters(model),
        'flops': estimate_flops(model),
        'nodes': model.graph.count_by_op(),
    }
