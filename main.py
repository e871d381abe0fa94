# main.py
from netgraph.alphago_zero import build_alphago_zero_graph
from netgraph.compiler import compile_graph, make_optimizer
from netgraph.config import AlphaGoZeroConfig, EngineConfig
from objectives.cheap import summarize
from utils.logger import get_logger

logger = get_logger("main", logfile="logs/main.log")

def main():
    config = AlphaGoZeroConfig()
    engine = EngineConfig(seed=0)
    logger.info("Building AlphaGo Zero network: %d %s blocks on %dx%d",
                config.num_blocks, "residual" if config.residual else "convolutional",
                config.board_size, config.board_size)

    graph = build_alphago_zero_graph(config)
    model = compile_graph(graph, engine)
    optimizer = make_optimizer(model, engine)

    summary = summarize(model)
    logger.info("Model: params=%d flops=%d nodes=%s optimizer=%s",
                summary['params'], summary['flops'], summary['nodes'],
                type(optimizer).__name__)

if __name__ == "__main__":
    main()
