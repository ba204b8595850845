"""
Benchmark BOQA against term-similarity ranking on simulated queries.

For each sample an item is drawn, a noisy query is simulated from its
annotations, and every method ranks all items. Reports mean reciprocal rank,
hits@k and mean rank of the true item per method.

Usage:
    uv run python scripts/benchmark.py
    uv run python scripts/benchmark.py --dataset random --num-terms 500 --num-items 200
    uv run python scripts/benchmark.py --samples 200 --use-frequencies --cache-dir cache
"""

import argparse
import logging
import time
from collections import defaultdict
from pathlib import Path

import numpy as np
from tqdm import tqdm

from boqa.config import BOQAConfig
from boqa.datasets import internal_dataset, random_dataset
from boqa.engine import BOQA
from boqa.metrics import hits_at_k, marginal_log_loss, mean_reciprocal_rank, rank_of_item

SIMILARITY_METHODS = ("resnik", "lin", "jc")


def build_engine(args: argparse.Namespace) -> BOQA:
    rng = np.random.default_rng(args.seed)
    if args.dataset == "internal":
        dataset = internal_dataset()
    else:
        dataset = random_dataset(args.num_terms, args.num_items, rng)

    config = BOQAConfig(
        simulation_alpha=args.alpha,
        simulation_beta=args.beta,
        simulation_max_terms=args.max_terms,
        size_of_score_distribution=args.distribution_size,
        max_query_size_for_cached_distribution=args.max_query_size,
        consider_frequencies_only=args.frequencies_only,
        precalculate_score_distribution=args.cache_dir is not None,
        cache_dir=args.cache_dir,
        num_workers=args.workers,
        seed=args.seed,
    )
    return BOQA(dataset.parents, dataset.annotations, config, names=dataset.names)


def run_benchmark(boqa: BOQA, args: argparse.Namespace) -> tuple[dict[str, list], dict[str, float]]:
    """Simulate queries; collect (scores, true item) pairs and run time per method."""
    rng = np.random.default_rng(args.seed + 1)
    runs: dict[str, list] = defaultdict(list)
    timings: dict[str, float] = defaultdict(float)

    for _ in tqdm(range(args.samples), desc="Samples"):
        item = int(rng.integers(boqa.num_items))
        observations = boqa.generate_observations(item, rng)

        start = time.perf_counter()
        result = boqa.assign_marginals(observations, args.use_frequencies, args.workers)
        timings["boqa"] += time.perf_counter() - start
        runs["boqa"].append((result.marginals, item))
        if result.marginals_ideal is not None:
            runs["boqa-ideal"].append((result.marginals_ideal, item))

        for method in SIMILARITY_METHODS:
            start = time.perf_counter()
            sim_result = boqa.sim_score(
                observations, method, pval=not args.no_pval, rng=rng, num_workers=args.workers
            )
            timings[method] += time.perf_counter() - start
            runs[method].append((sim_result.scores, item))
            if not args.no_pval:
                runs[f"{method}-pval"].append((-sim_result.marginals, item))

        start = time.perf_counter()
        runs["mb"].append((boqa.mb_score(observations).scores, item))
        timings["mb"] += time.perf_counter() - start

    return runs, timings


def print_report(runs: dict[str, list], timings: dict[str, float], top_k: int) -> None:
    print("\n" + "=" * 72)
    print(f"{'Method':<14} {'MRR':>8} {f'Hits@{top_k}':>8} {'MeanRank':>10} {'LogLoss':>9} {'Time(s)':>9}")
    print("-" * 72)
    for method, method_runs in runs.items():
        mrr = mean_reciprocal_rank(method_runs)
        hits = np.mean([hits_at_k(scores, item, top_k) for scores, item in method_runs])
        mean_rank = np.mean([rank_of_item(scores, item) for scores, item in method_runs])
        if method.startswith("boqa"):
            loss = f"{np.mean([marginal_log_loss(m, item) for m, item in method_runs]):9.4f}"
        else:
            loss = f"{'-':>9}"
        elapsed = f"{timings[method]:9.2f}" if method in timings else f"{'-':>9}"
        print(f"{method:<14} {mrr:8.4f} {hits:8.4f} {mean_rank:10.2f} {loss} {elapsed}")
    print("=" * 72)


def main():
    parser = argparse.ArgumentParser(description="Benchmark ontology query ranking")
    parser.add_argument("--dataset", choices=["internal", "random"], default="internal")
    parser.add_argument("--num-terms", type=int, default=300)
    parser.add_argument("--num-items", type=int, default=100)
    parser.add_argument("--samples", type=int, default=100)
    parser.add_argument("--alpha", type=float, default=0.002)
    parser.add_argument("--beta", type=float, default=0.10)
    parser.add_argument("--max-terms", type=int, default=None)
    parser.add_argument("--use-frequencies", action="store_true")
    parser.add_argument("--frequencies-only", action="store_true")
    parser.add_argument("--distribution-size", type=int, default=2000)
    parser.add_argument("--max-query-size", type=int, default=20)
    parser.add_argument("--no-pval", action="store_true", help="Skip similarity p-values")
    parser.add_argument("--cache-dir", type=Path, default=None)
    parser.add_argument("--workers", type=int, default=1)
    parser.add_argument("--top-k", type=int, default=3)
    parser.add_argument("--seed", type=int, default=9)
    parser.add_argument("--verbose", action="store_true")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    print("=" * 72)
    print("Ontology Query Ranking Benchmark")
    print("=" * 72)
    print(f"Dataset: {args.dataset}")
    print(f"Samples: {args.samples}, alpha={args.alpha}, beta={args.beta}")
    print(f"Frequencies: {'yes' if args.use_frequencies else 'no'}, workers: {args.workers}")

    boqa = build_engine(args)
    print(f"Items: {boqa.num_items}, terms: {boqa.num_terms}")

    runs, timings = run_benchmark(boqa, args)
    print_report(runs, timings, args.top_k)


if __name__ == "__main__":
    main()
