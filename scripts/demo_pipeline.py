#!/usr/bin/env python3
"""
Full pipeline demo: encrypted points, range + nearest-neighbor queries, reveal.

Demonstrates the two-stage evaluation:
1. Coarse Stage: grid cells narrow the candidate set (optional, leaks cell membership)
2. Fine Stage: homomorphic predicates and distances over the candidates
"""
import sys
import argparse
from pathlib import Path

# Add src to path for development
sys.path.insert(0, str(Path(__file__).resolve().parent.parent / "src"))

from geovault.client.crypto import CryptoClient
from geovault.client.search import SearchClient
from geovault.server.engine import SpatioTemporalEngine
from geovault.shared.config import GeoVaultSettings
from geovault.shared.utils import Timer, generate_random_points


def run_pipeline_demo(
    num_points: int = 1000,
    cell_size: float = None,
    radius: float = 5.0,
    reduction: str = "tree",
    workers: int = 1,
    paillier: bool = False,
):
    """
    Run the full pipeline demonstration.
    """
    print("=" * 70)
    print("GeoVault - Encrypted Spatiotemporal Queries")
    print("=" * 70)
    print(f"\nConfiguration:")
    print(f"  Points:        {num_points:,}")
    print(f"  Cell size:     {cell_size if cell_size else 'single cell (no leakage)'}")
    print(f"  Radius:        {radius}")
    print(f"  NN reduction:  {reduction}")
    print(f"  Workers:       {workers}")
    print(f"  Vault:         {'Paillier' if paillier else 'plain'}")

    # =========================================================================
    # SETUP PHASE
    # =========================================================================
    print("\n" + "=" * 70)
    print("SETUP PHASE")
    print("=" * 70)

    print("\n[1] Initializing backend...")
    with Timer() as t:
        crypto = CryptoClient.with_paillier() if paillier else None
        settings = GeoVaultSettings(
            CELL_SIZE=cell_size,
            NN_REDUCTION=reduction,
            PARALLEL_WORKERS=workers,
        )
        engine = SpatioTemporalEngine(
            backend=crypto.backend if crypto else None,
            settings=settings,
        )
        crypto = crypto or CryptoClient(engine.backend)
    print(f"    Ready in {t.elapsed_ms:.0f}ms")

    search_client = SearchClient(crypto, engine)

    print("\n[2] Encrypting and submitting points...")
    points = generate_random_points(
        num_points, seed=42, lat_range=(-20.0, 20.0), lon_range=(-20.0, 20.0)
    )
    with Timer() as t:
        point_ids = search_client.submit_points(points, owner="demo")
    print(f"    Submitted {len(point_ids):,} points in {t.elapsed_ms:.0f}ms")
    print(f"    Grid cells: {engine.index.num_cells}")

    # =========================================================================
    # RANGE QUERY
    # =========================================================================
    print("\n" + "=" * 70)
    print("RANGE QUERY")
    print("=" * 70)

    center_lat, center_lon = 0.0, 0.0
    start_time, end_time = 0.0, 43200.0
    matches, range_timing = search_client.range_search(
        center_lat, center_lon, radius, start_time, end_time, verbose=True
    )

    print(f"\nClosest matches:")
    print("-" * 50)
    for m in matches[:10]:
        print(f"  #{m.rank:2d}: point {m.point_id} (distance: {m.distance:.4f})")

    accuracy = search_client.verify_accuracy(
        points, point_ids, matches, center_lat, center_lon, radius, start_time, end_time
    )
    print(f"\n  Matches plaintext scan: {'Yes' if accuracy['exact_match'] else 'No'}")
    if not accuracy["exact_match"]:
        print(f"  Missing:    {accuracy['missing']}")
        print(f"  Unexpected: {accuracy['unexpected']}")

    # =========================================================================
    # NEAREST NEIGHBOR
    # =========================================================================
    print("\n" + "=" * 70)
    print("NEAREST NEIGHBOR")
    print("=" * 70)

    target_lat, target_lon = 3.0, -4.0
    nearest, nn_timing = search_client.nearest_search(target_lat, target_lon, verbose=True)
    if nearest is not None:
        print(f"\n  Nearest: point {nearest.point_id} (distance: {nearest.distance:.4f})")
    correct = search_client.verify_nearest(points, point_ids, nearest, target_lat, target_lon)
    print(f"  Matches plaintext scan: {'Yes' if correct else 'No'}")

    # =========================================================================
    # TIMING
    # =========================================================================
    print("\n" + "=" * 70)
    print("TIMING BREAKDOWN")
    print("=" * 70)
    print(f"\n  Range - Evaluation:   {range_timing['query_ms']:8.2f}ms")
    print(f"  Range - Reveal:       {range_timing['reveal_ms']:8.2f}ms")
    print(f"  NN - Evaluation:      {nn_timing['query_ms']:8.2f}ms")
    print(f"  NN - Reveal:          {nn_timing['reveal_ms']:8.2f}ms")
    print(f"  Homomorphic ops:      {getattr(engine.backend, 'op_count', 'n/a')}")

    print("\n" + "=" * 70)
    print("STATS")
    print("=" * 70)
    for key, value in engine.stats().to_dict().items():
        print(f"  {key:24s} {value}")

    return matches, nearest


def main():
    parser = argparse.ArgumentParser(
        description="Demo encrypted spatiotemporal queries"
    )
    parser.add_argument(
        "--num-points", "-n",
        type=int,
        default=1000,
        help="Number of points to submit",
    )
    parser.add_argument(
        "--cell-size",
        type=float,
        default=None,
        help="Grid cell size (enables the leaky coarse stage)",
    )
    parser.add_argument(
        "--radius",
        type=float,
        default=5.0,
        help="Range query radius",
    )
    parser.add_argument(
        "--reduction",
        choices=["tree", "sequential"],
        default="tree",
        help="Nearest-neighbor reduction strategy",
    )
    parser.add_argument(
        "--workers",
        type=int,
        default=1,
        help="Parallel evaluation workers",
    )
    parser.add_argument(
        "--paillier",
        action="store_true",
        help="Seal values under Paillier (slow; use with --tiny)",
    )
    parser.add_argument(
        "--tiny",
        action="store_true",
        help="Tiny mode for fast testing (50 points)",
    )

    args = parser.parse_args()

    run_pipeline_demo(
        num_points=50 if args.tiny else args.num_points,
        cell_size=args.cell_size,
        radius=args.radius,
        reduction=args.reduction,
        workers=args.workers,
        paillier=args.paillier,
    )


if __name__ == "__main__":
    main()
