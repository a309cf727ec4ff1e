#!/usr/bin/env python3
"""Demo script for structureless stereo odometry with timing diagnostics.

Usage:
    uv run python examples/vo_demo.py data/kitti/sequences/00
    uv run python examples/vo_demo.py data/kitti/sequences/00 --config vo.yaml \
        --max-frames 500 --output results/00.txt
"""

import argparse
import logging

from structureless_vo import (
    StepStatus,
    StructurelessVO,
    VOConfig,
    path_length,
    write_kitti_trajectory,
)


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run stereo VO on a KITTI sequence")
    parser.add_argument("sequence", help="Path to a KITTI sequence, e.g. data/kitti/sequences/00")
    parser.add_argument("--config", default=None, help="YAML file with VOConfig overrides")
    parser.add_argument("--max-frames", type=int, default=None, help="Stop after N frames")
    parser.add_argument("--output", default=None, help="Write the trajectory in KITTI format")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    return parser.parse_args()


def main() -> None:
    """Run the visual odometry demo."""
    args = parse_args()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    config = VOConfig.from_yaml(args.config) if args.config else VOConfig()

    print("Initializing visual odometry pipeline...")
    vo = StructurelessVO.from_kitti_sequence(args.sequence, config)
    print(f"Baseline: {vo.intrinsics.baseline:.4f} m, fx: {vo.intrinsics.fx:.1f} px")
    print()

    # Column headers
    print(
        f"{'Frame':>6} {'Status':^8} {'Feat':>5} {'Match':>5} {'Corr':>5} {'Inlr':>5} "
        f"{'Ref':>5} | "
        f"{'Detect':>7} {'Match':>6} {'PnP':>6} {'Stereo':>7} {'Total':>7} | "
        f"{'Position'}"
    )
    print("-" * 120)

    # Statistics
    counts = {status: 0 for status in StepStatus}
    timing_totals = {"detect": 0.0, "match": 0.0, "pnp": 0.0, "stereo": 0.0, "total": 0.0}
    n_results = 0

    for result in vo.run(max_frames=args.max_frames):
        n_results += 1
        counts[result.status] += 1

        t = result.timing
        timing_totals["detect"] += t.detect_ms
        timing_totals["match"] += t.matching_ms
        timing_totals["pnp"] += t.pnp_ms
        timing_totals["stereo"] += t.stereo_ms
        timing_totals["total"] += t.total_ms

        # Print progress every 20 frames or on failure
        if result.frame_id % 20 == 0 or not result.ok:
            pos = result.position
            print(
                f"{result.frame_id:6d} {result.status.value:^8} {result.num_features:5d} "
                f"{result.num_matches:5d} {result.num_correspondences:5d} "
                f"{result.num_inliers:5d} {result.num_reference_points:5d} | "
                f"{t.detect_ms:5.1f}ms {t.matching_ms:4.1f}ms {t.pnp_ms:4.1f}ms "
                f"{t.stereo_ms:5.1f}ms {t.total_ms:5.1f}ms | "
                f"[{pos[0]:7.2f}, {pos[1]:7.2f}, {pos[2]:7.2f}]"
            )

    n = max(n_results, 1)
    positions = vo.camera_positions()
    print()
    print("=" * 80)
    print("SUMMARY")
    print("=" * 80)
    print(f"Frames processed:  {n_results}")
    print(f"Frames accepted:   {counts[StepStatus.SUCCESS]}")
    print(f"Lost count:        {counts[StepStatus.LOST]} ({100 * counts[StepStatus.LOST] / n:.1f}%)")
    print(f"Failed count:      {counts[StepStatus.FAILED]}")
    print(f"Distance traveled: {path_length(positions):.2f} m")
    print()
    print("Average timing per frame:")
    print(f"  Detect:    {timing_totals['detect'] / n:6.1f} ms")
    print(f"  Matching:  {timing_totals['match'] / n:6.1f} ms")
    print(f"  PnP:       {timing_totals['pnp'] / n:6.1f} ms")
    print(f"  Stereo:    {timing_totals['stereo'] / n:6.1f} ms")
    total_s = max(timing_totals["total"] / 1000, 1e-9)
    print(f"  Total:     {timing_totals['total'] / n:6.1f} ms ({n_results / total_s:.1f} Hz)")
    print()

    if len(positions) > 0:
        pos = positions[-1]
        print(f"Final position: [{pos[0]:.2f}, {pos[1]:.2f}, {pos[2]:.2f}]")

    if args.output:
        written = write_kitti_trajectory(args.output, vo.trajectory)
        print(f"Wrote {written} poses to {args.output}")


if __name__ == "__main__":
    main()
