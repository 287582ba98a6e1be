from __future__ import annotations

import argparse
import json
import time
from dataclasses import dataclass
from pathlib import Path
from urllib import request

FRAME_SUFFIXES = {".png", ".jpg", ".jpeg"}


@dataclass
class ReplayContext:
    """Runtime context for frame job submissions."""

    api_base: str
    stream_id: str
    scenario: str
    trigger: str


def post_json(url: str, payload: dict) -> dict:
    data = json.dumps(payload).encode("utf-8")
    req = request.Request(
        url=url,
        data=data,
        headers={"Content-Type": "application/json"},
        method="POST",
    )
    with request.urlopen(req, timeout=10) as resp:
        return json.loads(resp.read().decode("utf-8"))


def get_json(url: str) -> dict:
    with request.urlopen(url, timeout=10) as resp:
        return json.loads(resp.read().decode("utf-8"))


def resolve_magnitude_path(frame_path: Path, magnitudes_dir: Path | None) -> Path:
    if magnitudes_dir is None:
        return frame_path.with_suffix(".txt")
    return magnitudes_dir / f"{frame_path.stem}.txt"


def read_magnitude(path: Path, default: float) -> float:
    """Motion magnitude sidecar: a single float in [0, 1]."""
    if not path.exists():
        return default
    text = path.read_text(encoding="utf-8").strip()
    if not text:
        return default
    return min(max(float(text), 0.0), 1.0)


def submit_frame(
    context: ReplayContext,
    frame_path: Path,
    magnitude: float,
) -> str:
    payload = {
        "stream_id": context.stream_id,
        "scenario": context.scenario,
        "trigger": context.trigger,
        "magnitude": magnitude,
        "frame_ref": str(frame_path.resolve()),
    }
    response = post_json(f"{context.api_base}/v1/jobs/frame", payload)
    print(
        f"[FRAME] {frame_path.name} magnitude={magnitude:.2f} "
        f"-> job_id={response['job_id']} priority={response['priority']}"
    )
    return response["job_id"]


def main() -> None:
    parser = argparse.ArgumentParser()
    parser.add_argument(
        "--frames-dir",
        required=True,
        help="Path to folder with PNG/JPG frames",
    )
    parser.add_argument(
        "--magnitudes-dir",
        default="",
        help="Optional folder with per-frame motion magnitude txt files",
    )
    parser.add_argument("--api-base", default="http://127.0.0.1:8000")
    parser.add_argument("--stream-id", default="replay")
    parser.add_argument(
        "--scenario", choices=["pet", "baby", "elderly"], default="pet"
    )
    parser.add_argument(
        "--trigger", choices=["motion", "audio", "scheduled"], default="motion"
    )
    parser.add_argument("--default-magnitude", type=float, default=0.0)
    parser.add_argument("--fps", type=float, default=2.0)
    args = parser.parse_args()

    frames_dir = Path(args.frames_dir)
    if not frames_dir.exists():
        raise SystemExit(f"frames dir not found: {frames_dir}")

    magnitudes_dir = Path(args.magnitudes_dir) if args.magnitudes_dir else None
    if magnitudes_dir is not None and not magnitudes_dir.exists():
        raise SystemExit(f"magnitudes dir not found: {magnitudes_dir}")

    frame_files = sorted(
        path for path in frames_dir.iterdir() if path.suffix.lower() in FRAME_SUFFIXES
    )
    if not frame_files:
        raise SystemExit("no frames found")

    context = ReplayContext(
        api_base=args.api_base,
        stream_id=args.stream_id,
        scenario=args.scenario,
        trigger=args.trigger,
    )
    print(f"[INFO] stream_id={context.stream_id}, frames={len(frame_files)}")

    dt = 1.0 / args.fps if args.fps > 0 else 0.5
    for frame_path in frame_files:
        magnitude = read_magnitude(
            resolve_magnitude_path(frame_path, magnitudes_dir),
            default=args.default_magnitude,
        )
        submit_frame(context, frame_path, magnitude)
        time.sleep(dt)

    stats = get_json(f"{context.api_base}/v1/queue/stats")
    print(f"[DONE] pending={stats['pending']} processing={stats['processing']}")
    print(f"Check alerts: {context.api_base}/v1/alerts?stream_id={context.stream_id}")


if __name__ == "__main__":
    main()
