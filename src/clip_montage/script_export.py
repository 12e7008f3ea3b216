"""
Shell-script export of a planned montage.

Renders planner output as a standalone bash script that downloads the sources,
cuts clips from each pool in order until the per-source target is met, and
renders one file per variation. The script applies the same acceptance rule as
the Materializer (a clip counts once it exceeds the minimum size) but does not
backfill.
"""

import random
import shlex
from datetime import datetime
from typing import Dict, List, Optional, Sequence

from ._version import __version__
from .assembler import cut_filters, stacked_filter_graph
from .ffmpeg_utils import VideoEncodingParams, build_filter_chain
from .models import Layout, MontageRequest, VariationPlan

_HEADER = """#!/usr/bin/env bash
# Montage script generated by clip-montage {version} on {timestamp}
set -euo pipefail

for tool in ffmpeg yt-dlp; do
  command -v "$tool" >/dev/null 2>&1 || {{ echo "$tool is required" >&2; exit 1; }}
done

MIN_CLIP_BYTES={min_bytes}
WORK_DIR="$(mktemp -d -t montage-XXXXXX)"
trap 'rm -rf "$WORK_DIR"' EXIT
OUT_DIR="${{OUT_DIR:-$PWD}}"

file_size() {{ stat -c %s "$1" 2>/dev/null || stat -f %z "$1"; }}

# cut_pool <source> <source_index> <label> <target> <duration> <start>...
cut_pool() {{
  local src="$1" idx="$2" label="$3" target="$4" dur="$5"; shift 5
  local n=0 i=0
  for start in "$@"; do
    [ "$n" -ge "$target" ] && break
    i=$((i + 1))
    local out="$WORK_DIR/${{label}}_$(printf %03d "$i").mp4"
    if ffmpeg -y -hide_banner -loglevel error -ss "$start" -i "$src" -t "$dur" {cut_args} "$out" \\
        && [ "$(file_size "$out")" -gt "$MIN_CLIP_BYTES" ]; then
      printf '%s\t%s\t%s\n' "$idx" "$start" "$out" >> "$WORK_DIR/${{label%_s*}}.idx"
      n=$((n + 1))
    else
      rm -f "$out"
    fi
  done
  echo "  $label: $n/$target clips"
}}
"""


def _format_starts(variation: VariationPlan) -> str:
    return " ".join(f"{clip.start_seconds:.3f}" for clip in variation.clips)


def _download_lines(source_urls: Dict[int, str]) -> List[str]:
    lines = ["", "echo 'Downloading sources...'"]
    for index in sorted(source_urls):
        url = shlex.quote(source_urls[index])
        dest = f'"$WORK_DIR/source_{index:02d}.mp4"'
        lines.append(
            f"yt-dlp -f 'best[height<=720]' -o {dest} {url} || curl -L -f -o {dest} {url}"
        )
    return lines


def _render_lines(request: MontageRequest, label: str, output: str, clip_count: int,
                  params: VideoEncodingParams, rng: random.Random,
                  shrink_factor: float) -> List[str]:
    list_file = f'"$WORK_DIR/{label}.txt"'
    if request.layout is Layout.STACKED:
        graph, out_label = stacked_filter_graph(
            clip_count, request.output_resolution.canvas, request.montage_length_seconds,
            request.clip_interval_seconds, shrink_factor, rng, request.text_overlay,
        )
        encode = " ".join(shlex.quote(a) for a in params.to_args(keep_audio=False))
        return [
            f"mapfile -t CLIPS < <(sed -e \"s/^file '//\" -e \"s/'$//\" {list_file})",
            f'[ "${{#CLIPS[@]}}" -eq {clip_count} ] || {{ echo "stacked layout needs {clip_count} clips" >&2; exit 1; }}',
            "INPUTS=()",
            'for c in "${CLIPS[@]}"; do INPUTS+=(-i "$c"); done',
            f"ffmpeg -y -hide_banner -loglevel error \"${{INPUTS[@]}}\" "
            f"-filter_complex {shlex.quote(graph)} -map {shlex.quote('[' + out_label + ']')} "
            f"{encode} -t {request.montage_length_seconds:g} \"$OUT_DIR/{output}\"",
        ]

    chain = build_filter_chain(cut_filters(request.output_resolution, request.text_overlay))
    vf = f"-vf {shlex.quote(chain)} " if chain else ""
    encode = " ".join(shlex.quote(a) for a in params.to_args(keep_audio=request.keep_audio))
    return [
        f"ffmpeg -y -hide_banner -loglevel error -f concat -safe 0 -i {list_file} "
        f"{vf}{encode} \"$OUT_DIR/{output}\""
    ]


def render_script(
    request: MontageRequest,
    plans_by_source: Dict[int, Sequence[VariationPlan]],
    source_urls: Dict[int, str],
    *,
    encoding: Optional[VideoEncodingParams] = None,
    min_clip_bytes: int = 500,
    shrink_factor: float = 0.75,
) -> str:
    """
    Render planned variations to a bash script.

    Args:
        request: The montage request the plans were built from
        plans_by_source: planner output keyed by source index
        source_urls: normalized URL per source index
        encoding: Codec parameters for cuts and final renders
        min_clip_bytes: Acceptance threshold used by the cut loop
        shrink_factor: Per-layer scale for the stacked layout

    Returns:
        Script text
    """
    params = encoding or VideoEncodingParams()
    cut_args = " ".join(shlex.quote(a) for a in params.to_args(keep_audio=request.keep_audio))

    lines = [_HEADER.format(
        version=__version__,
        timestamp=datetime.now().isoformat(timespec="seconds"),
        min_bytes=min_clip_bytes,
        cut_args=cut_args,
    )]
    lines.extend(_download_lines({i: source_urls[i] for i in plans_by_source}))

    for v in range(request.variation_count):
        label = f"v{v + 1:02d}"
        output = f"{request.custom_filename}_{label}.mp4"
        lines.extend(["", f"echo 'Variation {v + 1}/{request.variation_count}'"])
        clip_budget = 0
        for source_index in sorted(plans_by_source):
            variation = plans_by_source[source_index][v]
            clip_budget += variation.target_count
            duration = variation.clips[0].duration_seconds if variation.clips else request.clip_interval_seconds
            lines.append(
                f'cut_pool "$WORK_DIR/source_{source_index:02d}.mp4" {source_index} {label}_s{source_index:02d} '
                f"{variation.target_count} {duration:.3f} {_format_starts(variation)}"
            )
        order = "sort -t$'\\t' -k1,1n -k2,2g" if request.linear_mode else "cat"
        lines.append(
            f'{order} "$WORK_DIR/{label}.idx" | cut -f3 | sed "s/.*/file \'&\'/" > "$WORK_DIR/{label}.txt"'
        )
        layout_rng = random.Random(f"{request.seed}:{v}:layout")
        lines.extend(_render_lines(request, label, output, clip_budget, params, layout_rng, shrink_factor))
        lines.append(f"echo \"  -> $OUT_DIR/{output}\"")

    lines.extend(["", "echo 'Done.'", ""])
    return "\n".join(lines)


def script_name(request: MontageRequest) -> str:
    return f"{request.custom_filename}_montage.sh"
