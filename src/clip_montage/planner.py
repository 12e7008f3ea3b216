"""
Timeline Planner

Turns a source duration plus montage parameters into one candidate pool per
variation. Pure CPU work: no I/O, no ambient randomness. All randomness comes
from the ``rng`` argument so identical seeds give identical plans.

Usage:
    import random
    from clip_montage.planner import plan

    variations = plan(600.0, request, rng=random.Random(42))
    for variation in variations:
        print(variation.variation_index, variation.start_times[:variation.target_count])

Linear mode spreads the primary picks over equal segments of the usable range
(jittered inside each segment, sorted chronologically). Random mode shuffles a
strided grid of positions. Both append backfill candidates up to
``ceil(target * pool_factor)`` so extraction failures can be topped up.
"""

import math
import random
from typing import Dict, List, Mapping, Optional, Tuple

from .exceptions import InvalidConfigError, InvalidRangeError
from .logger import logger
from .models import ClipPlan, MontageRequest, SourceWindow, VariationPlan


DEFAULT_POOL_FACTOR = 2.5

# Rejection sampling for backfill candidates gives up after this many tries
# per pool slot; small usable ranges cannot fit pool_size spaced starts.
_MAX_DRAWS_PER_SLOT = 50


def compute_window(source_duration: float, request: MontageRequest) -> SourceWindow:
    """
    Resolve start/end cuts against a concrete source duration.

    ``end_cut_seconds`` counts back from the end of the video. It is ignored
    when zero or when it would swallow the whole source.
    """
    end_cut = request.end_cut_seconds
    if 0 < end_cut < source_duration:
        effective_end = source_duration - end_cut
    else:
        effective_end = source_duration
    return SourceWindow(
        source_duration=float(source_duration),
        start_cut=float(request.start_cut_seconds),
        effective_end=float(effective_end),
    )


def target_clip_count(request: MontageRequest) -> int:
    count = request.target_clip_count
    if count < 1:
        raise InvalidConfigError(
            f"Clip interval {request.clip_interval_seconds}s is longer than the "
            f"montage length {request.montage_length_seconds}s"
        )
    return count


def _range_error(source_duration: float, request: MontageRequest, window: SourceWindow) -> InvalidRangeError:
    return InvalidRangeError(
        f"Invalid video range: start at {request.start_cut_seconds}s, end cut "
        f"{request.end_cut_seconds}s from end of a {source_duration}s source "
        f"leaves {window.usable_duration}s usable. Please adjust your settings.",
        usable_duration=window.usable_duration,
    )


def pool_size_for(target: int, pool_factor: float = DEFAULT_POOL_FACTOR) -> int:
    return max(target, math.ceil(target * pool_factor))


def split_target(total: int, source_count: int) -> List[int]:
    """
    Share a clip target between sources, earlier sources taking the remainder.

    >>> split_target(10, 3)
    [4, 3, 3]
    """
    if source_count <= 0:
        return []
    base, remainder = divmod(total, source_count)
    return [base + (1 if i < remainder else 0) for i in range(source_count)]


def variation_seed(base_seed: int, variation_index: int) -> int:
    """Seed for one variation, derived only from the base seed and its index."""
    return base_seed * 1000 + variation_index


def too_close(candidate: float, existing: List[float], interval: float) -> bool:
    return any(abs(other - candidate) < interval for other in existing)


def draw_spaced_starts(
    starts: List[float],
    want: int,
    window: SourceWindow,
    interval: float,
    rng: random.Random,
) -> List[float]:
    """
    Extend ``starts`` with random starts that keep ``interval`` spacing.

    Returns the extended list (same object). Stops early when the window is
    too small to fit more spaced candidates.
    """
    spread = window.usable_duration - interval
    draws = 0
    max_draws = max(1, want) * _MAX_DRAWS_PER_SLOT
    while len(starts) < want and draws < max_draws:
        draws += 1
        candidate = window.clamp(window.start_cut + rng.random() * spread, interval)
        if not too_close(candidate, starts, interval):
            starts.append(candidate)
    return starts


def _linear_starts(
    variation_index: int,
    target: int,
    pool_size: int,
    window: SourceWindow,
    interval: float,
    rng: random.Random,
) -> List[float]:
    usable = window.usable_duration
    segment_size = usable / target
    offset = (variation_index * segment_size) % usable

    starts: List[float] = []
    for clip_index in range(target):
        # Segments pushed past the end by the offset wrap to the front
        segment_start = window.start_cut + (offset + clip_index * segment_size) % usable
        segment_end = min(segment_start + segment_size, window.effective_end) - interval
        if segment_end > segment_start:
            start = segment_start + rng.random() * (segment_end - segment_start)
        else:
            start = segment_start
        starts.append(window.clamp(start, interval))

    starts.sort()
    return draw_spaced_starts(starts, pool_size, window, interval, rng)


def _random_starts(
    target: int,
    pool_size: int,
    window: SourceWindow,
    interval: float,
    rng: random.Random,
) -> List[float]:
    usable = window.usable_duration
    latest = window.effective_end - interval
    stride = max(1, math.floor((usable - interval) / (target * 2)))

    positions: List[float] = []
    position = window.start_cut
    while position <= latest:
        positions.append(position)
        position += stride
    if not positions:
        positions.append(window.start_cut)

    rng.shuffle(positions)
    starts = [window.clamp(p, interval) for p in positions[:pool_size]]
    return draw_spaced_starts(starts, pool_size, window, interval, rng)


def plan(
    source_duration: float,
    request: MontageRequest,
    rng: Optional[random.Random] = None,
    *,
    source_index: int = 0,
    clip_target: Optional[int] = None,
    pool_factor: float = DEFAULT_POOL_FACTOR,
) -> List[VariationPlan]:
    """
    Plan candidate clip pools for every variation of one source.

    Args:
        source_duration: Duration of the source in seconds
        request: Montage parameters
        rng: Randomness source; defaults to ``random.Random(request.seed)``
        source_index: Index of the source in ``request.sources``
        clip_target: Primary clip count for this source (defaults to the
            request's full target; used when several sources share it)
        pool_factor: Pool over-provisioning multiplier

    Returns:
        One VariationPlan per variation, in variation order

    Raises:
        InvalidRangeError: cuts leave no usable duration
        InvalidConfigError: the clip interval exceeds the montage length
    """
    window = compute_window(source_duration, request)
    if window.usable_duration <= 0:
        raise _range_error(source_duration, request, window)

    target = clip_target if clip_target is not None else target_clip_count(request)
    if target < 1:
        raise InvalidConfigError(f"Clip target must be at least 1, got {target}")

    interval = request.clip_interval_seconds
    duration = min(interval, window.usable_duration)
    pool_size = pool_size_for(target, pool_factor)

    if rng is None:
        rng = random.Random(request.seed)
    base_seed = rng.getrandbits(32)

    if window.usable_duration < interval:
        logger.warning(
            f"Usable range {window.usable_duration:.1f}s is shorter than the "
            f"{interval}s interval; all clips start at {window.start_cut}s"
        )

    plans: List[VariationPlan] = []
    for variation_index in range(request.variation_count):
        variation_rng = random.Random(variation_seed(base_seed, variation_index))
        if request.linear_mode:
            starts = _linear_starts(variation_index, target, pool_size, window, interval, variation_rng)
        else:
            starts = _random_starts(target, pool_size, window, interval, variation_rng)

        clips = tuple(
            ClipPlan(source_index=source_index, start_seconds=start, duration_seconds=duration)
            for start in starts
        )
        plans.append(VariationPlan(
            variation_index=variation_index,
            source_index=source_index,
            clips=clips,
            target_count=min(target, len(clips)),
            chronological=request.linear_mode,
            window=window,
            interval=interval,
        ))
        logger.debug(
            f"Variation {variation_index + 1}: {len(clips)} candidates for "
            f"{target} clips from source {source_index}"
        )

    return plans


def plan_sources(
    request: MontageRequest,
    durations: Mapping[int, float],
    seed: int,
    *,
    pool_factor: float = DEFAULT_POOL_FACTOR,
) -> Tuple[Dict[int, List[VariationPlan]], List[InvalidRangeError]]:
    """
    Split the request's clip target across the sources whose cuts leave a
    usable range, and plan each one. Sources with an invalid range are
    reported, and their share goes to the remaining sources.

    Each source gets its own ``random.Random`` derived from ``seed`` and its
    index, so adding or dropping a source does not reshuffle the others.

    Args:
        request: Montage parameters
        durations: Source duration keyed by source index
        seed: Job seed

    Returns:
        (plans keyed by source index, range errors of skipped sources)

    Raises:
        InvalidRangeError: no source has a usable range
    """
    total = target_clip_count(request)
    usable: List[int] = []
    range_errors: List[InvalidRangeError] = []
    for index in sorted(durations):
        window = compute_window(durations[index], request)
        if window.usable_duration <= 0:
            range_errors.append(_range_error(durations[index], request, window))
        else:
            usable.append(index)

    if not usable and range_errors:
        raise range_errors[0]

    plans: Dict[int, List[VariationPlan]] = {}
    for index, target in zip(usable, split_target(total, len(usable))):
        if target < 1:
            continue
        plans[index] = plan(
            durations[index], request, random.Random(f"{seed}:{index}"),
            source_index=index,
            clip_target=target,
            pool_factor=pool_factor,
        )
    return plans, range_errors
