"""
Tests for the timeline planner.

Pure functions only: no media, no filesystem.
"""

import itertools
import random

import pytest

from clip_montage.exceptions import InvalidConfigError, InvalidRangeError
from clip_montage.planner import (
    compute_window,
    plan,
    plan_sources,
    pool_size_for,
    split_target,
    target_clip_count,
)


def _all_starts_in_range(variation):
    window = variation.window
    latest = window.effective_end - variation.interval
    return all(window.start_cut <= s <= latest for s in variation.start_times)


class TestWindow:
    def test_end_cut_counts_back_from_end(self, make_request):
        window = compute_window(300, make_request())
        assert window.start_cut == 10
        assert window.effective_end == 250
        assert window.usable_duration == 240

    def test_end_cut_larger_than_source_is_ignored(self, make_request):
        window = compute_window(100, make_request(end_cut_seconds=150))
        assert window.effective_end == 100

    def test_zero_end_cut_keeps_full_source(self, make_request):
        window = compute_window(100, make_request(end_cut_seconds=0))
        assert window.effective_end == 100


class TestTargets:
    def test_target_is_floor_of_length_over_interval(self, make_request):
        assert target_clip_count(make_request(montage_length_seconds=21, clip_interval_seconds=2)) == 10

    def test_interval_longer_than_montage_is_rejected(self, make_request):
        with pytest.raises(InvalidConfigError):
            target_clip_count(make_request(clip_interval_seconds=40, montage_length_seconds=20))

    def test_pool_size_rounds_up(self):
        assert pool_size_for(10) == 25
        assert pool_size_for(3) == 8
        assert pool_size_for(1) == 3

    def test_split_target_gives_remainder_to_first_sources(self):
        assert split_target(10, 3) == [4, 3, 3]
        assert split_target(2, 3) == [1, 1, 0]
        assert sum(split_target(17, 4)) == 17


class TestLinearPlan:
    def test_worked_example(self, make_request):
        """300s source, cuts 10/50, 2s clips, 20s montage."""
        variations = plan(300, make_request(), random.Random(7))

        assert len(variations) == 1
        variation = variations[0]
        assert variation.target_count == 10
        assert len(variation.clips) == 25

        base = [clip.start_seconds for clip in variation.base_clips]
        assert len(base) == 10
        assert base == sorted(base)
        assert all(10 <= s <= 248 for s in base)
        assert all(clip.duration_seconds == 2 for clip in variation.clips)

    def test_pool_keeps_interval_spacing(self, make_request):
        variation = plan(300, make_request(), random.Random(3))[0]
        for a, b in itertools.combinations(variation.start_times, 2):
            assert abs(a - b) >= 2 - 1e-9

    def test_every_variation_stays_in_range(self, make_request):
        variations = plan(300, make_request(variation_count=6), random.Random(11))
        assert [v.variation_index for v in variations] == list(range(6))
        for variation in variations:
            assert _all_starts_in_range(variation)
            assert variation.chronological

    def test_variations_differ(self, make_request):
        variations = plan(300, make_request(variation_count=3), random.Random(5))
        base_sets = [tuple(v.start_times[:v.target_count]) for v in variations]
        assert len(set(base_sets)) == 3

    def test_same_seed_same_plan(self, make_request):
        request = make_request(variation_count=2)
        first = plan(300, request, random.Random(99))
        second = plan(300, request, random.Random(99))
        assert [v.start_times for v in first] == [v.start_times for v in second]

    def test_request_seed_is_used_without_rng(self, make_request):
        request = make_request(seed=42)
        assert plan(300, request)[0].start_times == plan(300, request)[0].start_times


class TestRandomPlan:
    def test_random_mode_bounds_and_pool(self, make_request):
        variation = plan(300, make_request(linear_mode=False), random.Random(1))[0]
        assert not variation.chronological
        assert variation.target_count == 10
        assert len(variation.clips) == 25
        assert _all_starts_in_range(variation)

    def test_random_mode_is_reproducible(self, make_request):
        request = make_request(linear_mode=False, variation_count=2)
        first = plan(300, request, random.Random(8))
        second = plan(300, request, random.Random(8))
        assert [v.start_times for v in first] == [v.start_times for v in second]
        assert first[0].start_times != first[1].start_times


class TestDegenerateRanges:
    def test_cuts_overlapping_raise(self, make_request):
        """duration 50, start 40, end cut 20 leaves nothing usable."""
        request = make_request(start_cut_seconds=40, end_cut_seconds=20)
        with pytest.raises(InvalidRangeError) as exc_info:
            plan(50, request, random.Random(0))
        assert exc_info.value.usable_duration == -10

    def test_range_error_wins_over_target_error(self, make_request):
        request = make_request(start_cut_seconds=40, end_cut_seconds=20,
                               clip_interval_seconds=40, montage_length_seconds=20)
        with pytest.raises(InvalidRangeError):
            plan(50, request, random.Random(0))

    def test_usable_shorter_than_interval_collapses_to_start(self, make_request):
        request = make_request(start_cut_seconds=10, end_cut_seconds=0)
        variation = plan(11, request, random.Random(0))[0]
        assert variation.clips
        assert all(clip.start_seconds == 10 for clip in variation.clips)
        assert all(clip.duration_seconds == 1 for clip in variation.clips)

    def test_explicit_zero_target_raises(self, make_request):
        with pytest.raises(InvalidConfigError):
            plan(300, make_request(), random.Random(0), clip_target=0)


class TestPlanSources:
    def test_target_split_across_sources(self, make_request):
        request = make_request(sources=["a", "b", "c"])
        plans, errors = plan_sources(request, {0: 300, 1: 300, 2: 300}, seed=1)
        assert errors == []
        assert [plans[i][0].target_count for i in range(3)] == [4, 3, 3]
        assert [plans[i][0].source_index for i in range(3)] == [0, 1, 2]

    def test_short_source_is_skipped(self, make_request):
        request = make_request(sources=["a", "b"])
        plans, errors = plan_sources(request, {0: 300, 1: 8}, seed=1)
        assert list(plans) == [0]
        assert len(errors) == 1

    def test_skipped_source_share_moves_to_usable_sources(self, make_request):
        request = make_request(sources=["a", "b", "c"])
        plans, errors = plan_sources(request, {0: 300, 1: 8, 2: 300}, seed=1)
        assert len(errors) == 1
        assert {i: plans[i][0].target_count for i in plans} == {0: 5, 2: 5}

    def test_all_sources_invalid_raises(self, make_request):
        request = make_request(sources=["a"])
        with pytest.raises(InvalidRangeError):
            plan_sources(request, {0: 8}, seed=1)

    def test_seeded_plans_are_reproducible(self, make_request):
        request = make_request(sources=["a", "b"], variation_count=2)
        first, _ = plan_sources(request, {0: 300, 1: 200}, seed=77)
        second, _ = plan_sources(request, {0: 300, 1: 200}, seed=77)
        assert first == second
