"""
Tests for segment descriptions and text enhancement
"""

import asyncio
import time

import pytest

from map_analysis.data_models import RunReport
from map_analysis.enhancement.description_enhancer import DescriptionEnhancer, position_phrase, size_word
from map_analysis.enhancement.service import CallableEnhancementService

from conftest import make_analyzed, make_segment


class TestDescriptions:
    """Test suite for rule-based descriptions and prompts."""

    @pytest.fixture
    def enhancer(self, config_manager):
        """Fixture providing an enhancer without a text service."""
        return DescriptionEnhancer(config_manager)

    def test_size_words(self):
        assert size_word(0.5) == "very large"
        assert size_word(0.2) == "large"
        assert size_word(0.05) == "medium-sized"
        assert size_word(0.01) == "small"

    def test_position_phrase(self):
        assert position_phrase(0.1, 0.1) == "on the left of the top"
        assert position_phrase(0.5, 0.5) == "in the center of the middle"
        assert position_phrase(0.9, 0.9) == "on the right of the bottom"

    def test_describe_object(self, enhancer):
        tree = make_analyzed(make_segment(10, 10, 20, 20, class_name="tree"))

        assert enhancer.describe(tree, 64, 64) == "A medium-sized tree on the left of the top of the map."

    def test_describe_terrain(self, enhancer):
        mountain = make_analyzed(make_segment(0, 0, 64, 40, class_name="mountain", is_terrain=True))

        description = enhancer.describe(mountain, 64, 64)

        assert description == "A very large mountain terrain feature in the center of the top of the map."

    def test_prompt_variants(self, enhancer):
        lake = make_analyzed(make_segment(0, 0, 10, 10, class_name="lake", is_terrain=True))
        house = make_analyzed(make_segment(0, 0, 10, 10, class_name="house"))
        tree = make_analyzed(make_segment(0, 0, 10, 10, class_name="tree"))
        for segment in (lake, house, tree):
            segment.short_description = "A small thing."

        assert "terrain analysis expert" in enhancer.build_prompt(lake)
        assert "3D modeling expert" in enhancer.build_prompt(house)
        assert "environmental detail" in enhancer.build_prompt(tree)
        assert "Basic Description: A small thing." in enhancer.build_prompt(tree)

    def test_describe_all(self, enhancer):
        segments = [make_analyzed(make_segment(0, 0, 5, 5, class_name="tree", index=i)) for i in range(3)]

        enhancer.describe_all(segments, 64, 64)

        assert all(s.short_description.startswith("A small tree") for s in segments)
        assert all(s.description == s.short_description for s in segments)


class TestEnhancement:
    """Test suite for external text enhancement."""

    @pytest.fixture
    def segments(self):
        segments = [make_analyzed(make_segment(i * 5, 0, 5, 5, class_name="house", index=i))
                    for i in range(4)]
        for segment in segments:
            segment.short_description = f"A small house number {segment.id}."
        return segments

    @pytest.mark.asyncio
    async def test_enhanced_descriptions(self, config_manager, segments):
        service = CallableEnhancementService(lambda prompt: "  A red brick house.  ")
        enhancer = DescriptionEnhancer(config_manager, service)

        await enhancer.enhance(segments)

        assert all(s.enhanced_description == "A red brick house." for s in segments)
        assert segments[0].description == "A red brick house."

    @pytest.mark.asyncio
    async def test_async_service(self, config_manager, segments):
        async def generate(prompt):
            await asyncio.sleep(0)
            return "Enhanced."

        enhancer = DescriptionEnhancer(config_manager, CallableEnhancementService(generate))
        await enhancer.enhance(segments)

        assert {s.enhanced_description for s in segments} == {"Enhanced."}

    @pytest.mark.asyncio
    async def test_timeout_keeps_short_description(self, config_manager, segments):
        config_manager.set('enhancement.timeout_seconds', 0.05)

        async def slow(prompt):
            await asyncio.sleep(5)
            return "too late"

        enhancer = DescriptionEnhancer(config_manager, CallableEnhancementService(slow))
        report = RunReport()

        await enhancer.enhance(segments[:1], report)

        assert segments[0].enhanced_description == segments[0].short_description
        assert report.failure_kinds() == ["ExternalServiceTimeoutError"]

    @pytest.mark.asyncio
    async def test_timeout_with_blocking_service(self, config_manager, segments):
        config_manager.set('enhancement.timeout_seconds', 0.05)

        def blocking(prompt):
            time.sleep(0.5)
            return "too late"

        enhancer = DescriptionEnhancer(config_manager, CallableEnhancementService(blocking))
        report = RunReport()

        start = time.perf_counter()
        await enhancer.enhance(segments[:1], report)
        elapsed = time.perf_counter() - start

        assert segments[0].enhanced_description == segments[0].short_description
        assert report.failure_kinds() == ["ExternalServiceTimeoutError"]
        assert elapsed < 0.4

    @pytest.mark.asyncio
    async def test_service_error_recorded(self, config_manager, segments):
        def failing(prompt):
            raise ConnectionError("service unreachable")

        enhancer = DescriptionEnhancer(config_manager, CallableEnhancementService(failing))
        report = RunReport()

        await enhancer.enhance(segments, report)

        assert all(s.enhanced_description == s.short_description for s in segments)
        assert report.failure_kinds() == ["ExternalServiceError"] * len(segments)
        assert "service unreachable" in report.failures[0].message

    @pytest.mark.asyncio
    async def test_concurrency_cap(self, config_manager, segments):
        config_manager.set('enhancement.max_concurrent_requests', 2)
        in_flight = []
        peak = []

        async def generate(prompt):
            in_flight.append(prompt)
            peak.append(len(in_flight))
            await asyncio.sleep(0.01)
            in_flight.remove(prompt)
            return "ok"

        enhancer = DescriptionEnhancer(config_manager, CallableEnhancementService(generate))
        await enhancer.enhance(segments)

        assert max(peak) == 2

    @pytest.mark.asyncio
    async def test_no_service_is_noop(self, config_manager, segments):
        enhancer = DescriptionEnhancer(config_manager)

        await enhancer.enhance(segments)

        assert not enhancer.active
        assert all(s.enhanced_description == "" for s in segments)
