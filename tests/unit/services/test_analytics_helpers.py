"""Tests for the pure helpers behind the analytics reports."""

from types import SimpleNamespace

import pytest

from api.services.analytics import (
    FALLBACK_REJECTION_CATEGORY,
    categorize_rejection,
    format_number,
    group_stages_by_name,
    median_days,
    percentage,
    productivity_score,
    time_in_stage_suggestion,
    top_department,
)
from api.services.analytics_scope import matches_location, round1, round_half_up
from database.models.pipelines import StageRole


def stage(stage_id, name, position, role=StageRole.INTERMEDIATE):
    return SimpleNamespace(id=stage_id, name=name, position=position, stage_role=role)


class TestRounding:
    @pytest.mark.parametrize("value,expected", [(2.25, 2.3), (2.24, 2.2), (66.66, 66.7), (0, 0)])
    def test_round1_half_up(self, value, expected):
        assert round1(value) == expected

    @pytest.mark.parametrize("value,expected", [(2.5, 3), (3.5, 4), (2.49, 2), (0.0, 0)])
    def test_round_half_up(self, value, expected):
        assert round_half_up(value) == expected

    def test_percentage_of_zero_is_zero(self):
        assert percentage(3, 0) == 0
        assert percentage(1, 3) == 33.3

    def test_format_number(self):
        assert format_number(8.0) == "8"
        assert format_number(8.5) == "8.5"


class TestStageGrouping:
    def test_groups_same_name_across_jobs(self):
        groups = group_stages_by_name([
            stage(1, "Queue", 0, StageRole.QUEUE),
            stage(11, "Queue", 0, StageRole.QUEUE),
            stage(2, "Screening", 1),
            stage(12, "Phone Screen", 1),
            stage(3, "Hired", 2, StageRole.HIRED),
        ])

        assert [group.name for group in groups] == ["Queue", "Screening", "Phone Screen", "Hired"]
        assert groups[0].stage_ids == [1, 11]
        assert StageRole.HIRED in groups[-1].roles

    def test_group_position_is_first_seen(self):
        groups = group_stages_by_name([stage(1, "Offer", 2), stage(2, "Offer", 5), stage(3, "Interview", 3)])
        assert [group.name for group in groups] == ["Offer", "Interview"]


class TestTimeInStageSuggestion:
    @pytest.mark.parametrize(
        "avg_days,fragment",
        [
            (20.5, "significantly longer than other stages"),
            (10, "setting clearer timelines"),
            (5, "can be reduced while maintaining quality"),
            (2, "moving efficiently"),
        ],
    )
    def test_tiers(self, avg_days, fragment):
        assert fragment in time_in_stage_suggestion("Screening", avg_days)

    def test_boundaries_use_strict_comparison(self):
        assert "setting clearer timelines" in time_in_stage_suggestion("Offer", 14)
        assert "moving efficiently" in time_in_stage_suggestion("Offer", 3)

    def test_whole_days_render_without_decimal(self):
        assert 'The "Screening" stage is taking 8 days on average' in time_in_stage_suggestion("Screening", 8.0)


class TestRejectionCategories:
    @pytest.mark.parametrize(
        "comment,category",
        [
            ("Lacks technical depth", "Skill mismatch"),
            ("Salary expectations too high", "Compensation mismatch"),
            ("Not a culture fit", "Culture fit"),
            ("Notice period of 90 days", "Location/notice/other"),
            ("Ghosted us", FALLBACK_REJECTION_CATEGORY),
            (None, FALLBACK_REJECTION_CATEGORY),
        ],
    )
    def test_keyword_categories(self, comment, category):
        assert categorize_rejection(comment) == category

    def test_first_matching_category_wins(self):
        assert categorize_rejection("Salary fine but weak technical skills") == "Skill mismatch"


class TestRecruiterHelpers:
    def test_productivity_score_components(self):
        assert productivity_score(0, 0, 0, 0) == 0
        # 10 for one hire, 15 for half the CVs interviewed, 40 for a fast fill
        assert productivity_score(1, 1, 2, 10) == 65
        assert productivity_score(5, 10, 5, 60) == 85

    def test_time_component_never_negative(self):
        assert productivity_score(1, 0, 1, 200) == 10

    def test_top_department(self):
        jobs = [
            SimpleNamespace(department="Sales"),
            SimpleNamespace(department=None),
            SimpleNamespace(department="Engineering"),
            SimpleNamespace(department="Engineering"),
        ]
        assert top_department(jobs) == "Engineering"
        assert top_department([SimpleNamespace(department=None)]) == "General"
        assert top_department([SimpleNamespace(department="A"), SimpleNamespace(department="B")]) == "A"


class TestMedian:
    @pytest.mark.parametrize("days,expected", [([], 0), ([7], 7), ([1, 9, 4], 4), ([3, 4], 4), ([1, 2, 10, 20], 6)])
    def test_median(self, days, expected):
        assert median_days(days) == expected


class TestLocationMatching:
    def test_matches_single_or_list(self):
        job = SimpleNamespace(location="Berlin", locations=["Remote"])
        assert matches_location(job, None)
        assert matches_location(job, "Berlin")
        assert matches_location(job, "Remote")
        assert not matches_location(job, "Lisbon")
        assert not matches_location(SimpleNamespace(location=None, locations=None), "Lisbon")
