"""
Tests for autofix.strategies: deterministic conflict resolution.

Validates:
- Strategy parsing (case-insensitive, unknown names rejected)
- conservative / aggressive / balanced / align_to_protocol winners
- Identical patches are merged rather than reported as conflicts
- Distinct list entries never conflict
"""

import pytest

from core.errors import MissingTargetError
from core.issues import Issue, IssueCategory, Patch, PatchOperation, Severity
from autofix.strategies import Candidate, Strategy, group_by_key, resolve_conflicts, winner_for


def _issue(code, severity=Severity.WARNING):
    return Issue(code=code, severity=severity, category=IssueCategory.PROTOCOL_SAP, message=code)


def _candidate(order, value, severity=Severity.WARNING, source=None, field="statisticalTests.ep_1.test",
               operation=PatchOperation.SET):
    patch = Patch("SAP", field, operation, value, source_document=source)
    return Candidate(order=order, issue=_issue(f"I{order}", severity), patch=patch)


def _winner_values(resolution):
    return [c.patch.value for c in resolution.winners]


# ── Parsing ──────────────────────────────────────────────────────────

class TestStrategyParse:

    @pytest.mark.parametrize("raw, expected", [
        ("conservative", Strategy.CONSERVATIVE),
        ("AGGRESSIVE", Strategy.AGGRESSIVE),
        (" balanced ", Strategy.BALANCED),
        ("align_to_protocol", Strategy.ALIGN_TO_PROTOCOL),
        (Strategy.BALANCED, Strategy.BALANCED),
    ])
    def test_known(self, raw, expected):
        assert Strategy.parse(raw) is expected

    def test_unknown(self):
        with pytest.raises(MissingTargetError, match="Unknown strategy 'yolo'"):
            Strategy.parse("yolo")


# ── Resolution ───────────────────────────────────────────────────────

class TestResolveConflicts:

    def test_conservative_first_wins(self):
        cands = [_candidate(0, "MMRM"), _candidate(1, "ANCOVA")]
        resolution = resolve_conflicts(cands, Strategy.CONSERVATIVE)
        assert _winner_values(resolution) == ["MMRM"]
        assert resolution.conflicts == {1: 0}

    def test_aggressive_last_wins(self):
        cands = [_candidate(0, "MMRM"), _candidate(1, "ANCOVA"), _candidate(2, "t-test")]
        resolution = resolve_conflicts(cands, Strategy.AGGRESSIVE)
        assert _winner_values(resolution) == ["t-test"]
        assert resolution.conflicts == {0: 2, 1: 2}

    def test_balanced_most_severe_wins(self):
        cands = [
            _candidate(0, "MMRM", Severity.WARNING),
            _candidate(1, "ANCOVA", Severity.CRITICAL),
            _candidate(2, "t-test", Severity.ERROR),
        ]
        assert _winner_values(resolve_conflicts(cands, Strategy.BALANCED)) == ["ANCOVA"]

    def test_balanced_tie_goes_to_first(self):
        cands = [_candidate(0, "MMRM", Severity.ERROR), _candidate(1, "ANCOVA", Severity.ERROR)]
        assert _winner_values(resolve_conflicts(cands, Strategy.BALANCED)) == ["MMRM"]

    def test_align_to_protocol_prefers_protocol_source(self):
        cands = [
            _candidate(0, "MMRM", source="SAP"),
            _candidate(1, "ANCOVA", source="PROTOCOL"),
            _candidate(2, "t-test", source="PROTOCOL"),
        ]
        resolution = resolve_conflicts(cands, Strategy.ALIGN_TO_PROTOCOL)
        assert _winner_values(resolution) == ["ANCOVA"]
        assert resolution.conflicts == {0: 1, 2: 1}

    def test_align_to_protocol_falls_back_to_first(self):
        cands = [_candidate(0, "MMRM", source="SAP"), _candidate(1, "ANCOVA")]
        assert _winner_values(resolve_conflicts(cands, Strategy.ALIGN_TO_PROTOCOL)) == ["MMRM"]

    def test_identical_patches_merged(self):
        cands = [_candidate(0, "ANCOVA"), _candidate(1, "ANCOVA"), _candidate(2, "MMRM")]
        resolution = resolve_conflicts(cands, Strategy.CONSERVATIVE)
        assert resolution.merged == {1: 0}
        assert resolution.conflicts == {2: 0}
        assert winner_for(resolution, 1) == 0
        assert winner_for(resolution, 2) == 0
        assert winner_for(resolution, 0) is None

    def test_independent_fields_all_win(self):
        cands = [
            _candidate(0, "ANCOVA"),
            _candidate(1, "Logistic regression", field="statisticalTests.ep_2.test"),
        ]
        resolution = resolve_conflicts(cands, Strategy.CONSERVATIVE)
        assert len(resolution.winners) == 2
        assert resolution.conflicts == {} and resolution.merged == {}

    def test_distinct_appends_do_not_conflict(self):
        cands = [
            _candidate(0, {"id": "sap_ep_2", "name": "Weight"}, field="primaryEndpoints",
                       operation=PatchOperation.APPEND),
            _candidate(1, {"id": "sap_ep_3", "name": "Waist"}, field="primaryEndpoints",
                       operation=PatchOperation.APPEND),
        ]
        assert len(group_by_key(cands)) == 2
        assert len(resolve_conflicts(cands, Strategy.AGGRESSIVE).winners) == 2

    def test_winners_keep_registration_order(self):
        cands = [
            _candidate(0, "MMRM", Severity.INFO),
            _candidate(1, "x", field="missingDataStrategy"),
            _candidate(2, "ANCOVA", Severity.CRITICAL),
        ]
        resolution = resolve_conflicts(cands, Strategy.BALANCED)
        assert [c.order for c in resolution.winners] == [1, 2]

    def test_resolution_is_deterministic(self):
        cands = [_candidate(i, f"test_{i % 3}", Severity.ERROR) for i in range(6)]
        first = resolve_conflicts(cands, Strategy.BALANCED)
        second = resolve_conflicts(cands, Strategy.BALANCED)
        assert first.conflicts == second.conflicts and first.merged == second.merged
        assert first.merged == {3: 0}
