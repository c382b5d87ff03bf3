"""
Batch diff tests.

Verifies:
- Proposed lines split into updates / additions / removals
- Unknown and duplicate line ids are reported
- Per-tour consumed / released / net units
"""

from tourledger.services.reconciliation import ExistingLine, ProposedLine, diff_batch


EXISTING = [
    ExistingLine(line_id=1, tour_id=10, quantity=5),
    ExistingLine(line_id=2, tour_id=20, quantity=2),
    ExistingLine(line_id=3, tour_id=30, quantity=1),
]


class TestClassification:

    def test_three_disjoint_work_lists(self):
        proposed = [
            ProposedLine(tour_id=10, quantity=8, total=800, line_id=1),
            ProposedLine(tour_id=40, quantity=1, total=100),
            ProposedLine(tour_id=20, quantity=2, total=200, line_id=2),
        ]
        diff = diff_batch(EXISTING, proposed)

        assert [u.existing.line_id for u in diff.updates] == [1, 2]
        assert [a.tour_id for a in diff.additions] == [40]
        assert [r.line_id for r in diff.removals] == [3]
        assert diff.is_valid

    def test_empty_existing_makes_everything_an_addition(self):
        proposed = [ProposedLine(tour_id=10, quantity=1, total=1)]
        diff = diff_batch([], proposed)
        assert diff.additions == proposed
        assert diff.updates == []
        assert diff.removals == []

    def test_unknown_line_id_is_reported_not_dropped(self):
        proposed = [ProposedLine(tour_id=10, quantity=1, total=1, line_id=99)]
        diff = diff_batch(EXISTING, proposed)
        assert diff.unknown_line_ids == [99]
        assert not diff.is_valid
        # Every existing line is absent from the proposal
        assert {r.line_id for r in diff.removals} == {1, 2, 3}

    def test_duplicate_line_id_is_reported(self):
        proposed = [
            ProposedLine(tour_id=10, quantity=1, total=1, line_id=1),
            ProposedLine(tour_id=10, quantity=2, total=2, line_id=1),
        ]
        diff = diff_batch(EXISTING, proposed)
        assert diff.duplicate_line_ids == [1]
        assert len(diff.updates) == 1
        assert not diff.is_valid


class TestInventoryEffects:

    def test_quantity_increase_consumes_the_delta(self):
        proposed = [
            ProposedLine(tour_id=10, quantity=8, total=0, line_id=1),
            ProposedLine(tour_id=20, quantity=2, total=0, line_id=2),
            ProposedLine(tour_id=30, quantity=1, total=0, line_id=3),
        ]
        diff = diff_batch(EXISTING, proposed)
        assert diff.consumed_by_tour() == {10: 3, 20: 0, 30: 0}
        assert diff.released_by_tour() == {}
        assert diff.net_by_tour() == {10: 3, 20: 0, 30: 0}

    def test_quantity_decrease_is_a_negative_consumption(self):
        proposed = [ProposedLine(tour_id=10, quantity=2, total=0, line_id=1)]
        diff = diff_batch(EXISTING[:1], proposed)
        assert diff.consumed_by_tour() == {10: -3}

    def test_tour_change_releases_old_and_consumes_new(self):
        proposed = [ProposedLine(tour_id=20, quantity=4, total=0, line_id=1)]
        diff = diff_batch(EXISTING[:1], proposed)
        assert diff.updates[0].changes_tour
        assert diff.consumed_by_tour() == {20: 4}
        assert diff.released_by_tour() == {10: 5}
        assert diff.net_by_tour() == {20: 4, 10: -5}

    def test_remove_and_re_add_same_tour_nets_out(self):
        existing = [ExistingLine(line_id=1, tour_id=10, quantity=3)]
        proposed = [ProposedLine(tour_id=10, quantity=3, total=0)]
        diff = diff_batch(existing, proposed)
        assert diff.net_by_tour() == {10: 0}
        assert diff.net_by_tour(include_released=False) == {10: 3}

    def test_touched_tours_cover_both_sides(self):
        proposed = [ProposedLine(tour_id=40, quantity=1, total=0)]
        diff = diff_batch(EXISTING, proposed)
        assert diff.touched_tour_ids() == [40, 10, 20, 30]
