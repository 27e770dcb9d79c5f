import unittest

from core.diff import compute_pending
from core.models import Collection, Item


def make_set(set_id: str, aliases: list[str], name: str = "") -> Collection:
    items = tuple(Item(id=f"{set_id}-{a}", alias=a, media_id=f"m-{a}") for a in aliases)
    return Collection(id=set_id, name=name or set_id, items=items)


class TestComputePending(unittest.TestCase):
    def test_skips_aliases_present_in_target(self) -> None:
        source = make_set("S", ["a", "b", "c"])
        target = make_set("T", ["c"], name="Main")

        plan = compute_pending(source, target)

        self.assertEqual([i.alias for i in plan.pending_items], ["a", "b"])
        self.assertEqual(plan.total, 2)
        self.assertEqual(plan.skipped, 1)
        self.assertEqual(plan.source_id, "S")
        self.assertEqual(plan.target_id, "T")
        self.assertEqual(plan.target_name, "Main")

    def test_preserves_source_order(self) -> None:
        source = make_set("S", ["zeta", "alpha", "mid", "beta", "omega"])
        target = make_set("T", ["beta", "unrelated"])

        plan = compute_pending(source, target)

        self.assertEqual([i.alias for i in plan.pending_items], ["zeta", "alpha", "mid", "omega"])
        self.assertEqual(plan.total + plan.skipped, len(source.items))

    def test_matches_on_alias_not_media(self) -> None:
        source = Collection(id="S", name="S", items=(Item(id="1", alias="KEKW", media_id="m1"),))
        target = Collection(id="T", name="T", items=(Item(id="2", alias="KEKW", media_id="other"),))

        plan = compute_pending(source, target)

        self.assertEqual(plan.total, 0)
        self.assertEqual(plan.skipped, 1)

    def test_aliases_are_case_sensitive(self) -> None:
        plan = compute_pending(make_set("S", ["Pog"]), make_set("T", ["pog"]))
        self.assertEqual(plan.total, 1)

    def test_empty_sets(self) -> None:
        plan = compute_pending(make_set("S", []), make_set("T", ["a"]))
        self.assertEqual(plan.pending_items, ())
        self.assertEqual((plan.total, plan.skipped), (0, 0))

    def test_explicit_target_name_wins(self) -> None:
        plan = compute_pending(make_set("S", ["a"]), make_set("T", [], name="Fetched"), "Given")
        self.assertEqual(plan.target_name, "Given")

    def test_does_not_modify_inputs(self) -> None:
        source = make_set("S", ["a", "b"])
        target = make_set("T", ["a"])
        compute_pending(source, target)
        self.assertEqual(len(source.items), 2)
        self.assertEqual(len(target.items), 1)


if __name__ == "__main__":
    unittest.main()
