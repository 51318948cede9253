import itertools
import unittest

from compradar.ingestion.listing_types import Listing
from compradar.processing.dedupe import dedupe, dedupe_by_link, signature
from compradar.scoring.listing_scoring import score_listing


def _item(link, title="Win a hamper", source="brand.example", created_at=None, deadline=None, prize=None):
    return Listing(
        id=link or f"hash:{title}|{source}",
        title=title,
        link=link,
        source=source,
        created_at=created_at,
        deadline=deadline,
        prize=prize,
    )


class TestScoring(unittest.TestCase):
    def test_score_weights(self):
        bare = _item("https://a.example/1", title="abcd")
        dated = _item("https://a.example/1", title="abcd", created_at="2024-01-01T00:00:00.000Z")
        with_deadline = _item("https://a.example/1", title="abcd", deadline="2024-12-01T00:00:00.000Z")
        self.assertAlmostEqual(score_listing(bare), 0.004)
        self.assertAlmostEqual(score_listing(dated), 2.004)
        self.assertAlmostEqual(score_listing(with_deadline), 3.004)


class TestDedupe(unittest.TestCase):
    def test_canonical_scenario_keeps_dated_record(self):
        undated = _item("https://brand.example/offer", source="brand.example")
        dated = _item("https://brand.example/offer", source="brand.example", created_at="2024-05-01T00:00:00.000Z")
        for order in ([undated, dated], [dated, undated]):
            out = dedupe(order)
            self.assertEqual(len(out), 1)
            self.assertIs(out[0], dated)

    def test_linkless_records_never_merge_by_link(self):
        a = _item("", title="Win a mug", source="mugs")
        b = _item("", title="Win a cup", source="mugs")
        self.assertEqual(dedupe_by_link([a, b]), [a, b])

    def test_signature_pass_merges_different_links(self):
        direct = _item("https://brand.example/offer", title="Win a Hamper", created_at="2024-05-01T00:00:00.000Z")
        variant = _item("https://brand.example/offer?id=2", title="win a hamper")
        linkless = _item("", title="WIN A HAMPER", source="Brand.Example")
        out = dedupe([variant, linkless, direct])
        self.assertEqual(out, [direct])

    def test_first_seen_group_order(self):
        a = _item("https://a.example/1", title="First")
        b = _item("https://b.example/1", title="Second")
        a2 = _item("https://a.example/1", title="First", created_at="2024-05-01T00:00:00.000Z")
        self.assertEqual(dedupe([a, b, a2]), [a2, b])

    def test_order_invariance(self):
        records = [
            _item("https://brand.example/offer", title="Win a hamper"),
            _item("https://brand.example/offer", title="Win a hamper", prize="Hamper"),
            _item("https://brand.example/offer", title="Win a hamper", prize="Gift"),
            _item("https://brand.example/offer?v=2", title="Win a Hamper", created_at="2024-02-01T00:00:00.000Z"),
            _item("https://other.example/x", title="Win a car", source="other.example"),
            _item("", title="Win a car", source="other.example", created_at="2024-03-01T00:00:00.000Z"),
            _item("", title="Win a bike", source="bikes"),
        ]
        expected = sorted((r.id, r.prize or "") for r in dedupe(records))
        for perm in itertools.permutations(records):
            out = dedupe(list(perm))
            self.assertEqual(sorted((r.id, r.prize or "") for r in out), expected)

    def test_invariants_hold(self):
        records = [
            _item("https://x.example/1", title="A"),
            _item("https://x.example/1", title="B"),
            _item("https://x.example/2", title="a"),
            _item("", title="A"),
        ]
        out = dedupe(records)
        links = [r.link for r in out if r.link]
        self.assertEqual(len(links), len(set(links)))
        sigs = [signature(r) for r in out]
        self.assertEqual(len(sigs), len(set(sigs)))


if __name__ == "__main__":
    unittest.main()
