import random
import unittest

from tallyrecon.models import ColumnMapping
from tallyrecon.reconciliation import reconcile
from tallyrecon.relational import (
    RelationalReconciler, build_feature_frame, relational_exact_keys, relational_exact_pairs,
    relational_partial_candidates, relational_source_only
)
from tallyrecon.matching import match_exact

MAPPING = ColumnMapping.from_pairs([('Invoice No', 'Voucher No'), ('GSTIN', 'Party GSTIN'), ('IGST', 'Integrated Tax')])


def gst_row(inv, gstin, igst):
    return {'Invoice No': inv, 'GSTIN': gstin, 'IGST': igst}


def tally_row(inv, gstin, igst):
    return {'Voucher No': inv, 'Party GSTIN': gstin, 'Integrated Tax': igst}


class TestFeatureFrames(unittest.TestCase):

    def test_build_feature_frame(self):
        frame = build_feature_frame([gst_row(' INV1 ', '27AAA', '-')], MAPPING.gst_columns)
        self.assertEqual(list(frame.columns), ['row_id', 'feature1', 'feature2', 'feature3'])
        self.assertEqual(frame.iloc[0].tolist(), [0, 'inv1', '27aaa', '0'])

    def test_exact_keys_have_intersect_semantics(self):
        gst = build_feature_frame([gst_row('A', 'G', '1'), gst_row('A', 'G', '1'), gst_row('B', 'G', '2')],
                                  MAPPING.gst_columns)
        tally = build_feature_frame([tally_row('a', 'g', '1'), tally_row('C', 'G', '3')], MAPPING.tally_columns)
        keys = relational_exact_keys(gst, tally)
        self.assertEqual(keys.values.tolist(), [['a', 'g', '1']])

    def test_partial_candidates_share_the_prefix(self):
        gst = build_feature_frame([gst_row('A', 'G', '1'), gst_row('B', 'G', '2')], MAPPING.gst_columns)
        tally = build_feature_frame([tally_row('A', 'G', '1.5'), tally_row('A', 'G', '1'), tally_row('Z', 'G', '2')],
                                    MAPPING.tally_columns)
        candidates = relational_partial_candidates(gst, tally, prefix=2)
        self.assertEqual(list(zip(candidates['gst_row_id'], candidates['tally_row_id'])), [(0, 0)])

    def test_prefix_covering_every_feature_yields_no_candidates(self):
        gst = build_feature_frame([gst_row('A', 'G', '1')], MAPPING.gst_columns)
        tally = build_feature_frame([tally_row('A', 'G', '1')], MAPPING.tally_columns)
        self.assertTrue(relational_partial_candidates(gst, tally, prefix=3).empty)

    def test_source_only_is_an_anti_join_on_the_prefix(self):
        gst = build_feature_frame([gst_row('A', 'G', '1'), gst_row('B', 'G', '2')], MAPPING.gst_columns)
        tally = build_feature_frame([tally_row('A', 'G', '9')], MAPPING.tally_columns)
        self.assertEqual(relational_source_only(gst, tally)['row_id'].tolist(), [1])
        self.assertTrue(relational_source_only(tally, gst).empty)

    def test_prefix_must_be_positive(self):
        gst = build_feature_frame([gst_row('A', 'G', '1')], MAPPING.gst_columns)
        with self.assertRaises(ValueError):
            relational_partial_candidates(gst, gst, prefix=0)


class TestEquivalence(unittest.TestCase):
    """The join-based and hash-based matchers must agree on identical inputs."""

    def random_rows(self, rng, count, factory):
        return [factory(rng.choice(['A', 'B', 'C', 'a ']), rng.choice(['G1', 'G2']), rng.choice(['1', '2', '-', '']))
                for _ in range(count)]

    def test_exact_pairs_match_in_memory_pairs(self):
        rng = random.Random(7)
        for _ in range(40):
            gst = self.random_rows(rng, rng.randint(0, 15), gst_row)
            tally = self.random_rows(rng, rng.randint(0, 15), tally_row)

            in_memory = match_exact(gst, tally, MAPPING)
            pairs = relational_exact_pairs(build_feature_frame(gst, MAPPING.gst_columns),
                                           build_feature_frame(tally, MAPPING.tally_columns))

            self.assertEqual(
                [(m.gst_index, m.tally_index) for m in in_memory.exact],
                [(int(g), int(t)) for g, t in zip(pairs['gst_row_id'], pairs['tally_row_id'])]
            )

    def test_relational_reconciler_produces_the_same_report(self):
        rng = random.Random(11)
        reconciler = RelationalReconciler(MAPPING)
        for _ in range(20):
            gst = self.random_rows(rng, rng.randint(0, 10), gst_row)
            tally = self.random_rows(rng, rng.randint(0, 10), tally_row)

            expected = reconcile(gst, tally, MAPPING)
            actual = reconciler.reconcile(gst, tally)

            self.assertEqual(actual.counts, expected.counts)
            self.assertEqual([(m.gst_index, m.tally_index) for m in actual.exact_matches],
                             [(m.gst_index, m.tally_index) for m in expected.exact_matches])
            self.assertEqual([(m.gst_index, m.tally_index) for m in actual.partial_matches],
                             [(m.gst_index, m.tally_index) for m in expected.partial_matches])
            self.assertTrue(actual.is_total())

    def test_partial_candidates_from_reconciler(self):
        reconciler = RelationalReconciler(MAPPING)
        candidates = reconciler.partial_candidates([gst_row('A', 'G', '1')], [tally_row('A', 'G', '2')])
        self.assertEqual(len(candidates), 1)


if __name__ == '__main__':
    unittest.main()
