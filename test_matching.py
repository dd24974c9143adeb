import unittest

from tallyrecon.error_handler import ConfigurationError, ErrorHandler
from tallyrecon.matching import (
    KEY_SEPARATOR, SourceRow, build_key, classify_monetary, find_discrepancies, is_monetary_column,
    match_exact, match_partial
)
from tallyrecon.models import ColumnMapping, Discrepancy


def mapping_of(*pairs):
    return ColumnMapping.from_pairs(pairs)


class TestColumnMapping(unittest.TestCase):

    def test_pairs_with_an_empty_side_are_dropped(self):
        handler = ErrorHandler()
        mapping = ColumnMapping.from_pairs([('Invoice No', 'Inv'), ('', 'Amt'), ('GSTIN', None), ('Amount', 'Amt')],
                                           handler)
        self.assertEqual(mapping.gst_columns, ['Invoice No', 'Amount'])
        self.assertEqual(mapping.tally_columns, ['Inv', 'Amt'])
        self.assertEqual([p.index for p in mapping], [0, 1])
        self.assertEqual(len(handler.warning_log), 2)

    def test_empty_mapping_is_a_configuration_error(self):
        with self.assertRaises(ConfigurationError):
            ColumnMapping.from_pairs([('', 'Inv'), ('Amount', '  ')])
        with self.assertRaises(ConfigurationError):
            ColumnMapping.from_pairs([])

    def test_from_lists_pads_the_shorter_side(self):
        mapping = ColumnMapping.from_lists(['Invoice No', 'Amount', 'GSTIN'], ['Inv', 'Amt'])
        self.assertEqual(len(mapping), 2)


class TestKeyBuilder(unittest.TestCase):

    def test_equal_keys_under_normalization(self):
        gst = {'Invoice No': ' INV1 ', 'Amount': 100}
        tally = {'Inv': 'inv1', 'Amt': '100'}
        self.assertEqual(build_key(gst, ['Invoice No', 'Amount']), build_key(tally, ['Inv', 'Amt']))

    def test_missing_column_reads_as_neutral_zero(self):
        self.assertEqual(build_key({'a': 'x'}, ['a', 'b']), build_key({'a': 'x', 'b': '-'}, ['a', 'b']))

    def test_separator_keeps_fields_apart(self):
        self.assertNotEqual(build_key({'a': 'x', 'b': 'yz'}, ['a', 'b']), build_key({'a': 'xy', 'b': 'z'}, ['a', 'b']))
        self.assertEqual(build_key({'a': 'x', 'b': 'y'}, ['a', 'b']), f'x{KEY_SEPARATOR}y')


class TestDiscrepancies(unittest.TestCase):

    def test_find_discrepancies(self):
        mapping = mapping_of(('Invoice No', 'Inv'), ('Invoice Date', 'Date'), ('IGST', 'Integrated Tax'))
        gst = {'Invoice No': 'INV1', 'Invoice Date': '2024-01-15', 'IGST': '18'}
        tally = {'Inv': 'INV1', 'Date': '2024-01-15T00:00:00', 'Integrated Tax': '18.5'}
        discrepancies = find_discrepancies(gst, tally, mapping)
        self.assertEqual(discrepancies, [Discrepancy(2, 'IGST', 'Integrated Tax', '18', '18.5')])

    def test_limit_stops_early(self):
        mapping = mapping_of(('a', 'a'), ('b', 'b'), ('c', 'c'), ('d', 'd'))
        found = find_discrepancies({'a': 1, 'b': 2, 'c': 3, 'd': 4}, {'a': 5, 'b': 6, 'c': 7, 'd': 8}, mapping, limit=1)
        self.assertEqual(len(found), 2)

    def test_is_monetary_column(self):
        self.assertTrue(is_monetary_column('Taxable Value'))
        self.assertTrue(is_monetary_column('IGST Amount'))
        self.assertTrue(is_monetary_column('col_state_ut_tax'))
        self.assertTrue(is_monetary_column('Central Tax (₹)'))
        self.assertFalse(is_monetary_column('Invoice No'))
        self.assertFalse(is_monetary_column('Amount'))
        self.assertTrue(is_monetary_column('Amount', ['amount']))

    def test_classify_monetary(self):
        minor = [Discrepancy(0, 'IGST', 'IGST', '18', '18.40')]
        self.assertAlmostEqual(classify_monetary(minor)[0], 0.4)
        self.assertTrue(classify_monetary(minor)[1])

        major = minor + [Discrepancy(1, 'CGST', 'CGST', '9', '10')]
        self.assertEqual(classify_monetary(major), (1.0, False))

        non_monetary = [Discrepancy(0, 'Invoice No', 'Inv', 'A', 'B')]
        self.assertEqual(classify_monetary(non_monetary), (0.0, False))

        equal_amounts = [Discrepancy(0, 'IGST', 'IGST', '₹18', '18')]
        self.assertEqual(classify_monetary(equal_amounts), (0.0, False))

    def test_monetary_grading_follows_the_gst_column(self):
        tally_named_tax = [Discrepancy(0, 'Amount', 'IGST', '100', '150')]
        self.assertEqual(classify_monetary(tally_named_tax), (0.0, False))

        gst_named_tax = [Discrepancy(0, 'IGST', 'Amount', '100', '150')]
        self.assertEqual(classify_monetary(gst_named_tax), (50.0, False))


class TestExactMatcher(unittest.TestCase):

    def setUp(self):
        self.mapping = mapping_of(('Invoice No', 'Inv'), ('Amount', 'Amt'))

    def test_duplicates_pair_one_to_one_in_order(self):
        gst = [{'Invoice No': 'A', 'Amount': '1'}, {'Invoice No': 'A', 'Amount': '1'}, {'Invoice No': 'A', 'Amount': '1'}]
        tally = [{'Inv': 'A', 'Amt': '1'}, {'Inv': 'B', 'Amt': '2'}, {'Inv': 'A', 'Amt': '1'}]
        outcome = match_exact(gst, tally, self.mapping)

        self.assertEqual([(m.gst_index, m.tally_index) for m in outcome.exact], [(0, 0), (1, 2)])
        self.assertEqual([row.index for row in outcome.remaining_gst], [2])
        self.assertEqual([row.index for row in outcome.remaining_tally], [1])

    def test_source_rows_keep_their_indices(self):
        gst = [SourceRow(7, {'Invoice No': 'A', 'Amount': '1'})]
        tally = [SourceRow(3, {'Inv': 'A', 'Amt': '1'})]
        outcome = match_exact(gst, tally, self.mapping)
        self.assertEqual((outcome.exact[0].gst_index, outcome.exact[0].tally_index), (7, 3))


class TestPartialMatcher(unittest.TestCase):

    def setUp(self):
        self.mapping = mapping_of(('a', 'a'), ('b', 'b'), ('c', 'c'), ('d', 'd'), ('e', 'e'))

    def row(self, values):
        return dict(zip('abcde', values))

    def test_picks_fewest_discrepancies(self):
        gst = [self.row('12345')]
        tally = [self.row('1xx45'), self.row('1234x'), self.row('xxx45')]
        outcome = match_partial(gst, tally, self.mapping)
        self.assertEqual(len(outcome.partial), 1)
        self.assertEqual(outcome.partial[0].tally_index, 1)
        self.assertEqual(outcome.partial[0].discrepancies, 1)
        self.assertEqual([r.index for r in outcome.tally_only], [0, 2])

    def test_first_candidate_wins_ties(self):
        gst = [self.row('12345')]
        tally = [self.row('1x3x5'), self.row('12xx5')]
        outcome = match_partial(gst, tally, self.mapping)
        self.assertEqual(outcome.partial[0].tally_index, 0)

    def test_budget_excludes_distant_candidates(self):
        gst = [self.row('12345')]
        tally = [self.row('xxxx5')]
        outcome = match_partial(gst, tally, self.mapping)
        self.assertEqual(outcome.partial, [])
        self.assertEqual(len(outcome.gst_only), 1)
        self.assertEqual(len(outcome.tally_only), 1)

        wider = match_partial(gst, tally, self.mapping, budget=4)
        self.assertEqual(wider.partial[0].discrepancies, 4)

    def test_identical_rows_are_not_partial_candidates(self):
        outcome = match_partial([self.row('12345')], [self.row('12345')], self.mapping)
        self.assertEqual(outcome.partial, [])

    def test_consumed_tally_rows_are_not_reused(self):
        gst = [self.row('12345'), self.row('12349')]
        tally = [self.row('1234x')]
        outcome = match_partial(gst, tally, self.mapping)
        self.assertEqual([m.gst_index for m in outcome.partial], [0])
        self.assertEqual([r.index for r in outcome.gst_only], [1])
        self.assertEqual(outcome.tally_only, [])

    def test_severity_classification(self):
        mapping = mapping_of(('Invoice No', 'Inv'), ('Taxable Value', 'Taxable Amt'))
        gst = [{'Invoice No': 'A', 'Taxable Value': '1000'}, {'Invoice No': 'B', 'Taxable Value': '500'}]
        tally = [{'Inv': 'A', 'Taxable Amt': '1000.40'}, {'Inv': 'B', 'Taxable Amt': '520'}]
        outcome = match_partial(gst, tally, mapping)

        minor, major = outcome.partial
        self.assertTrue(minor.is_minor)
        self.assertEqual(minor.severity, 'minor')
        self.assertAlmostEqual(minor.max_discrepancy, 0.4)
        self.assertFalse(major.is_minor)
        self.assertEqual(major.severity, 'major')
        self.assertAlmostEqual(major.max_discrepancy, 20.0)


if __name__ == '__main__':
    unittest.main()
