import io
import os
import shutil
import tempfile
import unittest
from datetime import datetime

import pandas as pd

from tallyrecon.error_handler import ConfigurationError, ErrorHandler, FileParseError
from tallyrecon.file_parser import apply_header_row, get_columns, parse_csv, parse_excel, parse_file

CSV_TEXT = (
    "Invoice No,Amount,Invoice Date\n"
    "INV1,100,15/01/2024\n"
    "INV2,-,\n"
    "\n"
    "25-26/0001, 50 ,45000\n"
)


class TestParseCSV(unittest.TestCase):

    def test_cells_are_normalized(self):
        records = parse_csv(io.StringIO(CSV_TEXT), filename='gst.csv')
        self.assertEqual(records, [
            {'Invoice No': 'INV1', 'Amount': '100', 'Invoice Date': '15/01/2024'},
            {'Invoice No': 'INV2', 'Amount': 0, 'Invoice Date': 0},
            {'Invoice No': '25-26/0001', 'Amount': '50', 'Invoice Date': '45000'},
        ])

    def test_header_row_skips_leading_records(self):
        records = parse_csv(io.StringIO(CSV_TEXT), filename='gst.csv', header_row=2)
        self.assertEqual([r['Invoice No'] for r in records], ['INV2', '25-26/0001'])

    def test_literal_na_text_is_kept(self):
        records = parse_csv(io.StringIO("Party,State\nNA,None\n"), filename='tally.csv')
        self.assertEqual(records, [{'Party': 'NA', 'State': 'None'}])

    def test_empty_file(self):
        handler = ErrorHandler()
        with self.assertRaises(FileParseError) as ctx:
            parse_csv(io.StringIO(""), filename='empty.csv', error_handler=handler)
        self.assertEqual(ctx.exception.error_entry['error_type'], 'EMPTY_FILE_ERROR')
        self.assertEqual(len(handler.error_log), 1)


class TestParseExcel(unittest.TestCase):

    def setUp(self):
        self.tmpdir = tempfile.mkdtemp()

    def tearDown(self):
        shutil.rmtree(self.tmpdir, ignore_errors=True)

    def test_excel_values(self):
        path = os.path.join(self.tmpdir, 'tally.xlsx')
        pd.DataFrame({
            'Voucher No': ['25-26/0001', 'V2'],
            'Amount': [100.0, 100.5],
            'Invoice Date': [datetime(2024, 1, 15), datetime(2024, 2, 1)],
            'Note': ['x', None],
        }).to_excel(path, index=False)

        records = parse_excel(path)
        self.assertEqual(records[0], {'Voucher No': '25-26/0001', 'Amount': '100',
                                      'Invoice Date': '2024-01-15', 'Note': 'x'})
        self.assertEqual(records[1]['Amount'], '100.5')
        self.assertEqual(records[1]['Note'], 0)

    def test_parse_file_dispatches_on_extension(self):
        path = os.path.join(self.tmpdir, 'gst.xlsx')
        pd.DataFrame({'Invoice No': ['A', 'B', 'C']}).to_excel(path, index=False)
        self.assertEqual(len(parse_file(path)), 3)
        self.assertEqual(len(parse_file(path, header_row=3)), 1)

        csv_path = os.path.join(self.tmpdir, 'gst.csv')
        with open(csv_path, 'w', encoding='utf-8') as f:
            f.write(CSV_TEXT)
        self.assertEqual(len(parse_file(csv_path)), 3)

    def test_invalid_workbook(self):
        handler = ErrorHandler()
        with self.assertRaises(FileParseError) as ctx:
            parse_file(io.BytesIO(b'not a workbook'), filename='broken.xlsx', error_handler=handler)
        self.assertEqual(ctx.exception.filename, 'broken.xlsx')
        self.assertEqual(ctx.exception.error_entry['error_type'], 'INVALID_FILE_FORMAT')


class TestParseFileErrors(unittest.TestCase):

    def test_unsupported_extension(self):
        handler = ErrorHandler()
        with self.assertRaises(FileParseError) as ctx:
            parse_file(io.BytesIO(b'data'), filename='notes.txt', error_handler=handler)
        self.assertIn('Unsupported file format', str(ctx.exception))
        self.assertEqual(ctx.exception.error_entry['error_type'], 'UNSUPPORTED_FILE_FORMAT')
        self.assertTrue(handler.get_error_suggestions(ctx.exception.error_entry))

    def test_missing_file(self):
        with self.assertRaises(FileParseError) as ctx:
            parse_file(os.path.join(tempfile.gettempdir(), 'does_not_exist_gst.csv'))
        self.assertEqual(ctx.exception.error_entry['error_type'], 'FILE_NOT_FOUND_ERROR')


class TestRecordHelpers(unittest.TestCase):

    def test_get_columns_is_an_ordered_union(self):
        self.assertEqual(get_columns([{'a': 1, 'b': 2}, {'b': 3, 'c': 4}]), ['a', 'b', 'c'])
        self.assertEqual(get_columns([]), [])

    def test_apply_header_row(self):
        records = [{'a': 1}, {'a': 2}, {'a': 3}]
        self.assertEqual(apply_header_row(records, 1), records)
        self.assertEqual(apply_header_row(records, 3), [{'a': 3}])
        self.assertEqual(apply_header_row(records, 10), [])
        with self.assertRaises(ConfigurationError):
            apply_header_row(records, 0)


if __name__ == '__main__':
    unittest.main()
