"""
Test Runner for the GST vs Tally Reconciliation Engine

Runs the unit tests for the normalizer, date detector and matchers, the
integration tests for whole reconciliation runs, parsing and export, and the
batch tests.
"""

import unittest
import sys
import os
import time
import warnings

# Suppress warnings during testing
warnings.filterwarnings('ignore')

TEST_CATEGORIES = {
    "unit": [
        "test_helpers.py",
        "test_date_detector.py",
        "test_matching.py",
        "test_settings.py"
    ],
    "integration": [
        "test_reconciliation.py",
        "test_relational.py",
        "test_file_parser.py",
        "test_reports.py"
    ],
    "batch": [
        "test_batch.py"
    ]
}


def run_test_files(test_files):
    """Load and run the given test modules; returns (tests, failures, errors)."""
    totals = {'tests': 0, 'failures': 0, 'errors': 0}
    loader = unittest.TestLoader()

    for test_file in test_files:
        if not os.path.exists(test_file):
            print(f"  WARNING: Test file {test_file} not found")
            continue

        print(f"\nExecuting: {test_file}")
        print("-" * 40)
        try:
            module = __import__(test_file[:-3])
            suite = loader.loadTestsFromModule(module)
            runner = unittest.TextTestRunner(verbosity=2, stream=sys.stdout, buffer=True)
            result = runner.run(suite)
        except ImportError as e:
            print(f"  ERROR: Could not import {test_file}: {e}")
            totals['errors'] += 1
            continue

        totals['tests'] += result.testsRun
        totals['failures'] += len(result.failures)
        totals['errors'] += len(result.errors)

        print(f"\nResults for {test_file}:")
        print(f"  Tests: {result.testsRun}")
        print(f"  Failures: {len(result.failures)}")
        print(f"  Errors: {len(result.errors)}")
        for test, _ in result.failures + result.errors:
            print(f"    - {test}")

    return totals


def discover_and_run_tests(categories=None):
    """Run every category (or the named ones) and print a summary."""
    print("=" * 80)
    print("GST VS TALLY RECONCILIATION - TEST SUITE")
    print("=" * 80)

    categories = categories or list(TEST_CATEGORIES)
    overall = {'tests': 0, 'failures': 0, 'errors': 0}
    start_time = time.time()

    for category in categories:
        print(f"\n{'-' * 60}")
        print(f"RUNNING {category.upper()} TESTS")
        print(f"{'-' * 60}")
        category_start = time.time()
        totals = run_test_files(TEST_CATEGORIES[category])
        for key in overall:
            overall[key] += totals[key]
        print(f"\n{category} Summary: {totals['tests']} tests, {totals['failures']} failures, "
              f"{totals['errors']} errors in {time.time() - category_start:.2f} seconds")

    print(f"\n{'=' * 80}")
    print("OVERALL TEST SUMMARY")
    print(f"{'=' * 80}")
    print(f"Total Tests Run: {overall['tests']}")
    print(f"Total Failures: {overall['failures']}")
    print(f"Total Errors: {overall['errors']}")
    print(f"Total Time: {time.time() - start_time:.2f} seconds")

    return overall['tests'] > 0 and overall['failures'] == 0 and overall['errors'] == 0


def main():
    """Main test runner function"""
    if len(sys.argv) > 1:
        category = sys.argv[1].lower()
        if category not in TEST_CATEGORIES:
            print(f"Unknown test category: {category}")
            print(f"Available categories: {', '.join(TEST_CATEGORIES.keys())}")
            sys.exit(1)
        success = discover_and_run_tests([category])
    else:
        success = discover_and_run_tests()

    if success:
        print("\n✅ All tests completed successfully!")
        sys.exit(0)
    else:
        print("\n❌ Some tests failed or encountered errors!")
        sys.exit(1)


if __name__ == "__main__":
    main()
