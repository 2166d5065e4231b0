#!/usr/bin/env python3
"""
Run the test suite, or one group of test modules.

    python tests/run_all_tests.py            # everything under tests/
    python tests/run_all_tests.py engine     # group and challenge engines
"""
import sys
import unittest
from pathlib import Path

TESTS_DIR = Path(__file__).parent
sys.path.insert(0, str(TESTS_DIR.parent))

CATEGORIES = {
    'unit': ['test_scoring', 'test_question_set', 'test_registry', 'test_timers', 'test_config_manager'],
    'persistence': ['test_store', 'test_settlement'],
    'engine': ['test_group_session', 'test_challenge'],
    'discord': ['test_notifier', 'test_bot']
}


def build_suite(category=None) -> unittest.TestSuite:
    loader = unittest.TestLoader()
    if category is None:
        return loader.discover(str(TESTS_DIR), top_level_dir=str(TESTS_DIR.parent))
    return loader.loadTestsFromNames(f"tests.{name}" for name in CATEGORIES[category])


if __name__ == '__main__':
    category = sys.argv[1] if len(sys.argv) > 1 else None
    if category is not None and category not in CATEGORIES:
        sys.exit(f"Unknown category {category!r}, pick one of: {', '.join(CATEGORIES)}")

    result = unittest.TextTestRunner(verbosity=2).run(build_suite(category))
    sys.exit(0 if result.wasSuccessful() else 1)
