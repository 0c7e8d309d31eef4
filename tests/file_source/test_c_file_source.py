# Copyright (C) 2019-2024 Intel Corporation
# SPDX-License-Identifier: BSD-3-Clause

import logging
import unittest

from objcscan.file_source import c_file_source


def logical_lines(lines):
    """
    Return the logical lines of `lines` and the generator's return value.
    """
    result = []
    walker = c_file_source(lines)
    try:
        while True:
            result.append(next(walker))
    except StopIteration as stopit:
        return result, stopit.value


class TestCFileSource(unittest.TestCase):
    """
    Test c_file_source function.
    """

    @classmethod
    def setUpClass(self):
        logging.disable()

    def test_comments(self):
        """Check comments are removed but literals are kept"""
        lines, _ = logical_lines(
            [
                'char *s = "http://x"; // comment\n',
                "char c = '/'; /* block */ int y;\n",
            ],
        )
        self.assertEqual(lines[0].text(), 'char *s = "http://x";')
        self.assertEqual(
            lines[1].text().split(),
            ["char", "c", "=", "'/';", "int", "y;"],
        )

    def test_block_comment(self):
        """Check block comments spanning lines"""
        lines, (sloc, total) = logical_lines(["a /* x\n", "y */ b\n", "\n"])
        self.assertEqual(len(lines), 1)
        self.assertEqual(lines[0].text().split(), ["a", "b"])
        self.assertEqual(lines[0].start_line, 1)
        self.assertEqual(total, 3)

    def test_continuation(self):
        """Check backslash-newline joins physical lines"""
        lines, (sloc, total) = logical_lines(
            ["#define A \\\n", "  1\n", "x\n"],
        )
        self.assertEqual(len(lines), 2)
        self.assertEqual(lines[0].category(), "CPP_DIRECTIVE")
        self.assertEqual(lines[0].start_line, 1)
        self.assertEqual(lines[0].end_line, 2)
        self.assertEqual(lines[0].physical_lines, [1, 2])
        self.assertEqual(lines[1].category(), "SRC_NONBLANK")
        self.assertEqual(lines[1].start_line, 3)
        self.assertEqual((sloc, total), (3, 3))

    def test_blank_lines(self):
        """Check blank and comment-only lines are not reported"""
        lines, (sloc, total) = logical_lines(["\n", "   \n", "// only\n", "x\n"])
        self.assertEqual([line.text() for line in lines], ["x"])
        self.assertEqual((sloc, total), (1, 4))

    def test_crlf(self):
        """Check Windows line endings"""
        lines, _ = logical_lines(["#define A \\\r\n", "1\r\n"])
        self.assertEqual(len(lines), 1)
        self.assertEqual(lines[0].text().split(), ["#define", "A", "1"])

    def test_unterminated(self):
        """Check unterminated comments and continuations at end of file"""
        lines, _ = logical_lines(["a /* never closed\n"])
        self.assertEqual(lines[0].text(), "a")

        lines, _ = logical_lines(["b \\"])
        self.assertEqual(lines[0].text(), "b")


if __name__ == "__main__":
    unittest.main()
