# Copyright (C) 2019-2024 Intel Corporation
# SPDX-License-Identifier: BSD-3-Clause

import logging
import unittest

from objcscan.preprocessor import EvaluationError, ExpressionEvaluator, Lexer


def evaluate(text):
    return ExpressionEvaluator(Lexer(text).tokenize()).evaluate()


class TestExpressionEvaluator(unittest.TestCase):
    """
    Test ExpressionEvaluator class.
    """

    @classmethod
    def setUpClass(self):
        logging.disable()

    def test_arithmetic(self):
        """Check precedence and associativity"""
        self.assertTrue(evaluate("1 + 2 * 3 == 7"))
        self.assertTrue(evaluate("(1 + 2) * 3 == 9"))
        self.assertTrue(evaluate("10 - 4 - 3 == 3"))
        self.assertTrue(evaluate("10 / 3 == 3"))
        self.assertTrue(evaluate("10 % 3 == 1"))
        self.assertTrue(evaluate("1 << 3 == 8"))
        self.assertTrue(evaluate("(6 & 3) == 2 && (6 | 1) == 7 && (6 ^ 3) == 5"))
        self.assertFalse(evaluate("2 - 2"))

    def test_unary(self):
        """Check unary operators"""
        self.assertTrue(evaluate("!0"))
        self.assertFalse(evaluate("!5"))
        self.assertTrue(evaluate("~0 == -1"))
        self.assertTrue(evaluate("-(-2) == +2"))

    def test_ternary(self):
        """Check conditional operator"""
        self.assertTrue(evaluate("1 ? 2 : 0"))
        self.assertFalse(evaluate("0 ? 1 : 0"))
        self.assertTrue(evaluate("0 ? 0 : 1 ? 3 : 0"))

    def test_literals(self):
        """Check integer bases, suffixes and character constants"""
        self.assertTrue(evaluate("0x10 == 16"))
        self.assertTrue(evaluate("010 == 8"))
        self.assertTrue(evaluate("0b11 == 3"))
        self.assertTrue(evaluate("10UL == 10"))
        self.assertTrue(evaluate("201112L > 199901L"))
        self.assertTrue(evaluate("'a' == 97"))
        self.assertTrue(evaluate("'\\n' == 10"))
        self.assertTrue(evaluate("'\\x41' == 65"))

    def test_unsigned(self):
        """Check usual arithmetic conversions"""
        self.assertTrue(evaluate("-1 < 0"))
        self.assertFalse(evaluate("-1 < 0u"))
        self.assertTrue(evaluate("18446744073709551615 == -1"))

    def test_overflow(self):
        """Check 64-bit wrap-around"""
        self.assertTrue(evaluate("9223372036854775807 + 1 < 0"))

    def test_identifiers(self):
        """Check remaining identifiers and calls"""
        self.assertFalse(evaluate("UNDEFINED"))
        self.assertFalse(evaluate("foo(1, (2))"))
        self.assertTrue(evaluate("true"))
        self.assertFalse(evaluate("false"))
        self.assertTrue(evaluate("!UNDEFINED"))

    def test_errors(self):
        """Check malformed expressions raise EvaluationError"""
        for text in ["1 / 0", "1 % 0", "1 2", "1.5", "(1", "1 +", "", '"s"']:
            with self.subTest(text=text):
                with self.assertRaises(EvaluationError):
                    evaluate(text)


if __name__ == "__main__":
    unittest.main()
