# Copyright (C) 2019-2024 Intel Corporation
# SPDX-License-Identifier: BSD-3-Clause

import logging
import unittest

from objcscan.config import Configuration
from objcscan.preprocessor import Preprocessor, TokenType


def expand(text, configuration=None):
    if configuration is None:
        configuration = Configuration(standard_macros=False)
    preprocessor = Preprocessor(configuration)
    tokens = preprocessor.preprocess_text(text, "test.m")
    return [t.value for t in tokens if t.type is not TokenType.EOF]


class TestConditionals(unittest.TestCase):
    """
    Test conditional compilation.
    """

    @classmethod
    def setUpClass(self):
        logging.disable()

    def test_ifdef(self):
        """Check #ifdef and #ifndef"""
        source = "#ifdef A\nx\n#else\ny\n#endif"
        self.assertEqual(expand(source), ["y"])
        self.assertEqual(expand("#define A\n" + source), ["x"])
        self.assertEqual(expand("#ifndef A\nx\n#endif"), ["x"])
        self.assertEqual(expand("#define A\n#ifndef A\nx\n#endif\nz"), ["z"])

    def test_if_else(self):
        """Check #if with #else"""
        self.assertEqual(expand("#if 1\na\n#else\nb\n#endif"), ["a"])
        self.assertEqual(expand("#if 0\na\n#else\nb\n#endif"), ["b"])

    def test_elif_chain(self):
        """Check only the first true branch of a chain is active"""
        source = "#if 0\na\n#elif 1\nb\n#elif 1\nc\n#else\nd\n#endif"
        self.assertEqual(expand(source), ["b"])

        source = "#if 1\na\n#elif 1\nb\n#else\nc\n#endif"
        self.assertEqual(expand(source), ["a"])

        source = "#if 0\na\n#elif 0\nb\n#else\nc\n#endif"
        self.assertEqual(expand(source), ["c"])

    def test_nested_skipped(self):
        """Check conditionals nested inside a skipped block"""
        source = "#if 0\n#if 1\na\n#else\nb\n#endif\nc\n#endif\nd"
        self.assertEqual(expand(source), ["d"])

        source = "#if 0\n#ifdef X\na\n#elif 1\nb\n#endif\n#else\ne\n#endif"
        self.assertEqual(expand(source), ["e"])

    def test_nested_active(self):
        """Check conditionals nested inside an active block"""
        self.assertEqual(expand("#if 1\n#if 0\na\n#endif\nb\n#endif"), ["b"])

    def test_defined(self):
        """Check defined X and defined(X)"""
        source = "#define X\n#if defined(X) && !defined Y\nok\n#endif"
        self.assertEqual(expand(source), ["ok"])

    def test_macros_in_expression(self):
        """Check macros are expanded in #if"""
        self.assertEqual(expand("#define V 3\n#if V > 2\nok\n#endif"), ["ok"])
        source = "#define GT(a,b) ((a)>(b))\n#if GT(3, 2)\nok\n#endif"
        self.assertEqual(expand(source), ["ok"])

    def test_evaluation_failure(self):
        """Check expressions that cannot be evaluated count as true"""
        self.assertEqual(expand("#if 1 +\nok\n#endif"), ["ok"])
        self.assertEqual(expand("#if 1 / 0\nok\n#else\nno\n#endif"), ["ok"])

    def test_skipped_directives(self):
        """Check directives are not executed inside skipped blocks"""
        self.assertEqual(expand("#if 0\n#define A 1\n#endif\nA"), ["A"])
        self.assertEqual(expand("#define A 1\n#if 0\n#undef A\n#endif\nA"), ["1"])

    def test_skipped_literals(self):
        """Check every token is dropped inside skipped blocks"""
        self.assertEqual(expand('#if 0\n"s" 1 x\n#endif'), [])

    def test_malformed_conditional(self):
        """Check a malformed #ifdef keeps nesting balanced"""
        source = "#if 0\n#ifdef\n#endif\nx\n#endif\ny"
        self.assertEqual(expand(source), ["y"])

    def test_unrecognized_stripped(self):
        """Check other directives are removed from the stream"""
        source = "#pragma mark - Section\n#error oops\n#foo\n#\na"
        self.assertEqual(expand(source), ["a"])

    def test_standard_macros(self):
        """Check the predefined Objective-C environment"""
        configuration = Configuration()
        self.assertEqual(
            expand("#ifdef __OBJC__\nobjc\n#endif", configuration),
            ["objc"],
        )
        self.assertEqual(
            expand("#if __STDC_VERSION__ >= 199901L\nc99\n#endif", configuration),
            ["c99"],
        )

    def test_configured_defines(self):
        """Check macros from the configuration"""
        configuration = Configuration(defines=["DEBUG=1"])
        self.assertEqual(expand("#if DEBUG\nd\n#endif", configuration), ["d"])


class TestConditionalState(unittest.TestCase):
    """
    Test the conditional state kept by a Preprocessor.
    """

    @classmethod
    def setUpClass(self):
        logging.disable()

    def test_state_stack(self):
        """Check push_state and pop_state"""
        preprocessor = Preprocessor()
        preprocessor.begin_file("main.m")
        preprocessor.preprocess_text("#if 0\n", "main.m")
        self.assertTrue(preprocessor.in_skipping_mode())

        preprocessor.push_state("inc.h")
        self.assertFalse(preprocessor.in_skipping_mode())
        self.assertEqual(preprocessor.file_under_analysis(), "inc.h")

        preprocessor.pop_state()
        self.assertTrue(preprocessor.in_skipping_mode())
        self.assertEqual(preprocessor.file_under_analysis(), "main.m")

        with self.assertRaises(RuntimeError):
            preprocessor.pop_state()

    def test_nested_ifdef_balance(self):
        """Check nested #ifdef blocks leave the state balanced"""
        source = "#ifdef X\n#ifdef Y\nbody\n#endif\n#endif\nafter\n"
        for defines, expected in [
            ("", ["after"]),
            ("#define X\n", ["after"]),
            ("#define Y\n", ["after"]),
            ("#define X\n#define Y\n", ["body", "after"]),
        ]:
            preprocessor = Preprocessor(Configuration(standard_macros=False))
            tokens = preprocessor.preprocess_text(defines + source, "a.m")
            values = [t.value for t in tokens if t.type is not TokenType.EOF]
            self.assertEqual(values, expected)
            self.assertEqual(preprocessor.state.nested_depth, 0)
            self.assertFalse(preprocessor.in_skipping_mode())
            self.assertEqual(preprocessor.state.taken, [])

    def test_reset(self):
        """Check finished_preprocessing resets the state"""
        preprocessor = Preprocessor()
        preprocessor.preprocess_text("#if 0\n#if 1\n", "a.m")
        self.assertTrue(preprocessor.in_skipping_mode())
        self.assertEqual(preprocessor.state.nested_depth, 1)

        preprocessor.finished_preprocessing("a.m")
        self.assertFalse(preprocessor.in_skipping_mode())
        self.assertEqual(preprocessor.state.nested_depth, 0)
        self.assertIsNone(preprocessor.file_under_analysis())


if __name__ == "__main__":
    unittest.main()
