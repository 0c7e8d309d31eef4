# Copyright (C) 2019-2024 Intel Corporation
# SPDX-License-Identifier: BSD-3-Clause

import logging
import unittest

from objcscan.preprocessor import MacroTable, macro_from_definition_string


class TestMacroTable(unittest.TestCase):
    """
    Test MacroTable class.
    """

    @classmethod
    def setUpClass(self):
        logging.disable()

    def setUp(self):
        self.table = MacroTable()
        self.predefined = macro_from_definition_string("P=1")
        self.table.define_predefined(self.predefined)

    def test_define(self):
        """Check user definitions shadow predefined ones"""
        self.assertIs(self.table.get("P"), self.predefined)

        user = macro_from_definition_string("P=2")
        self.table.define(user)
        self.assertIs(self.table.get("P"), user)

        again = macro_from_definition_string("P=3")
        self.table.define(again)
        self.assertIs(self.table.get("P"), again)

    def test_undefine(self):
        """Check undefine removes user and masks predefined macros"""
        self.table.define(macro_from_definition_string("U=1"))
        self.table.undefine("U")
        self.assertIsNone(self.table.get("U"))

        self.table.undefine("P")
        self.assertNotIn("P", self.table)

        self.table.define(macro_from_definition_string("P=4"))
        self.assertEqual(self.table.get("P").body[0].value, "4")

        # Undefining something unknown is not an error
        self.table.undefine("NEVER")

    def test_clear_user(self):
        """Check clearing the user layer keeps predefined macros"""
        self.table.define(macro_from_definition_string("U=1"))
        self.table.undefine("P")
        self.table.clear_user()
        self.assertIsNone(self.table.get("U"))
        self.assertIs(self.table.get("P"), self.predefined)
        self.assertEqual(self.table.user_macros(), {})

    def test_disable(self):
        """Check disabled names are hidden and counted"""
        self.table.disable("P")
        self.table.disable("P")
        self.assertIsNone(self.table.get("P"))
        self.table.enable("P")
        self.assertTrue(self.table.is_disabled("P"))
        self.table.enable("P")
        self.assertFalse(self.table.is_disabled("P"))
        self.assertIs(self.table.get("P"), self.predefined)

        with self.assertRaises(RuntimeError):
            self.table.enable("P")

    def test_disabled_context(self):
        """Check disabled() re-enables on every exit path"""
        with self.table.disabled("P"):
            self.assertNotIn("P", self.table)
        self.assertIn("P", self.table)

        with self.assertRaises(KeyError):
            with self.table.disabled("P"):
                raise KeyError("P")
        self.assertFalse(self.table.is_disabled("P"))


if __name__ == "__main__":
    unittest.main()
