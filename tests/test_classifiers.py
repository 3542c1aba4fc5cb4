import math
import unittest
from datetime import date, datetime

from freight_doctor.classifiers import (
    CLASSIFIERS,
    cell_text,
    get_classifier,
    is_country_code,
    is_currency_code,
    is_date_like,
    is_empty,
    is_incoterm_code,
    is_numeric_like,
    is_postcode,
    is_procedure_code,
    is_tariff_code,
)


class ClassifierTests(unittest.TestCase):
    def test_country_codes_are_two_letters(self):
        self.assertTrue(is_country_code("DE"))
        self.assertTrue(is_country_code(" cn "))
        self.assertFalse(is_country_code("DEU"))
        self.assertFalse(is_country_code("D1"))
        self.assertFalse(is_country_code(None))

    def test_currency_codes_are_three_upper_letters(self):
        self.assertTrue(is_currency_code("EUR"))
        self.assertFalse(is_currency_code("eur"))
        self.assertFalse(is_currency_code("EU"))

    def test_tariff_codes_accept_numbers_and_digit_text(self):
        self.assertTrue(is_tariff_code("73181590"))
        self.assertTrue(is_tariff_code(84099100))
        self.assertTrue(is_tariff_code(73181590.0))
        self.assertTrue(is_tariff_code("12345678901"))
        self.assertFalse(is_tariff_code("7318"))
        self.assertFalse(is_tariff_code("7318 1590"))

    def test_procedure_codes(self):
        self.assertTrue(is_procedure_code("4000"))
        self.assertTrue(is_procedure_code(100))
        self.assertFalse(is_procedure_code("40"))
        self.assertFalse(is_procedure_code("40000"))

    def test_numeric_like_covers_locale_formats(self):
        for value in ("1.234,56", "1234.56", "75,5", ",50", "-12", "1 234", 3.5, 0):
            with self.subTest(value=value):
                self.assertTrue(is_numeric_like(value))
        for value in ("abc", "", None, True, "12a", float("nan")):
            with self.subTest(value=value):
                self.assertFalse(is_numeric_like(value))

    def test_date_like(self):
        self.assertTrue(is_date_like("01.05.2025"))
        self.assertTrue(is_date_like("2025-05-01"))
        self.assertTrue(is_date_like("2025-05-01T10:00:00"))
        self.assertTrue(is_date_like(date(2025, 5, 1)))
        self.assertTrue(is_date_like(datetime(2025, 5, 1, 9, 30)))
        self.assertFalse(is_date_like("May 1st"))
        self.assertFalse(is_date_like(45658))

    def test_empty(self):
        self.assertTrue(is_empty(None))
        self.assertTrue(is_empty("   "))
        self.assertTrue(is_empty(math.nan))
        self.assertFalse(is_empty(0))
        self.assertFalse(is_empty("x"))

    def test_incoterms(self):
        self.assertTrue(is_incoterm_code("DAP"))
        self.assertTrue(is_incoterm_code("exw"))
        self.assertFalse(is_incoterm_code("XYZ"))

    def test_postcode(self):
        self.assertTrue(is_postcode("10115"))
        self.assertTrue(is_postcode("SW1A 1AA"))
        self.assertFalse(is_postcode("a very long street name"))

    def test_cell_text_renders_integral_floats_without_fraction(self):
        self.assertEqual(cell_text(73181590.0), "73181590")
        self.assertEqual(cell_text(12.5), "12.5")
        self.assertEqual(cell_text("  x "), "x")
        self.assertIsNone(cell_text("   "))
        self.assertIsNone(cell_text(None))

    def test_registry_lookup(self):
        self.assertIs(get_classifier("country"), is_country_code)
        self.assertIn("tariff", CLASSIFIERS)
        with self.assertRaises(KeyError):
            get_classifier("nope")


if __name__ == "__main__":
    unittest.main()
