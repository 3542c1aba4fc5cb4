import unittest

from freight_doctor.brokers import BROKERS
from freight_doctor.shifts import ShiftCategory, detect_shift, detect_zone_shift

DHL = BROKERS["DHL"]
LAYOUT = DHL.layout
ZONES = {zone.name: zone for zone in LAYOUT.zones}
WIDTH = 130


def aligned_row() -> list:
    row = [None] * WIDTH
    row[0] = "2025-05-01"
    row[21:25] = ["ACME Ltd", "Street 1", "Berlin", "DE"]
    row[27:31] = ["Buyer SA", "Rue 5", "Paris", "FR"]
    row[31:35] = ["DAP", "Paris Nord", 12.5, 3.0]
    row[109:114] = ["Steel bolts", "73181590", "CN", "100", "4000"]
    return row


def displaced(row: list, at: int, *cells) -> list:
    """Insert cells at ``at`` and push the rest of the row right, keeping the width."""
    return (row[:at] + list(cells) + row[at:])[: len(row)]


class ShiftDetectionTests(unittest.TestCase):
    def test_aligned_row_has_no_shift(self):
        self.assertIsNone(detect_shift(aligned_row(), LAYOUT))

    def test_zone_local_overflow(self):
        row = displaced(aligned_row(), 22, "Trading Co")
        shift = detect_zone_shift(row, ZONES["Shipper"], LAYOUT)
        self.assertEqual(shift.category, ShiftCategory.ZONE_LOCAL)
        self.assertEqual((shift.origin_column, shift.magnitude), (21, 1))
        self.assertEqual(shift.found_column, 25)
        self.assertTrue(shift.repairable)

    def test_cascading_overflow_crosses_into_next_zone(self):
        row = displaced(aligned_row(), 22, "Trading", "Co")
        shift = detect_zone_shift(row, ZONES["Shipper"], LAYOUT)
        self.assertEqual(shift.category, ShiftCategory.CASCADING)
        self.assertEqual((shift.origin_column, shift.magnitude), (21, 2))

    def test_description_overflow(self):
        row = displaced(aligned_row(), 110, "M8 zinc")
        shift = detect_zone_shift(row, ZONES["Goods"], LAYOUT)
        self.assertEqual(shift.category, ShiftCategory.DESCRIPTION)
        self.assertEqual((shift.origin_column, shift.magnitude, shift.found_column), (109, 1, 111))

    def test_structural_gap_without_overflow_text(self):
        row = displaced(aligned_row(), 33, None, None)
        self.assertIsNone(row[33])
        self.assertIsNone(row[34])
        shift = detect_zone_shift(row, ZONES["Delivery"], LAYOUT)
        self.assertEqual(shift.category, ShiftCategory.STRUCTURAL_GAP)
        self.assertEqual((shift.origin_column, shift.magnitude, shift.found_column), (33, 2, 35))

    def test_unexplained_anchor_is_unclassifiable(self):
        row = aligned_row()
        row[24] = "Germany"
        shift = detect_zone_shift(row, ZONES["Shipper"], LAYOUT)
        self.assertEqual(shift.category, ShiftCategory.UNCLASSIFIABLE)
        self.assertEqual(shift.magnitude, 0)
        self.assertFalse(shift.repairable)
        self.assertIn("no shift pattern matched", shift.describe())

    def test_candidate_without_confirmation_is_not_a_shift(self):
        row = aligned_row()
        row[110:114] = ["M8 zinc", "73181590", None, None]
        shift = detect_zone_shift(row, ZONES["Goods"], LAYOUT)
        self.assertEqual(shift.category, ShiftCategory.UNCLASSIFIABLE)

    def test_blank_zone_is_skipped(self):
        row = aligned_row()
        row[109:114] = [None] * 5
        self.assertIsNone(detect_zone_shift(row, ZONES["Goods"], LAYOUT))

    def test_zone_without_window_never_shifts(self):
        row = aligned_row()
        row[0] = "garbage"
        self.assertIsNone(detect_zone_shift(row, ZONES["Declaration"], LAYOUT))

    def test_smallest_magnitude_wins(self):
        row = displaced(aligned_row(), 110, "M8 zinc")
        row[113] = "84099100"
        row[114] = "CN"
        shift = detect_zone_shift(row, ZONES["Goods"], LAYOUT)
        self.assertEqual(shift.magnitude, 1)

    def test_detect_shift_reports_first_zone(self):
        row = displaced(aligned_row(), 22, "Trading Co")
        row = displaced(row, 110, "M8 zinc")
        self.assertEqual(detect_shift(row, LAYOUT).zone, "Shipper")


if __name__ == "__main__":
    unittest.main()
