import unittest

from calky.block_editor import append_block, block_uid, has_uid, remove_by_uid, replace_by_uid
from calky.ics_codec import decode

BASE = "BEGIN:VCALENDAR\r\nPRODID:-//Calky//EN\r\nVERSION:2.0\r\nEND:VCALENDAR"


def _block(uid: str, summary: str = "Event") -> str:
    return "\r\n".join(
        [
            "BEGIN:VEVENT",
            f"UID:{uid}",
            f"SUMMARY:{summary}",
            "DTSTART:20240101T090000Z",
            "DTEND:20240101T100000Z",
            "END:VEVENT",
        ]
    )


class AppendTests(unittest.TestCase):
    def test_append_inserts_before_calendar_end(self) -> None:
        document = append_block(BASE, _block("a"))
        self.assertTrue(document.endswith(_block("a") + "\r\nEND:VCALENDAR"))
        self.assertTrue(document.startswith("BEGIN:VCALENDAR\r\nPRODID:-//Calky//EN\r\nVERSION:2.0\r\n"))

    def test_append_without_calendar_end(self) -> None:
        document = append_block("BEGIN:VCALENDAR", _block("a"))
        self.assertEqual(document, "BEGIN:VCALENDAR\r\n" + _block("a") + "\r\n")


class RemoveTests(unittest.TestCase):
    def test_append_then_remove_restores_document(self) -> None:
        self.assertEqual(remove_by_uid(append_block(BASE, _block("a")), "a"), BASE)

    def test_remove_unknown_uid_is_byte_identical(self) -> None:
        document = append_block(BASE, _block("a"))
        self.assertEqual(remove_by_uid(document, "zzz"), document)
        lf_document = document.replace("\r\n", "\n")
        self.assertEqual(remove_by_uid(lf_document, "zzz"), lf_document)
        self.assertEqual(remove_by_uid(document, ""), document)

    def test_remove_is_idempotent(self) -> None:
        document = append_block(append_block(BASE, _block("a")), _block("b"))
        once = remove_by_uid(document, "a")
        self.assertEqual(remove_by_uid(once, "a"), once)
        self.assertEqual(once, append_block(BASE, _block("b")))

    def test_remove_matches_folded_uid(self) -> None:
        folded = _block("x").replace("UID:x", "UID:long-\r\n uid-value")
        document = append_block(append_block(BASE, folded), _block("keep"))
        self.assertEqual(remove_by_uid(document, "long-uid-value"), append_block(BASE, _block("keep")))

    def test_alarm_lines_do_not_end_the_block(self) -> None:
        block = _block("alarm").replace(
            "END:VEVENT",
            "BEGIN:VALARM\r\nACTION:DISPLAY\r\nTRIGGER:-PT5M\r\nDESCRIPTION:END:VEVENT\r\nUID:not-this\r\nEND:VALARM\r\nEND:VEVENT",
        )
        document = append_block(BASE, block)
        self.assertEqual(block_uid(block), "alarm")
        self.assertEqual(remove_by_uid(document, "not-this"), document)
        self.assertEqual(remove_by_uid(document, "alarm"), BASE)

    def test_markers_with_trailing_whitespace(self) -> None:
        block = _block("padded").replace("BEGIN:VEVENT", "BEGIN:VEVENT  ").replace("END:VEVENT", "END:VEVENT\t")
        document = append_block(BASE, block)
        self.assertEqual([record.uid for record in decode(document)], ["padded"])
        self.assertTrue(has_uid(document, "padded"))
        self.assertEqual(remove_by_uid(document, "padded"), BASE)

    def test_unterminated_block_is_kept(self) -> None:
        document = "BEGIN:VCALENDAR\r\nBEGIN:VEVENT\r\nUID:a\r\nSUMMARY:x"
        self.assertEqual(remove_by_uid(document, "a"), document)


class ReplaceTests(unittest.TestCase):
    def test_replace_absent_uid_equals_append(self) -> None:
        self.assertEqual(replace_by_uid(BASE, "a", _block("a")), append_block(BASE, _block("a")))

    def test_replace_existing_uid(self) -> None:
        document = append_block(append_block(BASE, _block("a", "old")), _block("b"))
        replaced = replace_by_uid(document, "a", _block("a", "new"))
        self.assertNotIn("SUMMARY:old", replaced)
        self.assertIn("SUMMARY:new", replaced)
        self.assertIn(_block("b"), replaced)
        self.assertEqual(replaced.count("BEGIN:VEVENT"), 2)

    def test_has_uid(self) -> None:
        document = append_block(BASE, _block("a"))
        self.assertTrue(has_uid(document, "a"))
        self.assertFalse(has_uid(document, "b"))


if __name__ == "__main__":
    unittest.main()
