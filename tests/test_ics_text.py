import unittest
from datetime import date, datetime, timedelta, timezone

from calky.errors import IcsDateError
from calky.ics_text import (
    escape_text,
    fold_line,
    format_date_utc,
    format_datetime_utc,
    parse_ics_date,
    split_content_line,
    split_escaped_list,
    unescape_text,
    unfold_lines,
)


class EscapeTests(unittest.TestCase):
    def test_escape_order(self) -> None:
        self.assertEqual(escape_text("a\\b;c,d\ne\rf"), "a\\\\b\\;c\\,d\\ne\\rf")

    def test_unescape_is_inverse(self) -> None:
        samples = [
            "",
            "plain",
            "Lunch, team; room 4",
            "line one\nline two\r\n",
            "literal \\n is not a newline",
            "trailing backslash \\",
            "\\\\;,\n\r",
            "Größe: 10€, 5\\6",
        ]
        for sample in samples:
            with self.subTest(sample=sample):
                self.assertEqual(unescape_text(escape_text(sample)), sample)

    def test_unescape_accepts_upper_n(self) -> None:
        self.assertEqual(unescape_text("a\\Nb"), "a\nb")

    def test_split_escaped_list(self) -> None:
        self.assertEqual(split_escaped_list("Work\\, Team,Ops\\;1, Home "), ["Work, Team", "Ops;1", "Home"])


class FoldTests(unittest.TestCase):
    def test_short_line_unchanged(self) -> None:
        line = "X" * 75
        self.assertEqual(fold_line(line), line)

    def test_long_line_segments(self) -> None:
        line = "DESCRIPTION:" + "a" * 200
        folded = fold_line(line)
        segments = folded.split("\r\n")
        self.assertEqual(len(segments[0].encode("utf-8")), 75)
        for segment in segments[1:]:
            self.assertTrue(segment.startswith(" "))
            self.assertLessEqual(len(segment[1:].encode("utf-8")), 74)
        self.assertEqual(unfold_lines(folded), [line])

    def test_multibyte_characters_are_not_split(self) -> None:
        line = "SUMMARY:" + "€" * 60
        folded = fold_line(line)
        segments = folded.split("\r\n")
        self.assertLessEqual(len(segments[0].encode("utf-8")), 75)
        for segment in segments[1:]:
            self.assertLessEqual(len(segment[1:].encode("utf-8")), 74)
            segment.encode("utf-8").decode("utf-8")
        self.assertEqual("".join([segments[0]] + [s[1:] for s in segments[1:]]), line)

    def test_unfold_handles_lf_and_tabs(self) -> None:
        self.assertEqual(unfold_lines("UID:abc\n\tdef\nSUMMARY:x"), ["UID:abcdef", "SUMMARY:x"])


class ContentLineTests(unittest.TestCase):
    def test_split_with_quoted_parameter(self) -> None:
        name, params, value = split_content_line('organizer;CN="Doe: John";SENT-BY="mailto:a@b.c":MAILTO:j@x.org')
        self.assertEqual(name, "ORGANIZER")
        self.assertEqual(params, {"CN": "Doe: John", "SENT-BY": "mailto:a@b.c"})
        self.assertEqual(value, "MAILTO:j@x.org")

    def test_value_keeps_colons(self) -> None:
        self.assertEqual(split_content_line("DESCRIPTION:a:b:c"), ("DESCRIPTION", {}, "a:b:c"))


class DateTests(unittest.TestCase):
    def test_format_datetime_converts_to_utc(self) -> None:
        value = datetime(2024, 1, 1, 10, 30, tzinfo=timezone(timedelta(hours=2)))
        self.assertEqual(format_datetime_utc(value), "20240101T083000Z")
        self.assertEqual(format_datetime_utc(datetime(2024, 3, 5, 7, 8, 9)), "20240305T070809Z")

    def test_format_date(self) -> None:
        self.assertEqual(format_date_utc(date(2024, 2, 29)), "20240229")
        self.assertEqual(
            format_date_utc(datetime(2024, 1, 1, 1, 0, tzinfo=timezone(timedelta(hours=3)))),
            "20231231",
        )

    def test_parse_variants(self) -> None:
        self.assertEqual(parse_ics_date("20240101T090000Z"), datetime(2024, 1, 1, 9, tzinfo=timezone.utc))
        self.assertEqual(parse_ics_date("20240101T090000"), datetime(2024, 1, 1, 9, tzinfo=timezone.utc))
        self.assertEqual(parse_ics_date("20240101"), datetime(2024, 1, 1, tzinfo=timezone.utc))
        self.assertEqual(
            parse_ics_date("2024-01-01T09:00:00+02:00"),
            datetime(2024, 1, 1, 7, tzinfo=timezone.utc),
        )

    def test_unknown_tzid_is_read_as_utc(self) -> None:
        self.assertEqual(
            parse_ics_date("20240101T090000", tzid="Nowhere/Unknown"),
            datetime(2024, 1, 1, 9, tzinfo=timezone.utc),
        )

    def test_unrecognized_dates_are_rejected(self) -> None:
        for value in ["", "tomorrow", "20240230T000000Z", "2024-13-01"]:
            with self.subTest(value=value):
                with self.assertRaises(IcsDateError):
                    parse_ics_date(value)


if __name__ == "__main__":
    unittest.main()
