"""Tests for notification message rendering."""

from datetime import date

from shiftguard.services.message_templates import TEMPLATES, MessageContext, render_message


def make_context(**overrides) -> MessageContext:
    values = {
        "staff_name": "山田太郎",
        "work_name": "朝便配送",
        "shift_date": date(2026, 3, 2),
        "start_time": "09:00",
        "end_time": "17:00",
    }
    values.update(overrides)
    return MessageContext(**values)


class TestMessageContext:
    """Tests for derived context values."""

    def test_formatted_date_includes_weekday(self):
        assert make_context().formatted_date == "3月2日(月)"

    def test_formatted_date_empty_without_shift(self):
        assert make_context(shift_date=None).formatted_date == ""

    def test_time_window(self):
        assert make_context().time_window == "09:00〜17:00"
        assert make_context(end_time=None).time_window == "09:00"
        assert make_context(start_time=None).time_window == "時間未定"


class TestRenderMessage:
    """Tests for render_message."""

    def test_reminder_contains_shift_details(self):
        message = render_message("clock_in_reminder", make_context())

        assert message.startswith("山田太郎さん、出勤確認の時間です。")
        assert "3月2日(月) 09:00〜17:00" in message
        assert "朝便配送" in message

    def test_voice_call_has_no_line_breaks(self):
        message = render_message("voice_call", make_context())

        assert "\n" not in message
        assert "朝便配送の出勤確認" in message

    def test_unknown_key_falls_back_to_reminder(self):
        context = make_context()

        assert render_message("no_such_template", context) == render_message(
            "clock_in_reminder", context
        )

    def test_every_template_renders(self):
        context = make_context()

        for key in TEMPLATES:
            assert "山田太郎" in render_message(key, context)
