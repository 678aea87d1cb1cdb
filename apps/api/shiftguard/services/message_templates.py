"""Notification message templates.

Stages reference templates by key. Unknown keys fall back to the generic
check-in reminder so a typo in a policy never blocks a dispatch.
"""

from dataclasses import dataclass
from datetime import date

from shiftguard.logging_config import get_logger

logger = get_logger(__name__)

WEEKDAYS_JA = ("月", "火", "水", "木", "金", "土", "日")

DEFAULT_TEMPLATE_KEY = "clock_in_reminder"

TEMPLATES: dict[str, str] = {
    "clock_in_reminder": (
        "{staff_name}さん、出勤確認の時間です。\n\n"
        "📅 {date} {time_window}\n"
        "🚚 作業: {work_name}\n\n"
        "リッチメニューから「出勤する」ボタンを押してください。"
    ),
    "clock_in_urgent": (
        "【再通知】{staff_name}さん、出勤確認がまだ完了していません。"
        "至急確認をお願いします。\n\n"
        "📅 {date} {time_window}\n"
        "🚚 作業: {work_name}"
    ),
    "voice_call": (
        "{staff_name}さん、{work_name}の出勤確認がまだ完了していません。"
        "至急、出勤の登録をお願いします。"
    ),
    "driver_assignment": (
        "【担当作業の割り当て】\n\n"
        "{staff_name} さん\n\n"
        "以下の作業が割り当てられました：\n\n"
        "📅 日時: {date} {time_window}\n"
        "🚚 作業: {work_name}\n\n"
        "詳細はアプリで確認してください。"
    ),
    "clock_in_confirmed": "{staff_name}さん、出勤を記録しました。本日もよろしくお願いします。",
}


@dataclass(frozen=True)
class MessageContext:
    """Values substituted into a template."""

    staff_name: str
    work_name: str = ""
    shift_date: date | None = None
    start_time: str | None = None
    end_time: str | None = None
    stage: int = 0
    attempt: int = 1

    @property
    def formatted_date(self) -> str:
        if self.shift_date is None:
            return ""
        weekday = WEEKDAYS_JA[self.shift_date.weekday()]
        return f"{self.shift_date.month}月{self.shift_date.day}日({weekday})"

    @property
    def time_window(self) -> str:
        if not self.start_time:
            return "時間未定"
        if self.end_time:
            return f"{self.start_time}〜{self.end_time}"
        return self.start_time

    def as_mapping(self) -> dict[str, str | int]:
        return {
            "staff_name": self.staff_name,
            "work_name": self.work_name,
            "date": self.formatted_date,
            "time_window": self.time_window,
            "stage": self.stage + 1,
            "attempt": self.attempt,
        }


def render_message(template_key: str, context: MessageContext) -> str:
    """Render the template registered under ``template_key``.

    Args:
        template_key: Key from a policy stage.
        context: Staff and shift values.

    Returns:
        The rendered message text.
    """
    template = TEMPLATES.get(template_key)
    if template is None:
        logger.warning(
            "Unknown message template, using default",
            template_key=template_key,
        )
        template = TEMPLATES[DEFAULT_TEMPLATE_KEY]
    return template.format(**context.as_mapping())
