from html import escape
from typing import Dict, Optional

from dailyping.config.settings import settings
from dailyping.db.models import Tone, TriggerKind
from dailyping.models.notification_models import DueTrigger, NotificationMessage

PUSH_TITLE = "DailyPing Reminder"

TONE_PROMPTS: Dict[str, Dict[str, str]] = {
    Tone.GENTLE.value: {
        "subject": "DailyPing: What's your #1 goal today?",
        "body": "Just checking in, what's one thing you'd like to get done today?",
    },
    Tone.MOTIVATIONAL.value: {
        "subject": "Let's crush it today!",
        "body": "Big goals need bold starts. What's your #1 priority today?",
    },
    Tone.SNARKY.value: {
        "subject": "So… what are you doing today?",
        "body": "Seriously. Don't just scroll. What's the one thing you're actually going to finish?",
    },
}


def tone_prompt(tone: Optional[str]) -> Dict[str, str]:
    return TONE_PROMPTS.get(tone or "", TONE_PROMPTS[Tone.GENTLE.value])


def render_html(body: str, username: Optional[str] = None) -> str:
    greeting = f"Hi {escape(username)}," if username else "Hi there,"
    respond_url = f"{settings.APP_BASE_URL.rstrip('/')}/respond"
    return (
        '<div style="font-family: sans-serif; line-height: 1.5;">'
        f"<p>{greeting}</p>"
        f"<p>{escape(body)}</p>"
        f'<p><a href="{respond_url}">Respond now</a></p>'
        "</div>"
    )


def build_message(
    trigger: DueTrigger, tone: Optional[str], username: Optional[str] = None
) -> NotificationMessage:
    """Daily pings use the user's tone, reminders echo the goal or sub-item text."""
    if trigger.kind == TriggerKind.DAILY_PING.value:
        prompt = tone_prompt(tone)
        subject, body = prompt["subject"], prompt["body"]
    else:
        subject = f"Reminder: {trigger.text}"
        body = subject

    return NotificationMessage(
        subject=subject,
        body=body,
        html=render_html(body, username),
        push_title=PUSH_TITLE,
    )


def push_payload(message: NotificationMessage) -> dict:
    return {
        "title": message.push_title,
        "body": message.body,
        "url": f"{settings.APP_BASE_URL.rstrip('/')}/respond",
    }
