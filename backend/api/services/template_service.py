"""Announcement template engine.

Renders announcement text by replacing ``{variable}`` placeholders and builds
the inline buttons (default or custom) that go with it.
"""

import logging
import re
from collections.abc import Mapping
from datetime import UTC, datetime
from zoneinfo import ZoneInfo

from shared.models.stream_event import STREAM_OFFLINE, STREAM_ONLINE
from shared.models.streamer import (
    CustomButton,
    StreamPlatform,
    get_platform_url,
    get_primary_stream_url,
)

logger = logging.getLogger(__name__)

TemplateVariables = Mapping[str, str | None]

_PLACEHOLDER_RE = re.compile(r"\{(\w+)\}")

MOSCOW_TZ = ZoneInfo("Europe/Moscow")
MEMELAB_SITE_URL = "https://memelab.ru"

# Rendered text is HTML-escaped as a whole, so defaults carry no markup
DEFAULT_ONLINE_TEMPLATE = "\n".join(
    [
        "🔴 Стрим начался!",
        "",
        "{streamer_name} сейчас в эфире",
        "📺 {stream_title}",
        "🎮 {game_name}",
    ]
)

DEFAULT_OFFLINE_TEMPLATE = "\n".join(
    [
        "⚫ Стрим завершён",
        "",
        "{streamer_name} закончил трансляцию. Спасибо, что были с нами!",
    ]
)

DEFAULT_TEMPLATES = {
    STREAM_ONLINE: DEFAULT_ONLINE_TEMPLATE,
    STREAM_OFFLINE: DEFAULT_OFFLINE_TEMPLATE,
}

WATCH_BUTTON_LABEL = "🔗 Смотреть стрим"
MEMELAB_BUTTON_LABEL = "📋 MemeLab"

# Shown in the dashboard template editor
TEMPLATE_VARIABLE_DOCS: list[dict[str, str]] = [
    {"name": "streamer_name", "description": "Имя стримера"},
    {"name": "stream_title", "description": "Название стрима"},
    {"name": "game_name", "description": "Игра / категория"},
    {"name": "stream_url", "description": "Ссылка на основную платформу"},
    {"name": "memelab_url", "description": "Ссылка на MemeLab"},
    {"name": "twitch_url", "description": "Ссылка на Twitch"},
    {"name": "youtube_url", "description": "Ссылка на YouTube"},
    {"name": "vk_url", "description": "Ссылка на VK"},
    {"name": "kick_url", "description": "Ссылка на Kick"},
    {"name": "start_time", "description": "Время начала (МСК, HH:MM)"},
    {"name": "start_date", "description": "Дата начала («19 февраля»)"},
    {"name": "viewer_count", "description": "Количество зрителей"},
    {"name": "twitch_login", "description": "Логин Twitch"},
    {"name": "channel_slug", "description": "Slug канала на MemeLab"},
]

_MONTHS_GENITIVE = (
    "января",
    "февраля",
    "марта",
    "апреля",
    "мая",
    "июня",
    "июля",
    "августа",
    "сентября",
    "октября",
    "ноября",
    "декабря",
)


def resolve_variables(text: str, variables: TemplateVariables) -> str:
    """Replace every ``{name}`` with its value; unknown or empty names become ""."""
    return _PLACEHOLDER_RE.sub(lambda m: variables.get(m.group(1)) or "", text)


def render_template(
    template: str | None,
    variables: TemplateVariables,
    event: str = STREAM_ONLINE,
) -> str:
    """Render *template*, falling back to the default for *event* when blank."""
    if template is None or not template.strip():
        template = DEFAULT_TEMPLATES.get(event, DEFAULT_ONLINE_TEMPLATE)
    return resolve_variables(template, variables)


def render_offline_template(
    template: str | None, variables: TemplateVariables | None = None
) -> str:
    return render_template(template, variables or {}, STREAM_OFFLINE)


def escape_html(text: str) -> str:
    """Escape text for Telegram's HTML parse mode."""
    return (
        text.replace("&", "&amp;")
        .replace("<", "&lt;")
        .replace(">", "&gt;")
        .replace('"', "&quot;")
    )


def render_html(
    template: str | None,
    variables: TemplateVariables,
    event: str = STREAM_ONLINE,
) -> str:
    return escape_html(render_template(template, variables, event))


def build_default_buttons(variables: TemplateVariables) -> list[dict[str, str]]:
    """Watch-stream button then MemeLab button, each only when its URL is known."""
    buttons = []
    if variables.get("stream_url"):
        buttons.append({"label": WATCH_BUTTON_LABEL, "url": variables["stream_url"]})
    if variables.get("memelab_url"):
        buttons.append({"label": MEMELAB_BUTTON_LABEL, "url": variables["memelab_url"]})
    return buttons


def build_buttons(
    variables: TemplateVariables,
    custom_buttons: list[CustomButton] | None,
) -> list[dict[str, str]]:
    """Buttons for an announcement.

    - ``None``: default buttons
    - ``[]``: no buttons
    - otherwise: custom buttons with placeholders resolved; buttons whose URL
      does not resolve to http(s) are dropped
    """
    if custom_buttons is None:
        return build_default_buttons(variables)

    buttons = []
    for button in custom_buttons:
        url = resolve_variables(button.url, variables)
        if not url.startswith(("http://", "https://")):
            continue
        buttons.append({"label": resolve_variables(button.label, variables), "url": url})
    return buttons


def format_start_time(started_at: str | None) -> dict[str, str]:
    """Moscow-time ``start_time`` (HH:MM) and ``start_date`` ("19 февраля")."""
    if not started_at:
        return {}
    try:
        parsed = datetime.fromisoformat(started_at)
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=UTC)
        local = parsed.astimezone(MOSCOW_TZ)
    except (ValueError, OverflowError):
        logger.debug(f"Ignoring unusable startedAt: {started_at!r}")
        return {}

    return {
        "start_time": local.strftime("%H:%M"),
        "start_date": f"{local.day} {_MONTHS_GENITIVE[local.month - 1]}",
    }


def build_template_vars(
    *,
    display_name: str,
    platforms: list[StreamPlatform],
    channel_slug: str,
    twitch_login: str | None = None,
    stream_title: str | None = None,
    game_name: str | None = None,
    started_at: str | None = None,
    viewer_count: int | None = None,
    site_url: str = MEMELAB_SITE_URL,
) -> dict[str, str]:
    """Variables available to templates and custom buttons. Unknown values are omitted."""
    login_url = f"https://twitch.tv/{twitch_login}" if twitch_login else None
    twitch_url = get_platform_url(platforms, "twitch") or login_url
    youtube_url = get_platform_url(platforms, "youtube")
    vk_url = get_platform_url(platforms, "vk")
    kick_url = get_platform_url(platforms, "kick")

    if not twitch_login:
        twitch_login = next((p.login for p in platforms if p.platform == "twitch"), None)

    variables: dict[str, str | None] = {
        "streamer_name": display_name,
        "stream_title": stream_title,
        "game_name": game_name,
        "stream_url": get_primary_stream_url(platforms) or login_url,
        "memelab_url": f"{site_url.rstrip('/')}/{channel_slug}" if channel_slug else None,
        "twitch_url": twitch_url,
        "youtube_url": youtube_url,
        "vk_url": vk_url,
        "kick_url": kick_url,
        "viewer_count": str(viewer_count) if viewer_count is not None else None,
        "twitch_login": twitch_login,
        "channel_slug": channel_slug,
        **format_start_time(started_at),
    }
    return {k: v for k, v in variables.items() if v}
