import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Sequence

import aiohttp

from backup_scheduler.domain.job import NotificationTarget
from backup_scheduler.domain.run import RunResult
from backup_scheduler.errors import NotificationError
from backup_scheduler.executors.artifacts import format_bytes
from backup_scheduler.notifications.protocol import NotificationThread

logger = logging.getLogger(__name__)

SLACK_API_URL = "https://slack.com/api"
MAX_DIAGNOSTIC_CHARS = 3500


def is_valid_bot_token(token: Optional[str]) -> bool:
    """
    Accept real-looking bot tokens (``xoxb-...``) and the ``fake-test-token-`` prefix used in tests.
    """
    if not token:
        return False
    if token.startswith("fake-test-token-"):
        return True
    if not token.startswith("xoxb-"):
        return False
    return "your-bot-token-here" not in token and len(token) >= 50


def _timestamp(now: Optional[datetime] = None) -> str:
    return (now or datetime.now(timezone.utc)).strftime("%Y-%m-%d %H:%M:%S UTC")


def _round_seconds(duration: timedelta) -> timedelta:
    return timedelta(seconds=round(duration.total_seconds()))


def summary_line(results: Sequence[RunResult]) -> str:
    succeeded = sum(1 for r in results if r.success)
    return f"{succeeded} successful, {len(results) - succeeded} failed"


def format_started_message(job_names: List[str], now: Optional[datetime] = None) -> str:
    return (
        ":arrows_counterclockwise: *Database Backup Started*\n\n"
        f"Strategies: {', '.join(job_names)}\n"
        f"Started at: {_timestamp(now)}\n\n"
        "_This message will be updated with the final status..._"
    )


def format_result_message(results: Sequence[RunResult], overall_success: bool, now: Optional[datetime] = None) -> str:
    if overall_success:
        lines = [":white_check_mark: *Database Backup Completed Successfully*", ""]
    else:
        lines = [":x: *Database Backup Failed*", ""]

    for result in results:
        if result.success:
            lines.append(f":white_check_mark: *{result.job_name}*: Success")
            lines.append(f"   • Duration: {_round_seconds(result.duration)}")
            lines.append(f"   • Size: {format_bytes(result.size)}")
        else:
            lines.append(f":x: *{result.job_name}*: Failed")
            if result.error:
                lines.append(f"   • Error: {result.error}")
            if result.attempt_count > 1:
                lines.append(f"   • Attempts: {result.attempt_count}")
        lines.append("")

    lines.append(summary_line(results))
    lines.append(f"Completed at: {_timestamp(now)}")
    return "\n".join(lines)


def format_diagnostics_message(result: RunResult) -> Optional[str]:
    """
    Detailed per-attempt log of a failed run, trimmed to the most recent lines.
    """
    if result.success or not result.diagnostics:
        return None

    blocks: List[str] = []
    for attempt in result.attempts:
        header = f"--- attempt {attempt.number}: {attempt.error or 'ok'}"
        blocks.append("\n".join([header, *attempt.diagnostics]))
    log = "\n".join(blocks)
    if len(log) > MAX_DIAGNOSTIC_CHARS:
        log = "...\n" + log[-MAX_DIAGNOSTIC_CHARS:]

    return (
        f":mag: *Detailed error for {result.job_name}*\n"
        f"Error: {result.error}\n"
        f"```{log}```"
    )


class SlackNotifier:
    """
    Posts run threads to Slack through the Web API.

    Without a usable bot token the notifier is disabled and behaves like
    :class:`NullNotifier`.
    """

    def __init__(self, bot_token: Optional[str], default_channel: Optional[str] = None, api_url: str = SLACK_API_URL):
        self.default_channel = default_channel
        self.api_url = api_url.rstrip("/")
        self._token = bot_token if is_valid_bot_token(bot_token) else None
        if bot_token and not self._token:
            logger.warning("Invalid Slack bot token format. Expected format: xoxb-... (real token, not placeholder)")

    @property
    def enabled(self) -> bool:
        return self._token is not None

    async def _call(self, method: str, payload: Dict[str, Any], form: bool = False) -> Dict[str, Any]:
        # Read methods such as conversations.info only accept form-encoded arguments.
        headers = {"Authorization": f"Bearer {self._token}"}
        body_kwargs = {"data": payload} if form else {"json": payload}
        try:
            async with aiohttp.ClientSession() as session:
                async with session.post(f"{self.api_url}/{method}", headers=headers, **body_kwargs) as response:
                    if response.status >= 400:
                        raise NotificationError(f"Slack {method} returned HTTP {response.status}")
                    body = await response.json(content_type=None)
        except aiohttp.ClientError as e:
            raise NotificationError(f"Slack {method} request failed: {e}") from e

        if not body.get("ok"):
            raise NotificationError(f"Slack {method} failed: {body.get('error', 'unknown_error')}")
        return body

    async def _post(self, channel: str, text: str, thread_ts: Optional[str] = None) -> str:
        payload: Dict[str, Any] = {"channel": channel, "text": text}
        if thread_ts:
            payload["thread_ts"] = thread_ts
        body = await self._call("chat.postMessage", payload)
        return body["ts"]

    async def open_thread(self, job_names: List[str], target: NotificationTarget) -> Optional[NotificationThread]:
        if not self.enabled:
            logger.debug("Slack client not configured, skipping notification")
            return None
        channel = target.channel_id or self.default_channel
        if not channel:
            logger.debug("No Slack channel for %s, skipping notification", ", ".join(job_names))
            return None
        ts = await self._post(channel, format_started_message(job_names))
        return NotificationThread(channel=channel, ts=ts)

    async def progress(self, thread: Optional[NotificationThread], job_name: str, message: str) -> None:
        if not self.enabled or thread is None:
            return
        await self._post(thread.channel, f":bar_chart: *{job_name}*: {message}", thread_ts=thread.ts)

    async def result(self, thread: Optional[NotificationThread], results: Sequence[RunResult], overall_success: bool) -> None:
        if not self.enabled or thread is None:
            return

        await self._post(thread.channel, format_result_message(results, overall_success), thread_ts=thread.ts)

        for result in results:
            details = format_diagnostics_message(result)
            if details:
                await self._post(thread.channel, details, thread_ts=thread.ts)

        if overall_success:
            headline = ":white_check_mark: *Database Backup Completed Successfully* - See thread for details"
        else:
            headline = ":x: *Database Backup Failed* - See thread for details"
        try:
            await self._call("chat.update", {
                "channel": thread.channel,
                "ts": thread.ts,
                "text": f"{headline}\n\n{summary_line(results)}\nCompleted at: {_timestamp()}",
            })
        except NotificationError as e:
            logger.warning("Failed to update original message with final status: %s", e)

    async def test_connection(self) -> None:
        if not self.enabled:
            raise NotificationError("Slack client not configured")
        auth = await self._call("auth.test", {})
        logger.info("Slack bot authentication successful (team %s)", auth.get("team"))
        if self.default_channel:
            await self._call("conversations.info", {"channel": self.default_channel}, form=True)
