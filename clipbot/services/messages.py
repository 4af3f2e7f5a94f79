from html import escape

from clipbot.services.command_parser import JobRequest, format_seconds

HELP_TEXT = """🎬 <b>Video Downloader Bot</b>

Send me a video URL with optional parameters:

<code>/dl &lt;url&gt; START=0:30 END=1:10 Q=720 MP3=true</code>

<b>Parameters:</b>
• <code>START</code> - Start time (e.g. 0:30 or 1:02:03)
• <code>END</code> - End time (e.g. 1:10)
• <code>Q</code> - Quality (144, 240, 360, 480, 720, 1080, 1440, 2160, best, worst)
• <code>MP3</code> - Convert to MP3 (true/false)

<b>Example:</b>
<code>/dl https://youtube.com/watch?v=xyz START=0:30 END=1:00 Q=720</code>"""

UNKNOWN_COMMAND_TEXT = "Unknown command. Use /start to see available commands."


def invalid_command_text(reason: str) -> str:
    return f"❌ Invalid command: {escape(reason)}\n\nUse /start to see the expected format."


def queued_text(job_id: str, request: JobRequest) -> str:
    lines = [
        "✅ Your download job has been queued!",
        "",
        f"🆔 Job ID: <code>{job_id}</code>",
        f"🔗 URL: {escape(request.url)}",
    ]
    if request.start_time:
        lines.append(f"⏰ Start: {escape(request.start_time)}")
    if request.end_time:
        lines.append(f"⏰ End: {escape(request.end_time)}")
    if request.quality:
        lines.append(f"📺 Quality: {escape(request.quality)}")
    if request.mp3:
        lines.append("🎵 Format: MP3")
    lines += ["", "⏳ Waiting for a worker..."]
    return "\n".join(lines)


def processing_text(job_id: str, attempt: int) -> str:
    text = f"⏳ Processing your download...\n\n🆔 Job ID: <code>{job_id}</code>\n📊 Status: Processing"
    if attempt > 1:
        text += f" (attempt {attempt})"
    return text


def completed_caption(
    title: str,
    file_size: int,
    duration: float | None,
    request: JobRequest,
) -> str:
    lines = [
        "✅ <b>Download Complete!</b>",
        "",
        f"📹 Title: {escape(title[:200])}",
        f"📦 Size: {file_size / (1024 * 1024):.2f}MB",
    ]
    if duration is not None:
        lines.append(f"⏱ Duration: {format_seconds(duration)}")
    if request.is_trimmed:
        lines.append(f"✂️ Trimmed: {request.start_time or '0:00'} - {request.end_time or 'end'}")
    if request.quality:
        lines.append(f"📺 Quality: {escape(request.quality)}")
    return "\n".join(lines)


def failed_text(job_id: str, reason: str) -> str:
    return (
        "❌ <b>Download Failed</b>\n\n"
        f"🆔 Job ID: <code>{job_id}</code>\n"
        f"📛 Error: {escape(reason)}\n\n"
        "Please check the URL and try again."
    )
