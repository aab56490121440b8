"""Call quality report derived from transport statistics."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any

from companion_agent.models import clamp01
from companion_agent.session.media import StatsReport, Transport

DEFAULT_VIDEO_QUALITY = 0.8
DEFAULT_AUDIO_QUALITY = 0.9
DEFAULT_CONNECTION_QUALITY = 0.7
SUCCEEDED_CONNECTION_QUALITY = 0.9


@dataclass(frozen=True, slots=True)
class CallQuality:
    video_quality: float = DEFAULT_VIDEO_QUALITY
    audio_quality: float = DEFAULT_AUDIO_QUALITY
    connection_quality: float = DEFAULT_CONNECTION_QUALITY
    overall_quality: float = 0.8

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _media_quality(report: StatsReport) -> float:
    lost = report.packets_lost or 0
    received = report.packets_received or 1
    return clamp01(1 - lost / received)


def quality_from_stats(reports: list[StatsReport]) -> CallQuality:
    """Fold one stats snapshot into a :class:`CallQuality`.

    Absent reports leave the corresponding default in place; the overall
    score is the unweighted mean of the three components.
    """
    video = DEFAULT_VIDEO_QUALITY
    audio = DEFAULT_AUDIO_QUALITY
    connection = DEFAULT_CONNECTION_QUALITY
    for report in reports:
        if report.type == "inbound-rtp" and report.kind == "video":
            video = _media_quality(report)
        elif report.type == "inbound-rtp" and report.kind == "audio":
            audio = _media_quality(report)
        elif report.type == "candidate-pair" and report.state == "succeeded":
            connection = SUCCEEDED_CONNECTION_QUALITY
    return CallQuality(
        video_quality=video,
        audio_quality=audio,
        connection_quality=connection,
        overall_quality=(video + audio + connection) / 3,
    )


async def measure_quality(transport: Transport | None) -> CallQuality:
    if transport is None:
        return CallQuality()
    return quality_from_stats(await transport.get_stats())
