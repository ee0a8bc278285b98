"""Formatting utilities for signal output."""

from datetime import datetime, timezone
from typing import Optional

from ..continuous.data_types import SourceHealth, SourceStatus
from ..continuous.orchestrator import SignalEvent
from ..engines.signals import SignalType
from .colors import Colors

_SIGNAL_COLORS = {
    SignalType.BUY: Colors.GREEN,
    SignalType.SELL: Colors.RED,
    SignalType.HOLD: Colors.YELLOW,
    SignalType.NEUTRAL: Colors.DIM,
}


def signal_color(signal_type: SignalType) -> str:
    return _SIGNAL_COLORS.get(signal_type, Colors.WHITE)


def strength_bar(strength: float, width: int = 20) -> str:
    """Coloured bar for a 0-100 value."""
    strength = max(0.0, min(100.0, strength))
    filled = int(strength / 100 * width)
    if strength >= 70:
        color = Colors.GREEN
    elif strength >= 50:
        color = Colors.YELLOW
    else:
        color = Colors.RED
    return f"{color}{'█' * filled}{Colors.DIM}{'░' * (width - filled)}{Colors.RESET}"


def health_badge(health: SourceHealth) -> str:
    if health is SourceHealth.LIVE:
        return f"{Colors.GREEN}LIVE{Colors.RESET}"
    if health is SourceHealth.DEGRADED_SIMULATED:
        return f"{Colors.BG_YELLOW}{Colors.BOLD} SIMULATED {Colors.RESET}"
    return f"{Colors.YELLOW}RETRYING{Colors.RESET}"


def _clock(timestamp_ms: Optional[int]) -> str:
    if timestamp_ms is None:
        return "--:--:--"
    return datetime.fromtimestamp(timestamp_ms / 1000, tz=timezone.utc).strftime("%H:%M:%S")


def format_event(event: SignalEvent, verbose: bool = True) -> str:
    """One- or multi-line rendering of a stabilized signal."""
    signal = event.signal if event.signal is not None else event.raw
    color = signal_color(signal.type)
    regime = str(event.regime.kind) if event.regime else "UNDEFINED"
    line = (
        f"{Colors.DIM}{_clock(signal.timestamp_ms)}{Colors.RESET} "
        f"{Colors.BOLD}{event.symbol}{Colors.RESET} {event.interval} "
        f"{color}{Colors.BOLD}{signal.type}{Colors.RESET} "
        f"{strength_bar(signal.confidence, 10)} {signal.confidence:.0f}% "
        f"[{regime}] {health_badge(event.health)}"
    )
    if not verbose:
        return line

    lines = [line]
    if event.raw.type is not signal.type:
        lines.append(f"    raw: {event.raw.type} {event.raw.confidence:.0f}%")
    for vote in signal.contributing[:5]:
        vote_color = signal_color(vote.direction)
        lines.append(f"    {vote_color}{vote.direction}{Colors.RESET} {vote.source}: {vote.message}")
    targets = signal.price_targets
    if targets is not None:
        lines.append(
            f"    entry {targets.entry:.4f}  stop {targets.stop_loss:.4f}  "
            f"t1 {targets.target1:.4f}  t2 {targets.target2:.4f}  t3 {targets.target3:.4f}"
        )
    return "\n".join(lines)


def format_status(status: SourceStatus) -> str:
    return (
        f"{Colors.CYAN}[{status.state}]{Colors.RESET} {health_badge(status.health)} "
        f"{status.symbol} {status.interval} {status.message}"
    ).rstrip()
