"""
Notification Dispatcher - turns stable BUY/SELL signals into alerts.

Three primitives sit behind an AlertChannel: a sound, an OS notification
and an in-app toast. Sound and OS notification fire for every alert that
passes the gates; toasts are additionally rate limited.
"""

import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import Callable, Dict, Optional

from ..engines.pipeline_config import DEFAULT_CONFIG, NotificationSettings, clamp
from ..engines.regime import MarketRegime, RegimeKind
from ..engines.signals import Signal, SignalType
from .data_types import now_ms

logger = logging.getLogger(__name__)


class AlertChannel(ABC):
    """Alert primitives. Implementations must not block."""

    @abstractmethod
    def play_sound(self, direction: SignalType, volume: float) -> None:
        pass

    @abstractmethod
    def show_os_notification(self, title: str, body: str, icon: str) -> None:
        pass

    @abstractmethod
    def show_toast(self, title: str, description: str, severity: str) -> None:
        pass


class LoggingAlertChannel(AlertChannel):
    """Writes every alert to the log; the default channel."""

    def __init__(self, channel_logger: Optional[logging.Logger] = None):
        self._log = channel_logger or logger

    def play_sound(self, direction: SignalType, volume: float) -> None:
        self._log.info(f"[sound] {direction} at volume {volume:.2f}")

    def show_os_notification(self, title: str, body: str, icon: str) -> None:
        self._log.info(f"[notify:{icon}] {title} - {body}")

    def show_toast(self, title: str, description: str, severity: str) -> None:
        self._log.info(f"[toast:{severity}] {title} - {description}")


class DispatchOutcome(Enum):
    DELIVERED = "DELIVERED"
    SKIPPED_NOT_ACTIONABLE = "SKIPPED_NOT_ACTIONABLE"
    SKIPPED_LOW_CONFIDENCE = "SKIPPED_LOW_CONFIDENCE"
    SKIPPED_RECENT_OPPOSITE = "SKIPPED_RECENT_OPPOSITE"

    def __str__(self) -> str:
        return self.value


class NotificationDispatcher:
    """
    Gates and delivers alerts for one session.

    Usage:
        dispatcher = NotificationDispatcher(LoggingAlertChannel())
        dispatcher.dispatch(stable_signal, "BTCUSDT", regime)
    """

    def __init__(
        self,
        channel: Optional[AlertChannel] = None,
        settings: Optional[NotificationSettings] = None,
        clock: Optional[Callable[[], int]] = None,
    ):
        self.channel = channel or LoggingAlertChannel()
        self.settings = settings or DEFAULT_CONFIG.notifications
        self._clock = clock or now_ms
        self._last_alert: Dict[SignalType, int] = {}
        self._last_toast: Optional[int] = None

    def _opposite_window_ms(self, regime: Optional[MarketRegime]) -> int:
        s = self.settings
        if regime is not None and regime.kind is RegimeKind.TRENDING:
            return s.opposite_window_trending_ms
        if regime is not None and regime.kind is RegimeKind.VOLATILE:
            return s.opposite_window_volatile_ms
        return s.opposite_window_default_ms

    def _prune(self, now: int) -> None:
        cutoff = now - self.settings.direction_memory_ms
        for direction in [d for d, t in self._last_alert.items() if t < cutoff]:
            del self._last_alert[direction]

    def dispatch(
        self,
        signal: Signal,
        symbol: str,
        regime: Optional[MarketRegime] = None,
        now_ms: Optional[int] = None,
    ) -> DispatchOutcome:
        """
        Deliver alerts for a stabilized signal if it passes the gates.

        Returns:
            DispatchOutcome describing what happened
        """
        s = self.settings
        now = self._clock() if now_ms is None else now_ms
        self._prune(now)

        if not signal.is_actionable:
            return DispatchOutcome.SKIPPED_NOT_ACTIONABLE
        if signal.confidence < s.confidence_threshold:
            logger.debug(
                f"Alert skipped: {signal.type} {signal.confidence:.0f}% below "
                f"threshold {s.confidence_threshold:.0f}%"
            )
            return DispatchOutcome.SKIPPED_LOW_CONFIDENCE

        opposite_at = self._last_alert.get(signal.type.opposite)
        if opposite_at is not None and now - opposite_at < self._opposite_window_ms(regime):
            logger.debug(
                f"Alert skipped: {signal.type} within {self._opposite_window_ms(regime) // 1000}s "
                f"of a {signal.type.opposite} alert"
            )
            return DispatchOutcome.SKIPPED_RECENT_OPPOSITE

        self._last_alert[signal.type] = now
        label = str(signal.type)
        confidence_text = f"{signal.confidence:.0f}%"

        if s.alerts_enabled:
            self._deliver(self.channel.play_sound, signal.type, clamp(s.alert_volume, 0.0, 1.0))

        if s.notifications_enabled:
            self._deliver(
                self.channel.show_os_notification,
                f"{label} Signal: {symbol}",
                f"Confidence: {confidence_text}",
                "buy-icon" if signal.type is SignalType.BUY else "sell-icon",
            )

        if self._last_toast is None or now - self._last_toast >= s.toast_interval_ms:
            self._last_toast = now
            self._deliver(
                self.channel.show_toast,
                f"{label} Signal Detected",
                f"{symbol} - Confidence: {confidence_text}",
                "default" if signal.type is SignalType.BUY else "destructive",
            )

        logger.info(f"Alert delivered: {label} {symbol} {confidence_text}")
        return DispatchOutcome.DELIVERED

    @staticmethod
    def _deliver(primitive: Callable[..., None], *args) -> None:
        try:
            primitive(*args)
        except Exception as e:
            logger.error(f"Alert channel {primitive.__name__} failed: {e}")

    def reset(self) -> None:
        self._last_alert.clear()
        self._last_toast = None
