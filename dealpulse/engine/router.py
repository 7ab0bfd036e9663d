"""
Action Router

Maps a confidence value to one of three governance actions:
automatic update, flag for human confirmation, or no action.
"""

from typing import Optional

from ..common.config import EngineConfig
from ..common.schemas import ActionDecision, ConfidenceLevel, RoutingAction


class ActionRouter:
    """
    Two-threshold confidence router.

    Every confidence maps to exactly one action, and anything below the
    medium threshold is never acted on.
    """

    def __init__(self, config: Optional[EngineConfig] = None):
        self._config = config or EngineConfig()
        self._validate(self._config)

    @staticmethod
    def _validate(config: EngineConfig) -> None:
        if config.medium_confidence_threshold > config.high_confidence_threshold:
            raise ValueError(
                f"medium_confidence_threshold ({config.medium_confidence_threshold}) "
                f"exceeds high_confidence_threshold ({config.high_confidence_threshold})"
            )

    @property
    def config(self) -> EngineConfig:
        return self._config

    def update_config(self, config: EngineConfig) -> None:
        self._validate(config)
        self._config = config

    def decide(self, confidence: float) -> ActionDecision:
        pct = f"{confidence * 100:.0f}%"
        high = self._config.high_confidence_threshold
        medium = self._config.medium_confidence_threshold

        if confidence >= high:
            enabled = self._config.enable_auto_update
            return ActionDecision(
                action=RoutingAction.AUTO_UPDATE if enabled else RoutingAction.FLAG_FOR_CONFIRMATION,
                confidence_level=ConfidenceLevel.HIGH,
                confidence=confidence,
                reason=f"High confidence ({pct}) - automatic update {'enabled' if enabled else 'disabled'}",
            )

        if confidence >= medium:
            enabled = self._config.enable_flagging
            return ActionDecision(
                action=RoutingAction.FLAG_FOR_CONFIRMATION if enabled else RoutingAction.NO_ACTION,
                confidence_level=ConfidenceLevel.MEDIUM,
                confidence=confidence,
                reason=(
                    f"Medium confidence ({pct}) - "
                    f"{'flagged for rep confirmation' if enabled else 'no action taken'}"
                ),
            )

        return ActionDecision(
            action=RoutingAction.NO_ACTION,
            confidence_level=ConfidenceLevel.LOW,
            confidence=confidence,
            reason=f"Low confidence ({pct}) - no automated action",
        )

    def should_auto_update(self, confidence: float) -> bool:
        return self._config.enable_auto_update and confidence >= self._config.high_confidence_threshold

    def needs_confirmation(self, confidence: float) -> bool:
        return (
            self._config.medium_confidence_threshold
            <= confidence
            < self._config.high_confidence_threshold
        )
