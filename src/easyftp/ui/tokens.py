"""Layout and color tokens shared by the window and tray.

Usage:
    from easyftp.ui.tokens import colors, spacing, sizing

    layout.setContentsMargins(spacing.lg, spacing.lg, spacing.lg, spacing.lg)
    label.setStyleSheet(f"color: {colors.for_state('running')};")
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class SpacingTokens:
    """Spacing scale based on a 4px base unit."""

    xs: int = 2
    sm: int = 4
    md: int = 8
    lg: int = 12
    xl: int = 16


@dataclass(frozen=True)
class SizingTokens:
    """Widget sizing constants in pixels."""

    window_min_width: int = 420
    window_min_height: int = 300
    port_field_width: int = 90
    tray_icon: int = 64
    status_dot_radius: int = 8


@dataclass(frozen=True)
class StatusColors:
    """Colors for the server status indicator."""

    running: str = "#2e7d32"
    busy: str = "#f9a825"
    stopped: str = "#757575"
    error: str = "#c62828"

    def for_state(self, state: str) -> str:
        """Return the indicator color for a ServerState value."""
        if state == "running":
            return self.running
        if state in ("starting", "stopping"):
            return self.busy
        return self.stopped


spacing = SpacingTokens()
sizing = SizingTokens()
colors = StatusColors()
