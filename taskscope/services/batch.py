"""Auto-analysis scheduling policy.

Evaluated after each capture tick that saved at least one screenshot.
A limit of 0 means "no limit" and is reserved for end-of-session sweeps
and manual catch-up passes.
"""
from taskscope.config.config import clamp_batch_size

UNBOUNDED = 0


def should_analyze(mode: str, saved_total: int, batch_size: int, analyzing: bool) -> bool:
    """Decide whether an analysis pass should start now

    Args:
        mode: ``realtime`` or ``batch``
        saved_total: Running count of screenshots saved this session
        batch_size: Configured batch size (clamped to [1, 100])
        analyzing: Whether a pass is already in flight

    Returns:
        bool: True when a pass should be spawned
    """
    if mode == "realtime":
        # Best effort only; two passes can still start close together
        return not analyzing
    size = clamp_batch_size(batch_size)
    return saved_total > 0 and saved_total % size == 0


def analysis_limit(mode: str, batch_size: int) -> int:
    if mode == "realtime":
        return 1
    return clamp_batch_size(batch_size)
