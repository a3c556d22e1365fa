# Client-side helpers for the purchase success flow
from .countdown import CountdownState, CountdownPhase, PassStatusPoller

__all__ = ["CountdownState", "CountdownPhase", "PassStatusPoller"]
