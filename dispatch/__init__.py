#Expose the high-level pipeline pieces:
#Dispatcher orchestrator (broadcast -> evaluate -> award -> lifecycle)
#Bidding-window sweeper (the heartbeat)
#build_dispatcher (the "one call" entry point that wires an in-memory engine)

from .dispatcher import BroadcastResult, Dispatcher, build_dispatcher
from .sweeper import BiddingWindowSweeper, SweepReport

__all__ = [
    "BroadcastResult",
    "Dispatcher",
    "build_dispatcher",
    "BiddingWindowSweeper",
    "SweepReport",
]
