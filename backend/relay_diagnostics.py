from dataclasses import dataclass


@dataclass
class RelayDiagnostics:
    """Counters for anomalies the relay recovers from locally.

    None of these conditions reach a caller; this is the only place they are visible.
    """

    unknown_id_responses: int = 0
    duplicate_chunks: int = 0
    invalid_chunks: int = 0
    malformed_frames: int = 0
    unroutable_frames: int = 0
    relay_errors: int = 0
    unexpected_join_acks: int = 0
    forced_reconnects: int = 0
    timeouts: int = 0
    connection_losses: int = 0
    progress_updates: int = 0
