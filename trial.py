import asyncio
import logging
import os
import time
from typing import Callable, Optional

from config import ECHO_READ_SIZE
from errors import BenchmarkError, ConnectFailure, TransportFailure
from metrics import Trial, TrialOutcome, TrialStatus

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


def random_payload(size: int) -> bytes:
    return os.urandom(size)


def _failed(trial: Trial, attempted_at: float, elapsed_s: float, error: BenchmarkError) -> TrialOutcome:
    return TrialOutcome(trial.trial_id, trial.target.label, 0, elapsed_s,
                        TrialStatus.FAILED, str(error), attempted_at)


async def _close(writer: asyncio.StreamWriter, trial_id: str):
    if not writer.is_closing():
        writer.close()
    try:
        await writer.wait_closed()
    except OSError as e:
        logger.debug(f"Trial {trial_id}: error while closing connection: {e}")


async def run_trial(trial: Trial, clock: Clock = time.perf_counter,
                    read_size: int = ECHO_READ_SIZE) -> TrialOutcome:
    """Run one closed-loop echo benchmark against ``trial.target``.

    Ping-pong pacing: every read event is answered with a
    fresh random payload until ``test_duration`` has elapsed since the first
    send, so the result is bounded by round-trip time, not link bandwidth.

    Always returns exactly one outcome; errors never propagate to the caller.
    """
    target = trial.target
    attempted_at = clock()
    try:
        reader, writer = await asyncio.open_connection(target.host, target.port)
    except (OSError, OverflowError) as e:
        error = ConnectFailure(target.label, target.host, target.port, e)
        logger.warning(f"Trial {trial.trial_id}: {error}")
        return _failed(trial, attempted_at, 0.0, error)

    logger.debug(f"Trial {trial.trial_id}: connected to {target}")
    bytes_flown = 0
    start_time: Optional[float] = None
    elapsed_s = 0.0
    failure: Optional[TransportFailure] = None
    try:
        writer.write(random_payload(trial.payload_size))
        start_time = clock()
        await writer.drain()

        while True:
            data = await reader.read(read_size)
            if not data:
                raise TransportFailure(target.label, "connection closed by peer")
            bytes_flown += len(data)
            # No new payload once the duration is crossed
            elapsed_s = clock() - start_time
            if elapsed_s > trial.test_duration:
                break
            writer.write(random_payload(trial.payload_size))
            await writer.drain()
    except TransportFailure as e:
        failure = e
    except (ConnectionResetError, BrokenPipeError) as e:
        failure = TransportFailure(target.label, f"connection reset/broken: {e}")
    except OSError as e:
        failure = TransportFailure(target.label, repr(e))
    finally:
        await _close(writer, trial.trial_id)

    if failure:
        if start_time is not None:
            elapsed_s = clock() - start_time
        logger.warning(f"Trial {trial.trial_id}: {failure} after {elapsed_s:.2f}s, "
                       f"discarding {bytes_flown} bytes")
        return _failed(trial, attempted_at, elapsed_s, failure)

    logger.debug(f"Trial {trial.trial_id}: transmitted {bytes_flown} bytes in {elapsed_s:.2f}s")
    return TrialOutcome(trial.trial_id, target.label, bytes_flown, elapsed_s,
                        TrialStatus.COMPLETED, None, attempted_at)
