import asyncio

from echo_server import EchoServer
from metrics import DIRECT, TargetEndpoint


def endpoint(server: EchoServer, label: str = DIRECT) -> TargetEndpoint:
    host, port = server.address
    return TargetEndpoint(label, host, port)


class ScriptedClock:
    """Returns the scripted values in order, then repeats the last one."""

    def __init__(self, *values: float):
        self.values = list(values)
        self.calls = 0

    def __call__(self) -> float:
        idx = min(self.calls, len(self.values) - 1)
        self.calls += 1
        return self.values[idx]


async def read_echo(reader: asyncio.StreamReader, size: int) -> bytes:
    return await asyncio.wait_for(reader.readexactly(size), timeout=5)
