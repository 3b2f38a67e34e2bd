import argparse
import asyncio
import logging
from typing import Optional, Set, Tuple

from config import ECHO_HOST, ECHO_PORT, ECHO_READ_SIZE

logger = logging.getLogger(__name__)

class EchoServer:
    """Mirrors every chunk received on a connection back to its sender.

    Best-effort: a chunk that arrives after the connection stopped being
    writable is dropped. There is no framing, so echoed chunk boundaries
    need not match the sender's writes; only the byte stream is preserved.
    """

    def __init__(self, host: str = ECHO_HOST, port: int = ECHO_PORT,
                 read_size: int = ECHO_READ_SIZE):
        self.host = host
        self.port = port
        self.read_size = read_size

        self._server: Optional[asyncio.AbstractServer] = None
        self._connections: Set[asyncio.StreamWriter] = set()
        self.bytes_echoed = 0
        self.chunks_dropped = 0

    @property
    def address(self) -> Tuple[str, int]:
        """Actual bound (host, port); differs from the configured port when it was 0."""
        if not self._server or not self._server.sockets:
            return (self.host, self.port)
        sockname = self._server.sockets[0].getsockname()
        return (sockname[0], sockname[1])

    @property
    def active_connections(self) -> int:
        return len(self._connections)

    async def _handle_connection(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter):
        peer = writer.get_extra_info('peername')
        self._connections.add(writer)
        logger.debug(f"Echo connection from {peer}")
        try:
            while True:
                data = await reader.read(self.read_size)
                if not data:
                    logger.debug(f"Echo peer {peer} closed.")
                    break
                if writer.is_closing():
                    self.chunks_dropped += 1
                    continue
                writer.write(data)
                await writer.drain()
                self.bytes_echoed += len(data)
        except (ConnectionResetError, BrokenPipeError) as e:
            logger.warning(f"Echo connection {peer} reset/broken: {e}")
        except OSError as e:
            logger.error(f"Echo connection {peer} error: {e}")
        finally:
            self._connections.discard(writer)
            if not writer.is_closing():
                writer.close()
            try:
                await writer.wait_closed()
            except OSError as e:
                logger.debug(f"Error while closing echo connection {peer}: {e}")

    async def start(self):
        self._server = await asyncio.start_server(
            self._handle_connection, self.host, self.port
        )
        logger.info(f"Echo server listening on {self.address}")

    async def serve_forever(self):
        if not self._server:
            await self.start()
        await self._server.serve_forever()

    async def stop(self):
        if not self._server:
            return
        logger.info(f"Stopping echo server on {self.address} "
                    f"({self.active_connections} open connections, {self.bytes_echoed} bytes echoed)")
        self._server.close()
        # wait_closed() also waits for live connections, close them first
        for writer in list(self._connections):
            if not writer.is_closing():
                writer.close()
        await self._server.wait_closed()
        self._server = None
        logger.info("Echo server stopped.")


async def _serve(host: str, port: int):
    server = EchoServer(host, port)
    try:
        await server.serve_forever()
    finally:
        await server.stop()


def main(argv=None):
    parser = argparse.ArgumentParser(description="TCP echo responder for the throughput benchmark")
    parser.add_argument("--host", default=ECHO_HOST)
    parser.add_argument("--port", type=int, default=ECHO_PORT)
    args = parser.parse_args(argv)

    from harness import setup_logging
    setup_logging()
    try:
        asyncio.run(_serve(args.host, args.port))
    except KeyboardInterrupt:
        logger.info("Echo server interrupted by user (Ctrl+C).")


if __name__ == "__main__":
    main()
