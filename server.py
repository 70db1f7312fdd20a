# server.py : Duel relay: room/role registry, event fan-out and FIFO matchmaking.
# The server runs no physics; each peer simulates the arena and the relay only
# forwards authority-protocol events between the two occupants of a room.
import asyncio, json, argparse, signal
from typing import Dict, Any, List, Tuple

from common.net import decode_line, send_json
from duel import protocol
from duel.matchmaking import MatchmakingQueue
from duel.relay import RelayBus
from duel.rooms import RoomRegistry

Outgoing = List[Tuple[int, Dict[str, Any]]]

# ---------- Config ----------
def load_config(path: str) -> Dict[str, Any]:
    with open(path, "r") as f:
        return json.load(f)


# ---------- Server ----------
class DuelRelayServer:
    def __init__(self, cfg: Dict[str, Any]):
        self.cfg = cfg
        self.registry = RoomRegistry()
        self.relay = RelayBus(self.registry)
        self.matchmaking = MatchmakingQueue()
        self.clients: Dict[int, asyncio.StreamWriter] = {}
        self.next_cid = 1

    # ---------- Message handling (synchronous, one message at a time) ----------
    def handle_message(self, cid: int, msg: Dict[str, Any]) -> Outgoing:
        """Apply one client message and return the (connection, message) pairs to send."""
        kind = msg.get("type") if isinstance(msg, dict) else None

        if kind in (protocol.JOIN, protocol.JOIN_ALIAS):
            return self._join(cid, msg)
        if kind == protocol.MATCHMAKING_JOIN:
            payload = protocol.validate(msg)
            if payload is None:
                return self._drop(cid, kind)
            notices = self.matchmaking.join(cid, payload["userId"], payload["username"])
            return [(n.connection_id, n.message) for n in notices]
        if kind == protocol.MATCHMAKING_CANCEL:
            payload = protocol.validate(msg)
            if payload is None:
                return self._drop(cid, kind)
            return [(n.connection_id, n.message) for n in self.matchmaking.cancel(cid, payload["userId"])]

        deliveries = self.relay.route(cid, msg)
        if not deliveries and kind not in protocol.RELAYED_AS:
            return self._drop(cid, kind)
        return [(d.connection_id, d.message) for d in deliveries]

    def _drop(self, cid: int, kind: Any) -> Outgoing:
        print(f"[relay] dropped malformed message type={kind!r} from cid={cid}")
        return []

    def _join(self, cid: int, msg: Dict[str, Any]) -> Outgoing:
        payload = protocol.validate(msg)
        if payload is None:
            return self._drop(cid, msg.get("type"))

        room_id = payload["roomId"]
        res = self.registry.join(room_id, cid, payload["userId"], payload["username"], payload["role"])
        if not res.ok:
            print(f"[join] room={room_id} full; rejected user={payload['userId']}")
            return [(cid, {"type": protocol.ROOM_FULL, "roomId": room_id, "reason": res.rejected})]

        out: Outgoing = []
        if res.left is not None:
            out += self._roster_to(res.left.remaining, res.left.roster)
        verb = "rejoin" if res.reconnected else "join"
        print(f"[{verb}] room={room_id} cid={cid} user={payload['userId']} role={res.role}")
        out.append((cid, {"type": protocol.ROLE_ASSIGNED, "role": res.role, "roomId": room_id}))
        out.append((cid, {"type": protocol.ROOM_JOINED, "roomId": room_id}))
        out += self._roster_to(self.registry.members(room_id), res.roster)
        return out

    @staticmethod
    def _roster_to(members: List[int], roster: List[Dict[str, Any]]) -> Outgoing:
        return [(m, protocol.roster_message(roster)) for m in members]

    def handle_disconnect(self, cid: int) -> Outgoing:
        if self.matchmaking.drop_connection(cid):
            print(f"[match] cid={cid} left the queue")
        res = self.registry.leave(cid)
        if res is None:
            return []
        print(f"[leave] room={res.room_id} cid={cid} role={res.role}"
              + (" (room closed)" if res.room_closed else ""))
        return self._roster_to(res.remaining, res.roster)

    # ---------- Transport ----------
    async def _deliver(self, outgoing: Outgoing):
        for cid, msg in outgoing:
            w = self.clients.get(cid)
            if w is None:
                continue
            try:
                await send_json(w, msg)
            except (ConnectionError, RuntimeError) as e:
                # The reader side of that connection will run the disconnect path
                print(f"[relay] send to cid={cid} failed: {e}")

    async def handle_client(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter):
        addr = writer.get_extra_info("peername")
        cid = self.next_cid
        self.next_cid += 1
        self.clients[cid] = writer
        print(f"[connect] cid={cid} addr={addr}")
        try:
            while True:
                line = await reader.readline()
                if not line:
                    break
                if not line.strip():
                    continue
                msg = decode_line(line)
                if msg is None:
                    self._drop(cid, None)
                    continue
                await self._deliver(self.handle_message(cid, msg))
        except (ConnectionError, asyncio.IncompleteReadError, asyncio.LimitOverrunError, ValueError) as e:
            print(f"[client] {addr} error: {e}")
        finally:
            self.clients.pop(cid, None)
            await self._deliver(self.handle_disconnect(cid))
            print(f"[disconnect] cid={cid}")
            try:
                writer.close()
                await writer.wait_closed()
            except (ConnectionError, RuntimeError):
                pass


# ---------- Entrypoint ----------
async def main_async(args):
    cfg = load_config(args.config)
    srv_cfg = cfg.get("server", {})
    host = args.host or srv_cfg.get("host", "0.0.0.0")
    port = int(args.port or srv_cfg.get("port", 50017))
    server = DuelRelayServer(cfg)

    srv = await asyncio.start_server(server.handle_client, host, port)
    print(f"[tcp] {srv_cfg.get('name', 'relay')} listening on {host}:{port}")

    loop = asyncio.get_running_loop()
    stop = asyncio.Event()
    for sig in (getattr(signal, "SIGINT", None), getattr(signal, "SIGTERM", None)):
        if sig is not None:
            try:
                loop.add_signal_handler(sig, stop.set)
            except NotImplementedError:
                pass  # e.g., Windows

    async with srv:
        tcp_task = asyncio.create_task(srv.serve_forever(), name="tcp_server")
        try:
            await stop.wait()
        finally:
            tcp_task.cancel()
            await asyncio.gather(tcp_task, return_exceptions=True)


def main():
    ap = argparse.ArgumentParser()
    ap.add_argument("--config", default="configs/defaults.json")
    ap.add_argument("--host", default=None)
    ap.add_argument("--port", type=int, default=None)
    args = ap.parse_args()
    try:
        asyncio.run(main_async(args))
    except KeyboardInterrupt:
        pass

if __name__ == "__main__":
    main()
