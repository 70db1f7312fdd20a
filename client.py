# client.py: duel peer. Runs the local simulation on the panda3d frame task and
# exchanges authority-protocol events with the relay.
import sys, asyncio, json, time, argparse, threading, queue, random, string
from typing import Dict, Any, List, Optional

from direct.showbase.ShowBase import ShowBase
from direct.gui.OnscreenText import OnscreenText
from panda3d.core import ClockObject, TextNode

from common.net import send_json, read_json
from engine import config
from duel import protocol
from duel.constants import ROLE_P1, ROLE_P2, role_side
from duel.event_bus import GAME_ENDED, OUTBOUND
from duel.simulation import DuelSimulation


def load_config(path: str) -> Dict[str, Any]:
    with open(path, "r") as f:
        return json.load(f)


class AsyncRunner:
    def __init__(self):
        self.loop = asyncio.new_event_loop()
        self.thread = threading.Thread(target=self._run, daemon=True)
        self.thread.start()

    def _run(self):
        asyncio.set_event_loop(self.loop)
        self.loop.run_forever()

    def run_coro(self, coro):
        """Schedule a coroutine onto the background loop."""
        return asyncio.run_coroutine_threadsafe(coro, self.loop)


class RelayConnection:
    def __init__(self):
        self.reader = None
        self.writer = None

    async def connect(self, host: str, port: int):
        self.reader, self.writer = await asyncio.open_connection(host, port)
        print(f"[net] connected to {host}:{port}")

    async def recv_loop(self, on_message):
        if self.reader is None:
            raise RuntimeError("recv_loop called before connect() completed")
        while True:
            msg = await read_json(self.reader)
            if msg is None:
                break
            on_message(msg)
        print("[net] relay closed the connection")

    async def send(self, msg: Dict[str, Any]):
        if self.writer is None:
            return
        await send_json(self.writer, msg)


class Autopilot:
    """Sweeps the turret between its limits and holds the trigger."""

    def __init__(self, seed: Optional[int] = None):
        self.rng = random.Random(seed)
        self.direction = 1.0

    def steer(self, sim: DuelSimulation):
        if abs(sim.me.angle) >= sim.turret_limit * 0.98:
            self.direction = -1.0 if sim.me.angle > 0 else 1.0
        elif self.rng.random() < 0.01:
            self.direction = -self.direction
        sim.input.rotate = self.direction
        sim.input.fire = True


class DuelApp(ShowBase):
    def __init__(self, cfg, host: str, port: int, username: str, user_id: str,
                 room_id: Optional[str] = None, role: str = ROLE_P1,
                 headless: bool = False, autopilot: bool = False):
        ShowBase.__init__(self, windowType="none" if headless else None)
        self.cfg = cfg
        self.username = username
        self.user_id = user_id
        self.room_id = room_id
        self.preferred_role = role
        self.headless = headless
        self.autopilot = Autopilot() if (autopilot or headless) else None
        self.return_delay = float(cfg.get("client", {}).get("return_delay", 3.0))

        self.sim: Optional[DuelSimulation] = None
        self.role: Optional[str] = None
        self.roster: List[Dict[str, Any]] = []
        # Filled by the network thread, drained at the start of each frame
        self.inbox: "queue.Queue[Dict[str, Any]]" = queue.Queue()
        self._exit_scheduled = False

        # key state
        self.keys = set()
        if not headless:
            self.set_background_color(0.02, 0.02, 0.05, 1)
            for key in ["arrow_up", "arrow_down", "space"]:
                self.accept(key, self.on_key, [key, True])
                self.accept(key + "-up", self.on_key, [key, False])
            self.accept("shift-s", self.on_cheat)
            self.accept("escape", sys.exit)
            self.hud = OnscreenText(text="connecting...", pos=(-1.3, 0.9), fg=(0.3, 0.8, 0.77, 1),
                                    align=TextNode.ALeft, scale=0.05, mayChange=True)
        else:
            self.hud = None

        self.taskMgr.add(self.update_task, "duel-update")

        # --- network start (connect first, then start recv loop) ---
        self.net_runner = AsyncRunner()
        self.conn = RelayConnection()

        def _after_connect(fut):
            try:
                fut.result()  # raise if connect() failed
            except OSError as e:
                print(f"[net] connect failed: {e}")
                self.inbox.put({"type": "_connectFailed"})
                return
            self.net_runner.run_coro(self.conn.recv_loop(self.inbox.put))
            if self.room_id:
                self._join_room()
            else:
                self.send({"type": protocol.MATCHMAKING_JOIN, "username": self.username, "userId": self.user_id})

        connect_future = self.net_runner.run_coro(self.conn.connect(host, port))
        connect_future.add_done_callback(_after_connect)

    # --- Outbound ---------------------------------------------------------

    def send(self, msg: Dict[str, Any]):
        self.net_runner.run_coro(self.conn.send(msg))

    def _send_room_event(self, msg: Dict[str, Any]):
        out = dict(msg)
        out["roomId"] = self.room_id
        self.send(out)

    def _join_room(self):
        self.send({"type": protocol.JOIN, "roomId": self.room_id, "username": self.username,
                   "userId": self.user_id, "role": self.preferred_role})

    # --- Inbound ------------------------------------------------------------

    def _handle(self, msg: Dict[str, Any]):
        kind = msg.get("type")
        if kind == "_connectFailed":
            sys.exit(1)
        elif kind == protocol.MATCHMAKING_STATUS:
            print(f"[match] {msg.get('status')}: {msg.get('message')}")
        elif kind == protocol.MATCH_FOUND:
            self.room_id = msg.get("roomId")
            self.preferred_role = msg.get("playerRole", ROLE_P1)
            opp = msg.get("opponent") or {}
            print(f"[match] found {opp.get('username')} -> room {self.room_id} as {self.preferred_role}")
            self._join_room()
        elif kind == protocol.ROLE_ASSIGNED:
            self._on_role(msg.get("role"))
        elif kind == protocol.ROOM_FULL:
            print(f"[net] room {msg.get('roomId')} is full; retrying in 2s")
            self.taskMgr.doMethodLater(2.0, self._retry_join, "retry-join")
        elif kind == protocol.ROOM_ROSTER:
            self.roster = msg.get("roster") or []
            opp = next((p for p in self.roster if p.get("role") != self.role and p.get("userId")), None)
            print(f"[room] opponent: {opp['username'] + ' (' + opp['role'] + ')' if opp else 'waiting...'}")
        elif kind == protocol.ROOM_JOINED:
            pass
        elif self.sim is not None:
            self.sim.apply_event(msg)

    def _retry_join(self, task):
        self._join_room()
        return task.done

    def _on_role(self, role: str):
        if role not in (ROLE_P1, ROLE_P2):
            return
        if self.sim is not None and self.sim.role == role:
            # Reconnected into the same seat; keep our world
            return
        self.role = role
        self.sim = DuelSimulation(role)
        self.sim.bus.subscribe(OUTBOUND, self._send_room_event)
        self.sim.bus.subscribe(GAME_ENDED, self._on_game_ended)
        print(f"[game] playing as {role} ({role_side(role)} ship){' [host]' if self.sim.is_host else ''}")

    def _on_game_ended(self, terminal):
        how = " (local timeout)" if terminal.fallback else ""
        print(f"[game] over: winner={terminal.winner} lives={terminal.lives}{how}")
        if not self._exit_scheduled:
            self._exit_scheduled = True
            self.taskMgr.doMethodLater(self.return_delay, self._leave, "return-to-lobby")

    def _leave(self, task):
        self.userExit()
        return task.done

    # --- Input handling ---------------------------------------------------

    def on_key(self, key, down):
        if down:
            self.keys.add(key)
        else:
            self.keys.discard(key)

    def on_cheat(self):
        if self.sim is not None:
            self.sim.toggle_cheat()

    def _read_input(self):
        if self.autopilot is not None:
            self.autopilot.steer(self.sim)
            return
        rotate = 0.0
        if "arrow_up" in self.keys:
            rotate -= 1.0
        if "arrow_down" in self.keys:
            rotate += 1.0
        self.sim.input.rotate = rotate
        self.sim.input.fire = "space" in self.keys

    # --- Frame ------------------------------------------------------------

    def update_task(self, task):
        while True:
            try:
                msg = self.inbox.get_nowait()
            except queue.Empty:
                break
            self._handle(msg)

        if self.sim is None:
            return task.cont

        self._read_input()
        self.sim.advance(ClockObject.getGlobalClock().getDt())

        if self.hud is not None:
            s = self.sim.describe()
            lives = s["lives"]
            lines = [
                f"Room: {self.room_id}   Role: {self.role}   You: {self.username}",
                f"Life  left: {lives['left']}   right: {lives['right']}",
                f"Turret: {self.sim.me.angle:+.2f}   Opponent: {self.sim.opponent.angle:+.2f}"
                + ("   [CHEAT]" if self.sim.me.cheat else ""),
            ]
            if s["ended"]:
                lines.append(f"GAME OVER - winner: {s['winner']}")
            self.hud.setText("\n".join(lines))
        return task.cont


def _default_user_id() -> str:
    token = "".join(random.choice(string.ascii_lowercase + string.digits) for _ in range(4))
    return f"{int(time.time() * 1000)}_{token}"


def main():
    ap = argparse.ArgumentParser()
    ap.add_argument("--config", default="configs/defaults.json")
    ap.add_argument("--host", default="127.0.0.1")
    ap.add_argument("--port", type=int, default=None)
    ap.add_argument("--name", default=None)
    ap.add_argument("--user-id", default=None, help="Stable id; reuse it to reclaim your seat after a reconnect")
    ap.add_argument("--room", default=None, help="Room id to join directly; omit to use matchmaking")
    ap.add_argument("--role", choices=[ROLE_P1, ROLE_P2], default=ROLE_P1)
    ap.add_argument("--headless", action="store_true", help="No window; implies --autopilot")
    ap.add_argument("--autopilot", action="store_true")
    args = ap.parse_args()

    cfg = load_config(args.config)
    config.use(args.config)
    port = args.port or int(cfg.get("server", {}).get("port", 50017))
    user_id = args.user_id or _default_user_id()
    name = args.name or f"pilot_{user_id[-4:]}"

    app = DuelApp(cfg, host=args.host, port=port, username=name, user_id=user_id,
                  room_id=args.room, role=args.role, headless=args.headless, autopilot=args.autopilot)
    app.run()


if __name__ == "__main__":
    main()
