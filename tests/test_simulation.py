import math
import random

import pytest

from duel.event_bus import GAME_ENDED, OUTBOUND
from duel.simulation import DuelSimulation, decide_winner
from duel.state import DuelState, Occupant
from engine import config


def _sim(role, **overrides):
    cfg = dict(config.section("gameplay"))
    cfg.update(overrides)
    sim = DuelSimulation(role, gameplay_cfg=cfg, rng=random.Random(7))
    sent = []
    sim.bus.subscribe(OUTBOUND, sent.append)
    return sim, sent


def _run(sim, seconds, step=0.02):
    for _ in range(int(round(seconds / step))):
        sim.advance(step)


def _of(sent, kind):
    return [m for m in sent if m["type"] == kind]


def _spawn_msg(fid, side, x, y, vx=0.0, vy=0.0):
    return {"type": "fighterSpawn", "fighters": [{"id": fid, "side": side, "x": x, "y": y, "vx": vx, "vy": vy}]}


# ---- projectiles ----

def test_mirrored_projectile_moves_with_its_velocity():
    sim, _ = _sim("player2")
    assert sim.apply_event({"type": "opponentFire", "x": 100, "y": 100, "vx": 1800, "vy": 0, "ts": 12.5})
    _run(sim, 1.0)
    (shot, pos), = sim.projectiles()
    assert shot.owner_role == "player1"
    assert shot.remote_ts == 12.5
    assert pos.x == pytest.approx(1900)
    assert pos.y == pytest.approx(100)


def test_projectile_expires_after_lifetime_even_in_bounds():
    sim, _ = _sim("player2")
    sim.apply_event({"type": "opponentFire", "x": 100, "y": 100, "vx": 1, "vy": 0, "ts": 0})
    _run(sim, 2.0)
    assert len(sim.projectiles()) == 1
    _run(sim, 0.3)
    assert sim.projectiles() == []


def test_projectile_leaving_arena_is_culled():
    sim, _ = _sim("player2")
    sim.apply_event({"type": "opponentFire", "x": 100, "y": 100, "vx": 0, "vy": -1800, "ts": 0})
    _run(sim, 0.2)
    assert sim.projectiles() == []


def test_projectile_is_consumed_by_opposing_shield_front():
    # host bolt flying at the right ship's shield
    sim, _ = _sim("player2")
    sim.apply_event({"type": "opponentFire", "x": 2000, "y": 900, "vx": 1800, "vy": 0, "ts": 0})
    _run(sim, 0.1)
    assert sim.projectiles() == []


def test_projectile_cap_drops_oldest():
    sim, _ = _sim("player2", max_projectiles=3)
    for i in range(5):
        sim.apply_event({"type": "opponentFire", "x": 100 + i, "y": 100, "vx": 0, "vy": 0, "ts": i})
    shots = sim.projectiles()
    assert len(shots) == 3
    assert sorted(s.remote_ts for s, _ in shots) == [2, 3, 4]


def test_malformed_event_changes_nothing():
    sim, _ = _sim("player2")
    assert not sim.apply_event({"type": "opponentFire", "x": "left", "y": 0, "vx": 0, "vy": 0})
    assert not sim.apply_event({"type": "somethingElse"})
    assert not sim.apply_event("opponentFire")
    assert sim.projectiles() == []


# ---- own turret and firing ----

def test_turret_rotation_is_clamped():
    sim, _ = _sim("player1", spawn_interval=1000)
    sim.input.rotate = 1.0
    _run(sim, 2.0)
    assert sim.me.angle == pytest.approx(0.39 * math.pi)
    sim.input.rotate = -1.0
    _run(sim, 4.0)
    assert sim.me.angle == pytest.approx(-0.39 * math.pi)


def test_turret_updates_are_rate_limited():
    sim, sent = _sim("player2")
    for _ in range(10):
        sim.advance(0.01)
    assert len(_of(sent, "turretUpdate")) == 3


def test_fire_cooldown():
    sim, sent = _sim("player2")
    assert sim.fire()
    assert not sim.fire()
    _run(sim, 0.2)
    assert sim.fire()
    assert len(_of(sent, "fire")) == 2
    shot = _of(sent, "fire")[0]
    assert (shot["x"], shot["y"], shot["vx"], shot["vy"]) == (2256, 990, -1800, 0)


def test_held_trigger_fires_at_cooldown_rate():
    sim, sent = _sim("player2")
    sim.input.fire = True
    _run(sim, 1.0)
    assert 5 <= len(_of(sent, "fire")) <= 6


def test_cheat_toggle_is_sent_and_mirrored():
    sim, sent = _sim("player2")
    assert sim.toggle_cheat()
    assert _of(sent, "cheatToggle") == [{"type": "cheatToggle", "enabled": True}]
    sim.apply_event({"type": "opponentCheat", "enabled": True})
    assert sim.opponent.cheat


def test_opponent_turret_mirror():
    sim, _ = _sim("player1", spawn_interval=1000)
    sim.apply_event({"type": "opponentTurret", "angle": -0.4, "ts": 3})
    assert sim.opponent.angle == -0.4
    assert sim.me.angle == 0.0


# ---- spawning ----

def test_host_spawns_a_pair_on_first_step():
    sim, sent = _sim("player1")
    sim.advance(0.016)
    spawns = _of(sent, "spawnFighters")
    assert len(spawns) == 1
    left, right = spawns[0]["fighters"]
    assert left["id"].startswith("L_") and left["side"] == "left" and left["x"] == pytest.approx(64)
    assert right["id"].startswith("R_") and right["side"] == "right" and right["x"] == pytest.approx(3136)
    assert left["vx"] > 0 > right["vx"]
    assert 400 <= left["y"] <= 1400
    assert {f.fid for f, _ in sim.fighters()} == {left["id"], right["id"]}


def test_host_spawn_cadence_and_unique_ids():
    sim, sent = _sim("player1")
    _run(sim, 6.5)
    spawns = _of(sent, "spawnFighters")
    assert len(spawns) == 4
    ids = [f["id"] for m in spawns for f in m["fighters"]]
    assert len(ids) == len(set(ids))


def test_speed_ramp_is_capped():
    sim, _ = _sim("player1")
    ramp = sim.spawn_system.speed_multiplier
    assert ramp(0) == 1.0
    assert ramp(100) == pytest.approx(2.0)
    assert ramp(1000) == 3.0


def test_guest_never_spawns_and_host_ignores_remote_spawns():
    guest, sent = _sim("player2")
    _run(guest, 3.0)
    assert _of(sent, "spawnFighters") == []
    assert guest.fighters() == []

    host, _ = _sim("player1", spawn_interval=1000)
    assert not host.apply_event(_spawn_msg("X_1", "left", 500, 900))
    assert host.fighter("X_1") is None


# ---- kills ----

def test_fighter_down_is_idempotent():
    sim, _ = _sim("player2")
    assert sim.apply_event(_spawn_msg("L_1_abcd", "left", 1500, 900))
    assert sim.apply_event({"type": "fighterDown", "id": "L_1_abcd"})
    assert not sim.apply_event({"type": "fighterDown", "id": "L_1_abcd"})
    assert not sim.fighter("L_1_abcd").alive
    assert len(sim.effects()) == 1


def test_dead_fighter_lingers_for_its_explosion():
    sim, _ = _sim("player2")
    sim.apply_event(_spawn_msg("L_1_abcd", "left", 1500, 900))
    sim.apply_event({"type": "fighterDown", "id": "L_1_abcd"})
    _run(sim, 0.4)
    assert sim.fighter("L_1_abcd") is not None
    _run(sim, 0.1)
    assert sim.fighter("L_1_abcd") is None
    assert sim.effects() == []


def test_late_spawn_of_downed_fighter_is_not_resurrected():
    sim, _ = _sim("player2")
    assert not sim.apply_event({"type": "fighterDown", "id": "L_9_zzzz"})
    assert not sim.apply_event(_spawn_msg("L_9_zzzz", "left", 1500, 900))
    assert sim.fighter("L_9_zzzz") is None


def test_own_bolt_kill_is_reported_once():
    sim, sent = _sim("player2")
    sim.apply_event(_spawn_msg("L_1_abcd", "left", 1500, 990))
    assert sim.fire()
    _run(sim, 0.6)
    assert _of(sent, "fighterDown") == [{"type": "fighterDown", "id": "L_1_abcd"}]
    assert not sim.fighter("L_1_abcd").alive
    assert sim.projectiles() == []
    # the echo from the other peer is a no-op
    assert not sim.apply_event({"type": "fighterDown", "id": "L_1_abcd"})


def test_opponent_bolt_kill_is_not_reported():
    sim, sent = _sim("player2")
    sim.apply_event(_spawn_msg("R_1_abcd", "right", 1500, 100))
    sim.apply_event({"type": "opponentFire", "x": 1000, "y": 100, "vx": 1800, "vy": 0, "ts": 0})
    _run(sim, 0.5)
    assert not sim.fighter("R_1_abcd").alive
    assert _of(sent, "fighterDown") == []
    assert len([e for e, _ in sim.effects() if e.kind == "explosion"]) == 1


def test_bolts_pass_through_own_side_fighters():
    sim, sent = _sim("player2")
    sim.apply_event(_spawn_msg("R_1_abcd", "right", 1500, 990))
    sim.fire()
    _run(sim, 0.6)
    assert sim.fighter("R_1_abcd").alive
    assert _of(sent, "fighterDown") == []


# ---- breaches and the terminal state ----

def test_host_breach_is_one_shot_per_fighter():
    sim, sent = _sim("player1", spawn_interval=1000)
    _run(sim, 5.0)
    breaches = _of(sent, "breach")
    assert sorted(b["side"] for b in breaches) == ["left", "right"]
    assert len({b["id"] for b in breaches}) == 2
    assert sim.lives == {"left": 19, "right": 19}
    assert all(f.breached for f, _ in sim.fighters())
    assert len([e for e, _ in sim.effects() if e.kind == "breach"]) <= 2


def test_guest_applies_breach_once_per_id():
    sim, sent = _sim("player2")
    assert sim.apply_event({"type": "breach", "side": "left", "id": "R_1_abcd"})
    assert not sim.apply_event({"type": "breach", "side": "left", "id": "R_1_abcd"})
    assert sim.apply_event({"type": "breach", "side": "right", "id": "L_1_abcd"})
    assert sim.lives == {"left": 19, "right": 19}
    assert _of(sent, "breach") == []


def test_breach_received_before_spawn_marks_the_fighter():
    sim, _ = _sim("player2")
    sim.apply_event({"type": "breach", "side": "left", "id": "R_2_abcd"})
    sim.apply_event(_spawn_msg("R_2_abcd", "right", 1000, 900))
    assert sim.fighter("R_2_abcd").breached


def test_host_declares_game_over_once():
    sim, sent = _sim("player1", spawn_interval=1000, starting_lives=1)
    ended = []
    sim.bus.subscribe(GAME_ENDED, ended.append)
    _run(sim, 5.0)
    overs = _of(sent, "gameOver")
    assert len(overs) == 1
    assert overs[0]["winner"] in ("left", "right", "tie")
    assert overs[0]["winner"] == decide_winner(overs[0]["lives"])
    assert len(ended) == 1
    assert sim.game_ended
    assert min(sim.lives.values()) == 0
    # the relay echoes gameOver back to its sender
    assert not sim.apply_event({"type": "gameOver", "winner": "tie", "lives": {"left": 0, "right": 0}})
    assert sim.terminal.winner == overs[0]["winner"]


def test_no_input_or_spawns_after_game_over():
    sim, sent = _sim("player1", spawn_interval=1.0)
    sim.apply_event({"type": "opponentFire", "x": 100, "y": 100, "vx": 1800, "vy": 0, "ts": 0})
    assert sim.apply_event({"type": "gameOver", "winner": "left"})
    sent.clear()
    sim.input.fire = True
    sim.input.rotate = 1.0
    _run(sim, 2.0)
    assert sent == []
    assert sim.me.angle == 0.0
    assert sim.projectiles() == []
    assert not sim.fire()


def test_guest_latches_first_game_over_only():
    sim, _ = _sim("player2")
    ended = []
    sim.bus.subscribe(GAME_ENDED, ended.append)
    assert sim.apply_event({"type": "gameOver", "winner": "right", "lives": {"left": 0, "right": 4}})
    assert not sim.apply_event({"type": "gameOver", "winner": "left", "lives": {"left": 9, "right": 0}})
    assert sim.terminal.winner == "right"
    assert sim.lives == {"left": 0, "right": 4}
    assert len(ended) == 1
    assert not sim.apply_event({"type": "breach", "side": "right", "id": "L_5_abcd"})


def test_guest_fallback_latch_after_timeout():
    sim, _ = _sim("player2", starting_lives=1)
    ended = []
    sim.bus.subscribe(GAME_ENDED, ended.append)
    sim.apply_event({"type": "breach", "side": "left", "id": "R_1_abcd"})
    assert sim.lives["left"] == 0
    _run(sim, 2.9)
    assert not sim.game_ended
    _run(sim, 0.2)
    assert sim.game_ended
    assert sim.terminal.fallback
    assert sim.terminal.winner == "right"
    assert len(ended) == 1


def test_decide_winner():
    assert decide_winner({"left": 3, "right": 2}) is None
    assert decide_winner({"left": 0, "right": 2}) == "right"
    assert decide_winner({"left": 1, "right": 0}) == "left"
    assert decide_winner({"left": 0, "right": 0}) == "tie"


def test_lives_floor_and_latch_never_raise_counters():
    state = DuelState(me=Occupant("player1"), opponent=Occupant("player2"), lives={"left": 1, "right": 5})
    assert state.deduct_life("left") == 0
    assert state.deduct_life("left") == 0
    assert state.latch_terminal("right", {"left": 3, "right": 9})
    assert state.lives == {"left": 0, "right": 5}
    assert not state.latch_terminal("left")
    assert state.terminal.winner == "right"


def test_large_frame_time_is_clamped():
    sim, _ = _sim("player2")
    sim.advance(5.0)
    assert sim.clock == pytest.approx(0.033)


def test_resolved_ids_are_forgotten_after_retention():
    sim, _ = _sim("player2", resolved_id_retention=1.0)
    sim.apply_event({"type": "fighterDown", "id": "L_9_zzzz"})
    sim.apply_event({"type": "breach", "side": "left", "id": "R_9_zzzz"})
    _run(sim, 0.5)
    assert not sim.apply_event(_spawn_msg("L_9_zzzz", "left", 1500, 900))
    _run(sim, 0.6)
    assert "L_9_zzzz" not in sim._downed
    assert "R_9_zzzz" not in sim._breached


def test_resolved_ids_of_live_entities_are_kept():
    sim, _ = _sim("player2", resolved_id_retention=0.1)
    sim.apply_event(_spawn_msg("L_1_abcd", "left", 1500, 900))
    sim.apply_event({"type": "breach", "side": "right", "id": "L_1_abcd"})
    _run(sim, 0.5)
    assert "L_1_abcd" in sim._breached
    assert not sim.apply_event({"type": "breach", "side": "right", "id": "L_1_abcd"})
