from __future__ import annotations

from npcmind.agents.agent import Entity, EntityKind, InventoryItem, Vec3, WorldObject
from npcmind.sim.observation import ObservationBuilder, reactive_trigger, snapshot


def _character(entity_id: str, x: float, **kwargs) -> Entity:
    return Entity(id=entity_id, name=entity_id.title(), kind=EntityKind.CHARACTER, pos=Vec3(x, 0.0, 0.0), **kwargs)


def test_snapshot_filters_by_radius_and_classifies():
    me = _character("me", 0.0, inventory=[InventoryItem("bread", 2), None])
    near = _character("bob", 5.0, health=40.0)
    far = _character("far", 50.0)
    wolf = Entity(id="wolf", name="Wolf", kind=EntityKind.ANIMAL, pos=Vec3(3.0), animal_type="wolf", aggressive=True)
    tree = WorldObject(id="tree_1", type="tree", pos=Vec3(2.0), resource="wood")
    stump = WorldObject(id="tree_2", type="tree", pos=Vec3(1.0), resource="wood", visible=False)

    obs = snapshot(me, [me, near, far, wolf, tree, stump, near], radius=10.0, action_label="idle", now=12.5)

    assert obs.timestamp == 12.5
    assert obs.self_state.id == "me"
    assert obs.self_state.current_action == "idle"
    assert obs.self_state.inventory == (InventoryItem("bread", 2), None)
    assert [c.id for c in obs.nearby_characters] == ["bob"]
    assert obs.nearby_characters[0].health == 40.0
    assert [a.id for a in obs.nearby_animals] == ["wolf"]
    assert obs.nearby_animals[0].aggressive is True
    assert [o.id for o in obs.nearby_objects] == ["tree_1"]


def test_snapshot_orders_by_distance_and_caps():
    me = _character("me", 0.0)
    others = [_character(f"c{i}", float(i)) for i in range(6, 0, -1)]

    obs = snapshot(me, others, radius=30.0, action_label="idle", now=0.0, max_characters=3)

    assert [c.id for c in obs.nearby_characters] == ["c1", "c2", "c3"]


def test_player_is_labelled_player_controlled():
    me = _character("me", 0.0)
    player = _character("player", 2.0, is_player=True)

    obs = snapshot(me, [player], radius=10.0, action_label="idle", now=0.0)

    assert obs.nearby_characters[0].current_action == "player_controlled"


def test_reactive_trigger_on_health_drop_and_newcomers():
    me = _character("me", 0.0)
    bob = _character("bob", 3.0)
    builder = ObservationBuilder(radius=10.0)

    builder.update(me, [bob], "idle", 0.0)
    assert builder.affected() is False

    builder.update(me, [bob], "idle", 1.0)
    assert builder.affected() is False

    bob.health = 70.0
    builder.update(me, [bob], "idle", 2.0)
    assert builder.affected() is True

    me.health = 90.0
    builder.update(me, [bob], "idle", 3.0)
    assert builder.previous.self_state.health == 100.0
    assert builder.affected() is True

    carl = _character("carl", 4.0)
    builder.update(me, [bob], "idle", 4.0)
    builder.update(me, [bob, carl], "idle", 5.0)
    assert builder.affected() is True


def test_reactive_trigger_needs_two_snapshots():
    me = _character("me", 0.0)
    obs = snapshot(me, [], radius=5.0, action_label="idle", now=0.0)

    assert reactive_trigger(obs, None) is False
    assert reactive_trigger(None, obs) is False
