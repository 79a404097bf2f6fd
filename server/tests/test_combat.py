from __future__ import annotations

from npcmind.sim.combat import CooldownCombat


def test_attack_respects_attacker_cooldown(harness):
    hunter = harness.add_character("hunter", attack_damage=10.0, attack_cooldown=1.5)
    deer = harness.add_animal("deer_1", "deer", x=1.0)
    combat = CooldownCombat(harness.clock, harness.journal)

    assert combat.initiate_attack(hunter, deer) is True
    assert combat.initiate_attack(hunter, deer) is False
    assert deer.health == 90.0

    harness.clock.advance(1.5)
    assert combat.initiate_attack(hunter, deer) is True
    assert deer.health == 80.0
    assert [e.kind for e in harness.journal.history] == ["hit", "hit"]


def test_killing_blow_marks_dead_and_notifies(harness):
    killed = []
    wolf = harness.add_animal("wolf_1", "wolf", attack_damage=30.0)
    victim = harness.add_character("Bob", x=1.0, health=20.0)
    combat = CooldownCombat(harness.clock, harness.journal, on_kill=killed.append)

    assert combat.initiate_attack(wolf, victim) is True

    assert victim.dead is True
    assert victim.health == 0.0
    assert killed == [victim]
    assert harness.journal.history[-1].message == "Wolf killed Bob."

    harness.clock.advance(10.0)
    assert combat.initiate_attack(wolf, victim) is False


def test_dead_attacker_cannot_strike(harness):
    wolf = harness.add_animal("wolf_1", "wolf", dead=True)
    victim = harness.add_character("Bob", x=1.0)

    assert CooldownCombat(harness.clock).initiate_attack(wolf, victim) is False
    assert victim.health == 100.0


def test_gathering_depletes_resource(harness):
    hunter = harness.add_character("hunter", attack_damage=20.0, attack_cooldown=0.0)
    tree = harness.add_resource("tree_1", "wood", x=1.0)
    combat = CooldownCombat(harness.clock, harness.journal)

    assert combat.initiate_attack(hunter, tree) is True
    assert tree.is_available is True
    assert combat.initiate_attack(hunter, tree) is True

    assert tree.visible is False
    assert tree.interactable is False
    assert combat.initiate_attack(hunter, tree) is False
    assert harness.journal.history[-1].kind == "gather"
