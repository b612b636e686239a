"""回合引擎测试：开战、推进、先攻与状态机无操作。"""
import random

import pytest

from storyforge.combat import EncounterStatus, EncounterStore, LogActionType, NotFoundError
from storyforge.combat import turn_engine
from storyforge.combat.dice import DiceRoller
from storyforge.combat.models import CombatEncounter, CombatParticipant


class _ScriptedRng:
    def __init__(self, *values):
        self._values = iter(values)

    def randint(self, low, high):
        return next(self._values)


def _scripted_dice(*values):
    return DiceRoller(_ScriptedRng(*values))


def _store_with(*names, **kwargs):
    store = EncounterStore(rng=random.Random(kwargs.pop("seed", 3)))
    encounter_id = store.create_encounter("Skirmish")
    ids = [store.add_participant(encounter_id, {"name": name, "max_hp": 10}) for name in names]
    return store, encounter_id, ids


def _active_ids(encounter):
    return [p.id for p in encounter.participants if p.is_active]


class TestStartCombat:
    def test_start_combat_scenario(self):
        store, encounter_id, (a, b) = _store_with("A", "B")
        store.start_combat(encounter_id)
        encounter = store.get_encounter(encounter_id)
        assert encounter.status == EncounterStatus.ACTIVE
        assert encounter.current_round == 1
        assert encounter.current_turn == 0
        assert len(_active_ids(encounter)) == 1
        assert encounter.log[-1].action_type == LogActionType.SYSTEM
        assert encounter.log[-1].description == "Combat started"
        assert encounter.start_time is not None

    def test_fallback_order_keeps_insertion_on_ties(self):
        store, encounter_id, (a, b, c) = _store_with("A", "B", "C")
        store.update_participant(encounter_id, c, {"initiative": 15})
        store.start_combat(encounter_id)
        encounter = store.get_encounter(encounter_id)
        assert encounter.initiative_order == (c, a, b)
        assert _active_ids(encounter) == [c]

    def test_fallback_order_ignores_dexterity(self):
        store, encounter_id, (a, b) = _store_with("A", "B")
        store.update_participant(encounter_id, a, {"initiative": 10, "stats": {"dexterity": 1}})
        store.update_participant(encounter_id, b, {"initiative": 10, "stats": {"dexterity": 5}})
        store.start_combat(encounter_id)
        assert store.get_encounter(encounter_id).initiative_order == (a, b)

    def test_start_combat_focuses_encounter(self):
        store, encounter_id, _ = _store_with("A")
        store.create_encounter("Elsewhere")
        store.start_combat(encounter_id)
        assert store.get_state().active_encounter_id == encounter_id

    def test_start_combat_resets_turn_flags(self):
        store, encounter_id, (a, b) = _store_with("A", "B")
        store.update_participant(encounter_id, b, {"has_acted": True, "has_used_reaction": True})
        store.start_combat(encounter_id)
        participant = store.get_encounter(encounter_id).get_participant(b)
        assert not participant.has_acted
        assert not participant.has_used_reaction

    def test_start_combat_keeps_rolled_order_and_appends_latecomers(self):
        store, encounter_id, (a, b) = _store_with("A", "B")
        store.roll_initiative(encounter_id)
        rolled = store.get_encounter(encounter_id).initiative_order
        late = store.add_participant(encounter_id, {"name": "Late", "max_hp": 4})
        store.start_combat(encounter_id)
        assert store.get_encounter(encounter_id).initiative_order == rolled + (late,)

    def test_start_combat_when_active_is_noop(self):
        store, encounter_id, _ = _store_with("A", "B")
        store.start_combat(encounter_id)
        store.next_turn(encounter_id)
        before = store.get_state()
        store.start_combat(encounter_id)
        assert store.get_state() is before

    def test_start_combat_without_participants_is_noop(self):
        store = EncounterStore()
        encounter_id = store.create_encounter("Empty")
        before = store.get_state()
        store.start_combat(encounter_id)
        assert store.get_state() is before

    def test_start_combat_unknown(self):
        with pytest.raises(NotFoundError):
            EncounterStore().start_combat("enc_missing")


class TestNextTurn:
    def test_next_turn_in_preparing_is_noop(self):
        store, encounter_id, _ = _store_with("A", "B")
        notified = []
        store.subscribe(notified.append)
        before = store.get_state()
        store.next_turn(encounter_id)
        assert store.get_state() is before
        assert store.get_encounter(encounter_id).log == ()
        assert notified == []

    def test_next_turn_moves_flags(self):
        store, encounter_id, (a, b) = _store_with("A", "B")
        store.start_combat(encounter_id)
        store.next_turn(encounter_id)
        encounter = store.get_encounter(encounter_id)
        assert encounter.current_turn == 1
        assert encounter.current_round == 1
        first, second = encounter.get_participant(a), encounter.get_participant(b)
        assert not first.is_active and first.has_acted
        assert second.is_active and not second.has_acted
        assert encounter.log[-1].description == "Turn moved to B"

    def test_full_cycle_increments_round_once(self):
        store, encounter_id, ids = _store_with("A", "B", "C")
        store.start_combat(encounter_id)
        store.next_turn(encounter_id)
        start = store.get_encounter(encounter_id)
        for _ in range(len(ids)):
            store.next_turn(encounter_id)
        end = store.get_encounter(encounter_id)
        assert end.current_round == start.current_round + 1
        assert end.current_turn == start.current_turn

    def test_round_wrap_logs_round_started(self):
        store, encounter_id, _ = _store_with("A", "B")
        store.start_combat(encounter_id)
        store.next_turn(encounter_id)
        store.next_turn(encounter_id)
        encounter = store.get_encounter(encounter_id)
        assert encounter.current_round == 2
        assert encounter.current_turn == 0
        assert encounter.log[-1].description == "Round 2 started"

    def test_incoming_actor_flags_reset(self):
        store, encounter_id, (a, b) = _store_with("A", "B")
        store.start_combat(encounter_id)
        store.update_participant(
            encounter_id,
            b,
            {"has_moved_this_turn": True, "has_used_bonus_action": True, "has_used_reaction": True},
        )
        store.next_turn(encounter_id)
        participant = store.get_encounter(encounter_id).get_participant(b)
        assert not participant.has_moved_this_turn
        assert not participant.has_used_bonus_action
        assert not participant.has_used_reaction

    def test_single_participant_stays_active(self):
        store, encounter_id, (a,) = _store_with("A")
        store.start_combat(encounter_id)
        store.next_turn(encounter_id)
        encounter = store.get_encounter(encounter_id)
        assert encounter.current_round == 2
        assert _active_ids(encounter) == [a]

    def test_exactly_one_active_across_many_turns(self):
        store, encounter_id, ids = _store_with("A", "B", "C", "D")
        store.start_combat(encounter_id)
        for step in range(13):
            encounter = store.get_encounter(encounter_id)
            assert len(_active_ids(encounter)) == 1
            assert 0 <= encounter.current_turn < len(encounter.initiative_order)
            assert _active_ids(encounter) == [encounter.initiative_order[encounter.current_turn]]
            store.next_turn(encounter_id)

    def test_each_turn_appends_one_log_entry(self):
        store, encounter_id, _ = _store_with("A", "B")
        store.start_combat(encounter_id)
        before = len(store.get_encounter(encounter_id).log)
        store.next_turn(encounter_id)
        assert len(store.get_encounter(encounter_id).log) == before + 1


class TestRemovalDuringCombat:
    def test_remove_current_actor_hands_turn_to_follower(self):
        store, encounter_id, (a, b, c) = _store_with("A", "B", "C")
        store.start_combat(encounter_id)
        store.next_turn(encounter_id)
        store.update_participant(encounter_id, c, {"has_acted": True})
        store.remove_participant(encounter_id, b)
        encounter = store.get_encounter(encounter_id)
        assert encounter.initiative_order == (a, c)
        assert encounter.current_turn == 1
        assert encounter.get_current_actor().id == c
        assert _active_ids(encounter) == [c]
        assert not encounter.get_participant(c).has_acted

        store.next_turn(encounter_id)
        encounter = store.get_encounter(encounter_id)
        assert encounter.current_round == 2
        assert _active_ids(encounter) == [a]

    def test_remove_first_actor_keeps_valid_index(self):
        store, encounter_id, (a, b, c) = _store_with("A", "B", "C")
        store.start_combat(encounter_id)
        store.remove_participant(encounter_id, a)
        encounter = store.get_encounter(encounter_id)
        assert encounter.current_turn == 0
        assert encounter.get_current_actor().id == b
        assert _active_ids(encounter) == [b]

        store.next_turn(encounter_id)
        encounter = store.get_encounter(encounter_id)
        assert encounter.current_round == 1
        assert _active_ids(encounter) == [c]

    def test_remove_last_actor_clamps_index(self):
        store, encounter_id, (a, b, c) = _store_with("A", "B", "C")
        store.start_combat(encounter_id)
        store.next_turn(encounter_id)
        store.next_turn(encounter_id)
        store.remove_participant(encounter_id, c)
        encounter = store.get_encounter(encounter_id)
        assert encounter.current_turn == 1
        assert _active_ids(encounter) == [b]

        store.next_turn(encounter_id)
        encounter = store.get_encounter(encounter_id)
        assert encounter.current_round == 2
        assert _active_ids(encounter) == [a]

    def test_remove_earlier_participant_keeps_current_actor(self):
        store, encounter_id, (a, b, c) = _store_with("A", "B", "C")
        store.start_combat(encounter_id)
        store.next_turn(encounter_id)
        store.next_turn(encounter_id)
        store.remove_participant(encounter_id, a)
        encounter = store.get_encounter(encounter_id)
        assert encounter.current_turn == 1
        assert encounter.get_current_actor().id == c
        assert _active_ids(encounter) == [c]

    def test_remove_later_participant_keeps_index(self):
        store, encounter_id, (a, b, c) = _store_with("A", "B", "C")
        store.start_combat(encounter_id)
        store.remove_participant(encounter_id, c)
        encounter = store.get_encounter(encounter_id)
        assert encounter.current_turn == 0
        assert _active_ids(encounter) == [a]

    @pytest.mark.parametrize("turns_taken", [0, 1, 2, 3])
    @pytest.mark.parametrize("removed_slot", [0, 1, 2, 3])
    def test_index_stays_valid_after_any_removal(self, turns_taken, removed_slot):
        store, encounter_id, _ = _store_with("A", "B", "C", "D")
        store.start_combat(encounter_id)
        for _ in range(turns_taken):
            store.next_turn(encounter_id)
        removed = store.get_encounter(encounter_id).initiative_order[removed_slot]
        store.remove_participant(encounter_id, removed)

        encounter = store.get_encounter(encounter_id)
        assert encounter.status == EncounterStatus.ACTIVE
        assert 0 <= encounter.current_turn < len(encounter.initiative_order)
        actor = encounter.get_current_actor()
        assert actor is not None
        assert _active_ids(encounter) == [actor.id]

    def test_remove_everyone_resets_index(self):
        store, encounter_id, (a,) = _store_with("A")
        store.start_combat(encounter_id)
        store.remove_participant(encounter_id, a)
        encounter = store.get_encounter(encounter_id)
        assert encounter.initiative_order == ()
        assert encounter.current_turn == -1
        before = store.get_state()
        store.next_turn(encounter_id)
        assert store.get_state() is before

    def test_remove_while_paused_keeps_valid_index(self):
        store, encounter_id, (a, b) = _store_with("A", "B")
        store.start_combat(encounter_id)
        store.next_turn(encounter_id)
        store.pause_combat(encounter_id)
        store.remove_participant(encounter_id, b)
        store.resume_combat(encounter_id)
        encounter = store.get_encounter(encounter_id)
        assert encounter.current_turn == 0
        assert _active_ids(encounter) == [a]


class TestPreviousTurn:
    def test_previous_turn_at_start_is_noop(self):
        store, encounter_id, _ = _store_with("A", "B")
        store.start_combat(encounter_id)
        before = store.get_state()
        store.previous_turn(encounter_id)
        assert store.get_state() is before

    def test_previous_turn_steps_back(self):
        store, encounter_id, (a, b) = _store_with("A", "B")
        store.start_combat(encounter_id)
        store.next_turn(encounter_id)
        store.previous_turn(encounter_id)
        encounter = store.get_encounter(encounter_id)
        assert encounter.current_turn == 0
        assert _active_ids(encounter) == [a]
        assert not encounter.get_participant(a).has_acted
        assert encounter.log[-1].description == "Turn moved back to A"

    def test_previous_turn_crosses_round(self):
        store, encounter_id, (a, b) = _store_with("A", "B")
        store.start_combat(encounter_id)
        store.next_turn(encounter_id)
        store.next_turn(encounter_id)
        store.previous_turn(encounter_id)
        encounter = store.get_encounter(encounter_id)
        assert encounter.current_round == 1
        assert encounter.current_turn == 1
        assert _active_ids(encounter) == [b]


class TestEndPauseResume:
    def test_end_combat(self):
        store, encounter_id, _ = _store_with("A", "B")
        store.start_combat(encounter_id)
        store.end_combat(encounter_id)
        encounter = store.get_encounter(encounter_id)
        assert encounter.status == EncounterStatus.COMPLETED
        assert encounter.end_time is not None
        assert _active_ids(encounter) == []
        assert encounter.log[-1].description == "Combat ended"

    def test_end_combat_when_preparing_is_noop(self):
        store, encounter_id, _ = _store_with("A")
        before = store.get_state()
        store.end_combat(encounter_id)
        assert store.get_state() is before

    def test_end_combat_twice(self):
        store, encounter_id, _ = _store_with("A")
        store.start_combat(encounter_id)
        store.end_combat(encounter_id)
        before = store.get_state()
        store.end_combat(encounter_id)
        assert store.get_state() is before

    def test_pause_and_resume(self):
        store, encounter_id, (a, b) = _store_with("A", "B")
        store.start_combat(encounter_id)
        store.next_turn(encounter_id)
        store.pause_combat(encounter_id)
        paused = store.get_encounter(encounter_id)
        assert paused.status == EncounterStatus.PAUSED
        assert paused.log[-1].description == "Combat paused"

        before = store.get_state()
        store.next_turn(encounter_id)
        assert store.get_state() is before

        store.resume_combat(encounter_id)
        resumed = store.get_encounter(encounter_id)
        assert resumed.status == EncounterStatus.ACTIVE
        assert resumed.current_turn == 1
        assert _active_ids(resumed) == [b]

    def test_end_combat_from_paused(self):
        store, encounter_id, _ = _store_with("A")
        store.start_combat(encounter_id)
        store.pause_combat(encounter_id)
        store.end_combat(encounter_id)
        assert store.get_encounter(encounter_id).status == EncounterStatus.COMPLETED

    def test_resume_when_not_paused_is_noop(self):
        store, encounter_id, _ = _store_with("A")
        before = store.get_state()
        store.resume_combat(encounter_id)
        store.pause_combat(encounter_id)
        assert store.get_state() is before


class TestInitiative:
    def test_roll_initiative_is_permutation(self):
        store, encounter_id, ids = _store_with("A", "B", "C", "D")
        store.roll_initiative(encounter_id)
        store.roll_initiative(encounter_id)
        encounter = store.get_encounter(encounter_id)
        assert sorted(encounter.initiative_order) == sorted(ids)
        assert encounter.log[-1].description == "Initiative rolled"

    def test_roll_initiative_order_is_descending(self):
        store, encounter_id, _ = _store_with("A", "B", "C", "D", "E")
        store.roll_initiative(encounter_id)
        encounter = store.get_encounter(encounter_id)
        values = [encounter.get_participant(pid).initiative for pid in encounter.initiative_order]
        assert values == sorted(values, reverse=True)

    def test_roll_adds_dexterity_bonus(self):
        encounter = CombatEncounter(
            name="E",
            participants=(CombatParticipant(id="a", name="A", stats={"dexterity": 4}),),
        )
        rolled = turn_engine.roll_initiative(encounter, _scripted_dice(9))
        assert rolled.get_participant("a").initiative == 13
        assert rolled.log[-1].details["rolls"]["a"] == {
            "notation": "1d20+4",
            "roll": 9,
            "bonus": 4,
            "total": 13,
        }

    def test_roll_ties_break_on_dexterity(self):
        encounter = CombatEncounter(
            name="E",
            participants=(
                CombatParticipant(id="a", name="A", stats={"dexterity": 1}),
                CombatParticipant(id="b", name="B", stats={"dexterity": 3}),
                CombatParticipant(id="c", name="C", stats={"dexterity": 0}),
            ),
        )
        rolled = turn_engine.roll_initiative(encounter, _scripted_dice(12, 10, 2))
        assert rolled.initiative_order == ("b", "a", "c")

    def test_roll_keeps_status_round_turn(self):
        store, encounter_id, _ = _store_with("A", "B", "C")
        store.start_combat(encounter_id)
        store.next_turn(encounter_id)
        before = store.get_encounter(encounter_id)
        store.roll_initiative(encounter_id)
        after = store.get_encounter(encounter_id)
        assert after.status == before.status
        assert after.current_round == before.current_round
        assert after.current_turn == before.current_turn

    def test_roll_without_participants_is_noop(self):
        store = EncounterStore()
        encounter_id = store.create_encounter("Empty")
        before = store.get_state()
        store.roll_initiative(encounter_id)
        assert store.get_state() is before

    def test_seeded_stores_roll_identically(self):
        results = []
        for _ in range(2):
            store, encounter_id, _ = _store_with("A", "B", "C", seed=99)
            store.roll_initiative(encounter_id)
            encounter = store.get_encounter(encounter_id)
            results.append([p.initiative for p in encounter.participants])
        assert results[0] == results[1]

    def test_set_initiative_reorders_and_tracks_current_actor(self):
        store, encounter_id, (a, b, c) = _store_with("A", "B", "C")
        store.start_combat(encounter_id)
        store.next_turn(encounter_id)
        store.set_initiative(encounter_id, c, 20)
        encounter = store.get_encounter(encounter_id)
        assert encounter.initiative_order == (c, a, b)
        assert encounter.get_current_actor().id == b
        assert encounter.log[-1].description == "C initiative set to 20"

    def test_set_initiative_breaks_ties_on_dexterity(self):
        encounter = CombatEncounter(
            name="E",
            participants=(
                CombatParticipant(id="a", name="A", stats={"dexterity": 1}),
                CombatParticipant(id="b", name="B", stats={"dexterity": 3}),
                CombatParticipant(id="c", name="C", stats={"dexterity": 5}),
            ),
        )
        rolled = turn_engine.roll_initiative(encounter, _scripted_dice(12, 10, 2))
        assert rolled.initiative_order == ("b", "a", "c")
        updated = turn_engine.set_initiative(rolled, "c", 13)
        assert updated.initiative_order == ("c", "b", "a")

    def test_set_initiative_unknown_participant(self):
        store, encounter_id, _ = _store_with("A")
        with pytest.raises(NotFoundError):
            store.set_initiative(encounter_id, "pc_missing", 3)


def test_turn_engine_functions_do_not_mutate_input():
    encounter = CombatEncounter(
        name="E",
        participants=(CombatParticipant(id="a", name="A"), CombatParticipant(id="b", name="B")),
    )
    started = turn_engine.start_combat(encounter)
    assert encounter.status == EncounterStatus.PREPARING
    advanced = turn_engine.next_turn(started)
    assert started.current_turn == 0
    assert advanced.current_turn == 1
    assert turn_engine.next_turn(encounter) is None
